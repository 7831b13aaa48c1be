from typing import Any

from fastapi.encoders import jsonable_encoder


def api_response(message: str, data: Any = None) -> dict:
    return {"status": "success", "message": message, "data": jsonable_encoder(data)}
