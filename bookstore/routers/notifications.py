import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from bookstore import accounts
from bookstore.errors import Unauthenticated

router = APIRouter(tags=["Notifications"])
logger = logging.getLogger(__name__)


@router.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket):
    """Per-user event stream. Authenticate with ``?token=<access token>``."""
    # released before the socket is accepted
    db = websocket.app.state.session_factory()
    try:
        user = accounts.authenticate(db, websocket.query_params.get("token"))
        user_id = user.id
    except Unauthenticated as exc:
        logger.info(f"Rejected notification socket: {exc.message}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        return
    finally:
        db.close()

    notifier = websocket.app.state.notifier
    await websocket.accept()
    notifier.connect(user_id, websocket)
    await websocket.send_json({"event": "connected", "data": {"user_id": user_id}})
    try:
        while True:
            # clients only listen; incoming frames are read to detect disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        notifier.disconnect(user_id, websocket)
