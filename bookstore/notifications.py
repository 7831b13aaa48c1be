import logging
from collections import defaultdict
from typing import Any, Dict, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from bookstore.models import utcnow

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Registry of live websocket connections keyed by user id.

    Delivery is best-effort: a socket that fails to receive is dropped and
    the failure logged, the caller never sees it.
    """

    def __init__(self):
        self._connections: Dict[int, Set[WebSocket]] = defaultdict(set)

    def connect(self, user_id: int, websocket: WebSocket) -> None:
        self._connections[user_id].add(websocket)
        logger.info(f"User {user_id} joined their notification room")

    def disconnect(self, user_id: int, websocket: WebSocket) -> None:
        sockets = self._connections.get(user_id)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            del self._connections[user_id]
        logger.info(f"User {user_id} left their notification room")

    def connection_count(self, user_id: int) -> int:
        return len(self._connections.get(user_id, ()))

    async def notify(self, user_id: int, event: str, payload: Dict[str, Any]) -> None:
        sockets = list(self._connections.get(user_id, ()))
        if not sockets:
            return

        message = jsonable_encoder({"event": event, "data": {**payload, "timestamp": utcnow()}})
        for websocket in sockets:
            try:
                await websocket.send_json(message)
            except Exception as exc:
                logger.warning(f"Dropping notification socket for user {user_id}: {exc}")
                self.disconnect(user_id, websocket)
