from typing import Dict, Any, List, Optional
import json

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from assistant.domain.models.agent_state import new_id


class WebSocketHandle:
    """A live WebSocket plus the identity stashed on it

    The handle outlives the actor serving it: when an idle actor is evicted,
    the host keeps the handle and hands it back on reactivation, and the
    serialized attachment and tags are how the new actor recovers who is on
    the other end.
    """

    def __init__(self, websocket: WebSocket, tags: Optional[List[str]] = None):
        self.websocket = websocket
        self.handle_id = new_id()
        self.tags: List[str] = list(tags or [])
        self._attachment: Optional[str] = None

    def serialize_attachment(self, data: Dict[str, Any]) -> None:
        self._attachment = json.dumps(data)

    def deserialize_attachment(self) -> Optional[Dict[str, Any]]:
        if self._attachment is None:
            return None
        return json.loads(self._attachment)

    @property
    def is_open(self) -> bool:
        return self.websocket.client_state == WebSocketState.CONNECTED

    async def accept(self) -> None:
        await self.websocket.accept()

    async def send_json(self, payload: Dict[str, Any]) -> None:
        await self.websocket.send_json(payload)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        await self.websocket.close(code=code, reason=reason)
