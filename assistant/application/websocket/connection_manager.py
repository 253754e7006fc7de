from typing import Any, Callable, Dict, Iterable, Optional, Tuple
from enum import Enum
import structlog

from assistant.domain.models.agent_state import Session, now_ms

logger = structlog.get_logger(__name__)


class RegistrationOutcome(str, Enum):
    """Result of registering a connection with an actor"""
    ESTABLISHED = "established"
    JOINED = "joined"
    CONFLICT = "conflict"


class ConnectionRegistry:
    """Maps live transport handles to session identity for one actor

    The in-memory map is a cache. Identity also lives on each handle (the
    serialized attachment, then the first tag), so it can be recovered after
    the actor has been evicted and recreated.
    """

    def __init__(self, user_id: str = "", clock: Optional[Callable[[], int]] = None):
        self.user_id = user_id
        self.sessions: Dict[str, Session] = {}
        self._clock = clock or now_ms

    def register(self, handle: Any, claimed_user_id: str) -> Tuple[str, RegistrationOutcome]:
        """Bind a new connection; a mismatched user id registers nothing"""

        if self.user_id and claimed_user_id != self.user_id:
            logger.warning("Rejected connection for a different user", user_id=self.user_id, claimed=claimed_user_id)
            return self.user_id, RegistrationOutcome.CONFLICT

        outcome = RegistrationOutcome.JOINED if self.user_id else RegistrationOutcome.ESTABLISHED
        self.user_id = claimed_user_id

        session = Session(handle=handle, user_id=claimed_user_id, connected_at=self._clock())
        handle.serialize_attachment({"userId": session.user_id, "connectedAt": session.connected_at})
        self.sessions[handle.handle_id] = session

        logger.info("Connection registered", user_id=claimed_user_id, outcome=outcome.value, active=len(self.sessions))
        return claimed_user_id, outcome

    def resolve(self, handle: Any) -> Optional[Session]:
        """Find the session for a handle: memory, then attachment, then tags"""

        session = self.sessions.get(handle.handle_id)
        if session is not None:
            return session

        session = self._recover(handle)
        if session is None:
            logger.error("Session not found and cannot be recovered", handle_id=handle.handle_id)
            return None

        self.sessions[handle.handle_id] = session
        if not self.user_id:
            self.user_id = session.user_id
        logger.info("Session recovered", user_id=session.user_id, handle_id=handle.handle_id)
        return session

    def unregister(self, handle: Any) -> Optional[Session]:
        session = self.sessions.pop(handle.handle_id, None)
        if session is not None:
            logger.info("Connection unregistered", user_id=session.user_id, active=len(self.sessions))
        return session

    def rebuild(self, handles: Iterable[Any]) -> int:
        """Re-derive every session from the handles still open for this actor"""

        self.sessions.clear()
        for handle in handles:
            if self.resolve(handle) is None:
                logger.warning("Skipping handle with no recoverable identity", handle_id=handle.handle_id)

        return len(self.sessions)

    @property
    def active_count(self) -> int:
        return len(self.sessions)

    def _recover(self, handle: Any) -> Optional[Session]:
        try:
            attachment = handle.deserialize_attachment()
        except (ValueError, TypeError) as e:
            logger.debug("Unreadable attachment", handle_id=handle.handle_id, error=str(e))
            attachment = None

        if isinstance(attachment, dict) and attachment.get("userId"):
            return Session(
                handle=handle,
                user_id=attachment["userId"],
                connected_at=attachment.get("connectedAt") or self._clock(),
            )

        tags = getattr(handle, "tags", None) or []
        if tags:
            return Session(handle=handle, user_id=tags[0], connected_at=self._clock())

        return None
