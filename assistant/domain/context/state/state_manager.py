from typing import Optional

import structlog

from assistant.domain.models.agent_state import ActorState
from assistant.infrastructure.persistence.actor_state_repository import ActorStateRepository

logger = structlog.get_logger(__name__)


class StateManager:
    """Loads and persists the versioned ActorState blob for one actor key"""

    def __init__(self, repository: ActorStateRepository, history_limit: int = 50):
        self.repository = repository
        self.history_limit = history_limit

    async def load(self, actor_key: str) -> Optional[ActorState]:
        """Load the stored state, or None on first activation"""

        stored = await self.repository.get(actor_key)
        if stored is None:
            return None

        version, blob = stored
        state = ActorState.model_validate_json(blob)
        state.version = version
        return state

    async def save(self, actor_key: str, state: ActorState) -> ActorState:
        """Persist ``state`` and bump its version"""

        if len(state.conversation_history) > self.history_limit:
            state.conversation_history = state.conversation_history[-self.history_limit:]

        blob = state.model_dump_json(by_alias=True, exclude={"version"})
        state.version = await self.repository.put(actor_key, blob, state.version)

        logger.debug("Actor state saved", actor_key=actor_key, version=state.version)
        return state
