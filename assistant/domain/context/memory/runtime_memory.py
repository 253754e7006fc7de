from typing import Callable, List, Optional, Sequence

from assistant.domain.models.agent_state import Message, now_ms


class RuntimeMemory:
    """Views over an actor's in-memory conversation working set"""

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or now_ms

    def get_recent_messages(self, history: Sequence[Message], count: int = 10) -> List[Message]:
        """Last ``count`` messages, oldest first"""

        if count <= 0:
            return []
        return list(history[-count:])

    def get_messages_by_time_range(self, history: Sequence[Message], hours: float) -> List[Message]:
        """Messages from the trailing ``hours`` window"""

        cutoff = self._clock() - int(hours * 60 * 60 * 1000)
        return [message for message in history if message.timestamp >= cutoff]
