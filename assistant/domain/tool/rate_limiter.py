from typing import Callable, Dict, List, Optional, Tuple

from assistant.domain.models.agent_state import now_ms


class RateLimiter:
    """Sliding-window call counter per (user, action)

    ``check_limit`` never records; callers check, perform the side effect,
    and call ``record_call`` only when it succeeded.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or now_ms
        self.windows: Dict[Tuple[str, str], List[int]] = {}

    def check_limit(self, user_id: str, action: str, max_calls: int, window_ms: int) -> bool:
        """True if another call is allowed within the trailing window"""

        key = (user_id, action)
        cutoff = self._clock() - window_ms
        calls = [ts for ts in self.windows.get(key, []) if ts > cutoff]

        if calls:
            self.windows[key] = calls
        else:
            self.windows.pop(key, None)

        return len(calls) < max_calls

    def record_call(self, user_id: str, action: str) -> None:
        self.windows.setdefault((user_id, action), []).append(self._clock())
