"""Shared fixtures: temporary database, controllable clock and fake transports."""

from typing import Any, Dict, List, Optional
import json

import pytest
import pytest_asyncio

from assistant.domain.errors import TransientBackendError
from assistant.infrastructure.persistence.database import Database

START_MS = 1_700_000_000_000


class FakeClock:
    """Manually advanced wall clock"""

    def __init__(self, start_ms: int = START_MS):
        self.now_ms = start_ms

    def ms(self) -> int:
        return self.now_ms

    def seconds(self) -> int:
        return self.now_ms // 1000

    def advance(self, seconds: float = 0, ms: int = 0) -> None:
        self.now_ms += int(seconds * 1000) + ms


class FakeHandle:
    """In-memory stand-in for a live WebSocket handle"""

    _counter = 0

    def __init__(self, tags: Optional[List[str]] = None):
        FakeHandle._counter += 1
        self.handle_id = f"handle-{FakeHandle._counter}"
        self.tags = list(tags or [])
        self.sent: List[Dict[str, Any]] = []
        self.accepted = False
        self._attachment: Optional[str] = None

    def serialize_attachment(self, data: Dict[str, Any]) -> None:
        self._attachment = json.dumps(data)

    def deserialize_attachment(self) -> Optional[Dict[str, Any]]:
        return json.loads(self._attachment) if self._attachment else None

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, payload: Dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.accepted = False

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [event for event in self.sent if event.get("type") == event_type]

    @property
    def last(self) -> Dict[str, Any]:
        return self.sent[-1]


class FakeCompletion:
    """Scripted completion backend; exceptions in the script are raised"""

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: List[List[Dict[str, str]]] = []

    async def complete(self, messages, max_tokens: int = 500, temperature: float = 0.7) -> str:
        self.calls.append(list(messages))
        if not self.responses:
            raise TransientBackendError("no scripted response")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'assistant-test.db'}")
    await db.create_all()
    yield db
    await db.dispose()
