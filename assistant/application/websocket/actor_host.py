from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional, Set
import asyncio
import time

import structlog

from assistant.domain.models.agent_state import ActorState, Message
from assistant.domain.orchestration.core.personal_assistant import PersonalAssistant

logger = structlog.get_logger(__name__)


class ActorHost:
    """Directory of live actors, one per user key

    Every event for a key runs under that key's lock, after activation has
    completed. Idle actors are evicted; their transport handles stay in the
    pool so the next activation can rebuild sessions from them.
    """

    def __init__(
        self,
        factory: Callable[[str], PersonalAssistant],
        idle_seconds: float = 300.0,
        sweep_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.factory = factory
        self.idle_seconds = idle_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._actors: Dict[str, PersonalAssistant] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._closing: Set[asyncio.Task] = set()
        self._handles: Dict[str, Dict[str, Any]] = {}
        self._last_used: Dict[str, float] = {}
        self._sweeper: Optional[asyncio.Task] = None

    # ==================== Event delivery ====================

    async def connect(self, key: str, handle: Any, claimed_user_id: str) -> str:
        """Admit a connection; ConflictError propagates before the socket is accepted"""

        async with self._exclusive(key):
            actor = await self._activate(key)
            user_id = await actor.connect(handle, claimed_user_id)
            self._handles.setdefault(key, {})[handle.handle_id] = handle
            return user_id

    async def deliver(self, key: str, handle: Any, raw: Any) -> None:
        async with self._exclusive(key):
            actor = await self._activate(key)
            await actor.handle_message(handle, raw)

    async def disconnect(self, key: str, handle: Any) -> None:
        """Release a handle; the close is persisted even if the caller is cancelled"""

        closing = asyncio.ensure_future(self._disconnect(key, handle))
        self._closing.add(closing)
        closing.add_done_callback(self._closing.discard)
        await asyncio.shield(closing)

    async def _disconnect(self, key: str, handle: Any) -> None:
        async with self._exclusive(key):
            pool = self._handles.get(key, {})
            if pool.pop(handle.handle_id, None) is None:
                return
            if not pool:
                self._handles.pop(key, None)

            actor = await self._activate(key)
            await actor.handle_close(handle)

    async def deliver_system_message(self, key: str, message: Message) -> None:
        """Refresh a live actor's cached history with a message written elsewhere"""

        if key not in self._actors:
            return

        async with self._exclusive(key):
            actor = self._actors.get(key)
            if actor is not None:
                actor.absorb(message)

    async def snapshot(self, key: str) -> Optional[ActorState]:
        """Current state of a live actor, or None if it is not active"""

        async with self._exclusive(key):
            actor = self._actors.get(key)
            return actor.state.model_copy(deep=True) if actor is not None else None

    # ==================== Hibernation ====================

    async def hibernate(self, key: str) -> bool:
        """Drop the in-memory actor; its state was persisted after its last event"""

        async with self._exclusive(key):
            actor = self._actors.pop(key, None)
            self._last_used.pop(key, None)

        if actor is not None:
            logger.info("Actor hibernated", actor_key=key, open_handles=len(self._handles.get(key, {})))
        return actor is not None

    async def evict_idle(self) -> int:
        cutoff = self._clock() - self.idle_seconds
        idle = [key for key, used in self._last_used.items() if used <= cutoff]

        evicted = 0
        for key in idle:
            if await self.hibernate(key):
                evicted += 1
        return evicted

    def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="actor-eviction")

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

        self._actors.clear()
        self._last_used.clear()

    @property
    def active_actors(self) -> int:
        return len(self._actors)

    @property
    def open_handles(self) -> int:
        return sum(len(pool) for pool in self._handles.values())

    def is_active(self, key: str) -> bool:
        return key in self._actors

    # ==================== Internals ====================

    @asynccontextmanager
    async def _exclusive(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1

        try:
            async with lock:
                with structlog.contextvars.bound_contextvars(actor_key=key):
                    yield
        finally:
            # A lock lives only while someone holds or awaits it
            remaining = self._lock_users[key] - 1
            if remaining:
                self._lock_users[key] = remaining
            else:
                del self._lock_users[key]
                del self._locks[key]

    async def _activate(self, key: str) -> PersonalAssistant:
        # Caller holds the key's lock
        actor = self._actors.get(key)
        if actor is None:
            actor = self.factory(key)
            await actor.activate(list(self._handles.get(key, {}).values()))
            self._actors[key] = actor

        self._last_used[key] = self._clock()
        return actor

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                evicted = await self.evict_idle()
                if evicted:
                    logger.info("Evicted idle actors", count=evicted, active=len(self._actors))
            except Exception as e:
                logger.error("Actor eviction sweep failed", error=str(e))
