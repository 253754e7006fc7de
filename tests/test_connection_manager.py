from assistant.application.websocket.connection_manager import ConnectionRegistry, RegistrationOutcome
from assistant.domain.tool.rate_limiter import RateLimiter

from .conftest import FakeHandle


class TestConnectionRegistry:
    def test_first_registration_establishes_identity(self):
        registry = ConnectionRegistry(clock=lambda: 1000)
        handle = FakeHandle()

        user_id, outcome = registry.register(handle, "alice")

        assert (user_id, outcome) == ("alice", RegistrationOutcome.ESTABLISHED)
        assert registry.user_id == "alice"
        assert handle.deserialize_attachment() == {"userId": "alice", "connectedAt": 1000}

    def test_same_user_joins(self):
        registry = ConnectionRegistry()
        registry.register(FakeHandle(), "alice")

        user_id, outcome = registry.register(FakeHandle(), "alice")

        assert (user_id, outcome) == ("alice", RegistrationOutcome.JOINED)
        assert registry.active_count == 2

    def test_mismatched_user_conflicts_without_registering(self):
        registry = ConnectionRegistry()
        registry.register(FakeHandle(), "alice")
        intruder = FakeHandle()

        user_id, outcome = registry.register(intruder, "mallory")

        assert (user_id, outcome) == ("alice", RegistrationOutcome.CONFLICT)
        assert registry.active_count == 1
        assert intruder.deserialize_attachment() is None
        assert registry.resolve(intruder) is None

    def test_identity_survives_restart_via_attachment(self):
        before = ConnectionRegistry(clock=lambda: 1000)
        handle = FakeHandle()
        before.register(handle, "alice")

        # A fresh registry knows nothing in memory
        after = ConnectionRegistry(user_id="alice", clock=lambda: 5000)
        session = after.resolve(handle)

        assert session.user_id == "alice"
        assert session.connected_at == 1000
        assert after.active_count == 1

    def test_tags_are_the_last_resort(self):
        registry = ConnectionRegistry(clock=lambda: 7)
        handle = FakeHandle(tags=["bob"])

        session = registry.resolve(handle)

        assert session.user_id == "bob"
        assert registry.user_id == "bob"

    def test_unknown_identity_is_never_guessed(self):
        registry = ConnectionRegistry(user_id="alice")

        assert registry.resolve(FakeHandle()) is None
        assert registry.active_count == 0

    def test_rebuild_skips_unrecoverable_handles(self):
        handles = [FakeHandle(), FakeHandle(), FakeHandle()]
        original = ConnectionRegistry()
        original.register(handles[0], "alice")
        original.register(handles[1], "alice")

        rebuilt = ConnectionRegistry(user_id="alice")
        count = rebuilt.rebuild(handles)

        assert count == 2
        assert {s.handle.handle_id for s in rebuilt.sessions.values()} == {
            handles[0].handle_id,
            handles[1].handle_id,
        }

    def test_unregister(self):
        registry = ConnectionRegistry()
        handle = FakeHandle()
        registry.register(handle, "alice")

        session = registry.unregister(handle)

        assert session.user_id == "alice"
        assert registry.active_count == 0
        assert registry.unregister(handle) is None


class TestRateLimiter:
    WINDOW_MS = 3_600_000

    def test_eleventh_call_is_refused(self, clock):
        limiter = RateLimiter(clock=clock.ms)

        for _ in range(10):
            assert limiter.check_limit("alice", "email", 10, self.WINDOW_MS)
            limiter.record_call("alice", "email")
            clock.advance(seconds=1)

        assert limiter.check_limit("alice", "email", 10, self.WINDOW_MS) is False

    def test_window_slides(self, clock):
        limiter = RateLimiter(clock=clock.ms)
        for _ in range(10):
            limiter.record_call("alice", "email")

        clock.advance(ms=self.WINDOW_MS)

        assert limiter.check_limit("alice", "email", 10, self.WINDOW_MS) is True

    def test_check_does_not_record(self, clock):
        limiter = RateLimiter(clock=clock.ms)

        for _ in range(50):
            assert limiter.check_limit("alice", "email", 1, self.WINDOW_MS)

    def test_keys_are_independent(self, clock):
        limiter = RateLimiter(clock=clock.ms)
        limiter.record_call("alice", "email")

        assert limiter.check_limit("alice", "email", 1, self.WINDOW_MS) is False
        assert limiter.check_limit("alice", "sms", 1, self.WINDOW_MS) is True
        assert limiter.check_limit("bob", "email", 1, self.WINDOW_MS) is True
