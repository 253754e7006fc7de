import pytest

from assistant.domain.context.context_ranker import ContextRanker
from assistant.domain.context.context_retriever import ContextRetriever
from assistant.domain.context.memory.runtime_memory import RuntimeMemory
from assistant.domain.context.memory.vector_memory_store import KNOWLEDGE, VectorMemoryStore
from assistant.domain.models.agent_state import Message, MessageRole

HOUR_MS = 60 * 60 * 1000


def user(content: str, timestamp: int = 0) -> Message:
    return Message(role=MessageRole.USER, content=content, timestamp=timestamp)


def assistant(content: str, timestamp: int = 0) -> Message:
    return Message(role=MessageRole.ASSISTANT, content=content, timestamp=timestamp)


class TestSummarizeConversation:
    def test_empty_history(self):
        assert ContextRanker().summarize_conversation([]) == "No conversation history."

    def test_topics_come_from_user_messages_only(self):
        history = [
            user("Planning vacation itinerary"),
            assistant("Wonderful destination choices available"),
            user("Booking flights tomorrow morning"),
        ]

        summary = ContextRanker().summarize_conversation(history)

        assert summary == (
            "Conversation with 2 user messages discussing: "
            "planning, vacation, itinerary, booking, flights"
        )

    def test_topics_are_distinct(self):
        history = [user("Groceries groceries GROCERIES")]

        assert ContextRanker().summarize_conversation(history) == (
            "Conversation with 1 user messages discussing: groceries"
        )


class TestExtractIntent:
    @pytest.mark.parametrize(
        "text,intent",
        [
            ("Please add milk to my list", "task"),
            ("Remind me tomorrow", "task"),
            ("What is the weather", "question"),
            ("Is it raining?", "question"),
            ("hello there", "chat"),
            ("Thanks a lot", "chat"),
            ("Banana", "unknown"),
        ],
    )
    def test_classification(self, text, intent):
        assert ContextRanker().extract_intent([user(text)]) == intent

    def test_empty_history_is_unknown(self):
        assert ContextRanker().extract_intent([]) == "unknown"

    def test_only_last_three_messages_count(self):
        history = [
            user("create a task"),
            assistant("Sure"),
            user("ok"),
            assistant("done"),
        ]

        assert ContextRanker().extract_intent(history) == "unknown"


class TestRuntimeMemory:
    def test_recent_messages(self):
        history = [user(str(i), timestamp=i) for i in range(15)]

        recent = RuntimeMemory().get_recent_messages(history)

        assert [m.content for m in recent] == [str(i) for i in range(5, 15)]
        assert RuntimeMemory().get_recent_messages(history, 3)[0].content == "12"

    def test_time_range(self):
        now = 100 * HOUR_MS
        history = [
            user("old", timestamp=now - 3 * HOUR_MS),
            user("edge", timestamp=now - 2 * HOUR_MS),
            user("new", timestamp=now - 1),
        ]

        window = RuntimeMemory(clock=lambda: now).get_messages_by_time_range(history, hours=2)

        assert [m.content for m in window] == ["edge", "new"]


class TestVectorMemoryStore:
    @pytest.mark.asyncio
    async def test_search_ranks_by_overlap_per_user(self):
        store = VectorMemoryStore()
        await store.add("alice", user("I love hiking in the mountains", 1))
        await store.add("alice", user("Dentist appointment on Friday", 2))
        await store.add("bob", user("hiking mountains every weekend", 3))

        results = await store.search("alice", "mountains hiking", top_k=3)

        assert results == ["I love hiking in the mountains"]

    @pytest.mark.asyncio
    async def test_namespaces_are_separate(self):
        store = VectorMemoryStore()
        await store.add("alice", user("project deadline friday"), KNOWLEDGE)

        assert await store.search("alice", "project deadline", top_k=3) == []
        assert await store.search("alice", "project deadline", top_k=3, namespace=KNOWLEDGE) == [
            "project deadline friday"
        ]


class FailingIndex:
    async def search(self, user_id, query, top_k, namespace="conversation"):
        raise RuntimeError("index offline")

    async def add(self, user_id, message, namespace="conversation"):
        raise RuntimeError("index offline")


class TestContextRetriever:
    @pytest.mark.asyncio
    async def test_combines_history_and_knowledge(self):
        store = VectorMemoryStore()
        await store.add("alice", user("trip to Lisbon in May", 1))
        await store.add("alice", user("Lisbon hotel confirmation", 2), KNOWLEDGE)

        snippets = await ContextRetriever(store, top_k=3).retrieve_relevant_context("alice", "Lisbon")

        assert snippets == ["trip to Lisbon in May", "Lisbon hotel confirmation"]

    @pytest.mark.asyncio
    async def test_failure_degrades_to_no_snippets(self):
        retriever = ContextRetriever(FailingIndex())

        assert await retriever.retrieve_relevant_context("alice", "anything") == []
        await retriever.remember("alice", user("still fine"))

    @pytest.mark.asyncio
    async def test_disabled(self):
        store = VectorMemoryStore()
        await store.add("alice", user("Lisbon"))

        assert await ContextRetriever(store, enabled=False).retrieve_relevant_context("alice", "Lisbon") == []
