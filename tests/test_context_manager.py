from assistant.domain.context.context_manager import (
    RAG_CONTEXT_HEADER,
    RAG_CONTEXT_ID,
    ContextManager,
    ContextOptions,
)
from assistant.domain.context.token_estimator import estimate_tokens
from assistant.domain.models.agent_state import Message, MessageRole


def make_history(count: int, content: str = "abcd", start: int = 1000):
    return [
        Message(
            id=f"m{i}",
            role=MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT,
            content=content,
            timestamp=start + i,
        )
        for i in range(count)
    ]


class TestTokenEstimator:
    def test_empty_text_costs_nothing(self):
        assert estimate_tokens("") == 0

    def test_rounds_up_to_whole_tokens(self):
        assert estimate_tokens("a") == 1
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("x" * 400) == 100


class TestBuild:
    def test_everything_fits(self):
        history = make_history(3)

        context = ContextManager().build(history, ContextOptions(max_tokens=100))

        assert [m.id for m in context.messages] == ["m0", "m1", "m2"]
        assert context.total_tokens == 3
        assert context.truncated is False
        assert context.system_prompt is None

    def test_keeps_newest_within_token_budget(self):
        history = make_history(10, content="x" * 40)  # 10 tokens each

        context = ContextManager().build(history, ContextOptions(max_tokens=35))

        assert [m.id for m in context.messages] == ["m7", "m8", "m9"]
        assert context.total_tokens == 30
        assert context.truncated is True

    def test_system_prompt_consumes_budget_first(self):
        history = make_history(4, content="x" * 40)

        context = ContextManager().build(
            history, ContextOptions(max_tokens=30, system_prompt="y" * 40)
        )

        assert [m.id for m in context.messages] == ["m2", "m3"]
        assert context.total_tokens == 30
        assert context.system_prompt == "y" * 40

    def test_message_cap_marks_truncated(self):
        history = make_history(60)

        context = ContextManager().build(history, ContextOptions(max_messages=50, max_tokens=10_000))

        assert len(context.messages) == 50
        assert context.messages[0].id == "m10"
        assert context.messages[-1].id == "m59"
        assert context.truncated is True

    def test_oversized_newest_message_yields_empty_context(self):
        history = make_history(2, content="z" * 400)

        context = ContextManager().build(history, ContextOptions(max_tokens=50))

        assert context.messages == []
        assert context.total_tokens == 0
        assert context.truncated is True

    def test_output_is_chronological(self):
        history = make_history(5)

        context = ContextManager().build(history)

        timestamps = [m.timestamp for m in context.messages]
        assert timestamps == sorted(timestamps)

    def test_empty_history(self):
        context = ContextManager().build([], ContextOptions(system_prompt="hi there"))

        assert context.messages == []
        assert context.total_tokens == estimate_tokens("hi there")
        assert context.truncated is False


class TestRetrieval:
    def test_no_snippets_matches_plain_build(self):
        manager = ContextManager()
        history = make_history(6, content="x" * 40)
        options = ContextOptions(max_tokens=45, system_prompt="sys")

        assert manager.prepare_with_retrieval(history, [], options) == manager.build(history, options)

    def test_rag_message_is_prepended_and_counted(self):
        manager = ContextManager(clock=lambda: 42)
        history = make_history(10, content="x" * 40)  # 10 tokens each
        snippets = ["first snippet", "second snippet"]

        context = manager.prepare_with_retrieval(history, snippets, ContextOptions(max_tokens=100))

        rag = context.messages[0]
        assert rag.id == RAG_CONTEXT_ID
        assert rag.role == MessageRole.SYSTEM
        assert rag.content == RAG_CONTEXT_HEADER + "first snippet\n\nsecond snippet"

        # History only gets 70% of the budget
        history_messages = context.messages[1:]
        assert [m.id for m in history_messages] == ["m3", "m4", "m5", "m6", "m7", "m8", "m9"]
        assert context.total_tokens == 70 + estimate_tokens(rag.content)
        assert context.truncated is True

    def test_retrieval_is_a_soft_limit(self):
        manager = ContextManager()
        history = make_history(2)
        big_snippet = "k" * 4000

        context = manager.prepare_with_retrieval(history, [big_snippet], ContextOptions(max_tokens=100))

        assert context.messages[0].id == RAG_CONTEXT_ID
        assert context.total_tokens > 100


class TestFormatForModel:
    def test_system_prompt_leads(self):
        history = make_history(2)
        context = ContextManager().build(history, ContextOptions(system_prompt="be brief"))

        formatted = ContextManager.format_for_model(context)

        assert formatted == [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "abcd"},
            {"role": "assistant", "content": "abcd"},
        ]

    def test_without_system_prompt(self):
        context = ContextManager().build(make_history(1))

        assert ContextManager.format_for_model(context) == [{"role": "user", "content": "abcd"}]

    def test_equal_contexts_format_identically(self):
        manager = ContextManager(clock=lambda: 42)
        options = ContextOptions(max_tokens=50, system_prompt="be brief")
        first = manager.prepare_with_retrieval(make_history(6, content="x" * 40), ["a snippet"], options)
        second = manager.prepare_with_retrieval(make_history(6, content="x" * 40), ["a snippet"], options)

        formatted = ContextManager.format_for_model(first)

        assert first == second
        assert ContextManager.format_for_model(second) == formatted
        assert ContextManager.format_for_model(first) == formatted
        assert formatted[0] == {"role": "system", "content": "be brief"}
