import asyncio

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from assistant.domain.errors import (
    BackendRateLimitedError,
    CompletionTimeoutError,
    TransientBackendError,
)
from assistant.infrastructure.llm.completion import ChatModelCompletion, to_chat_messages

PROMPT = [
    {"role": "system", "content": "Be brief"},
    {"role": "user", "content": "hi"},
    {"role": "assistant", "content": "hello"},
    {"role": "user", "content": "what now?"},
]


class RecordingModel:
    def __init__(self, reply="ok", delay=0.0, error=None):
        self.reply = reply
        self.delay = delay
        self.error = error
        self.calls = []

    async def ainvoke(self, messages, **kwargs):
        self.calls.append((messages, kwargs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return AIMessage(content=self.reply)


class RateLimitError(Exception):
    status_code = 429


def test_roles_map_to_message_types():
    converted = to_chat_messages(PROMPT)

    assert [type(m) for m in converted] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]
    assert converted[-1].content == "what now?"


@pytest.mark.asyncio
async def test_returns_stripped_reply():
    completion = ChatModelCompletion(FakeListChatModel(responses=["  Hello there!  "]))

    assert await completion.complete(PROMPT) == "Hello there!"


@pytest.mark.asyncio
async def test_passes_generation_limits():
    model = RecordingModel()

    await ChatModelCompletion(model).complete(PROMPT, max_tokens=123, temperature=0.2)

    [(messages, kwargs)] = model.calls
    assert len(messages) == 4
    assert kwargs == {"max_tokens": 123, "temperature": 0.2}


@pytest.mark.asyncio
async def test_timeout():
    completion = ChatModelCompletion(RecordingModel(delay=1.0), timeout_seconds=0.01)

    with pytest.raises(CompletionTimeoutError) as excinfo:
        await completion.complete(PROMPT)

    assert excinfo.value.code == "COMPLETION_TIMEOUT"


@pytest.mark.asyncio
async def test_rate_limit_is_distinguished():
    completion = ChatModelCompletion(RecordingModel(error=RateLimitError("slow down")))

    with pytest.raises(BackendRateLimitedError):
        await completion.complete(PROMPT)


@pytest.mark.asyncio
async def test_other_failures_are_transient():
    completion = ChatModelCompletion(RecordingModel(error=ConnectionError("connection reset")))

    with pytest.raises(TransientBackendError) as excinfo:
        await completion.complete(PROMPT)

    assert not isinstance(excinfo.value, BackendRateLimitedError)
    assert "connection reset" in excinfo.value.message


@pytest.mark.asyncio
async def test_empty_reply_is_an_error():
    completion = ChatModelCompletion(FakeListChatModel(responses=["   "]))

    with pytest.raises(TransientBackendError, match="Empty response from LLM"):
        await completion.complete(PROMPT)


@pytest.mark.asyncio
async def test_unconfigured_model():
    with pytest.raises(TransientBackendError):
        await ChatModelCompletion(None).complete(PROMPT)
