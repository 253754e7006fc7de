from typing import Dict, List, Optional, Protocol
import asyncio

import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from assistant.domain.errors import (
    BackendRateLimitedError,
    CompletionTimeoutError,
    TransientBackendError,
)

logger = structlog.get_logger(__name__)

_MESSAGE_TYPES = {
    "system": SystemMessage,
    "user": HumanMessage,
    "assistant": AIMessage,
}


class CompletionBackend(Protocol):
    async def complete(self, messages: List[Dict[str, str]], max_tokens: int, temperature: float) -> str:
        ...


def to_chat_messages(messages: List[Dict[str, str]]) -> List[BaseMessage]:
    """Convert ``{role, content}`` dicts into langchain messages"""
    return [_MESSAGE_TYPES.get(m["role"], HumanMessage)(content=m["content"]) for m in messages]


def _is_rate_limited(error: Exception) -> bool:
    if getattr(error, "status_code", None) == 429:
        return True
    text = str(error).lower()
    return "429" in text or "rate limit" in text


class ChatModelCompletion:
    """Completion backend over any langchain chat model, bounded by a timeout"""

    def __init__(self, model: Optional[BaseChatModel], timeout_seconds: float = 25.0):
        self.model = model
        self.timeout_seconds = timeout_seconds

    async def complete(self, messages: List[Dict[str, str]], max_tokens: int = 500, temperature: float = 0.7) -> str:
        if self.model is None:
            raise TransientBackendError("No language model configured")

        try:
            response = await asyncio.wait_for(
                self.model.ainvoke(to_chat_messages(messages), max_tokens=max_tokens, temperature=temperature),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.warning("Completion timed out", timeout_seconds=self.timeout_seconds)
            raise CompletionTimeoutError(f"LLM timeout after {self.timeout_seconds:g}s") from e
        except Exception as e:
            if _is_rate_limited(e):
                raise BackendRateLimitedError(str(e)) from e
            raise TransientBackendError(str(e) or type(e).__name__) from e

        text = response.content if isinstance(response.content, str) else str(response.content)
        text = text.strip()
        if not text:
            raise TransientBackendError("Empty response from LLM")

        logger.info("Completion generated", chars=len(text), prompt_messages=len(messages))
        return text


def create_chat_model(
    model: str,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    max_tokens: int = 500,
    temperature: float = 0.7,
) -> BaseChatModel:
    """Build the configured OpenAI-compatible chat model"""

    from langchain_openai import ChatOpenAI

    kwargs = {"model": model, "max_tokens": max_tokens, "temperature": temperature}
    if api_key:
        kwargs["api_key"] = api_key
    if base_url:
        kwargs["base_url"] = base_url
    return ChatOpenAI(**kwargs)
