from typing import Dict, List, Optional, Callable, Sequence
from pydantic import BaseModel, Field
import structlog

from assistant.domain.models.agent_state import (
    ConversationContext,
    Message,
    MessageRole,
    now_ms,
)
from .token_estimator import estimate_tokens

logger = structlog.get_logger(__name__)

RAG_CONTEXT_ID = "rag-context"
RAG_CONTEXT_HEADER = "Relevant context from knowledge base:\n"
RAG_CONVERSATION_SHARE = 0.7


class ContextOptions(BaseModel):
    """Budget for a single context build"""
    max_tokens: int = Field(default=4000, ge=0)
    max_messages: int = Field(default=50, ge=0)
    system_prompt: Optional[str] = None


class ContextManager:
    """Assembles bounded conversation context for completion calls"""

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or now_ms

    def build(
        self,
        history: Sequence[Message],
        options: Optional[ContextOptions] = None
    ) -> ConversationContext:
        """Keep the newest messages that fit both the message cap and the token budget"""

        options = options or ContextOptions()

        # Count cap first: older messages are dropped before token accounting
        if len(history) > options.max_messages:
            kept = list(history[len(history) - options.max_messages:])
            count_truncated = True
        else:
            kept = list(history)
            count_truncated = False

        total_tokens = estimate_tokens(options.system_prompt or "")

        accepted: List[Message] = []
        token_truncated = False
        for message in reversed(kept):
            cost = estimate_tokens(message.content)
            if total_tokens + cost > options.max_tokens:
                token_truncated = True
                break
            accepted.append(message)
            total_tokens += cost

        accepted.reverse()

        return ConversationContext(
            messages=accepted,
            system_prompt=options.system_prompt,
            total_tokens=total_tokens,
            truncated=count_truncated or token_truncated
        )

    def prepare_with_retrieval(
        self,
        history: Sequence[Message],
        retrieved_snippets: Sequence[str],
        options: Optional[ContextOptions] = None
    ) -> ConversationContext:
        """Build context with retrieved snippets prepended as a system message

        History gets 70% of the token budget. The retrieval message itself is
        not capped, so large snippet sets can overflow the nominal budget.
        """

        options = options or ContextOptions()

        if not retrieved_snippets:
            return self.build(history, options)

        conversation_options = options.model_copy(
            update={"max_tokens": int(options.max_tokens * RAG_CONVERSATION_SHARE)}
        )
        context = self.build(history, conversation_options)

        rag_message = Message(
            id=RAG_CONTEXT_ID,
            role=MessageRole.SYSTEM,
            content=RAG_CONTEXT_HEADER + "\n\n".join(retrieved_snippets),
            timestamp=self._clock(),
            metadata={"type": "rag_context", "snippets": len(retrieved_snippets)},
        )

        return ConversationContext(
            messages=[rag_message] + context.messages,
            system_prompt=context.system_prompt,
            total_tokens=context.total_tokens + estimate_tokens(rag_message.content),
            truncated=context.truncated
        )

    @staticmethod
    def format_for_model(context: ConversationContext) -> List[Dict[str, str]]:
        """Project a context onto the ``[{role, content}]`` completion format"""

        formatted: List[Dict[str, str]] = []
        if context.system_prompt:
            formatted.append({"role": MessageRole.SYSTEM.value, "content": context.system_prompt})

        for message in context.messages:
            formatted.append({"role": MessageRole(message.role).value, "content": message.content})

        return formatted
