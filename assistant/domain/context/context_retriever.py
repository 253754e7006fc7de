from typing import List
import asyncio

import structlog

from .memory.vector_memory_store import CONVERSATION, KNOWLEDGE, RetrievalIndex

logger = structlog.get_logger(__name__)


class ContextRetriever:
    """Best-effort retrieval of relevant history and knowledge snippets"""

    def __init__(self, index: RetrievalIndex, top_k: int = 3, enabled: bool = True):
        self.index = index
        self.top_k = top_k
        self.enabled = enabled

    async def retrieve_relevant_context(self, user_id: str, query: str) -> List[str]:
        """Search history (top_k) and knowledge (top_k // 2) concurrently

        Any failure degrades to an empty list so the caller falls back to
        plain context.
        """

        if not self.enabled:
            logger.debug("Retrieval disabled", user_id=user_id)
            return []

        try:
            relevant_history, relevant_knowledge = await asyncio.gather(
                self.index.search(user_id, query, self.top_k, CONVERSATION),
                self.index.search(user_id, query, self.top_k // 2, KNOWLEDGE),
            )
        except Exception as e:
            logger.warning("Retrieval failed, continuing without context", user_id=user_id, error=str(e))
            return []

        snippets = list(relevant_history) + list(relevant_knowledge)
        logger.info("Retrieved context", user_id=user_id, count=len(snippets))
        return snippets

    async def remember(self, user_id: str, message) -> None:
        """Index a message for later retrieval; failures are logged only"""

        try:
            stored = await self.index.add(user_id, message, CONVERSATION)
        except Exception as e:
            logger.warning("Failed to index message", user_id=user_id, message_id=message.id, error=str(e))
            return

        if not stored:
            logger.debug("Message not indexed", user_id=user_id, message_id=message.id)
