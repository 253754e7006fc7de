from typing import Dict, List, Any, Optional, Protocol, Tuple
import asyncio

from assistant.domain.models.agent_state import Message
from ..context_ranker import ContextRanker

CONVERSATION = "conversation"
KNOWLEDGE = "knowledge"


class RetrievalIndex(Protocol):
    """Relevance search over a user's prior content"""

    async def search(self, user_id: str, query: str, top_k: int, namespace: str = CONVERSATION) -> List[str]:
        ...

    async def add(self, user_id: str, message: Message, namespace: str = CONVERSATION) -> bool:
        ...


class VectorMemoryStore:
    """In-process relevance index scored by keyword overlap

    Stands in for an embedding index; entries are partitioned per user and
    namespace so one user's content never surfaces for another.
    """

    def __init__(self, ranker: Optional[ContextRanker] = None, max_entries: int = 1000, min_score: float = 0.2):
        self.memories: Dict[Tuple[str, str], List[Dict[str, Any]]] = {}
        self.ranker = ranker or ContextRanker()
        self.max_entries = max_entries
        self.min_score = min_score
        self._lock = asyncio.Lock()

    async def add(self, user_id: str, message: Message, namespace: str = CONVERSATION) -> bool:
        """Index a message's content"""

        if not message.content.strip():
            return False

        async with self._lock:
            entries = self.memories.setdefault((user_id, namespace), [])
            entries.append({
                "id": message.id,
                "content": message.content,
                "role": message.role,
                "timestamp": message.timestamp,
            })

            # Limit memories per user and namespace
            if len(entries) > self.max_entries:
                self.memories[(user_id, namespace)] = entries[-self.max_entries:]

        return True

    async def search(self, user_id: str, query: str, top_k: int, namespace: str = CONVERSATION) -> List[str]:
        """Return up to ``top_k`` snippets, most relevant first"""

        if top_k <= 0:
            return []

        async with self._lock:
            entries = list(self.memories.get((user_id, namespace), []))

        scored = []
        for entry in entries:
            score = self.ranker.calculate_relevance(query, entry["content"])
            if score >= self.min_score:
                scored.append((score, entry["timestamp"], entry["content"]))

        # Most relevant first, newer entries win ties
        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [content for _, _, content in scored[:top_k]]
