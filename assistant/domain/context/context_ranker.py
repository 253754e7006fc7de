from typing import List, Sequence
import re

from assistant.domain.models.agent_state import Message, MessageRole

_WORD = re.compile(r"\w+")

TASK_KEYWORDS = ("create", "add", "remind", "task", "todo")
QUESTION_KEYWORDS = ("what", "how", "when", "why", "where", "who")
CHAT_KEYWORDS = ("hello", "hi", "thanks", "thank")


class ContextRanker:
    """Keyword heuristics over conversation text"""

    def calculate_relevance(self, query: str, content: str) -> float:
        """Calculate relevance score between query and content"""

        query_lower = query.lower()
        content_lower = content.lower()

        # Simple keyword overlap scoring
        query_words = set(_WORD.findall(query_lower))
        content_words = set(_WORD.findall(content_lower))

        if not query_words:
            return 0.0

        overlap = len(query_words.intersection(content_words))
        score = overlap / len(query_words)

        # Boost score if query appears as substring
        if query_lower and query_lower in content_lower:
            score += 0.3

        return min(score, 1.0)  # Cap at 1.0

    def summarize_conversation(self, history: Sequence[Message], max_topics: int = 5) -> str:
        """One-line topic summary of the user's side of a conversation"""

        user_messages = [m for m in history if m.role == MessageRole.USER]
        if not history:
            return "No conversation history."

        topics: List[str] = []
        for message in user_messages:
            for word in _WORD.findall(message.content.lower()):
                if len(word) > 5 and word not in topics:
                    topics.append(word)

        summary = f"Conversation with {len(user_messages)} user messages"
        if topics:
            summary += " discussing: " + ", ".join(topics[:max_topics])
        return summary

    def extract_intent(self, history: Sequence[Message], window: int = 3) -> str:
        """Classify the recent conversation as task, question, chat or unknown"""

        recent = list(history)[-window:] if window else []
        if not recent:
            return "unknown"

        text = " ".join(m.content for m in recent).lower()
        words = set(_WORD.findall(text))

        if words.intersection(TASK_KEYWORDS):
            return "task"
        if words.intersection(QUESTION_KEYWORDS) or "?" in text:
            return "question"
        if words.intersection(CHAT_KEYWORDS):
            return "chat"
        return "unknown"
