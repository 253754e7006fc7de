from typing import List
import json

from sqlalchemy import select

from assistant.domain.models.agent_state import Message
from .database import Database
from .tables import ConversationRow


def _to_message(row: ConversationRow) -> Message:
    return Message(
        id=row.id,
        role=row.role,
        content=row.content,
        timestamp=row.timestamp,
        metadata=json.loads(row.metadata_json) if row.metadata_json else None,
    )


class ConversationLog:
    """Durable, append-only conversation log per user"""

    def __init__(self, database: Database):
        self.database = database

    async def append(self, user_id: str, message: Message) -> bool:
        """Append a message; a message whose id is already logged is ignored

        Returns True if the message was written.
        """

        async with self.database.session() as session:
            if await session.get(ConversationRow, message.id) is not None:
                return False

            session.add(ConversationRow(
                id=message.id,
                user_id=user_id,
                role=message.role,
                content=message.content,
                timestamp=message.timestamp,
                metadata_json=json.dumps(message.metadata) if message.metadata else None,
            ))

        return True

    async def load_history(self, user_id: str, limit: int = 50) -> List[Message]:
        """Most recent ``limit`` messages, oldest first"""

        stmt = (
            select(ConversationRow)
            .where(ConversationRow.user_id == user_id)
            .order_by(ConversationRow.timestamp.desc(), ConversationRow.id.desc())
            .limit(limit)
        )

        async with self.database.session() as session:
            rows = (await session.execute(stmt)).scalars().all()

        return [_to_message(row) for row in reversed(rows)]
