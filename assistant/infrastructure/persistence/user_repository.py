from typing import Dict, Any, Optional
import json

import structlog

from assistant.domain.models.agent_state import User, new_id, now_seconds
from .database import Database
from .tables import UserRow

logger = structlog.get_logger(__name__)


def _to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        name=row.name,
        timezone=row.timezone,
        preferences=json.loads(row.preferences) if row.preferences else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def default_user_name(user_id: str) -> str:
    return f"User_{user_id[:8]}"


class UserRepository:
    """User profile persistence"""

    def __init__(self, database: Database):
        self.database = database

    async def register(
        self,
        name: Optional[str] = None,
        timezone: Optional[str] = None,
        preferences: Optional[Dict[str, Any]] = None,
    ) -> User:
        """Create a user with a freshly generated id"""

        user_id = new_id()
        now = now_seconds()
        user = User(
            id=user_id,
            name=name or default_user_name(user_id),
            timezone=timezone or "UTC",
            preferences=preferences,
            created_at=now,
            updated_at=now,
        )

        async with self.database.session() as session:
            session.add(UserRow(
                id=user.id,
                name=user.name,
                timezone=user.timezone,
                preferences=json.dumps(preferences) if preferences is not None else None,
                created_at=now,
                updated_at=now,
            ))

        return user

    async def get(self, user_id: str) -> Optional[User]:
        async with self.database.session() as session:
            row = await session.get(UserRow, user_id)
            return _to_user(row) if row else None

    async def ensure_user(self, user_id: str) -> bool:
        """Auto-create a profile for ``user_id``; returns True if one was created"""

        async with self.database.session() as session:
            if await session.get(UserRow, user_id) is not None:
                return False

            now = now_seconds()
            session.add(UserRow(
                id=user_id,
                name=default_user_name(user_id),
                timezone="UTC",
                created_at=now,
                updated_at=now,
            ))

        logger.info("Auto-created user profile", user_id=user_id)
        return True
