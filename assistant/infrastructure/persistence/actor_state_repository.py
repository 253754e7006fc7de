from typing import Optional, Tuple

from sqlalchemy import update

from assistant.domain.models.agent_state import now_seconds
from .database import Database
from .tables import ActorStateRow


class StaleStateError(Exception):
    """The stored blob changed since it was loaded"""


class ActorStateRepository:
    """Single versioned JSON blob per actor key"""

    def __init__(self, database: Database):
        self.database = database

    async def get(self, actor_key: str) -> Optional[Tuple[int, str]]:
        """Return ``(version, blob)`` or None"""

        async with self.database.session() as session:
            row = await session.get(ActorStateRow, actor_key)
            return (row.version, row.blob) if row else None

    async def put(self, actor_key: str, blob: str, expected_version: int) -> int:
        """Write ``blob`` if the stored version is ``expected_version``; returns the new version"""

        new_version = expected_version + 1

        async with self.database.session() as session:
            if expected_version == 0 and await session.get(ActorStateRow, actor_key) is None:
                session.add(ActorStateRow(
                    actor_key=actor_key,
                    version=new_version,
                    blob=blob,
                    updated_at=now_seconds(),
                ))
                return new_version

            result = await session.execute(
                update(ActorStateRow)
                .where(
                    ActorStateRow.actor_key == actor_key,
                    ActorStateRow.version == expected_version,
                )
                .values(version=new_version, blob=blob, updated_at=now_seconds())
            )
            if result.rowcount != 1:
                raise StaleStateError(
                    f"actor state for {actor_key} is not at version {expected_version}"
                )

        return new_version
