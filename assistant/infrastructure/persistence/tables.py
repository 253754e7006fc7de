"""SQLAlchemy ORM tables for the assistant's durable store.

Uses SQLAlchemy 2.0 style with Mapped and mapped_column. All timestamps are
integers: tasks and users in epoch seconds, conversation messages in epoch
milliseconds.
"""

from typing import Optional

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all tables"""


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    preferences: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger)
    updated_at: Mapped[int] = mapped_column(BigInteger)


class TaskRow(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("idx_tasks_id_user_id", "id", "user_id"),
        Index("idx_tasks_user_completed_due", "user_id", "completed", "due_date"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    title: Mapped[str] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    due_date: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, index=True)
    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    priority: Mapped[str] = mapped_column(String(16), default="medium")
    created_at: Mapped[int] = mapped_column(BigInteger)
    completed_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)


class ConversationRow(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        Index("idx_conversations_user_timestamp", "user_id", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE")
    )
    role: Mapped[str] = mapped_column(String(16))
    content: Mapped[str] = mapped_column(Text)
    timestamp: Mapped[int] = mapped_column(BigInteger)
    metadata_json: Mapped[Optional[str]] = mapped_column("metadata", Text, nullable=True)


class ActorStateRow(Base):
    __tablename__ = "actor_state"

    actor_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, default=0)
    blob: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[int] = mapped_column(BigInteger)


class WorkflowRunRow(Base):
    __tablename__ = "workflow_runs"
    __table_args__ = (
        Index("idx_workflow_runs_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    task_id: Mapped[str] = mapped_column(String(64))
    action: Mapped[str] = mapped_column(String(32))
    params: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(16))
    wake_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    result: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger)
    updated_at: Mapped[int] = mapped_column(BigInteger)


class WorkflowStepRow(Base):
    __tablename__ = "workflow_steps"

    run_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("workflow_runs.id", ondelete="CASCADE"), primary_key=True
    )
    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    result: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[int] = mapped_column(BigInteger)
