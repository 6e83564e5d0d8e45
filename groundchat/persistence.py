"""Persistence of the application state snapshot.

The snapshot lives in a single named slot behind the :class:`SnapshotSlot`
capability. :class:`PersistenceAdapter` is best-effort: any error raised by a
slot is logged and dropped, and unreadable or malformed content is treated
as absent and erased.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from groundchat.config import Config
from groundchat.errors import PersistenceFailure
from groundchat.log import logger
from groundchat.models import AppState, Conversation
from groundchat.orm import Base, SnapshotRecord


class SnapshotSlot(ABC):
    @abstractmethod
    def get(self) -> str | None:
        pass

    @abstractmethod
    def set(self, value: str) -> None:
        pass

    @abstractmethod
    def delete(self) -> None:
        pass


class MemorySnapshotSlot(SnapshotSlot):
    """Slot kept in process memory."""

    def __init__(self, value: str | None = None):
        self.value = value

    def get(self) -> str | None:
        return self.value

    def set(self, value: str) -> None:
        self.value = value

    def delete(self) -> None:
        self.value = None


class SqlSnapshotSlot(SnapshotSlot):
    """Slot stored as one row of the ``snapshots`` table."""

    def __init__(self, engine: Engine, key: str):
        self.engine = engine
        self.key = key
        try:
            Base.metadata.create_all(engine)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Failed to initialize snapshot table: {e}") from e

    @classmethod
    def from_config(cls, config: Config) -> SqlSnapshotSlot:
        logger.info(f"Using snapshot database {config.get_db_url()}")
        return cls(create_engine(config.get_db_url()), config.snapshot_key)

    def get(self) -> str | None:
        try:
            with Session(self.engine) as session:
                return session.execute(
                    select(SnapshotRecord.value).where(SnapshotRecord.key == self.key)
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Failed to read snapshot {self.key}: {e}") from e

    def set(self, value: str) -> None:
        try:
            with Session(self.engine) as session:
                record = session.get(SnapshotRecord, self.key)
                if record is None:
                    session.add(SnapshotRecord(key=self.key, value=value))
                else:
                    record.value = value
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Failed to write snapshot {self.key}: {e}") from e

    def delete(self) -> None:
        try:
            with Session(self.engine) as session:
                session.execute(delete(SnapshotRecord).where(SnapshotRecord.key == self.key))
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Failed to delete snapshot {self.key}: {e}") from e


class Snapshot(BaseModel):
    """Serialized form of the application state."""

    model_config = ConfigDict(populate_by_name=True)

    conversations: list[Conversation]
    active_conversation_id: str = Field(alias="activeConversationId")

    def is_valid(self) -> bool:
        return bool(self.conversations) and any(c.id == self.active_conversation_id for c in self.conversations)


class PersistenceAdapter:
    def __init__(self, slot: SnapshotSlot):
        self.slot = slot

    def save(self, state: AppState) -> None:
        if not state.conversations or not state.active_conversation_id:
            self.clear()
            return

        try:
            snapshot = Snapshot(
                conversations=state.conversations,
                active_conversation_id=state.active_conversation_id,
            )
            self.slot.set(snapshot.model_dump_json(by_alias=True))
        except Exception as e:
            logger.exception(f"Failed to save chat history: {e}")

    def load(self) -> AppState | None:
        try:
            raw = self.slot.get()
        except Exception as e:
            logger.exception(f"Failed to load chat history: {e}")
            return None

        if raw is None:
            return None

        try:
            snapshot = Snapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable chat history: {e}")
            self.clear()
            return None

        if not snapshot.is_valid():
            logger.warning("Discarding chat history without conversations or a valid active conversation")
            self.clear()
            return None

        return AppState(
            conversations=snapshot.conversations,
            active_conversation_id=snapshot.active_conversation_id,
        )

    def clear(self) -> None:
        try:
            self.slot.delete()
        except Exception as e:
            logger.exception(f"Failed to clear chat history: {e}")
