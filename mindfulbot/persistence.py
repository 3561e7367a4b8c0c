from __future__ import annotations

import logging
from typing import Protocol

from pydantic import ValidationError
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from . import db
from .config import settings
from .models import StoredState
from .schemas import StoreState

logger = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    pass


class StatePersistence(Protocol):
    def load(self) -> StoreState | None:
        ...

    def save(self, state: StoreState) -> None:
        ...


def decode_state(raw: str | None) -> StoreState | None:
    """Parse a stored payload; unreadable payloads count as absent."""
    if not raw:
        return None
    try:
        return StoreState.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning("Discarding unreadable chat store payload: %s", exc.error_count())
        return None


class SqlStatePersistence:
    def __init__(self, storage_key: str) -> None:
        self.storage_key = storage_key

    def load(self) -> StoreState | None:
        try:
            with db.SessionLocal() as session:
                row = session.get(StoredState, self.storage_key)
                raw = row.payload_json if row else None
        except SQLAlchemyError as exc:
            raise PersistenceError("Chat store could not be read.") from exc
        return decode_state(raw)

    def save(self, state: StoreState) -> None:
        try:
            self._write(state.model_dump_json())
        except SQLAlchemyError as exc:
            raise PersistenceError("Chat store could not be saved.") from exc

    # sqlite reports a concurrent writer as OperationalError ("database is locked").
    @retry(
        retry=retry_if_exception_type(OperationalError),
        stop=stop_after_attempt(settings.persist_max_attempts),
        wait=wait_fixed(0.05),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _write(self, payload: str) -> None:
        with db.SessionLocal() as session:
            row = session.get(StoredState, self.storage_key)
            if row is None:
                session.add(StoredState(storage_key=self.storage_key, payload_json=payload))
            else:
                row.payload_json = payload
            session.commit()


class MemoryStatePersistence:
    """Keeps the serialized payload in process memory, for tests and local runs."""

    def __init__(self, raw: str | None = None) -> None:
        self.raw = raw
        self.save_count = 0

    def load(self) -> StoreState | None:
        return decode_state(self.raw)

    def save(self, state: StoreState) -> None:
        self.raw = state.model_dump_json()
        self.save_count += 1
