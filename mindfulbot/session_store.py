"""
Multi-session chat store.

Holds every named conversation in memory and writes the full state through a
``StatePersistence`` after each effective mutation. The in-memory copy is
authoritative: a failed save is logged and reported on the returned
``MutationResult`` but never rolls the mutation back.

Operations that cannot apply (unknown id, deleting the last session) are
no-ops that return ``changed=False`` with a reason.

FastAPI runs sync endpoints in a worker thread pool, so every read and write
goes through one re-entrant lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from typing import Iterable, Literal

from .config import settings
from .monitoring.logger import log_event
from .persistence import PersistenceError, StatePersistence
from .prompts import GREETING_MESSAGE, NEW_CHAT_TITLE
from .schemas import ChatSession, Message, Role, StoreState, utcnow

logger = logging.getLogger(__name__)

RejectReason = Literal["unknown_session", "last_session"]


@dataclass(frozen=True)
class MutationResult:
    changed: bool
    session: ChatSession | None = None
    reason: RejectReason | None = None
    error: PersistenceError | None = None

    @property
    def persisted(self) -> bool:
        return self.changed and self.error is None


def derive_title(text: str, max_chars: int | None = None) -> str:
    limit = max_chars if max_chars is not None else settings.title_max_chars
    text = text.strip()
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def new_session() -> ChatSession:
    return ChatSession(
        title=NEW_CHAT_TITLE,
        messages=[Message(text=GREETING_MESSAGE, role=Role.ASSISTANT)],
    )


class SessionStore:
    def __init__(self, persistence: StatePersistence) -> None:
        self._persistence = persistence
        self._lock = RLock()
        self._sessions: dict[str, ChatSession] = {}
        self._active_session_id = ""
        self._load()

    # -- startup ------------------------------------------------------------

    def _load(self) -> None:
        state: StoreState | None
        try:
            state = self._persistence.load()
        except PersistenceError as exc:
            logger.warning("Chat store unavailable, starting fresh: %s", exc)
            state = None

        if state is None:
            session = new_session()
            self._sessions = {session.id: session}
            self._active_session_id = session.id
            self._persist()
            return

        self._sessions = {session.id: session for session in state.sessions}
        self._active_session_id = state.active_session_id

    # -- reads --------------------------------------------------------------

    @property
    def active_session_id(self) -> str:
        with self._lock:
            return self._active_session_id

    def get(self, session_id: str) -> ChatSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    def active_session(self) -> ChatSession:
        with self._lock:
            return self._sessions[self._active_session_id].model_copy(deep=True)

    def sessions(self) -> list[ChatSession]:
        with self._lock:
            return [session.model_copy(deep=True) for session in self._sessions.values()]

    def snapshot(self) -> StoreState:
        with self._lock:
            return StoreState(
                sessions=[session.model_copy(deep=True) for session in self._sessions.values()],
                active_session_id=self._active_session_id,
            )

    # -- mutations ----------------------------------------------------------

    def create_session(self) -> MutationResult:
        with self._lock:
            session = new_session()
            # Newest first in display order.
            self._sessions = {session.id: session, **self._sessions}
            self._active_session_id = session.id
            log_event("session_created", session_id=session.id)
            return self._commit(session)

    def rename_session(self, session_id: str, title: str) -> MutationResult:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return MutationResult(changed=False, reason="unknown_session")
            session.title = title
            session.renamed = True
            return self._commit(session)

    def delete_session(self, session_id: str) -> MutationResult:
        with self._lock:
            if session_id not in self._sessions:
                return MutationResult(changed=False, reason="unknown_session")
            if len(self._sessions) == 1:
                return MutationResult(changed=False, reason="last_session")
            removed = self._sessions.pop(session_id)
            if self._active_session_id == session_id:
                self._active_session_id = next(iter(self._sessions))
            log_event("session_deleted", session_id=session_id)
            return self._commit(removed)

    def append_messages(self, session_id: str, messages: Iterable[Message]) -> MutationResult:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return MutationResult(changed=False, reason="unknown_session")
            batch = list(messages)
            if not session.renamed and not session.has_user_messages():
                first_user = next((m for m in batch if m.role is Role.USER), None)
                if first_user is not None:
                    session.title = derive_title(first_user.text)
            session.messages.extend(batch)
            session.last_active_at = utcnow()
            return self._commit(session)

    def set_active(self, session_id: str) -> MutationResult:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return MutationResult(changed=False, reason="unknown_session")
            self._active_session_id = session_id
            return self._commit(session)

    # -- persistence ----------------------------------------------------------

    def _commit(self, session: ChatSession) -> MutationResult:
        error = self._persist()
        return MutationResult(changed=True, session=session.model_copy(deep=True), error=error)

    def _persist(self) -> PersistenceError | None:
        try:
            self._persistence.save(self.snapshot())
        except PersistenceError as exc:
            log_event("persistence_failure", level=logging.WARNING, error=str(exc))
            return exc
        return None
