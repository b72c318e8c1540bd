from __future__ import annotations

import json
import logging
from typing import Callable, List, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import NotFoundError
from .local_store import SESSIONS_KEY, LocalStore
from .models import Message, MessageSender, Session, SessionSummary
from .utils import new_id

logger = logging.getLogger("zakerbot.store")

NEW_SESSION_TITLE = "محادثة جديدة"
AUTO_TITLE_LENGTH = 35

_SESSIONS_ADAPTER = TypeAdapter(List[Session])

MessagesUpdater = Callable[[List[Message]], List[Message]]


class SessionStore:
    """Session storage for chat history, titles, and the active selection."""

    def __init__(self, store: LocalStore) -> None:
        """Purpose: Initialize the store without touching persisted state.
        Inputs/Outputs: Input is the LocalStore; no return value.
        Side Effects / State: None until load() is called.
        Dependencies: Uses LocalStore for persistence.
        Failure Modes: None.
        If Removed: The workspace has nowhere to keep conversations.
        Testing Notes: Construct on an empty store and call load().
        """
        # Sessions are kept newest-first; awaiting_subject mirrors the subject picker.
        self._store = store
        self._sessions: List[Session] = []
        self._active_id: Optional[str] = None
        self.awaiting_subject = False

    def load(self) -> bool:
        """Purpose: Hydrate sessions from the store and pick the active one.
        Inputs/Outputs: No inputs; returns False when the stored value was malformed.
        Side Effects / State: Replaces sessions; the first one becomes active.
        Dependencies: Uses the pydantic list adapter.
        Failure Modes: Malformed JSON leaves the list empty and returns False.
        If Removed: Conversations are lost on every restart.
        Testing Notes: A stored list of two sessions activates the first.
        """
        # Read once at startup; the caller creates a session when nothing loads.
        raw = self._store.get_item(SESSIONS_KEY)
        self._sessions = []
        self._active_id = None
        if not raw:
            return True
        try:
            self._sessions = _SESSIONS_ADAPTER.validate_python(json.loads(raw))
        except (json.JSONDecodeError, PydanticValidationError):
            logger.error("key=%s status=malformed", SESSIONS_KEY, exc_info=True)
            self._sessions = []
            return False
        if self._sessions:
            self._active_id = self._sessions[0].id
        return True

    def _persist(self) -> None:
        """Purpose: Write sessions to the store, or drop the key when there are none.
        Inputs/Outputs: No inputs; no return value.
        Side Effects / State: Writes the sessions key.
        Dependencies: Uses LocalStore.set_item/remove_item.
        Failure Modes: IO errors are logged and swallowed; the next change or flush retries.
        If Removed: Nothing is saved between the periodic flushes.
        Testing Notes: Deleting every session removes the key.
        """
        # Last write wins; the periodic flush calls this too.
        try:
            if self._sessions:
                payload = json.dumps([session.model_dump(mode="json") for session in self._sessions], ensure_ascii=False)
                self._store.set_item(SESSIONS_KEY, payload)
            else:
                self._store.remove_item(SESSIONS_KEY)
        except OSError:
            logger.error("key=%s status=save_failed", SESSIONS_KEY, exc_info=True)

    def flush(self) -> None:
        if self._sessions:
            self._persist()

    def list_sessions(self) -> List[Session]:
        return list(self._sessions)

    def summaries(self) -> List[SessionSummary]:
        return [
            SessionSummary(
                id=session.id,
                title=session.title,
                message_count=len(session.messages),
                is_active=session.id == self._active_id,
            )
            for session in self._sessions
        ]

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    def active(self) -> Optional[Session]:
        if self._active_id is None:
            return None
        return self._find(self._active_id)

    def get(self, session_id: str) -> Session:
        session = self._find(session_id)
        if session is None:
            raise NotFoundError(f"session {session_id} not found")
        return session

    def _find(self, session_id: str) -> Optional[Session]:
        return next((session for session in self._sessions if session.id == session_id), None)

    def new_session(self, prompt_for_subject: bool = True) -> Session:
        """Create an untitled session at the top of the list and make it active."""
        session = Session(id=new_id("session"), title=NEW_SESSION_TITLE, messages=[])
        self._sessions.insert(0, session)
        self._active_id = session.id
        self.awaiting_subject = prompt_for_subject
        self._persist()
        logger.info("session=%s action=create prompt_subject=%s", session.id, prompt_for_subject)
        return session

    def select(self, session_id: str) -> Session:
        session = self.get(session_id)
        self._active_id = session.id
        return session

    def rename(self, session_id: str, title: str) -> Session:
        session = self.get(session_id)
        session.title = title
        self._persist()
        return session

    def delete(self, session_id: str) -> Session:
        """Purpose: Remove a session, keeping a valid active selection.
        Inputs/Outputs: Input is the session id; output is the now-active session.
        Side Effects / State: Mutates the list and persists.
        Dependencies: Uses new_session when the list becomes empty.
        Failure Modes: Raises NotFoundError for unknown ids.
        If Removed: Users cannot clean up old conversations.
        Testing Notes: Deleting the only session creates a fresh one without a subject prompt.
        """
        # Deleting the active session moves the selection to the first remaining one.
        self.get(session_id)
        self._sessions = [session for session in self._sessions if session.id != session_id]
        logger.info("session=%s action=delete", session_id)
        if self._active_id == session_id:
            if self._sessions:
                self._active_id = self._sessions[0].id
            else:
                return self.new_session(prompt_for_subject=False)
        self._persist()
        return self.active()

    def update_messages(self, session_id: str, updater: MessagesUpdater) -> Session:
        """Purpose: Replace a session's messages through an updater function.
        Inputs/Outputs: Inputs are the session id and a function old -> new messages;
            output is the updated session.
        Side Effects / State: May auto-title the session; persists.
        Dependencies: Uses auto_title.
        Failure Modes: Raises NotFoundError for unknown ids.
        If Removed: Chat turns cannot be recorded.
        Testing Notes: The first non-blank user message titles an untitled session.
        """
        # Untitled sessions take their title from the first real question.
        session = self.get(session_id)
        session.messages = updater(list(session.messages))
        if session.title == NEW_SESSION_TITLE and not self.awaiting_subject:
            title = auto_title(session.messages)
            if title:
                session.title = title
        self._persist()
        return session

    def unique_title(self, base: str) -> str:
        """Return base, or the first "base (n)" with n >= 2 not used by any session."""
        titles = {session.title for session in self._sessions}
        if base not in titles:
            return base
        counter = 2
        while f"{base} ({counter})" in titles:
            counter += 1
        return f"{base} ({counter})"


def auto_title(messages: List[Message]) -> Optional[str]:
    first = next(
        (message for message in messages if message.sender == MessageSender.USER and message.text.strip()),
        None,
    )
    if first is None:
        return None
    title = first.text[:AUTO_TITLE_LENGTH]
    if len(first.text) > AUTO_TITLE_LENGTH:
        title += "..."
    return title
