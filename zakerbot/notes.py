from __future__ import annotations

import json
import logging
from typing import List, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import NotFoundError
from .local_store import NOTES_KEY, LocalStore
from .models import Message, MessageSender, Note
from .utils import new_id, note_timestamp

logger = logging.getLogger("zakerbot.store")

_NOTES_ADAPTER = TypeAdapter(List[Note])


def compose_note(messages: List[Message], message_id: str) -> str:
    """Purpose: Build note text from a bot reply and the question that prompted it.
    Inputs/Outputs: Inputs are the session messages and the reply id; output is note text.
    Side Effects / State: None.
    Dependencies: Scans backwards for the nearest user message.
    Failure Modes: Raises NotFoundError when the message id is unknown.
    If Removed: Notes lose the question context.
    Testing Notes: A reply with no earlier user message yields its own text only.
    """
    # Pair the reply with the closest earlier question, if any.
    index = next((i for i, message in enumerate(messages) if message.id == message_id), None)
    if index is None:
        raise NotFoundError(f"message {message_id} not found")
    reply = messages[index]
    question: Optional[Message] = None
    for earlier in reversed(messages[:index]):
        if earlier.sender == MessageSender.USER:
            question = earlier
            break
    if question is None:
        return reply.text
    return f"سؤالي: {question.text}\n\nالرد: {reply.text}"


class NoteBook:
    """Flat newest-first note list persisted on every change."""

    def __init__(self, store: LocalStore) -> None:
        self._store = store
        self._notes: List[Note] = []

    def load(self) -> bool:
        """Purpose: Hydrate notes from the store.
        Inputs/Outputs: No inputs; returns False when the stored value was malformed.
        Side Effects / State: Replaces the in-memory list.
        Dependencies: Uses the pydantic list adapter.
        Failure Modes: Malformed JSON is reported to the caller, which clears the keys.
        If Removed: Saved notes disappear after a restart.
        Testing Notes: A corrupt value returns False and leaves the list empty.
        """
        # An absent key is simply an empty notebook.
        raw = self._store.get_item(NOTES_KEY)
        if not raw:
            self._notes = []
            return True
        try:
            self._notes = _NOTES_ADAPTER.validate_python(json.loads(raw))
        except (json.JSONDecodeError, PydanticValidationError):
            logger.error("key=%s status=malformed", NOTES_KEY, exc_info=True)
            self._notes = []
            return False
        return True

    def _persist(self) -> None:
        try:
            payload = json.dumps([note.model_dump() for note in self._notes], ensure_ascii=False)
            self._store.set_item(NOTES_KEY, payload)
        except OSError:
            logger.error("key=%s status=save_failed", NOTES_KEY, exc_info=True)

    def list(self) -> List[Note]:
        return list(self._notes)

    def add(self, content: str) -> Note:
        note = Note(id=new_id("note"), content=content, timestamp=note_timestamp())
        self._notes.insert(0, note)
        self._persist()
        logger.info("note action=add id=%s", note.id)
        return note

    def remove(self, note_id: str) -> None:
        remaining = [note for note in self._notes if note.id != note_id]
        if len(remaining) == len(self._notes):
            raise NotFoundError(f"note {note_id} not found")
        self._notes = remaining
        self._persist()
