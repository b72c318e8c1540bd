"""Chat-page state: the active session, its knowledge base, notes, and turns.

The workspace is the single owner of the mutable study state. It keeps the
active session's messages, the in-memory knowledge base, and the notebook
consistent with each other and with the local store, and it runs each chat
turn as ordered steps so the thinking placeholder and the busy flag are
always cleaned up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from .errors import NotFoundError, ValidationError
from .ingest import PdfFetcher, item_from_upload, item_from_url
from .knowledge_base import KnowledgeBase
from .local_store import NOTES_KEY, SESSIONS_KEY, LocalStore
from .models import (
    KnowledgeItem,
    Message,
    MessageAction,
    MessageSender,
    Note,
    Session,
    UserProfile,
    WorkspaceState,
)
from .notes import NoteBook, compose_note
from .profile_store import ProfileRepository
from .session_store import SessionStore
from .tutor import TutorAssistant, TutorReply
from .turn_runner import TurnRunner, TurnStep
from .utils import new_id, time_label

logger = logging.getLogger("zakerbot.workspace")

USER_LABEL = "المستخدم"
BOT_LABEL = "ذاكربوت"
GENERAL_CHAT_TITLE = "محادثة عامة"
CHAT_SUMMARY_PENDING = "جاري تلخيص المحادثة..."
CHAT_SUMMARY_PREFIX = "ملخص المحادثة:\n"
TEXT_SUMMARY_PREFIX = "ملخص: "
SEARCH_START = "أقوم بالبحث عن مصادر تعليمية لمادة {subject}. قد يستغرق هذا بعض الوقت..."
SEARCH_FOUND = (
    "لقد أضفت {count} من المصادر التعليمية إلى قاعدة المعرفة الخاصة بك للبدء. "
    "لا تتردد في تحميل مستنداتك الخاصة أيضًا!"
)
SEARCH_EMPTY = (
    "لم أتمكن من العثور على مصادر تلقائية لهذه المادة في الوقت الحالي. "
    "لا يزال بإمكانك إضافة المستندات والروابط الخاصة بك إلى قاعدة المعرفة!"
)
RETRY_SEARCH_LABEL = "إعادة البحث عن مصادر"
RETRY_SEARCH_ACTION = "retry_resource_search"
LOGIN_REQUIRED = "يجب تسجيل الدخول أولاً."

SEARCH_START_PREFIX = "bot-search-start"
SEARCH_END_PREFIX = "bot-search-end"
SEARCH_FAIL_PREFIX = "bot-search-fail"


@dataclass
class TurnContext:
    """Mutable context passed through each chat-turn step."""
    session_id: str
    text: str
    session_title: str
    profile: UserProfile
    knowledge_base: List[KnowledgeItem]
    thinking_id: str = ""
    reply: Optional[TutorReply] = None


def bot_message(text: str, prefix: str = "", **fields) -> Message:
    return Message(id=new_id(prefix or "bot"), sender=MessageSender.BOT, text=text, timestamp=time_label(), **fields)


class Workspace:
    """Single owner of the student's chat-page state."""

    def __init__(
        self,
        store: LocalStore,
        tutor: TutorAssistant,
        fetch_pdf: Optional[PdfFetcher] = None,
    ) -> None:
        """Purpose: Wire the stores and tutor together.
        Inputs/Outputs: Inputs are the local store, tutor, and optional PDF fetcher.
        Side Effects / State: Loads the profile; sessions and notes load in start().
        Dependencies: Uses ProfileRepository, SessionStore, NoteBook, KnowledgeBase.
        Failure Modes: None at init.
        If Removed: The HTTP layer has no state to operate on.
        Testing Notes: Build with a LocalStore(None) and a fake tutor.
        """
        # All state hangs off one store, like the browser's localStorage.
        self._store = store
        self.tutor = tutor
        self.profiles = ProfileRepository(store)
        self.sessions = SessionStore(store)
        self.notes = NoteBook(store)
        self.knowledge = KnowledgeBase()
        self._fetch_pdf = fetch_pdf
        self.busy = False
        self._turn = TurnRunner(
            steps=[
                TurnStep("record_question", self._step_record_question),
                TurnStep("generate", self._step_generate),
                TurnStep("record_reply", self._step_record_reply),
                TurnStep("release", self._step_release, always_run=True),
            ]
        )

    # ------------------------------------------------------------------
    # lifecycle
    def start(self) -> None:
        """Purpose: Load notes and sessions once, recovering from malformed state.
        Inputs/Outputs: No inputs; no return value.
        Side Effects / State: May clear the notes and sessions keys; may create a session.
        Dependencies: Uses NoteBook.load and SessionStore.load.
        Failure Modes: Malformed state is discarded, never repaired.
        If Removed: The first request finds no active session.
        Testing Notes: Corrupt sessions JSON clears both keys and yields one new session.
        """
        # Either key being malformed discards both, then a fresh session is opened.
        notes_ok = self.notes.load()
        sessions_ok = self.sessions.load()
        if not (notes_ok and sessions_ok):
            logger.warning("workspace status=malformed_state action=clear")
            self._store.remove_item(NOTES_KEY)
            self._store.remove_item(SESSIONS_KEY)
            self.notes.load()
            self.sessions.load()
        if not self.sessions.list_sessions():
            self.new_session()

    def flush(self) -> None:
        self.sessions.flush()

    def _require_profile(self) -> UserProfile:
        profile = self.profiles.load()
        if profile is None:
            raise NotFoundError(LOGIN_REQUIRED)
        return profile

    def _require_active(self) -> Session:
        session = self.sessions.active()
        if session is None:
            session = self.new_session()
        return session

    def state(self) -> WorkspaceState:
        return WorkspaceState(
            active_session=self.sessions.active(),
            sessions=self.sessions.summaries(),
            knowledge_base=self.knowledge.items(),
            notes=self.notes.list(),
            awaiting_subject=self.sessions.awaiting_subject,
            busy=self.busy,
        )

    # ------------------------------------------------------------------
    # sessions
    def new_session(self, prompt_for_subject: bool = True) -> Session:
        self.knowledge.clear()
        return self.sessions.new_session(prompt_for_subject=prompt_for_subject)

    def select_session(self, session_id: str) -> Session:
        return self.sessions.select(session_id)

    def rename_session(self, session_id: str, title: str) -> Session:
        if not title.strip():
            raise ValidationError("العنوان مطلوب.")
        return self.sessions.rename(session_id, title.strip())

    def delete_session(self, session_id: str) -> Session:
        """Delete a session; a replacement session starts with an empty knowledge base."""
        known_ids = {session.id for session in self.sessions.list_sessions()}
        active = self.sessions.delete(session_id)
        if active.id not in known_ids:
            self.knowledge.clear()
        return active

    def _update_active(self, updater: Callable[[List[Message]], List[Message]]) -> Session:
        session = self._require_active()
        return self.sessions.update_messages(session.id, updater)

    # ------------------------------------------------------------------
    # chat turn
    def send_message(self, text: str) -> Session:
        """Purpose: Run one question/answer turn on the active session.
        Inputs/Outputs: Input is the question text; output is the updated session.
        Side Effects / State: Appends user and bot messages, toggles busy, persists.
        Dependencies: Uses TurnRunner with the record/generate/release steps.
        Failure Modes: Blank text or a turn already in progress is ignored; LLM failures
            become an error message instead of an exception.
        If Removed: Students cannot chat.
        Testing Notes: After the call no thinking message remains and busy is False.
        """
        # Ignore empty input and overlapping turns.
        session = self._require_active()
        if not text.strip() or self.busy:
            return session
        profile = self._require_profile()
        context = TurnContext(
            session_id=session.id,
            text=text,
            session_title=session.title or GENERAL_CHAT_TITLE,
            profile=profile,
            knowledge_base=self.knowledge.items(),
        )
        logger.info("session=%s question=%s", context.session_id, text)
        self.busy = True
        self._turn.run(context)
        return self.sessions.get(context.session_id)

    def _step_record_question(self, context: TurnContext) -> None:
        # The question and a thinking placeholder land in one update.
        question = Message(id=new_id("user"), sender=MessageSender.USER, text=context.text, timestamp=time_label())
        thinking = Message(id=new_id("bot-thinking"), sender=MessageSender.BOT, text="", is_thinking=True)
        context.thinking_id = thinking.id
        self.sessions.update_messages(context.session_id, lambda messages: [*messages, question, thinking])

    def _step_generate(self, context: TurnContext) -> None:
        context.reply = self.tutor.generate_response(
            context.text,
            context.knowledge_base,
            context.profile,
            context.session_title,
        )
        logger.info("session=%s step=generate error=%s", context.session_id, bool(context.reply.error))

    def _step_record_reply(self, context: TurnContext) -> None:
        reply = context.reply or TutorReply()
        if reply.error:
            message = bot_message(reply.error, is_error=True)
        else:
            message = bot_message(reply.text, sources=reply.sources or None)
        self.sessions.update_messages(
            context.session_id,
            lambda messages: [*[m for m in messages if m.id != context.thinking_id], message],
        )

    def _step_release(self, context: TurnContext) -> None:
        # Drop a placeholder left behind by a failed step, then unlock.
        self.busy = False
        if not context.thinking_id:
            return
        session = self.sessions.get(context.session_id)
        if any(message.id == context.thinking_id for message in session.messages):
            self.sessions.update_messages(
                context.session_id,
                lambda messages: [m for m in messages if m.id != context.thinking_id],
            )

    # ------------------------------------------------------------------
    # summaries and notes
    def summarize_chat(self) -> Session:
        """Purpose: Append a summary of the whole active conversation.
        Inputs/Outputs: No inputs; output is the updated session.
        Side Effects / State: Clears the knowledge base; adds then removes a placeholder.
        Dependencies: Uses TutorAssistant.summarize_chat_history.
        Failure Modes: Empty history or a busy workspace is a no-op.
        If Removed: The chat summary button has no backend.
        Testing Notes: History lines use the user and bot labels and skip thinking messages.
        """
        # The summary replaces the study context, so the knowledge base is dropped first.
        session = self._require_active()
        if self.busy or not session.messages:
            return session
        self.busy = True
        try:
            self.knowledge.clear()
            history = "\n".join(
                f"{USER_LABEL if message.sender == MessageSender.USER else BOT_LABEL}: {message.text}"
                for message in session.messages
                if not message.is_thinking
            )
            thinking = Message(
                id=new_id("bot-thinking"),
                sender=MessageSender.BOT,
                text=CHAT_SUMMARY_PENDING,
                is_thinking=True,
            )
            self.sessions.update_messages(session.id, lambda messages: [*messages, thinking])
            summary = self.tutor.summarize_chat_history(history)
            result = bot_message(f"{CHAT_SUMMARY_PREFIX}{summary}")
            return self.sessions.update_messages(
                session.id,
                lambda messages: [*[m for m in messages if m.id != thinking.id], result],
            )
        finally:
            self.busy = False

    def summarize_message(self, message_id: str) -> Session:
        session = self._require_active()
        target = next((message for message in session.messages if message.id == message_id), None)
        if target is None:
            raise NotFoundError(f"message {message_id} not found")
        if self.busy:
            return session
        self.busy = True
        try:
            summary = self.tutor.summarize_text(target.text)
            result = bot_message(f"{TEXT_SUMMARY_PREFIX}{summary}")
            return self.sessions.update_messages(session.id, lambda messages: [*messages, result])
        finally:
            self.busy = False

    def take_note(self, message_id: str) -> Note:
        session = self._require_active()
        return self.notes.add(compose_note(session.messages, message_id))

    def remove_note(self, note_id: str) -> None:
        self.notes.remove(note_id)

    # ------------------------------------------------------------------
    # subject and resources
    def choose_subject(self, subject: str) -> Session:
        """Purpose: Title the active session after a subject and seed resources.
        Inputs/Outputs: Input is the subject; output is the updated session.
        Side Effects / State: Clears awaiting_subject, renames, runs resource search.
        Dependencies: Uses SessionStore.unique_title and fetch_resources.
        Failure Modes: Raises ValidationError for a blank subject.
        If Removed: New sessions stay untitled and start without resources.
        Testing Notes: A second session on the same subject gets "(2)" appended.
        """
        # Titles stay unique so the sidebar can tell sessions apart.
        if not subject.strip():
            raise ValidationError("المادة مطلوبة.")
        self.sessions.awaiting_subject = False
        session = self._require_active()
        self.sessions.rename(session.id, self.sessions.unique_title(subject))
        return self.fetch_resources(subject)

    def dismiss_subject(self) -> None:
        self.sessions.awaiting_subject = False

    def fetch_resources(self, subject: str) -> Session:
        """Purpose: Search starter resources and report the outcome in the chat.
        Inputs/Outputs: Input is the subject; output is the updated session.
        Side Effects / State: Prepends status messages, merges into the knowledge base.
        Dependencies: Uses TutorAssistant.search_educational_resources.
        Failure Modes: An empty result adds a failure message with a retry action.
        If Removed: Sessions never get automatic study material.
        Testing Notes: Retrying replaces the earlier failure message instead of stacking.
        """
        # Replace any earlier failure notice with a progress placeholder.
        profile = self._require_profile()
        session = self._require_active()
        start = Message(
            id=new_id(SEARCH_START_PREFIX),
            sender=MessageSender.BOT,
            text=SEARCH_START.format(subject=subject),
            is_thinking=True,
        )
        self.sessions.update_messages(
            session.id,
            lambda messages: [start, *[m for m in messages if not m.id.startswith(SEARCH_FAIL_PREFIX)]],
        )

        try:
            resources = self.tutor.search_educational_resources(profile, subject)
        finally:
            self.sessions.update_messages(
                session.id,
                lambda messages: [m for m in messages if not m.id.startswith(SEARCH_START_PREFIX)],
            )

        if resources:
            added = self.knowledge.merge_resources(resources)
            logger.info("session=%s step=resources found=%s added=%s", session.id, len(resources), len(added))
            notice = bot_message(SEARCH_FOUND.format(count=len(resources)), prefix=SEARCH_END_PREFIX)
        else:
            logger.info("session=%s step=resources found=0", session.id)
            notice = bot_message(
                SEARCH_EMPTY,
                prefix=SEARCH_FAIL_PREFIX,
                action=MessageAction(label=RETRY_SEARCH_LABEL, kind=RETRY_SEARCH_ACTION, payload=subject),
            )
        return self.sessions.update_messages(session.id, lambda messages: [notice, *messages])

    # ------------------------------------------------------------------
    # knowledge base
    def add_upload(
        self,
        filename: str,
        content_type: Optional[str],
        data: bytes,
        title: Optional[str] = None,
    ) -> KnowledgeItem:
        return self.knowledge.add(item_from_upload(filename, content_type, data, title))

    def add_url(self, url: str, title: Optional[str] = None) -> KnowledgeItem:
        return self.knowledge.add(item_from_url(url, self.tutor, title=title, fetch_pdf=self._fetch_pdf))

    def remove_knowledge(self, item_id: str) -> None:
        self.knowledge.remove(item_id)
