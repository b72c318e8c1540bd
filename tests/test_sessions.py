import asyncio
import json

import pytest

from zakerbot.autosave import AutoSaver
from zakerbot.errors import NotFoundError
from zakerbot.local_store import NOTES_KEY, SESSIONS_KEY, LocalStore
from zakerbot.models import Message, MessageSender
from zakerbot.notes import NoteBook, compose_note
from zakerbot.session_store import NEW_SESSION_TITLE, SessionStore, auto_title
from zakerbot.turn_runner import TurnRunner, TurnStep


def user(text, id="u"):
    return Message(id=id, sender=MessageSender.USER, text=text)


def bot(text, id="b"):
    return Message(id=id, sender=MessageSender.BOT, text=text)


def test_new_sessions_are_prepended_and_active():
    sessions = SessionStore(LocalStore(None))
    first = sessions.new_session()
    second = sessions.new_session(prompt_for_subject=False)

    assert [s.id for s in sessions.list_sessions()] == [second.id, first.id]
    assert sessions.active_id == second.id
    assert sessions.awaiting_subject is False
    assert second.title == NEW_SESSION_TITLE


def test_sessions_reload_and_activate_first(tmp_path):
    path = tmp_path / "store.json"
    sessions = SessionStore(LocalStore(path))
    older = sessions.new_session()
    newer = sessions.new_session()

    reloaded = SessionStore(LocalStore(path))
    assert reloaded.load() is True
    assert [s.id for s in reloaded.list_sessions()] == [newer.id, older.id]
    assert reloaded.active_id == newer.id


def test_malformed_sessions_report_failure():
    store = LocalStore(None)
    store.set_item(SESSIONS_KEY, "{not json")
    sessions = SessionStore(store)
    assert sessions.load() is False
    assert sessions.list_sessions() == []


def test_auto_title_from_first_question():
    sessions = SessionStore(LocalStore(None))
    session = sessions.new_session(prompt_for_subject=False)
    long_question = "ما هي قوانين نيوتن الثلاثة وكيف نطبقها في الحياة اليومية؟"

    sessions.update_messages(session.id, lambda messages: [*messages, user("  ", "u0"), user(long_question)])

    assert sessions.get(session.id).title == long_question[:35] + "..."
    assert auto_title([bot("مرحبا")]) is None


def test_auto_title_waits_while_subject_is_pending():
    sessions = SessionStore(LocalStore(None))
    session = sessions.new_session(prompt_for_subject=True)
    sessions.update_messages(session.id, lambda messages: [user("سؤال")])
    assert sessions.get(session.id).title == NEW_SESSION_TITLE


def test_delete_moves_selection_and_recreates_when_empty():
    store = LocalStore(None)
    sessions = SessionStore(store)
    older = sessions.new_session()
    newer = sessions.new_session()

    assert sessions.delete(newer.id).id == older.id
    replacement = sessions.delete(older.id)
    assert replacement.id not in {older.id, newer.id}
    assert sessions.awaiting_subject is False
    with pytest.raises(NotFoundError):
        sessions.delete("missing")


def test_unique_title():
    sessions = SessionStore(LocalStore(None))
    assert sessions.unique_title("الفيزياء") == "الفيزياء"
    first = sessions.new_session()
    sessions.rename(first.id, "الفيزياء")
    second = sessions.new_session()
    sessions.rename(second.id, "الفيزياء (2)")
    assert sessions.unique_title("الفيزياء") == "الفيزياء (3)"


def test_compose_note_pairs_reply_with_question():
    messages = [user("ما هي الخلية؟", "u1"), bot("وحدة بناء الكائن الحي", "b1"), bot("مرحبا", "b2")]
    assert compose_note(messages, "b1") == "سؤالي: ما هي الخلية؟\n\nالرد: وحدة بناء الكائن الحي"
    assert compose_note([bot("مرحبا", "b0")], "b0") == "مرحبا"
    with pytest.raises(NotFoundError):
        compose_note(messages, "missing")


def test_notebook_persists_newest_first():
    store = LocalStore(None)
    notes = NoteBook(store)
    older = notes.add("أولى")
    newer = notes.add("ثانية")

    assert [n.id for n in notes.list()] == [newer.id, older.id]
    assert json.loads(store.get_item(NOTES_KEY))[0]["content"] == "ثانية"

    notes.remove(older.id)
    with pytest.raises(NotFoundError):
        notes.remove(older.id)


def test_notebook_load_rejects_malformed_value():
    store = LocalStore(None)
    store.set_item(NOTES_KEY, json.dumps([{"id": "n1"}]))
    assert NoteBook(store).load() is False


def test_autosaver_flushes_until_stopped():
    calls = []

    async def scenario():
        saver = AutoSaver(lambda: calls.append("flush"), interval_seconds=0.01)
        saver.start()
        assert saver.running
        await asyncio.sleep(0.05)
        await saver.stop()
        assert not saver.running

    asyncio.run(scenario())
    assert len(calls) >= 2


def test_autosaver_survives_failing_flush():
    def broken():
        raise OSError("disk full")

    AutoSaver(broken, interval_seconds=1).flush_once()
    with pytest.raises(ValueError):
        AutoSaver(broken, interval_seconds=0)


def test_turn_runner_runs_cleanup_after_failure():
    trace = []

    def fail(context):
        trace.append("generate")
        raise RuntimeError("boom")

    runner = TurnRunner(
        steps=[
            TurnStep("prepare", lambda context: trace.append("prepare")),
            TurnStep("generate", fail),
            TurnStep("record", lambda context: trace.append("record")),
            TurnStep("release", lambda context: trace.append("release"), always_run=True),
        ]
    )
    with pytest.raises(RuntimeError):
        runner.run(object())
    assert trace == ["prepare", "generate", "release"]


def test_turn_runner_skip_rule():
    trace = []
    runner = TurnRunner(
        steps=[
            TurnStep("optional", lambda context: trace.append("optional"), skip_if=lambda context: True),
            TurnStep("required", lambda context: trace.append("required")),
        ]
    )
    runner.run(object())
    assert trace == ["required"]
