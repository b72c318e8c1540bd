import pytest

from zakerbot.errors import NotFoundError
from zakerbot.gemini_client import GenerationResult
from zakerbot.local_store import NOTES_KEY, SESSIONS_KEY, LocalStore
from zakerbot.models import KnowledgeItem, KnowledgeItemType, MessageSender, SourceRef
from zakerbot.tutor import REPLY_FAILED
from zakerbot.workspace import (
    CHAT_SUMMARY_PREFIX,
    RETRY_SEARCH_ACTION,
    SEARCH_EMPTY,
    SEARCH_END_PREFIX,
    SEARCH_FAIL_PREFIX,
    TEXT_SUMMARY_PREFIX,
    Workspace,
)

from conftest import resource_result


def messages(workspace):
    return workspace.sessions.active().messages


def test_start_opens_a_session_awaiting_subject(workspace):
    assert len(workspace.sessions.list_sessions()) == 1
    assert workspace.sessions.awaiting_subject is True
    assert messages(workspace) == []


def test_start_discards_malformed_state(tutor):
    store = LocalStore(None)
    store.set_item(SESSIONS_KEY, "[{broken")
    store.set_item(NOTES_KEY, '[{"id": "n1", "content": "c", "timestamp": "t"}]')

    ws = Workspace(store, tutor)
    ws.start()

    assert ws.notes.list() == []
    assert store.get_item(NOTES_KEY) is None
    assert len(ws.sessions.list_sessions()) == 1


def test_send_message_records_question_and_reply(workspace, fake_gemini):
    fake_gemini.grounded.append(
        GenerationResult(text="الخلية وحدة بناء الكائن الحي", sources=[SourceRef(uri="https://edu.example.org", title="مصدر")])
    )

    workspace.send_message("ما هي الخلية؟")

    question, reply = messages(workspace)
    assert question.sender == MessageSender.USER
    assert question.text == "ما هي الخلية؟"
    assert len(question.timestamp) == 5
    assert reply.sender == MessageSender.BOT
    assert reply.text == "الخلية وحدة بناء الكائن الحي"
    assert reply.sources[0].uri == "https://edu.example.org"
    assert workspace.busy is False


def test_send_message_turns_llm_failure_into_error_message(workspace, fake_gemini):
    fake_gemini.error = RuntimeError("quota")
    workspace.send_message("سؤال")

    reply = messages(workspace)[-1]
    assert reply.is_error is True
    assert reply.text == REPLY_FAILED
    assert not any(m.is_thinking for m in messages(workspace))


def test_send_message_ignores_blank_and_busy(workspace):
    workspace.send_message("   ")
    workspace.busy = True
    workspace.send_message("سؤال")
    assert messages(workspace) == []


def test_failed_turn_still_releases_placeholder(workspace, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(workspace.tutor, "generate_response", explode)
    with pytest.raises(RuntimeError):
        workspace.send_message("سؤال")

    assert [m.sender for m in messages(workspace)] == [MessageSender.USER]
    assert workspace.busy is False


def test_send_message_requires_login(workspace):
    workspace.profiles.logout()
    with pytest.raises(NotFoundError):
        workspace.send_message("سؤال")


def test_summarize_chat_clears_knowledge_and_appends_summary(workspace, fake_gemini):
    workspace.send_message("ما هي الخلية؟")
    workspace.knowledge.merge_resources([KnowledgeItem(type=KnowledgeItemType.URL, title="x", url="https://edu.example.org/x")])
    fake_gemini.texts.append("ملخص قصير")

    workspace.summarize_chat()

    assert messages(workspace)[-1].text == CHAT_SUMMARY_PREFIX + "ملخص قصير"
    assert workspace.knowledge.items() == []
    history_prompt = fake_gemini.calls[-1][1]
    assert "المستخدم: ما هي الخلية؟" in history_prompt
    assert "ذاكربوت: " in history_prompt


def test_summarize_chat_is_noop_when_empty(workspace, fake_gemini):
    workspace.summarize_chat()
    assert messages(workspace) == []
    assert fake_gemini.calls == []


def test_summarize_message_and_take_note(workspace, fake_gemini):
    workspace.send_message("ما هي الخلية؟")
    reply = messages(workspace)[-1]
    fake_gemini.texts.append("خلاصة")

    workspace.summarize_message(reply.id)
    assert messages(workspace)[-1].text == TEXT_SUMMARY_PREFIX + "خلاصة"

    note = workspace.take_note(reply.id)
    assert note.content.startswith("سؤالي: ما هي الخلية؟")
    assert workspace.notes.list()[0].id == note.id

    with pytest.raises(NotFoundError):
        workspace.summarize_message("missing")


def test_choose_subject_titles_session_and_seeds_resources(workspace, fake_gemini):
    fake_gemini.grounded.append(resource_result())

    workspace.choose_subject("الفيزياء")

    session = workspace.sessions.active()
    assert session.title == "الفيزياء"
    assert workspace.sessions.awaiting_subject is False
    assert session.messages[0].id.startswith(SEARCH_END_PREFIX)
    assert "2" in session.messages[0].text
    assert len(session.messages) == 1
    assert [item.url for item in workspace.knowledge.items()] == [
        "https://edu.example.org/lesson-1",
        "https://edu.example.org/book.pdf",
    ]


def test_second_session_on_same_subject_gets_numbered_title(workspace):
    workspace.choose_subject("الفيزياء")
    workspace.new_session()
    workspace.choose_subject("الفيزياء")
    assert workspace.sessions.active().title == "الفيزياء (2)"


def test_failed_search_offers_retry_and_retry_replaces_it(workspace, fake_gemini):
    workspace.choose_subject("الكيمياء")
    failure = messages(workspace)[0]
    assert failure.id.startswith(SEARCH_FAIL_PREFIX)
    assert failure.text == SEARCH_EMPTY
    assert failure.action.kind == RETRY_SEARCH_ACTION
    assert failure.action.payload == "الكيمياء"

    fake_gemini.grounded.append(resource_result())
    workspace.fetch_resources(failure.action.payload)

    ids = [m.id for m in messages(workspace)]
    assert len(ids) == 1
    assert ids[0].startswith(SEARCH_END_PREFIX)


def test_new_and_deleted_sessions_reset_knowledge(workspace, fake_gemini):
    fake_gemini.grounded.append(resource_result())
    workspace.choose_subject("الفيزياء")
    assert workspace.knowledge.items()

    only = workspace.sessions.active()
    replacement = workspace.delete_session(only.id)
    assert replacement.id != only.id
    assert workspace.knowledge.items() == []


def test_knowledge_passthroughs(workspace, fake_gemini):
    fake_gemini.grounded.append(GenerationResult(text="Title: الكسور"))
    link = workspace.add_url("https://edu.example.org/fractions")
    upload = workspace.add_upload("a.txt", "text/plain", b"abc")

    assert [item.id for item in workspace.knowledge.items()] == [upload.id, link.id]
    workspace.remove_knowledge(link.id)
    assert workspace.state().knowledge_base == [upload]


def test_rename_and_select(workspace):
    first = workspace.sessions.active()
    second = workspace.new_session()
    workspace.rename_session(first.id, "  الأحياء ")
    workspace.select_session(first.id)

    state = workspace.state()
    assert state.active_session.title == "الأحياء"
    assert [s.is_active for s in state.sessions] == [False, True]
    assert state.sessions[0].id == second.id


def test_summarize_message_waits_while_busy(workspace, fake_gemini):
    workspace.send_message("ما هي الخلية؟")
    reply = messages(workspace)[-1]
    calls = len(fake_gemini.calls)

    workspace.busy = True
    workspace.summarize_message(reply.id)

    assert workspace.busy is True
    assert messages(workspace)[-1].id == reply.id
    assert len(fake_gemini.calls) == calls
