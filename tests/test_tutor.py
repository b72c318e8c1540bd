import wave
from io import BytesIO

import pytest

from zakerbot.errors import AssistantError
from zakerbot.gemini_client import GenerationResult
from zakerbot.models import KnowledgeItemType, SourceRef
from zakerbot.registration import demo_profile
from zakerbot.tutor import (
    CHAT_SUMMARY_FAILED,
    REPLY_FAILED,
    TRANSCRIPTION_FAILED,
    VIDEO_FAILED,
    is_blocked,
    is_video_url,
)

from conftest import resource_result


def test_generate_response_returns_text_and_sources(tutor, fake_gemini):
    fake_gemini.grounded.append(
        GenerationResult(text="الجواب", sources=[SourceRef(uri="https://edu.example.org", title="مصدر")])
    )
    reply = tutor.generate_response("سؤال", [], demo_profile(), "الكيمياء")

    assert reply.error is None
    assert reply.text == "الجواب"
    assert reply.sources[0].title == "مصدر"
    _, contents, instruction, _ = fake_gemini.calls[-1]
    assert "الكيمياء" in instruction
    assert '"سؤال"' in contents["parts"][0]["text"]


def test_generate_response_never_raises(tutor, fake_gemini):
    fake_gemini.error = RuntimeError("quota")
    reply = tutor.generate_response("سؤال", [], demo_profile(), "الكيمياء")
    assert reply.error == REPLY_FAILED
    assert reply.text == ""


def test_search_resources_filters_and_classifies(tutor, fake_gemini):
    result = resource_result()
    result.sources.append(SourceRef(uri="https://ar.wikipedia.org/wiki/x", title="ويكيبيديا"))
    result.sources.append(SourceRef(uri="https://edu.example.org/lesson-1", title="مكرر"))
    fake_gemini.grounded.append(result)

    items = tutor.search_educational_resources(demo_profile(), "الفيزياء")

    assert [item.url for item in items] == ["https://edu.example.org/lesson-1", "https://edu.example.org/book.pdf"]
    assert items[0].type == KnowledgeItemType.URL
    assert items[1].type == KnowledgeItemType.FILE
    assert items[0].id == "resource-https://edu.example.org/lesson-1"
    prompt = fake_gemini.calls[-1][1]
    assert "الفيزياء" in prompt


def test_search_resources_returns_empty_on_failure(tutor, fake_gemini):
    fake_gemini.error = RuntimeError("down")
    assert tutor.search_educational_resources(demo_profile(), "الفيزياء") == []


def test_summaries_fall_back_to_localized_text(tutor, fake_gemini):
    fake_gemini.texts.append("ملخص")
    assert tutor.summarize_text("نص طويل") == "ملخص"
    fake_gemini.texts.append("")
    assert tutor.summarize_chat_history("المستخدم: مرحبا") == CHAT_SUMMARY_FAILED


def test_fetch_url_title(tutor, fake_gemini):
    fake_gemini.grounded.append(GenerationResult(text="Title: درس الكسور"))
    assert tutor.fetch_url_title("https://edu.example.org/fractions") == "درس الكسور"

    assert tutor.fetch_url_title("ftp://files.example.org/a") == "files.example.org"

    fake_gemini.error = RuntimeError("down")
    assert tutor.fetch_url_title("https://edu.example.org/x") == "edu.example.org"


def test_video_helpers(tutor, fake_gemini):
    assert is_video_url("https://youtu.be/abc")
    assert not is_video_url("https://example.org/video")
    assert is_blocked("https://forum.example.org", "x")

    fake_gemini.error = RuntimeError("down")
    url = "https://www.youtube.com/watch?v=1"
    assert tutor.fetch_video_transcript(url) == VIDEO_FAILED.format(url=url)


def test_transcribe_audio_sends_audio_first(tutor, fake_gemini):
    fake_gemini.texts.append("ما هي الخلية؟")
    assert tutor.transcribe_audio("aGk=", "audio/webm") == "ما هي الخلية؟"
    parts = fake_gemini.calls[-1][1]["parts"]
    assert parts[0]["inline_data"]["mime_type"] == "audio/webm"

    fake_gemini.texts.append("   ")
    with pytest.raises(AssistantError) as excinfo:
        tutor.transcribe_audio("aGk=", "audio/webm")
    assert str(excinfo.value) == TRANSCRIPTION_FAILED


def test_generate_speech_wraps_pcm(tutor, fake_gemini):
    audio = tutor.generate_speech("مرحبا", "Kore")
    with wave.open(BytesIO(audio)) as wav_file:
        assert wav_file.getframerate() == 24000
        assert wav_file.readframes(wav_file.getnframes()) == fake_gemini.speech
    assert fake_gemini.calls[-1][2] == "Kore"

    fake_gemini.speech = None
    assert tutor.generate_speech("مرحبا") is None
    assert tutor.generate_speech("   ") is None
