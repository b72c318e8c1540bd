from io import BytesIO

import docx
import pytest
from pypdf import PdfReader

from zakerbot.errors import ValidationError
from zakerbot.exporters import export_chat, export_notes, format_chat_for_export, format_notes_for_export
from zakerbot.models import Message, MessageSender, Note

MESSAGES = [
    Message(id="u1", sender=MessageSender.USER, text="What is a cell?"),
    Message(id="t1", sender=MessageSender.BOT, text="", is_thinking=True),
    Message(id="b1", sender=MessageSender.BOT, text="The basic unit of life."),
]
NOTES = [
    Note(id="n2", content="Second note", timestamp="2025-03-10 10:00:00"),
    Note(id="n1", content="First note", timestamp="2025-03-09 09:00:00"),
]


def test_format_chat_skips_thinking_and_optionally_questions():
    assert format_chat_for_export(MESSAGES, include_questions=True) == (
        "أنا: What is a cell?\n\nذاكربوت: The basic unit of life."
    )
    assert format_chat_for_export(MESSAGES, include_questions=False) == "ذاكربوت: The basic unit of life."


def test_chat_txt_export():
    export = export_chat(MESSAGES, "TXT", include_questions=False)
    assert export.filename.endswith(".txt")
    assert export.media_type.startswith("text/plain")
    assert export.content.decode("utf-8") == "ذاكربوت: The basic unit of life."


def test_chat_docx_export_bolds_speaker():
    export = export_chat(MESSAGES, "docx")
    document = docx.Document(BytesIO(export.content))
    paragraphs = document.paragraphs

    assert len(paragraphs) == 2
    assert paragraphs[0].runs[0].text == "أنا: "
    assert paragraphs[0].runs[0].bold is True
    assert paragraphs[0].runs[1].text == "What is a cell?"


def test_chat_pdf_export_without_unicode_font():
    export = export_chat(MESSAGES, "pdf")
    assert export.content.startswith(b"%PDF")
    text = "".join(page.extract_text() for page in PdfReader(BytesIO(export.content)).pages)
    assert "basic unit of life" in text


def test_notes_exports():
    assert format_notes_for_export(NOTES) == (
        "[2025-03-10 10:00:00]\nSecond note\n\n---\n\n[2025-03-09 09:00:00]\nFirst note"
    )
    document = docx.Document(BytesIO(export_notes(NOTES, "docx").content))
    texts = [paragraph.text for paragraph in document.paragraphs]
    assert texts[0] == "ملاحظاتي"
    assert "Second note" in texts
    assert export_notes(NOTES, "pdf").content.startswith(b"%PDF")


def test_unknown_format_is_rejected():
    with pytest.raises(ValidationError):
        export_chat(MESSAGES, "html")
