"""Downloadable exports of a conversation or the notebook.

Chats and notes can be exported as plain text, PDF, or Word. PDF output uses
fpdf2 and needs a Unicode TTF font (PDF_FONT_PATH) to render Arabic; without
one the built-in Helvetica font is used and unsupported characters are
replaced.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import docx
from docx.shared import Pt
from fpdf import FPDF
from fpdf.enums import XPos, YPos

from .errors import ValidationError
from .models import Message, MessageSender, Note

logger = logging.getLogger("zakerbot.export")

CHAT_TITLE = "محادثتي مع ذاكربوت"
NOTES_TITLE = "ملاحظاتي"
USER_PREFIX = "أنا"
BOT_PREFIX = "ذاكربوت"
NOTES_SEPARATOR = "\n\n---\n\n"

FORMATS = ("txt", "pdf", "docx")
_MEDIA_TYPES = {
    "txt": "text/plain; charset=utf-8",
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
_CHAT_FILENAMES = {"txt": "ذاكربوت-محادثة.txt", "pdf": "chat-history.pdf", "docx": "chat-history.docx"}
_NOTES_FILENAMES = {"txt": "ذاكربوت-ملاحظات.txt", "pdf": "notes.pdf", "docx": "notes.docx"}

_FONT_FAMILY = "ZakerbotUnicode"


@dataclass
class ExportFile:
    """Rendered export ready to be sent as a download."""
    filename: str
    media_type: str
    content: bytes


def _exported_messages(messages: List[Message], include_questions: bool) -> List[Message]:
    return [
        message
        for message in messages
        if not message.is_thinking and (include_questions or message.sender == MessageSender.BOT)
    ]


def _speaker(message: Message) -> str:
    return USER_PREFIX if message.sender == MessageSender.USER else BOT_PREFIX


def format_chat_for_export(messages: List[Message], include_questions: bool) -> str:
    """Purpose: Render the conversation as "speaker: text" blocks.
    Inputs/Outputs: Inputs are the messages and whether to keep the student's questions;
        output is the joined text.
    Side Effects / State: None.
    Dependencies: None.
    Failure Modes: None.
    If Removed: Text and PDF exports have no body.
    Testing Notes: Thinking placeholders never appear; questions only when requested.
    """
    # One block per message, separated by a blank line.
    return "\n\n".join(
        f"{_speaker(message)}: {message.text}" for message in _exported_messages(messages, include_questions)
    )


def format_notes_for_export(notes: List[Note]) -> str:
    return NOTES_SEPARATOR.join(f"[{note.timestamp}]\n{note.content}" for note in notes)


def _new_pdf(font_path: Optional[Path]) -> FPDF:
    pdf = FPDF()
    pdf.add_page()
    if font_path is not None:
        pdf.add_font(_FONT_FAMILY, fname=str(font_path))
        pdf.set_font(_FONT_FAMILY, size=12)
    else:
        pdf.set_font("Helvetica", size=12)
    return pdf


def _pdf_text(pdf: FPDF, text: str) -> str:
    # Core fonts only cover latin-1.
    if pdf.font_family == _FONT_FAMILY.lower():
        return text
    return text.encode("latin-1", "replace").decode("latin-1")


def _write_pdf_lines(pdf: FPDF, text: str, height: float = 8) -> None:
    pdf.multi_cell(0, height, _pdf_text(pdf, text), new_x=XPos.LMARGIN, new_y=YPos.NEXT)


def render_pdf(title: str, body: List[str], font_path: Optional[Path] = None) -> bytes:
    """Purpose: Lay out a title followed by body paragraphs on A4 pages.
    Inputs/Outputs: Inputs are the title, paragraphs, and an optional TTF font path;
        output is the PDF bytes.
    Side Effects / State: Reads the font file when one is configured.
    Dependencies: Uses fpdf2.
    Failure Modes: A missing font file raises from fpdf2.
    If Removed: PDF downloads are unavailable.
    Testing Notes: Output starts with b"%PDF" even without a font.
    """
    # Without a Unicode font, Arabic degrades to placeholder characters.
    pdf = _new_pdf(font_path)
    if font_path is None:
        logger.warning("export format=pdf font=core unicode=degraded")
    _write_pdf_lines(pdf, title, height=10)
    pdf.ln(4)
    for paragraph in body:
        _write_pdf_lines(pdf, paragraph)
        pdf.ln(2)
    return bytes(pdf.output())


def _docx_bytes(document) -> bytes:
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def chat_to_docx(messages: List[Message], include_questions: bool) -> bytes:
    document = docx.Document()
    for message in _exported_messages(messages, include_questions):
        paragraph = document.add_paragraph()
        paragraph.add_run(f"{_speaker(message)}: ").bold = True
        paragraph.add_run(message.text)
    return _docx_bytes(document)


def notes_to_docx(notes: List[Note]) -> bytes:
    """Heading, then each note with its save time in small italics."""
    document = docx.Document()
    heading = document.add_paragraph().add_run(NOTES_TITLE)
    heading.bold = True
    heading.font.size = Pt(14)
    for note in notes:
        document.add_paragraph(note.content, style="List Paragraph")
        stamp = document.add_paragraph().add_run(f"(حُفظت في: {note.timestamp})")
        stamp.italic = True
        stamp.font.size = Pt(8)
        document.add_paragraph("")
    return _docx_bytes(document)


def _check_format(fmt: str) -> str:
    normalized = (fmt or "").lower()
    if normalized not in FORMATS:
        raise ValidationError(f"unsupported export format: {fmt}")
    return normalized


def export_chat(
    messages: List[Message],
    fmt: str,
    include_questions: bool = True,
    font_path: Optional[Path] = None,
) -> ExportFile:
    """Purpose: Export a conversation in the requested format.
    Inputs/Outputs: Inputs are the messages, format (txt/pdf/docx), the questions flag,
        and the PDF font; output is an ExportFile.
    Side Effects / State: None.
    Dependencies: Uses format_chat_for_export, render_pdf, chat_to_docx.
    Failure Modes: Raises ValidationError for unknown formats.
    If Removed: The chat download menu has no backend.
    Testing Notes: The txt body equals format_chat_for_export encoded as UTF-8.
    """
    # Shared text rendering for txt and pdf; Word keeps the bold speaker run.
    fmt = _check_format(fmt)
    if fmt == "docx":
        content = chat_to_docx(messages, include_questions)
    elif fmt == "pdf":
        blocks = [
            f"{_speaker(message)}: {message.text}" for message in _exported_messages(messages, include_questions)
        ]
        content = render_pdf(CHAT_TITLE, blocks, font_path)
    else:
        content = format_chat_for_export(messages, include_questions).encode("utf-8")
    logger.info("export kind=chat format=%s bytes=%s", fmt, len(content))
    return ExportFile(filename=_CHAT_FILENAMES[fmt], media_type=_MEDIA_TYPES[fmt], content=content)


def export_notes(notes: List[Note], fmt: str, font_path: Optional[Path] = None) -> ExportFile:
    fmt = _check_format(fmt)
    if fmt == "docx":
        content = notes_to_docx(notes)
    elif fmt == "pdf":
        content = render_pdf(NOTES_TITLE, [f"{index}. {note.content}" for index, note in enumerate(notes, 1)], font_path)
    else:
        content = format_notes_for_export(notes).encode("utf-8")
    logger.info("export kind=notes format=%s bytes=%s", fmt, len(content))
    return ExportFile(filename=_NOTES_FILENAMES[fmt], media_type=_MEDIA_TYPES[fmt], content=content)
