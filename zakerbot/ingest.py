"""Turn uploads and links into knowledge items.

Uploads are parsed by type: images are kept as data URLs, PDFs and Word
documents are reduced to text, anything else is read as UTF-8 text. Links are
classified as YouTube videos, PDF documents, or generic pages; failures still
add a reference item so the student keeps the link.
"""

from __future__ import annotations

import base64
import io
import logging
import re
from pathlib import PurePosixPath
from typing import Callable, Optional
from urllib.parse import urlparse

import docx
import requests
from pypdf import PdfReader

from .errors import ValidationError
from .models import KnowledgeItem, KnowledgeItemType
from .tutor import TutorAssistant, is_video_url, reference_content
from .utils import hostname_of

logger = logging.getLogger("zakerbot.ingest")

VIDEO_PREFIX = "(فيديو)"
VIDEO_FAILED_PREFIX = "(فشل تحليل الفيديو)"
PARSE_FAILED_PREFIX = "(فشل التحليل)"

PdfFetcher = Callable[[str], bytes]


def sanitize_text(text: str) -> str:
    """Drop NUL and other control characters that extraction sometimes leaves behind."""
    if not text:
        return text
    text = text.replace("\u0000", "")
    return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", text)


def extract_pdf_text(data: bytes) -> str:
    """Purpose: Extract plain text from a PDF document.
    Inputs/Outputs: Input is PDF bytes; output is the concatenated page text.
    Side Effects / State: None.
    Dependencies: Uses pypdf.PdfReader.
    Failure Modes: pypdf errors on malformed files propagate to the caller.
    If Removed: PDFs cannot be used as study material.
    Testing Notes: Pages without text contribute an empty string, not None.
    """
    # Join per-page text; image-only pages yield nothing.
    reader = PdfReader(io.BytesIO(data))
    return sanitize_text("\n".join(page.extract_text() or "" for page in reader.pages))


def extract_docx_text(data: bytes) -> str:
    document = docx.Document(io.BytesIO(data))
    return sanitize_text("\n".join(paragraph.text for paragraph in document.paragraphs))


def item_from_upload(
    filename: str,
    content_type: Optional[str],
    data: bytes,
    title: Optional[str] = None,
) -> KnowledgeItem:
    """Purpose: Build a knowledge item from an uploaded file.
    Inputs/Outputs: Inputs are the file name, MIME type, bytes, and an optional custom
        title; output is an unsaved KnowledgeItem.
    Side Effects / State: None.
    Dependencies: Uses extract_pdf_text, extract_docx_text, and base64.
    Failure Modes: Parser errors are logged and re-raised as ValidationError.
    If Removed: The knowledge base only accepts links.
    Testing Notes: A custom title wins over the filename; images keep their MIME type.
    """
    # Dispatch on MIME type first, then on extension.
    title_to_use = (title or "").strip() or filename
    mime = (content_type or "").lower()
    try:
        if mime.startswith("image/"):
            encoded = base64.b64encode(data).decode("ascii")
            return KnowledgeItem(
                type=KnowledgeItemType.IMAGE,
                title=title_to_use,
                data_url=f"data:{mime};base64,{encoded}",
                mime_type=mime,
            )
        if mime == "application/pdf" or filename.lower().endswith(".pdf"):
            content = extract_pdf_text(data)
        elif filename.lower().endswith(".docx"):
            content = extract_docx_text(data)
        else:
            content = data.decode("utf-8", errors="replace")
    except Exception as exc:
        logger.error("ingest file=%s status=parse_failed", filename, exc_info=True)
        raise ValidationError(f"خطأ في معالجة {filename}") from exc
    return KnowledgeItem(type=KnowledgeItemType.FILE, title=title_to_use, content=content)


def download_pdf(url: str, timeout: int = 30) -> bytes:
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()
    return response.content


def item_from_url(
    url: str,
    tutor: TutorAssistant,
    title: Optional[str] = None,
    fetch_pdf: Optional[PdfFetcher] = None,
) -> KnowledgeItem:
    """Purpose: Build a knowledge item from a link.
    Inputs/Outputs: Inputs are the URL, tutor, optional custom title, and PDF fetcher;
        output is an unsaved KnowledgeItem.
    Side Effects / State: May call Gemini (title, transcript) or download a PDF.
    Dependencies: Uses TutorAssistant.fetch_url_title/fetch_video_transcript and pypdf.
    Failure Modes: Raises ValidationError for blank or unparseable URLs; processing
        failures produce a reference item with a failure-tagged title.
    If Removed: Links cannot be added to the knowledge base.
    Testing Notes: A PDF download error yields a "(فشل التحليل)" url item.
    """
    # Classify the link, then degrade to a reference item on failure.
    trimmed = (url or "").strip()
    custom = (title or "").strip()
    if not trimmed:
        raise ValidationError("الرابط مطلوب.")
    fetch_pdf = fetch_pdf or download_pdf

    if is_video_url(trimmed):
        try:
            title_to_use = custom or tutor.fetch_url_title(trimmed)
            transcript = tutor.fetch_video_transcript(trimmed)
            return KnowledgeItem(
                type=KnowledgeItemType.URL,
                title=f"{VIDEO_PREFIX} {title_to_use}",
                url=trimmed,
                content=transcript,
            )
        except Exception:
            logger.error("ingest url=%s kind=video status=failed", trimmed, exc_info=True)
            return KnowledgeItem(
                type=KnowledgeItemType.URL,
                title=f"{VIDEO_FAILED_PREFIX} {custom or trimmed}",
                url=trimmed,
                content=reference_content(trimmed),
            )

    if trimmed.lower().endswith(".pdf"):
        pdf_name = PurePosixPath(urlparse(trimmed).path).name or trimmed
        title_to_use = custom or pdf_name
        try:
            content = extract_pdf_text(fetch_pdf(trimmed))
            return KnowledgeItem(type=KnowledgeItemType.FILE, title=title_to_use, content=content, url=trimmed)
        except Exception:
            logger.error("ingest url=%s kind=pdf status=failed", trimmed, exc_info=True)
            return KnowledgeItem(
                type=KnowledgeItemType.URL,
                title=f"{PARSE_FAILED_PREFIX} {title_to_use}",
                url=trimmed,
                content=reference_content(trimmed),
            )

    hostname = hostname_of(trimmed)
    if hostname is None:
        raise ValidationError("الرابط غير صالح.")
    try:
        fetched_title = custom or tutor.fetch_url_title(trimmed)
    except Exception:
        logger.warning("ingest url=%s kind=page status=title_failed", trimmed, exc_info=True)
        fetched_title = custom or hostname
    return KnowledgeItem(
        type=KnowledgeItemType.URL,
        title=fetched_title,
        url=trimmed,
        content=reference_content(trimmed),
    )
