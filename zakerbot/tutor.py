"""LLM-backed tutoring operations with localized failure handling.

Every operation here talks to Gemini once and converts failures into the
fallback the chat page expects: an error reply, an empty resource list, a
fallback title, or a localized AssistantError for flows the user retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .audio import pcm_to_wav
from .errors import AssistantError
from .gemini_client import GeminiClient
from .models import KnowledgeItem, KnowledgeItemType, SourceRef, UserProfile
from .prompt_builder import build_contents, build_system_instruction
from .prompt_loader import load_prompt, render_prompt
from .utils import hostname_of

logger = logging.getLogger("zakerbot.tutor")

REPLY_FAILED = "عذراً، حدث خطأ أثناء محاولة الرد."
TEXT_SUMMARY_FAILED = "عذراً، لم أتمكن من تلخيص النص."
CHAT_SUMMARY_FAILED = "عذراً، لم أتمكن من تلخيص المحادثة."
TRANSCRIPTION_FAILED = "عذراً، لم أتمكن من فهم ما قلته. هل يمكنك المحاولة مرة أخرى بصوت أوضح؟"
VIDEO_EMPTY = "لم أتمكن من استخلاص نص من الفيديو. رابط مرجعي: {url}"
VIDEO_FAILED = "فشل استخلاص النص من الفيديو. رابط مرجعي: {url}"

BLOCKED_KEYWORDS = [
    "wikipedia", "facebook", "twitter", "instagram", "tiktok", "linkedin",
    "news", "article", "magazine", "journal", "forum", "blog", "community",
    "ويكيبيديا", "فيسبوك", "تويتر", "انستغرام", "تيك توك", "لينكد إن",
    "أخبار", "خبر", "جريدة", "صحيفة", "مجلة", "مقالة",
    "منتديات", "منتدى", "مدونة", "مجتمع",
]


def reference_content(url: str) -> str:
    return f"Reference URL: {url}"


def is_video_url(url: str) -> bool:
    lowered = url.lower()
    return "youtube.com" in lowered or "youtu.be" in lowered


def is_blocked(uri: str, title: str) -> bool:
    lowered_uri = uri.lower()
    lowered_title = title.lower()
    return any(keyword in lowered_uri or keyword in lowered_title for keyword in BLOCKED_KEYWORDS)


@dataclass
class TutorReply:
    """Outcome of one tutoring turn: text with sources, or a localized error."""
    text: str = ""
    sources: List[SourceRef] = field(default_factory=list)
    error: Optional[str] = None


class TutorAssistant:
    """Gemini-backed operations used by the chat workspace and the HTTP layer."""

    def __init__(self, gemini: GeminiClient, prompts_dir: Path, sample_rate: int = 24000) -> None:
        self._gemini = gemini
        self._prompts_dir = prompts_dir
        self._sample_rate = sample_rate

    def _prompt(self, name: str, **values: str) -> str:
        return render_prompt(load_prompt(self._prompts_dir / name), values)

    def generate_response(
        self,
        prompt: str,
        knowledge_base: List[KnowledgeItem],
        profile: UserProfile,
        session_title: str,
    ) -> TutorReply:
        """Purpose: Answer a student question grounded in the knowledge base.
        Inputs/Outputs: Inputs are the question, knowledge items, profile, and session
            title; output is TutorReply with text/sources or a localized error.
        Side Effects / State: One grounded Gemini call.
        Dependencies: Uses build_system_instruction, build_contents, generate_grounded.
        Failure Modes: Any exception becomes TutorReply(error=REPLY_FAILED); never raises.
        If Removed: The chat turn has nothing to reply with.
        Testing Notes: Make the client raise and check the error text is localized.
        """
        # Build the instruction and contents, then call the grounded model.
        try:
            instruction = build_system_instruction(self._prompts_dir, profile, session_title, knowledge_base)
            contents = build_contents(self._prompts_dir, prompt, knowledge_base)
            result = self._gemini.generate_grounded(contents, system_instruction=instruction)
        except Exception:
            logger.error("step=generate_response status=failed title=%s", session_title, exc_info=True)
            return TutorReply(error=REPLY_FAILED)
        return TutorReply(text=result.text, sources=result.sources)

    def search_educational_resources(self, profile: UserProfile, subject: str) -> List[KnowledgeItem]:
        """Purpose: Discover starter learning resources for a subject via grounded search.
        Inputs/Outputs: Inputs are the profile and subject; output is deduplicated
            knowledge items (PDF links as files, other links as urls).
        Side Effects / State: One grounded Gemini call.
        Dependencies: Uses generate_grounded sources and BLOCKED_KEYWORDS.
        Failure Modes: Any exception is logged and yields an empty list.
        If Removed: New sessions start with an empty knowledge base.
        Testing Notes: Blocked domains are dropped and duplicate URLs collapse to one.
        """
        # Ask for resources, then keep only acceptable grounding citations.
        try:
            prompt = self._prompt(
                "resource_search.txt",
                STAGE=profile.stage,
                CLASS=profile.class_name,
                SEMESTER=profile.semester,
                SUBJECT=subject,
            )
            result = self._gemini.generate_grounded(prompt)
        except Exception:
            logger.error("step=resource_search status=failed subject=%s", subject, exc_info=True)
            return []
        if not result.sources:
            logger.info("step=resource_search status=no_sources subject=%s", subject)
            return []

        unique: dict = {}
        for source in result.sources:
            if is_blocked(source.uri, source.title):
                continue
            item_type = KnowledgeItemType.FILE if source.uri.lower().endswith(".pdf") else KnowledgeItemType.URL
            unique[source.uri] = KnowledgeItem(
                id=f"resource-{source.uri}",
                type=item_type,
                title=source.title or hostname_of(source.uri) or source.uri,
                url=source.uri,
                content=reference_content(source.uri),
            )
        return list(unique.values())

    def summarize_text(self, text: str) -> str:
        try:
            summary = self._gemini.generate_content(self._prompt("summarize_text.txt", TEXT=text))
        except Exception:
            logger.error("step=summarize_text status=failed", exc_info=True)
            return TEXT_SUMMARY_FAILED
        return summary or TEXT_SUMMARY_FAILED

    def summarize_chat_history(self, history: str) -> str:
        try:
            summary = self._gemini.generate_content(self._prompt("summarize_chat.txt", HISTORY=history))
        except Exception:
            logger.error("step=summarize_chat status=failed", exc_info=True)
            return CHAT_SUMMARY_FAILED
        return summary or CHAT_SUMMARY_FAILED

    def fetch_url_title(self, url: str) -> str:
        """Purpose: Resolve a human-readable title for a link.
        Inputs/Outputs: Input is a URL; output is the page title, hostname, or raw string.
        Side Effects / State: One grounded Gemini call for http(s) URLs.
        Dependencies: Uses generate_grounded and hostname_of.
        Failure Modes: Errors and empty answers fall back to the hostname.
        If Removed: Links appear in the knowledge base under their raw URL.
        Testing Notes: "Title: X" answers are stripped to "X".
        """
        # Non-http strings never reach the model.
        fallback = hostname_of(url) or url
        if not url or not url.startswith("http"):
            return fallback
        try:
            result = self._gemini.generate_grounded(self._prompt("url_title.txt", URL=url))
        except Exception:
            logger.error("step=url_title status=failed url=%s", url, exc_info=True)
            return fallback
        title = result.text.strip()
        if title.lower().startswith("title:"):
            title = title[len("title:"):].strip()
        return title or fallback

    def fetch_video_transcript(self, url: str) -> str:
        """Summarize a YouTube video into lesson text; other URLs get a reference line."""
        if not url or not is_video_url(url):
            return reference_content(url)
        try:
            result = self._gemini.generate_grounded(self._prompt("video_transcript.txt", URL=url))
        except Exception:
            logger.error("step=video_transcript status=failed url=%s", url, exc_info=True)
            return VIDEO_FAILED.format(url=url)
        return result.text.strip() or VIDEO_EMPTY.format(url=url)

    def transcribe_audio(self, audio_base64: str, mime_type: str) -> str:
        """Purpose: Transcribe a recorded question in Arabic.
        Inputs/Outputs: Inputs are base64 audio and its MIME type; output is the transcript.
        Side Effects / State: One Gemini call.
        Dependencies: Uses generate_content with an inline audio part.
        Failure Modes: Errors or an empty transcript raise AssistantError(TRANSCRIPTION_FAILED).
        If Removed: Voice input cannot be turned into chat messages.
        Testing Notes: A whitespace-only transcript must raise.
        """
        # Audio goes first, then the instruction.
        contents = {
            "parts": [
                {"inline_data": {"mime_type": mime_type, "data": audio_base64}},
                {"text": self._prompt("transcribe_audio.txt").strip()},
            ]
        }
        try:
            text = self._gemini.generate_content(contents)
        except Exception as exc:
            logger.error("step=transcribe status=failed mime=%s", mime_type, exc_info=True)
            raise AssistantError(TRANSCRIPTION_FAILED) from exc
        if not text.strip():
            logger.warning("step=transcribe status=empty mime=%s", mime_type)
            raise AssistantError(TRANSCRIPTION_FAILED)
        return text

    def generate_speech(self, text: str, voice: Optional[str] = None) -> Optional[bytes]:
        """Return playable WAV bytes for the text, or None when synthesis fails."""
        if not text.strip():
            return None
        try:
            pcm = self._gemini.synthesize_speech(text, voice)
        except Exception:
            logger.error("step=tts status=failed voice=%s", voice, exc_info=True)
            return None
        if not pcm:
            return None
        return pcm_to_wav(pcm, sample_rate=self._sample_rate)
