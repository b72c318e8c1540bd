from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

import google.generativeai as genai
from google import genai as google_genai
from google.genai import types as genai_types

from .audio import decode_pcm_base64
from .config import Settings
from .models import SourceRef

logger = logging.getLogger("zakerbot.gemini")

Contents = Union[str, Dict[str, list], List[dict]]


@dataclass
class GenerationResult:
    """Generated text plus the web sources the answer was grounded on."""
    text: str
    sources: List[SourceRef] = field(default_factory=list)


class GeminiClient:
    """Thin wrapper around the Gemini SDKs with model caching.

    Plain and JSON generation go through google-generativeai. Google Search
    grounding and speech synthesis go through google-genai, which exposes the
    search tool and speech config for current models.
    """

    def __init__(self, settings: Settings) -> None:
        """Purpose: Configure both Gemini SDKs and initialize the model cache.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Configures the legacy SDK API key and builds a google-genai client.
        Dependencies: Uses google.generativeai, google.genai, and Settings.
        Failure Modes: Raises ValueError if the API key or model name is missing.
        If Removed: No tutoring, search, summary, or speech call can execute.
        Testing Notes: Validate missing key raises ValueError and models are cached.
        """
        # Configure API key and seed default model cache.
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        self._settings = settings
        genai.configure(api_key=settings.gemini_api_key)
        self._client = google_genai.Client(api_key=settings.gemini_api_key)
        self._models: Dict[str, genai.GenerativeModel] = {}
        self._default_model = _normalize_model_name(settings.gemini_model)
        if not self._default_model:
            raise ValueError("Gemini model name is required")

    def _model(self, model_name: str, system_instruction: Optional[str]) -> genai.GenerativeModel:
        # Only instruction-free models are cached; instructions vary per call.
        if system_instruction:
            return genai.GenerativeModel(model_name, system_instruction=system_instruction)
        if model_name not in self._models:
            self._models[model_name] = genai.GenerativeModel(model_name)
        return self._models[model_name]

    def generate_content(
        self,
        contents: Contents,
        model: Optional[str] = None,
        system_instruction: Optional[str] = None,
        temperature: float = 0.4,
        response_mime_type: Optional[str] = None,
    ) -> str:
        """Purpose: Generate text from a prompt or structured content parts.
        Inputs/Outputs: Input is a string, a {"parts": [...]} dict, or a list of them;
            returns the stripped text.
        Side Effects / State: Caches the model when no system instruction is given.
        Dependencies: Uses genai.GenerativeModel.generate_content and _to_sdk_contents.
        Failure Modes: SDK errors propagate; callers convert them to localized messages.
        If Removed: Summaries, personality analysis, and transcription cannot run.
        Testing Notes: Request JSON mode and verify the generation config carries the MIME type.
        """
        # Resolve the model, then send decoded inline data to the SDK.
        model_name = _normalize_model_name(model) if model else self._default_model
        generation_config: Dict[str, object] = {"temperature": temperature}
        if response_mime_type:
            generation_config["response_mime_type"] = response_mime_type
        response = self._model(model_name, system_instruction).generate_content(
            _to_sdk_contents(contents),
            generation_config=generation_config,
        )
        text: Optional[str] = getattr(response, "text", None)
        return (text or "").strip()

    def generate_grounded(
        self,
        contents: Contents,
        system_instruction: Optional[str] = None,
        model: Optional[str] = None,
    ) -> GenerationResult:
        """Purpose: Generate text with the Google Search tool and collect citations.
        Inputs/Outputs: Input is prompt/content parts and optional system instruction;
            returns GenerationResult(text, sources).
        Side Effects / State: None.
        Dependencies: Uses google-genai Client.models.generate_content.
        Failure Modes: SDK errors propagate to the caller.
        If Removed: Replies and resource search lose web grounding and sources.
        Testing Notes: Feed a response with grounding chunks and verify SourceRef mapping.
        """
        # Attach the search tool and pull grounding chunks from the first candidate.
        model_name = _normalize_model_name(model) if model else self._default_model
        config = genai_types.GenerateContentConfig(
            system_instruction=system_instruction,
            tools=[genai_types.Tool(google_search=genai_types.GoogleSearch())],
        )
        response = self._client.models.generate_content(
            model=model_name,
            contents=_to_sdk_contents(contents),
            config=config,
        )
        text = (getattr(response, "text", None) or "").strip()
        return GenerationResult(text=text, sources=extract_sources(response))

    def synthesize_speech(self, text: str, voice: Optional[str] = None) -> Optional[bytes]:
        """Purpose: Convert text to raw 16-bit PCM speech.
        Inputs/Outputs: Inputs are text and an optional prebuilt voice name; output is PCM
            bytes or None when the response has no audio part.
        Side Effects / State: None.
        Dependencies: Uses google-genai speech config on the TTS model.
        Failure Modes: SDK errors propagate; a response without audio returns None.
        If Removed: Messages cannot be read aloud.
        Testing Notes: Return an audio inline part and verify bytes come back unchanged.
        """
        # Ask for audio only and return the first audio part.
        config = genai_types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=genai_types.SpeechConfig(
                voice_config=genai_types.VoiceConfig(
                    prebuilt_voice_config=genai_types.PrebuiltVoiceConfig(
                        voice_name=voice or self._settings.default_voice,
                    )
                )
            ),
        )
        response = self._client.models.generate_content(
            model=_normalize_model_name(self._settings.gemini_tts_model),
            contents=text,
            config=config,
        )
        for candidate in getattr(response, "candidates", None) or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                inline = getattr(part, "inline_data", None)
                mime_type = getattr(inline, "mime_type", "") or ""
                if inline is not None and mime_type.startswith("audio/") and inline.data:
                    if isinstance(inline.data, str):
                        return decode_pcm_base64(inline.data)
                    return inline.data
        logger.warning("tts status=no_audio voice=%s", voice)
        return None


def extract_sources(response: object) -> List[SourceRef]:
    """Purpose: Map grounding chunks on the first candidate to SourceRef items.
    Inputs/Outputs: Input is an SDK response; output is a list of SourceRef.
    Side Effects / State: None.
    Dependencies: Reads candidates[0].grounding_metadata.grounding_chunks[*].web.
    Failure Modes: Missing metadata or chunks without uri/title are skipped.
    If Removed: Replies cannot show citations and resource search finds nothing.
    Testing Notes: Mix web and non-web chunks and check only complete web ones remain.
    """
    # Walk defensively: every level of the metadata is optional.
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []
    sources: List[SourceRef] = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        uri = getattr(web, "uri", None)
        title = getattr(web, "title", None)
        if uri and title:
            sources.append(SourceRef(uri=uri, title=title))
    return sources


def _normalize_model_name(name: Optional[str]) -> str:
    """Strip the "models/" prefix and surrounding whitespace from a model name."""
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned


def _to_sdk_contents(contents: Contents) -> Contents:
    """Purpose: Decode base64 inline data so both SDKs receive raw bytes.
    Inputs/Outputs: Input is a prompt string or content dict(s); output has the same
        shape with inline_data.data converted to bytes.
    Side Effects / State: None; returns new dicts.
    Dependencies: Used by generate_content and generate_grounded.
    Failure Modes: Malformed base64 raises binascii.Error.
    If Removed: Image and audio parts are sent as text and rejected by the API.
    Testing Notes: A data string "aGk=" becomes b"hi".
    """
    # Strings pass through; parts are rebuilt with decoded blobs.
    if isinstance(contents, str):
        return contents
    if isinstance(contents, list):
        return [_to_sdk_contents(entry) for entry in contents]
    converted = dict(contents)
    parts = []
    for part in contents.get("parts", []) or []:
        inline = part.get("inline_data") if isinstance(part, dict) else None
        if inline and isinstance(inline.get("data"), str):
            part = {
                "inline_data": {
                    "mime_type": inline.get("mime_type"),
                    "data": base64.b64decode(inline["data"]),
                }
            }
        parts.append(part)
    converted["parts"] = parts
    return converted
