from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for models, storage, and runtime limits."""
    gemini_api_key: str
    gemini_model: str
    gemini_tts_model: str
    default_voice: str
    tts_sample_rate: int
    data_dir: Path
    prompts_dir: Path
    autosave_interval_seconds: int
    request_timeout: int
    huggingface_api_token: str
    huggingface_model_url: str
    pdf_font_path: Optional[Path]


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Invalid integer env values (TTS_SAMPLE_RATE, AUTOSAVE_INTERVAL_SECONDS,
        REQUEST_TIMEOUT) raise ValueError.
    If Removed: App cannot configure models/storage and fails at startup.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve storage and prompt paths, then build Settings.
    data_dir = os.getenv("DATA_DIR")
    if data_dir:
        data_path = Path(data_dir)
    else:
        data_path = (BASE_DIR / "data").resolve()

    font_path = os.getenv("PDF_FONT_PATH")

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        gemini_tts_model=os.getenv("GEMINI_TTS_MODEL", "gemini-2.5-flash-preview-tts"),
        default_voice=os.getenv("DEFAULT_VOICE", "Orus"),
        tts_sample_rate=int(os.getenv("TTS_SAMPLE_RATE", "24000")),
        data_dir=data_path,
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        autosave_interval_seconds=int(os.getenv("AUTOSAVE_INTERVAL_SECONDS", "60")),
        request_timeout=int(os.getenv("REQUEST_TIMEOUT", "30")),
        huggingface_api_token=os.getenv("HUGGINGFACE_API_TOKEN", ""),
        huggingface_model_url=os.getenv(
            "HUGGINGFACE_MODEL_URL",
            "https://api-inference.huggingface.co/models/Nasserelsaman/microsoft-finetuned-personality",
        ),
        pdf_font_path=Path(font_path) if font_path else None,
    )
