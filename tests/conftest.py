from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from zakerbot.config import BASE_DIR
from zakerbot.gemini_client import GenerationResult
from zakerbot.local_store import LocalStore
from zakerbot.models import SourceRef
from zakerbot.registration import demo_profile
from zakerbot.tutor import TutorAssistant
from zakerbot.workspace import Workspace

PROMPTS_DIR = BASE_DIR / "prompts"


class FakeGemini:
    """Stands in for GeminiClient; records every call and replays queued answers."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.texts: List[str] = []
        self.grounded: List[GenerationResult] = []
        self.default_text = "نص تجريبي"
        self.default_grounded = GenerationResult(text="إجابة تجريبية", sources=[])
        self.error: Optional[Exception] = None
        self.speech: Optional[bytes] = b"\x01\x00" * 8

    def generate_content(self, contents, model=None, system_instruction=None, temperature=0.4, response_mime_type=None):
        self.calls.append(("content", contents, system_instruction, response_mime_type))
        if self.error:
            raise self.error
        return self.texts.pop(0) if self.texts else self.default_text

    def generate_grounded(self, contents, system_instruction=None, model=None):
        self.calls.append(("grounded", contents, system_instruction, None))
        if self.error:
            raise self.error
        return self.grounded.pop(0) if self.grounded else self.default_grounded

    def synthesize_speech(self, text, voice=None):
        self.calls.append(("speech", text, voice, None))
        if self.error:
            raise self.error
        return self.speech


def resource_result() -> GenerationResult:
    return GenerationResult(
        text="مصادر",
        sources=[
            SourceRef(uri="https://edu.example.org/lesson-1", title="الدرس الأول"),
            SourceRef(uri="https://edu.example.org/book.pdf", title="كتاب الطالب"),
        ],
    )


@pytest.fixture()
def fake_gemini() -> FakeGemini:
    return FakeGemini()


@pytest.fixture()
def tutor(fake_gemini) -> TutorAssistant:
    return TutorAssistant(fake_gemini, PROMPTS_DIR)


@pytest.fixture()
def store(tmp_path: Path) -> LocalStore:
    return LocalStore(tmp_path / "local_storage.json")


@pytest.fixture()
def workspace(store, tutor) -> Workspace:
    """Started workspace with the demo student logged in."""
    ws = Workspace(store, tutor, fetch_pdf=lambda url: b"not a pdf")
    ws.profiles.login(demo_profile())
    ws.start()
    return ws


@pytest.fixture()
def client(workspace, fake_gemini):
    """FastAPI test client with the workspace and analyzers overridden."""
    from zakerbot.app import app, get_personality_analyzers, get_workspace
    from zakerbot.personality import PersonalityAnalyzer

    app.dependency_overrides[get_workspace] = lambda: workspace
    app.dependency_overrides[get_personality_analyzers] = lambda: {
        "gemini": PersonalityAnalyzer(fake_gemini, PROMPTS_DIR),
        "huggingface": PersonalityAnalyzer(fake_gemini, PROMPTS_DIR),
    }

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
