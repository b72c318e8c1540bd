from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import quote

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, File, Form, Query, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse

from .autosave import AutoSaver
from .config import load_settings
from .errors import AssistantError, NotFoundError, ValidationError
from .exporters import ExportFile, export_chat, export_notes
from .gemini_client import GeminiClient
from .ingest import download_pdf
from .local_store import LocalStore
from .models import (
    AssessmentRequest,
    ChatRequest,
    KnowledgeItem,
    KnowledgeUrlRequest,
    Note,
    PersonalityTraits,
    RegistrationRequest,
    RenameRequest,
    SessionSummary,
    SpeechRequest,
    SubjectRequest,
    TranscribeRequest,
    TranscribeResponse,
    UserProfile,
    WorkspaceState,
)
from .personality import (
    ANSWER_OPTIONS,
    INCOMPLETE_ANSWERS,
    QUESTIONS,
    HuggingFaceAnalyzer,
    PersonalityAnalyzer,
    missing_answers,
)
from .registration import (
    GENDERS,
    GOVERNORATES,
    LEARNING_DIFFICULTIES,
    SEMESTERS,
    STAGES,
    build_profile,
    calculate_age,
    classes_for_stage,
    demo_profile,
    schools_for_stage,
    subjects_for_stage,
    suggest_stage,
)
from .tutor import TutorAssistant
from .workspace import LOGIN_REQUIRED, Workspace

BASE_DIR = Path(__file__).resolve().parent

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("zakerbot").setLevel(log_level)
logger = logging.getLogger("zakerbot.api")

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

settings = load_settings()

SPEECH_FAILED = "عذراً، لم أتمكن من توليد الصوت."

_gemini: Optional[GeminiClient] = None
_workspace: Optional[Workspace] = None


def get_gemini() -> GeminiClient:
    """Shared Gemini client, created on first use."""
    global _gemini
    if _gemini is None:
        _gemini = GeminiClient(settings)
    return _gemini


def get_workspace() -> Workspace:
    """Purpose: Provide the process-wide chat workspace.
    Inputs/Outputs: No inputs; returns the started Workspace.
    Side Effects / State: On first call, opens the local store under DATA_DIR and
        loads profile, notes, and sessions.
    Dependencies: Uses get_gemini, LocalStore, TutorAssistant, Workspace.
    Failure Modes: GeminiClient raises ValueError when GEMINI_API_KEY is missing.
    If Removed: No route has state to read or mutate.
    Testing Notes: Override through app.dependency_overrides with an in-memory store.
    """
    # One workspace per process, like one browser tab.
    global _workspace
    if _workspace is None:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        store = LocalStore(settings.data_dir / "local_storage.json")
        tutor = TutorAssistant(get_gemini(), settings.prompts_dir, sample_rate=settings.tts_sample_rate)
        workspace = Workspace(
            store,
            tutor,
            fetch_pdf=lambda url: download_pdf(url, timeout=settings.request_timeout),
        )
        workspace.start()
        _workspace = workspace
    return _workspace


def get_personality_analyzers() -> Dict[str, object]:
    return {
        "gemini": PersonalityAnalyzer(get_gemini(), settings.prompts_dir),
        "huggingface": HuggingFaceAnalyzer(
            settings.huggingface_api_token,
            settings.huggingface_model_url,
            settings.prompts_dir,
            timeout=settings.request_timeout,
        ),
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Purpose: Start the periodic session flush for the app's lifetime.
    Inputs/Outputs: Input is the FastAPI app; yields control while serving.
    Side Effects / State: Creates the workspace and runs an asyncio flush task.
    Dependencies: Uses AutoSaver and the (possibly overridden) get_workspace.
    Failure Modes: Workspace construction errors abort startup.
    If Removed: Sessions are only saved on change, never on the timer.
    Testing Notes: TestClient as a context manager runs startup and shutdown.
    """
    # Resolve through overrides so tests never build a real Gemini client.
    workspace = app.dependency_overrides.get(get_workspace, get_workspace)()
    autosaver = AutoSaver(workspace.flush, interval_seconds=settings.autosave_interval_seconds)
    autosaver.start()
    app.state.autosaver = autosaver
    logger.info("autosave status=started interval=%s", settings.autosave_interval_seconds)
    try:
        yield
    finally:
        await autosaver.stop()
        logger.info("autosave status=stopped")


app = FastAPI(title="Zakerbot Study Assistant", lifespan=lifespan)


@app.exception_handler(NotFoundError)
async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def handle_validation(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc), "errors": exc.errors},
    )


@app.exception_handler(AssistantError)
async def handle_assistant(request: Request, exc: AssistantError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})


def _download(export: ExportFile) -> Response:
    # RFC 5987 so Arabic file names survive the header.
    disposition = f"attachment; filename*=UTF-8''{quote(export.filename)}"
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={"Content-Disposition": disposition},
    )


# ----------------------------------------------------------------------
# profile and auth


@app.get("/api/profile")
def get_profile(workspace: Workspace = Depends(get_workspace)) -> dict:
    """Purpose: Return the logged-in profile and the remembered name for the login page.
    Inputs/Outputs: No inputs; output has "profile" (or null) and "last_user_name".
    Side Effects / State: None.
    Dependencies: Uses ProfileRepository.
    Failure Modes: None.
    If Removed: The client cannot decide between the auth page and the chat page.
    Testing Notes: After logout the name moves to last_user_name.
    """
    # A null profile means the auth page should be shown.
    profile = workspace.profiles.load()
    return {
        "profile": profile.model_dump() if profile else None,
        "last_user_name": workspace.profiles.last_user_name(),
    }


@app.put("/api/profile", response_model=UserProfile)
def update_profile(profile: UserProfile, workspace: Workspace = Depends(get_workspace)) -> UserProfile:
    if workspace.profiles.load() is None:
        raise NotFoundError(LOGIN_REQUIRED)
    workspace.profiles.update(profile)
    return profile


@app.post("/api/auth/register", response_model=UserProfile, status_code=status.HTTP_201_CREATED)
def register(form: RegistrationRequest, workspace: Workspace = Depends(get_workspace)) -> UserProfile:
    """Validate the registration form, then log the new profile in."""
    profile = build_profile(form)
    workspace.profiles.login(profile)
    logger.info("auth action=register stage=%s", profile.stage)
    return profile


@app.post("/api/auth/demo", response_model=UserProfile)
def demo_login(workspace: Workspace = Depends(get_workspace)) -> UserProfile:
    profile = demo_profile()
    workspace.profiles.login(profile)
    return profile


@app.post("/api/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(workspace: Workspace = Depends(get_workspace)) -> Response:
    workspace.profiles.logout()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ----------------------------------------------------------------------
# catalog and personality


@app.get("/api/catalog")
def catalog() -> dict:
    return {
        "stages": STAGES,
        "governorates": GOVERNORATES,
        "semesters": SEMESTERS,
        "genders": GENDERS,
        "learning_difficulties": LEARNING_DIFFICULTIES,
    }


@app.get("/api/catalog/stages/{stage}")
def stage_catalog(stage: str) -> dict:
    if stage not in STAGES:
        raise NotFoundError(f"stage {stage} not found")
    return {
        "schools": schools_for_stage(stage),
        "classes": classes_for_stage(stage),
        "subjects": subjects_for_stage(stage),
    }


@app.get("/api/catalog/stage-suggestion")
def stage_suggestion(birth_date: str = Query(...)) -> dict:
    try:
        born = date.fromisoformat(birth_date)
    except ValueError as exc:
        raise ValidationError("تاريخ الميلاد غير صالح.", {"birth_date": "تاريخ الميلاد غير صالح."}) from exc
    age = calculate_age(born)
    return {"age": age, "stage": suggest_stage(age)}


@app.get("/api/catalog/subjects")
def subjects(workspace: Workspace = Depends(get_workspace)) -> List[str]:
    """Subjects offered for the logged-in student's stage."""
    profile = workspace.profiles.load()
    if profile is None:
        raise NotFoundError(LOGIN_REQUIRED)
    return subjects_for_stage(profile.stage)


@app.get("/api/personality/questions")
def personality_questions() -> dict:
    return {
        "questions": [{"id": question_id, "text": text} for question_id, text in QUESTIONS.items()],
        "options": ANSWER_OPTIONS,
    }


@app.post("/api/personality/analyze", response_model=PersonalityTraits)
def analyze_personality(
    request: AssessmentRequest,
    analyzers: Dict[str, object] = Depends(get_personality_analyzers),
) -> PersonalityTraits:
    """Purpose: Score the Mini-IPIP answers with the selected provider.
    Inputs/Outputs: Input is AssessmentRequest; output is PersonalityTraits.
    Side Effects / State: One call to Gemini or Hugging Face.
    Dependencies: Uses PersonalityAnalyzer or HuggingFaceAnalyzer.
    Failure Modes: Missing answers return 422; provider failures return 502.
    If Removed: Registration cannot include personality traits.
    Testing Notes: Override get_personality_analyzers with a stub.
    """
    # All twenty answers are required before analysis.
    missing = missing_answers(request.answers)
    if missing:
        raise ValidationError(INCOMPLETE_ANSWERS, {str(question): INCOMPLETE_ANSWERS for question in missing})
    analyzer = analyzers[request.provider]
    return analyzer.analyze(request.answers)


# ----------------------------------------------------------------------
# sessions and chat


@app.get("/api/state", response_model=WorkspaceState)
def get_state(workspace: Workspace = Depends(get_workspace)) -> WorkspaceState:
    return workspace.state()


@app.get("/api/sessions", response_model=List[SessionSummary])
def list_sessions(workspace: Workspace = Depends(get_workspace)) -> List[SessionSummary]:
    return workspace.sessions.summaries()


@app.post("/api/sessions", response_model=WorkspaceState, status_code=status.HTTP_201_CREATED)
def create_session(workspace: Workspace = Depends(get_workspace)) -> WorkspaceState:
    workspace.new_session(prompt_for_subject=True)
    return workspace.state()


@app.post("/api/sessions/{session_id}/select", response_model=WorkspaceState)
def select_session(session_id: str, workspace: Workspace = Depends(get_workspace)) -> WorkspaceState:
    workspace.select_session(session_id)
    return workspace.state()


@app.put("/api/sessions/{session_id}", response_model=WorkspaceState)
def rename_session(
    session_id: str,
    request: RenameRequest,
    workspace: Workspace = Depends(get_workspace),
) -> WorkspaceState:
    workspace.rename_session(session_id, request.title)
    return workspace.state()


@app.delete("/api/sessions/{session_id}", response_model=WorkspaceState)
def delete_session(session_id: str, workspace: Workspace = Depends(get_workspace)) -> WorkspaceState:
    workspace.delete_session(session_id)
    return workspace.state()


@app.post("/api/chat/messages", response_model=WorkspaceState)
def send_message(request: ChatRequest, workspace: Workspace = Depends(get_workspace)) -> WorkspaceState:
    """Purpose: Run one chat turn on the active session.
    Inputs/Outputs: Input is ChatRequest; output is the refreshed WorkspaceState.
    Side Effects / State: Appends the question and the reply, persists sessions.
    Dependencies: Uses Workspace.send_message.
    Failure Modes: LLM failures become an error message in the session, not an HTTP error.
    If Removed: Students cannot ask questions.
    Testing Notes: The last message is the bot reply and busy is False afterwards.
    """
    # Generation errors are reported inside the conversation.
    workspace.send_message(request.message)
    return workspace.state()


@app.post("/api/chat/subject", response_model=WorkspaceState)
def choose_subject(request: SubjectRequest, workspace: Workspace = Depends(get_workspace)) -> WorkspaceState:
    workspace.choose_subject(request.subject)
    return workspace.state()


@app.post("/api/chat/subject/dismiss", response_model=WorkspaceState)
def dismiss_subject(workspace: Workspace = Depends(get_workspace)) -> WorkspaceState:
    workspace.dismiss_subject()
    return workspace.state()


@app.post("/api/chat/resources", response_model=WorkspaceState)
def retry_resources(request: SubjectRequest, workspace: Workspace = Depends(get_workspace)) -> WorkspaceState:
    """Re-run the resource search; backs the retry action on a failed search message."""
    workspace.fetch_resources(request.subject)
    return workspace.state()


@app.post("/api/chat/summary", response_model=WorkspaceState)
def summarize_chat(workspace: Workspace = Depends(get_workspace)) -> WorkspaceState:
    workspace.summarize_chat()
    return workspace.state()


@app.post("/api/chat/messages/{message_id}/summary", response_model=WorkspaceState)
def summarize_message(message_id: str, workspace: Workspace = Depends(get_workspace)) -> WorkspaceState:
    workspace.summarize_message(message_id)
    return workspace.state()


@app.post("/api/chat/messages/{message_id}/note", response_model=Note, status_code=status.HTTP_201_CREATED)
def take_note(message_id: str, workspace: Workspace = Depends(get_workspace)) -> Note:
    return workspace.take_note(message_id)


@app.get("/api/chat/export")
def export_active_chat(
    fmt: str = Query("txt", alias="format"),
    include_questions: bool = Query(True),
    workspace: Workspace = Depends(get_workspace),
) -> Response:
    session = workspace.sessions.active()
    messages = session.messages if session else []
    return _download(export_chat(messages, fmt, include_questions, settings.pdf_font_path))


# ----------------------------------------------------------------------
# knowledge base


@app.get("/api/knowledge", response_model=List[KnowledgeItem])
def list_knowledge(workspace: Workspace = Depends(get_workspace)) -> List[KnowledgeItem]:
    return workspace.knowledge.items()


@app.post("/api/knowledge/files", response_model=KnowledgeItem, status_code=status.HTTP_201_CREATED)
async def upload_knowledge_file(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    workspace: Workspace = Depends(get_workspace),
) -> KnowledgeItem:
    """Purpose: Add an uploaded document or image to the knowledge base.
    Inputs/Outputs: Inputs are the multipart file and an optional title; output is the item.
    Side Effects / State: Prepends the item to the in-memory knowledge base.
    Dependencies: Uses Workspace.add_upload (pypdf, python-docx).
    Failure Modes: Unparseable files return 422.
    If Removed: Students can only add links.
    Testing Notes: Upload a small text file and check its content is kept.
    """
    # Read the whole upload; study documents are small.
    data = await file.read()
    return workspace.add_upload(file.filename or "upload", file.content_type, data, title)


@app.post("/api/knowledge/urls", response_model=KnowledgeItem, status_code=status.HTTP_201_CREATED)
def add_knowledge_url(request: KnowledgeUrlRequest, workspace: Workspace = Depends(get_workspace)) -> KnowledgeItem:
    return workspace.add_url(request.url, request.title)


@app.delete("/api/knowledge/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_knowledge(item_id: str, workspace: Workspace = Depends(get_workspace)) -> Response:
    workspace.remove_knowledge(item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ----------------------------------------------------------------------
# notes


@app.get("/api/notes", response_model=List[Note])
def list_notes(workspace: Workspace = Depends(get_workspace)) -> List[Note]:
    return workspace.notes.list()


@app.delete("/api/notes/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_note(note_id: str, workspace: Workspace = Depends(get_workspace)) -> Response:
    workspace.remove_note(note_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/api/notes/export")
def export_all_notes(fmt: str = Query("txt", alias="format"), workspace: Workspace = Depends(get_workspace)) -> Response:
    return _download(export_notes(workspace.notes.list(), fmt, settings.pdf_font_path))


# ----------------------------------------------------------------------
# voice


@app.post("/api/speech")
def synthesize_speech(request: SpeechRequest, workspace: Workspace = Depends(get_workspace)) -> Response:
    """Purpose: Read a reply aloud.
    Inputs/Outputs: Input is SpeechRequest; output is a WAV body.
    Side Effects / State: One TTS call.
    Dependencies: Uses TutorAssistant.generate_speech.
    Failure Modes: Empty text or a failed synthesis returns 502.
    If Removed: Voice mode and read-aloud buttons have no audio.
    Testing Notes: The body starts with b"RIFF".
    """
    # Request voice, then the student's preferred voice, then the configured default.
    profile = workspace.profiles.load()
    voice = request.voice or (profile.preferred_voice if profile else None) or settings.default_voice
    audio = workspace.tutor.generate_speech(request.text, voice)
    if audio is None:
        raise AssistantError(SPEECH_FAILED)
    return Response(content=audio, media_type="audio/wav")


@app.post("/api/transcribe", response_model=TranscribeResponse)
def transcribe(request: TranscribeRequest, workspace: Workspace = Depends(get_workspace)) -> TranscribeResponse:
    return TranscribeResponse(text=workspace.tutor.transcribe_audio(request.audio_base64, request.mime_type))
