from __future__ import annotations

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class PersonalityTraits(BaseModel):
    """Big Five percentages (0-100) from the Mini-IPIP assessment."""
    agreeableness: float
    conscientiousness: float
    extraversion: float
    neuroticism: float
    openness: float


class UserProfile(BaseModel):
    """Registered student profile, persisted as a single record."""
    name: str
    birth_date: str
    governorate: str
    stage: str
    school_name: str
    class_name: str
    hobbies: str
    age: int
    gender: Literal["Male", "Female"]
    semester: str
    learning_difficulty: List[str] = Field(default_factory=list)
    personality_traits: Optional[PersonalityTraits] = None
    preferred_voice: Optional[str] = None
    profile_image_url: Optional[str] = None


class MessageSender(str, Enum):
    USER = "user"
    BOT = "bot"


class SourceRef(BaseModel):
    """Grounding citation attached to a bot reply."""
    uri: str
    title: str


class MessageAction(BaseModel):
    """Follow-up action the UI renders as a button under a message."""
    label: str
    kind: str
    payload: Optional[str] = None


class Message(BaseModel):
    """Single chat turn; only removed, never edited, once created."""
    id: str
    sender: MessageSender
    text: str
    timestamp: Optional[str] = None
    is_thinking: bool = False
    is_error: bool = False
    action: Optional[MessageAction] = None
    sources: Optional[List[SourceRef]] = None


class Session(BaseModel):
    """One conversation thread with its subject title."""
    id: str
    title: str
    messages: List[Message] = Field(default_factory=list)


class KnowledgeItemType(str, Enum):
    FILE = "file"
    URL = "url"
    IMAGE = "image"


class KnowledgeItem(BaseModel):
    """Document, link, or image used as grounding context."""
    id: str = ""
    type: KnowledgeItemType
    title: str
    content: Optional[str] = None
    url: Optional[str] = None
    data_url: Optional[str] = None
    mime_type: Optional[str] = None


class Note(BaseModel):
    id: str
    content: str
    timestamp: str


class SessionSummary(BaseModel):
    """Lightweight session summary for sidebar listing."""
    id: str
    title: str
    message_count: int
    is_active: bool


class ChatRequest(BaseModel):
    """Request payload for the chat API."""
    message: str


class RenameRequest(BaseModel):
    title: str


class SubjectRequest(BaseModel):
    subject: str


class KnowledgeUrlRequest(BaseModel):
    url: str
    title: Optional[str] = None


class RegistrationRequest(BaseModel):
    """Registration form fields plus the assessment outcome."""
    name: str = ""
    birth_date: str = ""
    governorate: str = ""
    gender: str = ""
    stage: str = ""
    school_name: str = ""
    class_name: str = ""
    semester: str = ""
    hobbies: str = ""
    learning_difficulty: List[str] = Field(default_factory=list)
    personality_traits: Optional[PersonalityTraits] = None


class AssessmentRequest(BaseModel):
    """Answers keyed by question id, analysed by the selected provider."""
    answers: Dict[int, str]
    provider: Literal["gemini", "huggingface"] = "gemini"


class SpeechRequest(BaseModel):
    text: str
    voice: Optional[str] = None


class TranscribeRequest(BaseModel):
    audio_base64: str
    mime_type: str


class TranscribeResponse(BaseModel):
    text: str


class WorkspaceState(BaseModel):
    """Snapshot returned after any chat-page mutation."""
    active_session: Optional[Session]
    sessions: List[SessionSummary]
    knowledge_base: List[KnowledgeItem]
    notes: List[Note]
    awaiting_subject: bool
    busy: bool
