"""Domain exceptions shared by the stores, the tutor, and the HTTP layer."""

from __future__ import annotations

from typing import Dict, Optional


class ZakerbotError(Exception):
    """Base class for all domain level exceptions."""


class NotFoundError(ZakerbotError):
    """Raised when a session, message, note, or knowledge item cannot be located."""


class ValidationError(ZakerbotError):
    """Raised when input fails registration or knowledge rules."""

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None) -> None:
        super().__init__(message)
        self.errors = errors or {}


class AssistantError(ZakerbotError):
    """Raised when an LLM-backed operation fails; the message is user-facing."""


__all__ = ["ZakerbotError", "NotFoundError", "ValidationError", "AssistantError"]
