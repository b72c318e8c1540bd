from __future__ import annotations

import json
import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from .local_store import LAST_USER_NAME_KEY, PROFILE_KEY, LocalStore
from .models import UserProfile

logger = logging.getLogger("zakerbot.store")


class ProfileRepository:
    """Keeps the logged-in student's profile in sync with the local store."""

    def __init__(self, store: LocalStore) -> None:
        # Read the persisted profile once, discarding it if it is malformed.
        self._store = store
        self._profile: Optional[UserProfile] = self._read()

    def _read(self) -> Optional[UserProfile]:
        """Purpose: Decode the stored profile record.
        Inputs/Outputs: No inputs; returns a UserProfile or None.
        Side Effects / State: Removes the stored key when it cannot be decoded.
        Dependencies: Uses json.loads and UserProfile validation.
        Failure Modes: Corrupt JSON or an invalid record is logged and cleared.
        If Removed: Returning students must register again after every restart.
        Testing Notes: Store garbage under the key and verify load() returns None.
        """
        # Malformed state is discarded rather than repaired.
        raw = self._store.get_item(PROFILE_KEY)
        if not raw:
            return None
        try:
            return UserProfile.model_validate(json.loads(raw))
        except (json.JSONDecodeError, PydanticValidationError):
            logger.error("key=%s status=malformed action=clear", PROFILE_KEY, exc_info=True)
            self._store.remove_item(PROFILE_KEY)
            return None

    def _write(self) -> None:
        try:
            if self._profile is not None:
                self._store.set_item(PROFILE_KEY, self._profile.model_dump_json())
            else:
                self._store.remove_item(PROFILE_KEY)
        except OSError:
            logger.error("key=%s status=save_failed", PROFILE_KEY, exc_info=True)

    def load(self) -> Optional[UserProfile]:
        return self._profile

    def save(self, profile: UserProfile) -> None:
        self._profile = profile
        self._write()

    def login(self, profile: UserProfile) -> None:
        """Store the profile and forget the previous user's remembered name."""
        self.save(profile)
        self._store.remove_item(LAST_USER_NAME_KEY)

    def logout(self) -> None:
        """Remember the leaving user's name, then drop the profile."""
        if self._profile is not None:
            self._store.set_item(LAST_USER_NAME_KEY, self._profile.name)
        self._profile = None
        self._write()

    def update(self, profile: UserProfile) -> None:
        self.save(profile)

    def last_user_name(self) -> Optional[str]:
        return self._store.get_item(LAST_USER_NAME_KEY)
