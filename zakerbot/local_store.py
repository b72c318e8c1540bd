from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger("zakerbot.store")

PROFILE_KEY = "userProfile"
LAST_USER_NAME_KEY = "lastUserName"
SESSIONS_KEY = "sessions"
NOTES_KEY = "notes"


class LocalStore:
    """String key-value store persisted as one JSON object, like browser localStorage."""

    def __init__(self, path: Optional[Path] = None) -> None:
        """Purpose: Initialize the store and hydrate it from disk if available.
        Inputs/Outputs: Input is an optional file path (None keeps it in memory only).
        Side Effects / State: Loads all key/value pairs into memory once.
        Dependencies: Calls _load.
        Failure Modes: A corrupt file is logged and the store starts empty.
        If Removed: Profile, sessions, and notes cannot survive a restart.
        Testing Notes: Write a value, reopen the same path, and read it back.
        """
        # Keep the backing path and read everything once at startup.
        self._path = path
        self._items: Dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        # Read and decode persisted JSON if present.
        if not self._path or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.error("store=%s status=unreadable action=reset", self._path, exc_info=True)
            return
        if not isinstance(data, dict):
            logger.error("store=%s status=not_an_object action=reset", self._path)
            return
        self._items = {str(key): value for key, value in data.items() if isinstance(value, str)}

    def _persist(self) -> None:
        """Purpose: Write every key/value pair to disk atomically.
        Inputs/Outputs: Writes to self._path; no return value.
        Side Effects / State: Replaces the backing JSON file through a temp file.
        Dependencies: Uses json.dumps and Path.replace.
        Failure Modes: IO errors raise to the caller, which decides whether to degrade.
        If Removed: Changes live only in memory.
        Testing Notes: Ensure no .tmp file remains after a successful write.
        """
        # Serialize to a temp file, then swap it in.
        if not self._path:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(self._items, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(self._path)

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value
        self._persist()

    def remove_item(self, key: str) -> None:
        if self._items.pop(key, None) is not None:
            self._persist()

    def keys(self) -> List[str]:
        return sorted(self._items)
