import json
import uuid
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlparse


def new_id(prefix: str = "") -> str:
    """Purpose: Produce a unique identifier, optionally tagged with a prefix.
    Inputs/Outputs: Input is an optional prefix; output is "prefix-<hex>" or "<hex>".
    Side Effects / State: None; relies on uuid4 randomness.
    Dependencies: Used by stores and the workspace when creating records.
    Failure Modes: None.
    If Removed: Records lose stable ids and prefix-based message filters break.
    Testing Notes: Ensure the prefix is kept so startswith() filters keep working.
    """
    # Tag the random part so callers can filter messages by prefix.
    token = uuid.uuid4().hex
    return f"{prefix}-{token}" if prefix else token


def time_label(now: Optional[datetime] = None) -> str:
    """Return the HH:MM label shown next to chat messages."""
    return (now or datetime.now()).strftime("%H:%M")


def note_timestamp(now: Optional[datetime] = None) -> str:
    """Return the date-and-time label stored on notes."""
    return (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")


def hostname_of(url: str) -> Optional[str]:
    """Purpose: Extract the hostname of an absolute URL.
    Inputs/Outputs: Input is a URL string; output is the hostname or None.
    Side Effects / State: None; pure function.
    Dependencies: Uses urllib.parse; called by title fallbacks and ingestion.
    Failure Modes: Returns None when the string has no scheme or host.
    If Removed: Knowledge items added from links have no fallback title.
    Testing Notes: "https://a.example/x" -> "a.example"; "notaurl" -> None.
    """
    # Only accept URLs with both a scheme and a network location.
    if not url:
        return None
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    if not parsed.scheme or not parsed.hostname:
        return None
    return parsed.hostname


def extract_json_block(text: str) -> Optional[str]:
    """Return the text between the first "{" and the last "}", or None."""
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def safe_json_loads(text: str) -> Optional[Dict[str, Any]]:
    """Purpose: Read a JSON object out of model text that may carry fences or prose.
    Inputs/Outputs: Input is raw model output; output is the decoded dict or None.
    Side Effects / State: None.
    Dependencies: Uses extract_json_block; called by personality trait parsing.
    Failure Modes: Returns None for missing braces, bad JSON, or a non-object value.
    If Removed: A fenced ```json answer from the analyzer is rejected as invalid.
    Testing Notes: 'scores: {"openness": 1}' decodes; "[1, 2]" returns None.
    """
    # Models often wrap the object in a code fence.
    block = extract_json_block(text)
    if block is None:
        return None
    try:
        loaded = json.loads(block)
    except json.JSONDecodeError:
        return None
    return loaded if isinstance(loaded, dict) else None
