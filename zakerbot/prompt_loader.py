from __future__ import annotations

from pathlib import Path
from typing import Mapping


def load_prompt(prompt_path: Path) -> str:
    """Purpose: Read a prompt template as UTF-8 text without a BOM.
    Inputs/Outputs: Input is the template path; output is its text.
    Side Effects / State: None; reads the filesystem.
    Dependencies: Used by prompt_builder and the tutor for every LLM call.
    Failure Modes: Undecodable bytes are dropped; a missing file raises FileNotFoundError.
    If Removed: No system instruction or task prompt can be assembled.
    Testing Notes: A BOM-prefixed file loads without the BOM.
    """
    # Read as UTF-8 and fall back to a tolerant decode if needed.
    try:
        return prompt_path.read_text(encoding="utf-8").lstrip("\ufeff")
    except UnicodeDecodeError:
        return prompt_path.read_bytes().decode("utf-8", errors="ignore").lstrip("\ufeff")


def render_prompt(template: str, values: Mapping[str, str]) -> str:
    """Replace every <<KEY>> marker in the template with its value."""
    rendered = template
    for key, value in values.items():
        rendered = rendered.replace(f"<<{key}>>", value)
    return rendered
