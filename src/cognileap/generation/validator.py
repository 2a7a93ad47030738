"""Completeness heuristics for generated study artifacts.

These checks are a signal, not a gate: the orchestrator logs a suspected
truncation and still returns the result.
"""

from __future__ import annotations

import json
import re
from typing import Any

from cognileap.core.errors import FlashcardFormatError
from cognileap.generation.tiers import ArtifactType

MIN_COMPLETE_CHARS = 200
MIN_LAST_BLOCK_CHARS = 50
MIN_SUMMARY_CHARS = 100

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def is_content_complete(artifact_type: ArtifactType | str, text: str) -> bool:
    """Decide whether a generated payload looks finished.

    Flashcards are judged on structure alone: a payload that parses is
    complete whatever its length. Prose artifacts under MIN_COMPLETE_CHARS
    are always incomplete.
    """
    trimmed = text.strip()
    try:
        kind = ArtifactType.parse(artifact_type) if isinstance(artifact_type, str) else artifact_type
    except ValueError:
        kind = None

    if kind is ArtifactType.FLASHCARDS:
        try:
            json.loads(trimmed)
        except ValueError:
            return False
        return True

    if len(trimmed) < MIN_COMPLETE_CHARS:
        return False
    if kind is None:
        return True

    if kind in (ArtifactType.NOTES, ArtifactType.GUIDE):
        last_block = re.split(r"\n\s*\n", trimmed)[-1]
        return len(last_block) > MIN_LAST_BLOCK_CHARS and not last_block.endswith("...")

    if kind is ArtifactType.SUMMARY:
        return not trimmed.endswith("...") and len(trimmed) > MIN_SUMMARY_CHARS

    return True


def strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    cleaned = _FENCE_OPEN.sub("", cleaned)
    return _FENCE_CLOSE.sub("", cleaned)


def parse_flashcards(text: str) -> list[dict[str, Any]]:
    """Parse a flashcard completion into a list of card dicts.

    Raises:
        FlashcardFormatError: If the payload is not a JSON array of cards
            that each carry ``id``, ``question`` and ``answer``.
    """
    try:
        data = json.loads(strip_code_fence(text))
    except ValueError as e:
        raise FlashcardFormatError(f"Flashcard payload is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise FlashcardFormatError("Flashcard data is not an array")

    for index, card in enumerate(data):
        if not isinstance(card, dict):
            raise FlashcardFormatError(f"Invalid flashcard at index {index}: not an object")
        if not card.get("question") or not card.get("answer") or not card.get("id"):
            raise FlashcardFormatError(
                f"Invalid flashcard at index {index}: missing required fields"
            )
    return data
