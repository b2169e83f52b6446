"""Translate natural-language questions into candidate SQL scripts."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..core.errors import TranslationFailed
from .prompts import build_translation_prompt

logger = logging.getLogger(__name__)

SCRIPT_KEYS = ("sqlQuery", "mongoQuery", "script")
INTERPRETATION_KEYS = ("naturalLanguageInterpretation", "interpretation")
PLACEHOLDER_SCRIPTS = {"", "null", "none", "undefined", "n/a", "na", "-"}

_FENCED_RE = re.compile(r"```(?:json|javascript|js)\s*\n?(.*?)```", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class Translation:
    """Candidate script plus its plain-language interpretation."""

    script: Optional[str]
    interpretation: Optional[str]
    raw: str = ""

    @property
    def has_script(self) -> bool:
        """Return True when the script is neither empty nor a placeholder."""
        return not is_placeholder_script(self.script)


def is_placeholder_script(script: Any) -> bool:
    """Return True for missing, blank, or placeholder script values."""
    if not isinstance(script, str):
        return True
    return script.strip().strip("\"'").strip().lower() in PLACEHOLDER_SCRIPTS


def _loads_object(text: str) -> Optional[dict[str, Any]]:
    try:
        payload = json.loads(text)
    except (TypeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


def _json_from_text(text: str) -> Optional[dict[str, Any]]:
    text = (text or "").strip()
    if not text:
        return None
    payload = _loads_object(text)
    if payload is not None:
        return payload
    match = _FENCED_RE.search(text)
    if match:
        payload = _loads_object(match.group(1).strip())
        if payload is not None:
            return payload
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return _loads_object(text[start : end + 1])
    return None


def _first_text(payload: dict[str, Any], keys: tuple[str, ...]) -> Optional[str]:
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        return value if isinstance(value, str) else json.dumps(value)
    return None


def parse_translation_response(text: str) -> Translation:
    """Parse a model response into a translation.

    Tries the whole body, then a fenced ``json``/``javascript``/``js`` block,
    then the outermost brace-delimited substring.

    :raises TranslationFailed: If none of the encodings yields an object.
    """
    payload = _json_from_text(text)
    if payload is None:
        raise TranslationFailed("Language model response did not contain a JSON object.")
    return Translation(
        script=_first_text(payload, SCRIPT_KEYS),
        interpretation=_first_text(payload, INTERPRETATION_KEYS),
        raw=text,
    )


class QueryTranslator:
    """Ask a completion backend for a script and interpretation."""

    def __init__(self, backend: Callable[[str], str]) -> None:
        self.backend = backend

    def translate(self, query: str) -> Translation:
        """Translate one question.

        :raises BackendUnavailable: If the model call fails.
        :raises TranslationFailed: If the response cannot be parsed.
        """
        text = self.backend(build_translation_prompt(query))
        translation = parse_translation_response(text)
        logger.debug(
            "translated query has_script=%s interpretation=%s",
            translation.has_script,
            bool(translation.interpretation),
        )
        return translation
