"""Normalize and vet model-generated SQL scripts before execution."""

from __future__ import annotations

import logging
import re
from typing import Optional

from ..core.errors import UnsafeScript

logger = logging.getLogger(__name__)

UNSAFE_MESSAGE = "Query contains potentially dangerous operations"
NOT_A_QUERY_MESSAGE = "Invalid SQL script format: no SELECT statement found"
MULTI_STATEMENT_MESSAGE = "Query must be a single SELECT statement"

_QUOTES = ("'", '"')
_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?(.*?)\n?```", re.DOTALL)
_QUERY_ENTRY_RE = re.compile(r"\bselect\b", re.IGNORECASE)
_ESCAPED_RE = re.compile(r"\\([\"'\\])")
_STRING_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")

DENY_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        # writes and DDL
        r"\binsert\b",
        r"\bupdate\b",
        r"\bdelete\b",
        r"\bmerge\b",
        r"\bupsert\b",
        r"\btruncate\b",
        r"\bdrop\b",
        r"\balter\b",
        r"\bcreate\b",
        r"\bgrant\b",
        r"\brevoke\b",
        r"\bcopy\b",
        r"\bvacuum\b",
        r"\breindex\b",
        r"\bcluster\b",
        r"\bcomment\s+on\b",
        r"\block\b",
        r"\binto\b",
        # session and role changes
        r"\bset\b",
        r"\breset\b",
        r"\bset_config\s*\(",
        r"\bdiscard\b",
        # sequence and server state
        r"\b(setval|nextval)\s*\(",
        r"\bpg_stat_reset\w*",
        r"\bpg_(try_)?advisory\w*",
        # code evaluation
        r"\bdo\s*(\$|')",
        r"\bexecute\b",
        r"\bprepare\b",
        r"\bcall\b",
        r"\blanguage\b",
        r"\blisten\b",
        r"\bnotify\b",
        # administrative and file-system functions
        r"\bpg_(terminate|cancel)_backend\b",
        r"\bpg_reload_conf\b",
        r"\bpg_read_(binary_)?file\b",
        r"\bpg_ls_\w+",
        r"\bpg_sleep\w*",
        r"\blo_\w+\s*\(",
        r"\bdblink\w*",
        r"\bpg_catalog\b",
        r"\binformation_schema\b",
        r"\bpg_(shadow|authid|roles|user)\b",
        # psql meta-commands
        r"\\[a-z!?]",
    )
)


def strip_code_fences(script: str) -> str:
    """Return the body of the first fenced code block, or the text unchanged."""
    match = _FENCE_RE.search(script)
    if match:
        return match.group(1)
    return script


def _unescape_quotes(script: str) -> str:
    return script.replace('\\"', '"').replace("\\'", "'")


def _unescape_layer(script: str) -> str:
    return _ESCAPED_RE.sub(r"\1", script)


def _has_outer_quotes(script: str) -> bool:
    return len(script) >= 2 and script[0] in _QUOTES and script[0] == script[-1]


def normalize_script(script: Optional[str]) -> str:
    """Strip fences and every redundant layer of outer quoting.

    Each stripped layer also unescapes one level of escaped inner quotes.
    """
    text = strip_code_fences(script or "").strip()
    while _has_outer_quotes(text):
        text = _unescape_layer(text[1:-1]).strip()
    text = _unescape_quotes(text)
    return text.strip()


def find_unsafe_pattern(script: str) -> Optional[str]:
    """Return the first deny-list pattern matching the script, if any."""
    for pattern in DENY_PATTERNS:
        if pattern.search(script):
            return pattern.pattern
    return None


def mask_string_literals(script: str) -> str:
    """Replace the contents of every single-quoted literal with nothing."""
    return _STRING_LITERAL_RE.sub("''", script)


def statement_count(script: str) -> int:
    """Count the non-empty statements, ignoring semicolons inside literals."""
    parts = mask_string_literals(script).split(";")
    return sum(1 for part in parts if part.strip())


def check_script(script: str) -> None:
    """Raise UnsafeScript when a normalized script must not run."""
    matched = find_unsafe_pattern(script)
    if matched is not None:
        logger.warning("rejected script matching %s", matched)
        raise UnsafeScript(UNSAFE_MESSAGE)
    if statement_count(script) > 1:
        logger.warning("rejected script with more than one statement")
        raise UnsafeScript(MULTI_STATEMENT_MESSAGE)
    if not _QUERY_ENTRY_RE.search(script):
        logger.warning("rejected script without a SELECT statement")
        raise UnsafeScript(NOT_A_QUERY_MESSAGE)


def sanitize(script: Optional[str]) -> str:
    """Normalize a candidate script and return it if it passes the safety check.

    The raw text is checked as well as the normalized form, so quoting never
    hides a denied pattern.

    :raises UnsafeScript: If any deny pattern matches or no SELECT is present.
    """
    raw = script or ""
    normalized = normalize_script(raw)
    if find_unsafe_pattern(raw) is not None:
        logger.warning("rejected script before normalization")
        raise UnsafeScript(UNSAFE_MESSAGE)
    check_script(normalized)
    return normalized


def sanitize_built(script: str) -> str:
    """Vet a script assembled by the script builder and return it unchanged.

    Builder literals are fully escaped, so their contents are left out of the
    deny scan; a filter value such as ``'Into The Mystic Update'`` is data.

    :raises UnsafeScript: If the script structure fails the safety check.
    """
    check_script(mask_string_literals(script))
    return script
