"""Assemble the single caller-facing response shape for a user question."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from ..core.errors import BackendUnavailable
from ..core.json_utils import dumps_pretty
from .prompts import build_summary_prompt

logger = logging.getLogger(__name__)

OUTCOME_NO_SCRIPT = "NoScript"
OUTCOME_NO_BACKEND = "NoBackend"
OUTCOME_EXECUTION_ERROR = "ExecutionError"
OUTCOME_EMPTY_RESULT = "EmptyResult"
OUTCOME_SUCCESS = "Success"
OUTCOMES = (
    OUTCOME_NO_SCRIPT,
    OUTCOME_NO_BACKEND,
    OUTCOME_EXECUTION_ERROR,
    OUTCOME_EMPTY_RESULT,
    OUTCOME_SUCCESS,
)

DEGRADED_CONFIDENCE = 0.7
ANSWERED_CONFIDENCE = 0.95

NO_SCRIPT_MESSAGE = (
    "I couldn't generate a query script for that question. I can still help with "
    "general questions about the horse racing markets, runners, and prices."
)
NO_BACKEND_MESSAGE = (
    "The database is currently unavailable, so the generated query could not be run."
)
EMPTY_RESULT_MESSAGE = "No matching data was found for your question."


@dataclass
class QueryResponse:
    """Response returned for every question, whatever the outcome."""

    query: str
    outcome: str
    message: str
    confidence: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    script: Optional[str] = None
    interpretation: Optional[str] = None
    results: list[Any] = field(default_factory=list)
    execution_time_ms: Optional[int] = None

    @property
    def script_generated(self) -> bool:
        """True when a script reached the sanitizer."""
        return self.outcome != OUTCOME_NO_SCRIPT

    @property
    def no_results_found(self) -> bool:
        """True when the query ran and matched nothing."""
        return self.outcome == OUTCOME_EMPTY_RESULT

    def to_dict(self) -> dict[str, Any]:
        """Return the caller-facing mapping with camelCase keys."""
        return {
            "query": self.query,
            "timestamp": self.timestamp.isoformat(),
            "outcome": self.outcome,
            "response": self.message,
            "confidence": self.confidence,
            "scriptGenerated": self.script_generated,
            "script": self.script,
            "naturalLanguageInterpretation": self.interpretation,
            "results": list(self.results),
            "noResultsFound": self.no_results_found,
            "executionTimeMs": self.execution_time_ms,
        }


def no_script_response(query: str, interpretation: Optional[str] = None) -> QueryResponse:
    return QueryResponse(
        query=query,
        outcome=OUTCOME_NO_SCRIPT,
        message=NO_SCRIPT_MESSAGE,
        confidence=DEGRADED_CONFIDENCE,
        interpretation=interpretation,
    )


def no_backend_response(
    query: str,
    script: str,
    interpretation: Optional[str] = None,
) -> QueryResponse:
    return QueryResponse(
        query=query,
        outcome=OUTCOME_NO_BACKEND,
        message=NO_BACKEND_MESSAGE,
        confidence=DEGRADED_CONFIDENCE,
        script=script,
        interpretation=interpretation,
    )


def execution_error_response(
    query: str,
    script: str,
    error: str,
    interpretation: Optional[str] = None,
    execution_time_ms: Optional[int] = None,
) -> QueryResponse:
    return QueryResponse(
        query=query,
        outcome=OUTCOME_EXECUTION_ERROR,
        message=f"I generated a query but it failed to execute: {error}",
        confidence=DEGRADED_CONFIDENCE,
        script=script,
        interpretation=interpretation,
        execution_time_ms=execution_time_ms,
    )


class ResultSummarizer:
    """Turn executed result rows into the terminal response."""

    def __init__(
        self,
        backend: Optional[Callable[[str], str]] = None,
        max_rows: int = 50,
    ) -> None:
        self.backend = backend
        self.max_rows = max_rows

    def summarize_rows(
        self,
        query: str,
        rows: list[Any],
        interpretation: Optional[str] = None,
    ) -> str:
        """Render rows conversationally, falling back to a JSON dump."""
        if self.backend is not None:
            prompt = build_summary_prompt(query, rows[: self.max_rows], interpretation)
            try:
                text = (self.backend(prompt) or "").strip()
            except BackendUnavailable as exc:
                logger.warning("summary call failed, returning raw rows: %s", exc)
            else:
                if text:
                    return text
                logger.warning("summary call returned no text, returning raw rows")
        return dumps_pretty(rows)

    def respond(
        self,
        query: str,
        script: str,
        rows: list[Any],
        interpretation: Optional[str] = None,
        execution_time_ms: Optional[int] = None,
    ) -> QueryResponse:
        """Build the EmptyResult or Success response for executed rows."""
        rows = list(rows or [])
        if not rows:
            return QueryResponse(
                query=query,
                outcome=OUTCOME_EMPTY_RESULT,
                message=EMPTY_RESULT_MESSAGE,
                confidence=ANSWERED_CONFIDENCE,
                script=script,
                interpretation=interpretation,
                execution_time_ms=execution_time_ms,
            )
        return QueryResponse(
            query=query,
            outcome=OUTCOME_SUCCESS,
            message=self.summarize_rows(query, rows, interpretation),
            confidence=ANSWERED_CONFIDENCE,
            script=script,
            interpretation=interpretation,
            results=rows,
            execution_time_ms=execution_time_ms,
        )
