"""Question answering over the market store: translate, vet, run, summarize."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..core.errors import BackendUnavailable, TranslationFailed, UnsafeScript
from ..core.logging_utils import log_metric
from ..core.settings import Settings
from .executor import ScriptExecutor
from .sanitizer import sanitize
from .summarizer import (
    QueryResponse,
    ResultSummarizer,
    execution_error_response,
    no_backend_response,
    no_script_response,
)
from .translator import QueryTranslator

logger = logging.getLogger(__name__)


class NaturalLanguageService:
    """Single-flight question answering with a degraded path at every stage."""

    def __init__(
        self,
        backend: Callable[[str], str],
        executor: Optional[ScriptExecutor] = None,
        summary_max_rows: int = 50,
    ) -> None:
        self.translator = QueryTranslator(backend)
        self.executor = executor
        self.summarizer = ResultSummarizer(backend, max_rows=summary_max_rows)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        backend: Callable[[str], str],
    ) -> "NaturalLanguageService":
        """Build a service whose executor targets the configured database."""
        executor = None
        if settings.database_url:
            executor = ScriptExecutor(settings.database_url, settings.psql_bin)
        return cls(backend, executor, summary_max_rows=settings.summary_max_rows)

    def translate_and_answer(self, query: str) -> QueryResponse:
        """Answer one question. Never raises for pipeline failures."""
        response = self._answer(query)
        log_metric(
            logger,
            "nlq.answer",
            outcome=response.outcome,
            confidence=response.confidence,
            execution_ms=response.execution_time_ms,
        )
        return response

    def _answer(self, query: str) -> QueryResponse:
        try:
            translation = self.translator.translate(query)
        except (BackendUnavailable, TranslationFailed) as exc:
            logger.warning("query translation failed: %s", exc)
            return no_script_response(query)
        if not translation.has_script:
            return no_script_response(query, translation.interpretation)
        try:
            script = sanitize(translation.script)
        except UnsafeScript as exc:
            return execution_error_response(
                query,
                translation.script,
                str(exc),
                translation.interpretation,
            )
        if self.executor is None:
            return no_backend_response(query, script, translation.interpretation)
        result = self.executor.execute(script)
        if not result.success:
            return execution_error_response(
                query,
                script,
                result.error or "Unknown execution error",
                translation.interpretation,
                result.execution_time_ms,
            )
        return self.summarizer.respond(
            query,
            script,
            result.data,
            translation.interpretation,
            result.execution_time_ms,
        )
