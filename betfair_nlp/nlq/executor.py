"""Run sanitized SQL scripts through the psql shell in a read-only session."""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from ..core.errors import UnsafeScript
from .sanitizer import sanitize_built
from .script_builder import OrderSpec, build_aggregate_script, build_find_script

logger = logging.getLogger(__name__)

READ_ONLY_PGOPTIONS = "-c default_transaction_read_only=on"

_NOISE_PREFIXES = (
    "NOTICE:",
    "WARNING:",
    "INFO:",
    "DETAIL:",
    "HINT:",
    "CONTEXT:",
    "Timing is",
    "Time:",
    "Pager usage",
    "Null display",
    "Output format",
    "Tuples only",
    "Expanded display",
    "psql:",
    "psql (",
    "SSL connection",
    "Type \"help\"",
    "You are now connected",
)
_NOISE_RE = re.compile(r"^(SET|RESET|BEGIN|COMMIT|ROLLBACK|\(\d+ rows?\))$")
_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:")


@dataclass
class ExecutionResult:
    """Outcome of one script execution; callers branch on ``success``."""

    success: bool
    data: list[Any] = field(default_factory=list)
    error: Optional[str] = None
    execution_time_ms: int = 0


def filter_output_lines(output: str) -> list[str]:
    """Drop blank, banner, and connection-log lines from shell output."""
    kept = []
    for line in (output or "").splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith(_NOISE_PREFIXES) or _NOISE_RE.match(stripped):
            continue
        kept.append(stripped)
    return kept


def coerce_json_text(text: str) -> str:
    """Best-effort repair of shell output into JSON.

    Single quotes become double quotes and bare object keys get quoted. This
    can mangle string values that contain quotes or colons.
    """
    return _UNQUOTED_KEY_RE.sub(r'\1"\2":', text.replace("'", '"'))


def _try_json(text: str) -> tuple[bool, Any]:
    for candidate in (text, coerce_json_text(text)):
        try:
            return True, json.loads(candidate)
        except ValueError:
            continue
    return False, None


def parse_output(output: str) -> list[Any]:
    """Parse filtered shell output into a list of result values.

    The whole text is tried as one document first; otherwise each line is
    parsed on its own and unparseable lines are kept as raw strings.
    """
    lines = filter_output_lines(output)
    if not lines:
        return []
    ok, document = _try_json("\n".join(lines))
    if ok:
        if isinstance(document, list):
            return document
        return [document]
    rows: list[Any] = []
    for line in lines:
        ok, value = _try_json(line)
        rows.append(value if ok else line)
    return rows


def _terminated(script: str) -> str:
    script = script.strip()
    if not script.endswith(";"):
        script += ";"
    return script + "\n"


class ScriptExecutor:
    """Execute scripts as a psql subprocess against one database."""

    def __init__(self, database_url: str, psql_bin: str = "psql") -> None:
        self.database_url = database_url
        self.psql_bin = psql_bin

    def command(self, script_path: str) -> list[str]:
        """Return the psql argv for a script file."""
        return [
            self.psql_bin,
            "-X",
            "-q",
            "-A",
            "-t",
            "-v",
            "ON_ERROR_STOP=1",
            "-d",
            self.database_url,
            "-f",
            script_path,
        ]

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        existing = env.get("PGOPTIONS", "").strip()
        env["PGOPTIONS"] = f"{existing} {READ_ONLY_PGOPTIONS}".strip()
        return env

    def execute(self, script: str) -> ExecutionResult:
        """Run a sanitized script and parse its output.

        Never raises; failures come back with ``success=False``.
        """
        start = time.monotonic()

        def _elapsed() -> int:
            return int((time.monotonic() - start) * 1000)

        script_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                suffix=".sql",
                prefix="nlq_",
                delete=False,
                encoding="utf-8",
            ) as handle:
                script_path = handle.name
                handle.write(_terminated(script))
            completed = subprocess.run(
                self.command(script_path),
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                env=self._env(),
                check=False,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            logger.warning("script execution failed to start: %s", exc)
            return ExecutionResult(
                success=False,
                error=f"Failed to run query shell: {exc}",
                execution_time_ms=_elapsed(),
            )
        finally:
            if script_path is not None:
                try:
                    os.unlink(script_path)
                except OSError:
                    logger.warning("could not remove temp script %s", script_path)
        if completed.returncode != 0:
            error = (completed.stderr or "").strip() or (
                f"Query shell exited with status {completed.returncode}"
            )
            logger.warning("script execution failed rc=%s", completed.returncode)
            return ExecutionResult(success=False, error=error, execution_time_ms=_elapsed())
        data = parse_output(completed.stdout)
        return ExecutionResult(success=True, data=data, execution_time_ms=_elapsed())

    def execute_find(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[Sequence[OrderSpec]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> ExecutionResult:
        """Build, vet and run a filtered find script.

        :raises ValueError: If an identifier, sort direction or literal is invalid.
        """
        script = build_find_script(
            table,
            filters,
            columns=columns,
            order_by=order_by,
            limit=limit,
            offset=offset,
        )
        return self._execute_built(script)

    def execute_aggregate(
        self,
        table: str,
        group_by: Sequence[str],
        aggregates: Mapping[str, tuple[str, str]],
        filters: Optional[Mapping[str, Any]] = None,
    ) -> ExecutionResult:
        """Build, vet and run a GROUP BY script.

        :raises ValueError: If an identifier or aggregate function is invalid.
        """
        script = build_aggregate_script(table, group_by, aggregates, filters)
        return self._execute_built(script)

    def _execute_built(self, script: str) -> ExecutionResult:
        try:
            script = sanitize_built(script)
        except UnsafeScript as exc:
            return ExecutionResult(success=False, error=str(exc))
        return self.execute(script)
