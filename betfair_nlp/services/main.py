"""Main entrypoint for feed ingestion and question answering."""

from __future__ import annotations

import dataclasses
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from ..core.json_utils import dumps_pretty
from ..core.logging_utils import configure_logging as configure_service_logging
from ..core.settings import Settings, load_settings
from ..db.analysis import event_summary, market_analysis
from ..db.db import connect, ensure_schema_compatible, maybe_init_schema, safe_close
from ..db.store import PostgresMarketStore
from ..feed.ingest import DirectoryIngestResult, find_market_files, ingest_paths
from ..nlq.llm import backend_from_env
from ..nlq.service import NaturalLanguageService

logger = logging.getLogger(__name__)

_RUN_MODES = {
    "ingest": "ingest",
    "load": "ingest",
    "ask": "ask",
    "query": "ask",
    "market": "market",
    "event": "event",
}
USAGE = (
    "usage: betfair-nlp ingest <path>... | ask <question> | "
    "market <market_id> | event <event_id>"
)


def configure_logging() -> None:
    """Initialize logging based on LOG_LEVEL."""
    level_raw = os.getenv("LOG_LEVEL", "INFO")
    configure_service_logging(
        service_name="main",
        logger=logger,
        basic_config=logging.basicConfig,
        level_raw=level_raw,
    )
    logger.debug("Logging initialized level=%s", level_raw)


def _parse_run_mode(raw: str) -> Optional[str]:
    return _RUN_MODES.get((raw or "").strip().lower())


def expand_paths(paths: Sequence[str]) -> list[Path]:
    """Expand directories into their market files, keeping file order."""
    expanded: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            expanded.extend(find_market_files(path))
        else:
            expanded.append(path)
    return expanded


def _open_store(settings: Settings):
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is required for this mode.")
    conn = connect(settings.database_url)
    try:
        maybe_init_schema(conn)
        ensure_schema_compatible(conn)
    except Exception:
        safe_close(conn)
        raise
    logger.info("DB schema ready.")
    return conn


def run_ingest(settings: Settings, paths: Sequence[str]) -> DirectoryIngestResult:
    """Ingest files and directories over one explicit connection."""
    conn = _open_store(settings)
    try:
        return ingest_paths(expand_paths(paths), PostgresMarketStore(conn))
    finally:
        safe_close(conn)


def run_lookup(settings: Settings, mode: str, key: str) -> dict:
    """Return a market analysis or event summary as a plain mapping."""
    conn = _open_store(settings)
    try:
        store = PostgresMarketStore(conn)
        if mode == "market":
            return dataclasses.asdict(market_analysis(store, key))
        return dataclasses.asdict(event_summary(store, key))
    finally:
        safe_close(conn)


def run_ask(settings: Settings, question: str) -> dict:
    """Answer one question and return the caller-facing response mapping."""
    service = NaturalLanguageService.from_settings(settings, backend_from_env())
    return service.translate_and_answer(question).to_dict()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Dispatch on the positional mode and print the JSON result.

    :return: Process exit status.
    :rtype: int
    """
    args = list(sys.argv[1:] if argv is None else argv)
    configure_logging()
    mode = _parse_run_mode(args[0]) if args else None
    rest = args[1:]
    if mode is None or not rest:
        print(USAGE, file=sys.stderr)
        return 2
    settings = load_settings()
    logger.info("Run mode: %s", mode)
    if mode == "ingest":
        result = run_ingest(settings, rest)
        print(dumps_pretty(dataclasses.asdict(result)))
        return 1 if result.files_failed else 0
    if mode == "ask":
        print(dumps_pretty(run_ask(settings, " ".join(rest))))
        return 0
    try:
        payload = run_lookup(settings, mode, rest[0])
    except LookupError as exc:
        logger.error("%s", exc)
        return 1
    print(dumps_pretty(payload))
    return 0


if __name__ == "__main__":
    sys.exit(main())
