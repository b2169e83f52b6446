"""File-level ingestion entrypoints for the market data feed."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from ..core.logging_utils import log_metric
from .parser import MessageParser
from .router import ChangeRouter

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


@dataclass(frozen=True)
class IngestResult:
    """Line counts for one ingested file."""

    processed_count: int = 0
    error_count: int = 0
    skipped: bool = False

    def to_dict(self) -> dict[str, int]:
        """Return the caller-facing count mapping."""
        return {"processedCount": self.processed_count, "errorCount": self.error_count}


@dataclass(frozen=True)
class DirectoryIngestResult:
    """Aggregate counts for a directory walk."""

    files_total: int = 0
    files_processed: int = 0
    files_failed: int = 0
    processed_count: int = 0
    error_count: int = 0


def is_market_file(path: PathLike) -> bool:
    """Return True for per-market files (dotted names, not bz2 archives)."""
    name = Path(path).name
    return "." in name and not name.endswith(".bz2")


def ingest_lines(lines, store) -> IngestResult:
    """Ingest an iterable of raw lines against a store."""
    parser = MessageParser(ChangeRouter.for_store(store))
    stats = parser.process_lines(lines)
    return IngestResult(processed_count=stats.processed, error_count=stats.errored)


def ingest_file(path: PathLike, store) -> IngestResult:
    """Ingest one feed file line by line.

    :raises OSError: If the file cannot be opened or read.
    """
    path = Path(path)
    if "." not in path.name:
        logger.info("Skipping event-level file: %s (no dot in filename)", path.name)
        return IngestResult(skipped=True)
    if path.name.endswith(".bz2"):
        logger.info("Skipping compressed file: %s (.bz2 file)", path.name)
        return IngestResult(skipped=True)
    start = time.monotonic()
    with path.open("r", encoding="utf-8") as handle:
        result = ingest_lines(handle, store)
    log_metric(
        logger,
        "ingest.file",
        file=path.name,
        processed=result.processed_count,
        errors=result.error_count,
        duration_s=round(time.monotonic() - start, 2),
    )
    return result


def find_market_files(root: PathLike) -> list[Path]:
    """Return market files below root in a stable order."""
    found = []
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            candidate = Path(dirpath) / filename
            if is_market_file(candidate):
                found.append(candidate)
    return sorted(found)


def find_event_files(root: PathLike, event_id: str) -> list[Path]:
    """Return market files stored under any directory named after an event."""
    found: list[Path] = []
    for dirpath, dirnames, _filenames in os.walk(root):
        if event_id in dirnames:
            found.extend(find_market_files(Path(dirpath) / event_id))
            dirnames.remove(event_id)
    return sorted(found)


def ingest_paths(paths, store) -> DirectoryIngestResult:
    """Ingest files in order, isolating whole-file failures."""
    files_processed = 0
    files_failed = 0
    processed = 0
    errors = 0
    paths = list(paths)
    for index, path in enumerate(paths, start=1):
        logger.info("Processing file %d/%d: %s", index, len(paths), path)
        try:
            result = ingest_file(path, store)
        except (OSError, UnicodeDecodeError):
            files_failed += 1
            logger.exception("Failed to process %s", path)
            continue
        files_processed += 1
        processed += result.processed_count
        errors += result.error_count
    return DirectoryIngestResult(
        files_total=len(paths),
        files_processed=files_processed,
        files_failed=files_failed,
        processed_count=processed,
        error_count=errors,
    )


def ingest_directory(root: PathLike, store) -> DirectoryIngestResult:
    """Ingest every market file below a directory."""
    files = find_market_files(root)
    if not files:
        logger.info("No market files found in %s", root)
    return ingest_paths(files, store)
