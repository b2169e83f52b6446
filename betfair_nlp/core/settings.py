"""Settings loader for the Betfair NLP services."""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .env_utils import env_int, env_str

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
ENV_FILE = os.getenv("ENV_FILE") or os.path.abspath(os.path.join(BASE_DIR, "..", ".env"))


@dataclass(frozen=True)
class Settings:
    """Runtime configuration parsed from environment variables.

    :ivar database_url: Postgres connection string (None when no store is configured).
    :ivar psql_bin: Path or name of the psql shell used for script execution.
    :ivar summary_max_rows: Max result rows handed to the summary prompt.
    """

    database_url: str | None
    psql_bin: str
    summary_max_rows: int


def _expand(value: str | None) -> str | None:
    if not value:
        return None
    return os.path.expandvars(os.path.expanduser(value))


def load_settings() -> Settings:
    """Load settings from environment and .env defaults.

    :return: Parsed settings dataclass.
    :rtype: Settings
    """
    load_dotenv(dotenv_path=ENV_FILE)
    return Settings(
        database_url=_expand(env_str("DATABASE_URL")),
        psql_bin=env_str("PSQL_BIN", "psql"),
        summary_max_rows=env_int("NLQ_SUMMARY_MAX_ROWS", 50, minimum=1),
    )
