"""Prompt templates for query translation and result summaries."""

from __future__ import annotations

import json
from typing import Any

from ..core.json_utils import json_default

SCHEMA_DESCRIPTION = """\
The database is PostgreSQL and contains 3 tables: market_definitions, market_statuses,
and price_updates. A **runner** means a horse. A **market** means a horse race. An
**event** means a race day (like "Cheltenham 1st Jan"). Rows are append-only: the current
state of a market is its most recent row by ts.

### market_definitions
A full snapshot of a horse race (market) with its runners.
- market_id (text) -> unique identifier for the market (horse race)
- event_id (text) -> links to the parent event
- event_type_id (text) -> type of event (e.g. "7" for horse racing)
- name (text) -> name of the market (e.g. "Betfair Exchange Handicap Chase")
- event_name (text) -> name of the event (e.g. "Cheltenham 1st Jan")
- market_time (timestamptz) -> scheduled start time of the race
- suspend_time (timestamptz) -> when betting is suspended
- open_date (timestamptz) -> when the event opens
- settled_time (timestamptz, nullable) -> when the market was settled
- status (text) -> "OPEN", "SUSPENDED" or "CLOSED"
- number_of_active_runners (integer) -> number of active horses
- number_of_winners (integer) -> number of winners (usually 1)
- runners (jsonb array) -> horses in this market, each an object with
  id (number), name (text), status ("ACTIVE", "HIDDEN", "WINNER", "LOSER"),
  sortPriority (number), adjustmentFactor (number)
- country_code (text), timezone (text), market_type (text, e.g. "WIN"),
  betting_type (text, e.g. "ODDS")
- in_play (boolean), complete (boolean), bet_delay (integer), version (bigint)
- definition (jsonb) -> the complete raw snapshot
- ts (timestamptz) -> when this definition was recorded
- change_id (text) -> identifier for this update
- publish_time (timestamptz) -> when this was published

### market_statuses
Status changes for horse races (markets).
- market_id (text), status (text), event_id (text), event_name (text)
- number_of_active_runners (integer)
- ts (timestamptz), change_id (text), publish_time (timestamptz)

### price_updates
Last traded price (odds) observations for each horse.
- market_id (text) -> the race this update belongs to
- runner_id (bigint) -> horse id (matches market_definitions.runners[].id)
- runner_name (text) -> horse name
- last_traded_price (double precision) -> most recent traded price (odds)
- event_id (text), event_name (text)
- ts (timestamptz), change_id (text), publish_time (timestamptz)
"""

INSTRUCTIONS = """\
### Instructions
When the user gives a **natural language query**, you need to:

1. **Generate a SQL query**: a single read-only PostgreSQL SELECT statement (a WITH ... SELECT
   is fine) that answers the question. Never modify data or schema.
2. **Provide a natural language interpretation**: explain what the query does in simple,
   user-friendly terms.

### SQL Query Generation
- Use the table names market_definitions, market_statuses, price_updates.
- Return rows as JSON objects, one per line, by wrapping the query like
  SELECT row_to_json(t) FROM (<your query>) t;
- Limit large result sets (LIMIT 100 unless the user asks otherwise).
- Example mappings:
  - "List all runners in race X" -> SELECT row_to_json(t) FROM (SELECT DISTINCT ON (market_id) market_id, name, runners FROM market_definitions WHERE name = 'X' ORDER BY market_id, ts DESC) t;
  - "Show price changes for horse Y in race Z" -> SELECT row_to_json(t) FROM (SELECT runner_name, last_traded_price, ts FROM price_updates WHERE runner_name = 'Y' AND market_id = 'Z' ORDER BY ts) t;
  - "Show status changes for race X" -> SELECT row_to_json(t) FROM (SELECT status, ts FROM market_statuses WHERE market_id = 'X' ORDER BY ts) t;
  - "Show all open markets" -> SELECT row_to_json(t) FROM (SELECT DISTINCT ON (market_id) market_id, name, status FROM market_definitions ORDER BY market_id, ts DESC) t WHERE t.status = 'OPEN';
  - "Show latest prices for all horses" -> SELECT row_to_json(t) FROM (SELECT DISTINCT ON (market_id, runner_id) market_id, runner_name, last_traded_price, ts FROM price_updates ORDER BY market_id, runner_id, ts DESC) t;
  - "Show races with more than 10 runners" -> SELECT row_to_json(t) FROM (SELECT DISTINCT ON (market_id) market_id, name, number_of_active_runners FROM market_definitions WHERE number_of_active_runners > 10 ORDER BY market_id, ts DESC) t;

### Natural Language Interpretation
- Explain what the query is doing in simple, conversational terms.
- Keep it user-friendly for someone who doesn't know SQL.

### Response Format
Return your response in this exact format:
{
  "sqlQuery": "the SQL query as a single string",
  "naturalLanguageInterpretation": "a clear explanation of what the query does"
}
"""

SUMMARY_INSTRUCTIONS = """\
You are a helpful horse racing data assistant. A user asked a question and the database
returned the rows below. Answer the question conversationally using only these rows.
- Use short bullet points and group related items logically (by race, event or horse).
- Mention odds as decimal prices and times in a readable form.
- Do not mention SQL, tables or JSON.
"""


def build_translation_prompt(query: str) -> str:
    """Merge a user question into the translation instruction template."""
    return (
        "You are a PostgreSQL assistant with expertise in horse racing data. "
        f"{SCHEMA_DESCRIPTION}\n{INSTRUCTIONS}\nUser Query: {json.dumps(query)}"
    )


def build_summary_prompt(
    query: str,
    rows: list[Any],
    interpretation: str | None = None,
) -> str:
    """Build the prompt that turns result rows into a conversational answer."""
    parts = [SUMMARY_INSTRUCTIONS, f"User question: {json.dumps(query)}"]
    if interpretation:
        parts.append(f"What the query retrieved: {interpretation}")
    parts.append(f"Rows ({len(rows)}):")
    parts.append(json.dumps(rows, default=json_default, ensure_ascii=False, indent=1))
    return "\n".join(parts)
