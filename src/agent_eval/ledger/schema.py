"""Table definitions and additive migrations for the SQLite ledger."""

from __future__ import annotations

import logging
from typing import Dict, List, Tuple

from sqlalchemy import Column, Float, ForeignKey, Index, Integer, MetaData, Table, Text, inspect, text
from sqlalchemy.engine import Connection

logger = logging.getLogger(__name__)

metadata = MetaData()

runs = Table(
    "runs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("test_id", Text, nullable=False),
    Column("suite_path", Text, nullable=False, server_default="[]"),
    Column("timestamp", Text, nullable=False),
    Column("agent_runner", Text, nullable=False),
    Column("judge_model", Text, nullable=False),
    Column("score", Float, nullable=False),
    Column("pass", Integer, nullable=False),
    Column("status", Text),
    Column("reason", Text, nullable=False),
    Column("improvement", Text, nullable=False, server_default=""),
    Column("diff", Text),
    Column("commands", Text),
    Column("duration_ms", Integer, nullable=False),
    Column("thresholds", Text),
    Index("idx_runs_test_id", "test_id"),
    Index("idx_runs_timestamp", "timestamp"),
)

score_overrides = Table(
    "score_overrides",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("run_id", Integer, ForeignKey("runs.id"), nullable=False),
    Column("score", Float, nullable=False),
    Column("pass", Integer, nullable=False),
    Column("status", Text),
    Column("reason", Text, nullable=False),
    Column("timestamp", Text, nullable=False),
    Index("idx_overrides_run_id", "run_id"),
)

# Columns added after the first release. Only ever append to these lists.
MIGRATIONS: Dict[str, List[Tuple[str, str]]] = {
    "runs": [
        ("suite_path", "TEXT NOT NULL DEFAULT '[]'"),
        ("improvement", "TEXT NOT NULL DEFAULT ''"),
        ("status", "TEXT"),
        ("thresholds", "TEXT"),
    ],
    "score_overrides": [
        ("status", "TEXT"),
    ],
}


def migrate(conn: Connection) -> List[str]:
  """Add any missing columns. Safe to run on every start."""
  insp = inspect(conn)
  applied = []
  for table, columns in MIGRATIONS.items():
    if not insp.has_table(table):
      continue
    existing = {c["name"] for c in insp.get_columns(table)}
    for name, ddl in columns:
      if name in existing:
        continue
      conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}"))
      applied.append(f"{table}.{name}")
  if applied:
    logger.info("Ledger migrated: added %s", ", ".join(applied))
  return applied


def create_schema(conn: Connection) -> None:
  migrate(conn)
  metadata.create_all(conn)
