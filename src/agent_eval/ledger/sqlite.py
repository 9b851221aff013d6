"""Default ledger: an SQLite file under the output directory."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

from sqlalchemy import case, create_engine, func, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from ..errors import RunNotFoundError
from ..models import (FAIL, LedgerEntry, RunContextSnapshot, RunnerStats, ScoreOverride, TestTreeNode, Thresholds,
                      compute_status, utc_timestamp)
from .base import LEDGER_FILENAME, validate_override
from .schema import create_schema, runs, score_overrides
from .tree import build_test_tree

logger = logging.getLogger(__name__)


def _latest_overrides():
  """One row per run: the most recently inserted override."""
  rn = func.row_number().over(partition_by=score_overrides.c.run_id, order_by=score_overrides.c.id.desc())
  ranked = select(score_overrides, rn.label("rn")).subquery("ranked")
  return select(ranked).where(ranked.c.rn == 1).subquery("latest")


def _runs_with_override():
  lo = _latest_overrides()
  stmt = select(
      runs,
      lo.c.id.label("o_id"),
      lo.c.score.label("o_score"),
      lo.c["pass"].label("o_pass"),
      lo.c.status.label("o_status"),
      lo.c.reason.label("o_reason"),
      lo.c.timestamp.label("o_timestamp"),
  ).select_from(runs.outerjoin(lo, lo.c.run_id == runs.c.id))
  return stmt


def _load_json(value: Optional[str], default: Any) -> Any:
  if not value:
    return default
  try:
    return json.loads(value)
  except ValueError:
    return default


def row_to_entry(m: Mapping[str, Any]) -> LedgerEntry:
  thresholds = Thresholds.from_dict(_load_json(m["thresholds"], None))
  status = m["status"] or compute_status(m["score"], thresholds)
  override = None
  if m.get("o_id") is not None:
    override = ScoreOverride(
        id=m["o_id"],
        run_id=m["id"],
        score=m["o_score"],
        passed=bool(m["o_pass"]),
        status=m["o_status"] or compute_status(m["o_score"], thresholds),
        reason=m["o_reason"],
        timestamp=m["o_timestamp"],
    )
  return LedgerEntry(
      id=m["id"],
      test_id=m["test_id"],
      suite_path=_load_json(m["suite_path"], []),
      timestamp=m["timestamp"],
      agent_runner=m["agent_runner"],
      judge_model=m["judge_model"],
      score=m["score"],
      passed=bool(m["pass"]),
      status=status,
      reason=m["reason"],
      improvement=m["improvement"] or "",
      context=RunContextSnapshot.from_dict({
          "diff": m["diff"] or "",
          "commands": _load_json(m["commands"], []),
      }),
      duration_ms=m["duration_ms"],
      thresholds=thresholds,
      override=override,
  )


class SqliteLedger:
  """Ledger stored in ``<output_dir>/ledger.sqlite``.

    Every public call opens its own connection and closes it on return.
    """

  name = "sqlite"

  def __init__(self, output_dir: Union[str, Path]):
    self.output_dir = Path(output_dir)
    self.db_path = self.output_dir / LEDGER_FILENAME
    self._engine: Optional[Engine] = None
    self._initialized = False

  @property
  def engine(self) -> Engine:
    if self._engine is None:
      self.output_dir.mkdir(parents=True, exist_ok=True)
      self._engine = create_engine(f"sqlite:///{self.db_path}", poolclass=NullPool)
    return self._engine

  def initialize(self) -> None:
    with self.engine.begin() as conn:
      create_schema(conn)
    self._initialized = True

  def _ready(self) -> Engine:
    if not self._initialized:
      self.initialize()
    return self.engine

  def close(self) -> None:
    if self._engine is not None:
      self._engine.dispose()
      self._engine = None
      self._initialized = False

  def record_run(self, entry: LedgerEntry) -> int:
    values = {
        "test_id": entry.test_id,
        "suite_path": json.dumps(list(entry.suite_path)),
        "timestamp": entry.timestamp,
        "agent_runner": entry.agent_runner,
        "judge_model": entry.judge_model,
        "score": entry.score,
        "pass": 1 if entry.passed else 0,
        "status": entry.status,
        "reason": entry.reason,
        "improvement": entry.improvement,
        "diff": entry.context.diff,
        "commands": json.dumps([c.to_dict() for c in entry.context.commands]),
        "duration_ms": entry.duration_ms,
        "thresholds": json.dumps(entry.thresholds.to_dict()),
    }
    with self._ready().begin() as conn:
      result = conn.execute(insert(runs).values(**values))
      run_id = result.inserted_primary_key[0]
    entry.id = run_id
    return run_id

  def get_runs(self, test_id: Optional[str] = None) -> List[LedgerEntry]:
    stmt = _runs_with_override()
    if test_id is not None:
      stmt = stmt.where(runs.c.test_id == test_id)
    stmt = stmt.order_by(runs.c.timestamp.asc(), runs.c.id.asc())
    with self._ready().connect() as conn:
      return [row_to_entry(r._mapping) for r in conn.execute(stmt)]

  def get_run_by_id(self, run_id: int) -> Optional[LedgerEntry]:
    stmt = _runs_with_override().where(runs.c.id == run_id)
    with self._ready().connect() as conn:
      row = conn.execute(stmt).first()
    return row_to_entry(row._mapping) if row else None

  def get_test_ids(self) -> List[str]:
    stmt = select(runs.c.test_id).distinct().order_by(runs.c.test_id)
    with self._ready().connect() as conn:
      return [r[0] for r in conn.execute(stmt)]

  def get_test_tree(self) -> List[TestTreeNode]:
    first_id = func.min(runs.c.id).label("first_id")
    stmt = (select(runs.c.test_id, runs.c.suite_path, first_id)
            .group_by(runs.c.test_id, runs.c.suite_path)
            .order_by(first_id))
    with self._ready().connect() as conn:
      pairs = [(r.test_id, _load_json(r.suite_path, [])) for r in conn.execute(stmt)]
    return build_test_tree(pairs)

  def get_latest_entries(self) -> List[LedgerEntry]:
    latest_ids = select(func.max(runs.c.id)).group_by(runs.c.test_id).scalar_subquery()
    stmt = _runs_with_override().where(runs.c.id.in_(latest_ids)).order_by(runs.c.test_id)
    with self._ready().connect() as conn:
      return [row_to_entry(r._mapping) for r in conn.execute(stmt)]

  def get_stats(self, test_id: Optional[str] = None) -> List[RunnerStats]:
    lo = _latest_overrides()
    eff_score = func.coalesce(lo.c.score, runs.c.score)
    eff_pass = func.coalesce(lo.c["pass"], runs.c["pass"])
    avg_score = func.avg(eff_score).label("avg_score")
    stmt = (select(
        runs.c.agent_runner,
        avg_score,
        func.count().label("total_runs"),
        func.avg(case((eff_pass == 1, 1.0), else_=0.0)).label("pass_rate"),
    ).select_from(runs.outerjoin(lo, lo.c.run_id == runs.c.id))
            .group_by(runs.c.agent_runner)
            .order_by(avg_score.desc()))
    if test_id is not None:
      stmt = stmt.where(runs.c.test_id == test_id)
    with self._ready().connect() as conn:
      return [
          RunnerStats(agent_runner=r.agent_runner, avg_score=float(r.avg_score), total_runs=int(r.total_runs),
                      pass_rate=float(r.pass_rate)) for r in conn.execute(stmt)
      ]

  def override_run_score(self, run_id: int, score: float, reason: str) -> ScoreOverride:
    reason = validate_override(score, reason)
    with self._ready().begin() as conn:
      row = conn.execute(select(runs.c.thresholds).where(runs.c.id == run_id)).first()
      if row is None:
        raise RunNotFoundError(run_id)
      thresholds = Thresholds.from_dict(_load_json(row.thresholds, None))
      status = compute_status(score, thresholds)
      override = ScoreOverride(run_id=run_id, score=float(score), passed=status != FAIL, status=status, reason=reason,
                               timestamp=utc_timestamp())
      result = conn.execute(insert(score_overrides).values(
          run_id=run_id,
          score=override.score,
          status=override.status,
          reason=override.reason,
          timestamp=override.timestamp,
          **{"pass": 1 if override.passed else 0},
      ))
      override.id = result.inserted_primary_key[0]
    logger.info("Run #%s overridden: score=%.2f status=%s", run_id, override.score, override.status)
    return override

  def get_run_overrides(self, run_id: int) -> List[ScoreOverride]:
    stmt = (select(score_overrides, runs.c.thresholds)
            .select_from(score_overrides.join(runs, runs.c.id == score_overrides.c.run_id))
            .where(score_overrides.c.run_id == run_id)
            .order_by(score_overrides.c.id.desc()))
    with self._ready().connect() as conn:
      rows = [r._mapping for r in conn.execute(stmt)]
    out = []
    for m in rows:
      thresholds = Thresholds.from_dict(_load_json(m["thresholds"], None))
      out.append(ScoreOverride(
          id=m["id"],
          run_id=m["run_id"],
          score=m["score"],
          passed=bool(m["pass"]),
          status=m["status"] or compute_status(m["score"], thresholds),
          reason=m["reason"],
          timestamp=m["timestamp"],
      ))
    return out
