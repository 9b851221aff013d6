"""Append-only JSONL ledger. Handy for diffing results in git."""

from __future__ import annotations

import json
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from ..errors import RunNotFoundError
from ..models import (FAIL, LedgerEntry, RunContextSnapshot, RunnerStats, ScoreOverride, TestTreeNode, Thresholds,
                      compute_status, utc_timestamp)
from .base import validate_override
from .tree import build_test_tree


class JsonLedger:

  name = "json"

  def __init__(self, output_dir: Union[str, Path]):
    self.output_dir = Path(output_dir)
    self.runs_path = self.output_dir / "ledger.jsonl"
    self.overrides_path = self.output_dir / "overrides.jsonl"

  def initialize(self) -> None:
    self.output_dir.mkdir(parents=True, exist_ok=True)
    self.runs_path.touch(exist_ok=True)
    self.overrides_path.touch(exist_ok=True)

  @staticmethod
  def _iter(path: Path) -> Iterator[Dict[str, Any]]:
    if not path.exists():
      return
    with path.open("r", encoding="utf-8") as f:
      for line in f:
        line = line.strip()
        if not line:
          continue
        try:
          yield json.loads(line)
        except ValueError:
          # skip malformed lines
          continue

  @staticmethod
  def _append(path: Path, record: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
      f.write(json.dumps(record, ensure_ascii=False) + "\n")

  def _latest_overrides(self) -> Dict[int, ScoreOverride]:
    latest: Dict[int, ScoreOverride] = {}
    for rec in self._iter(self.overrides_path):
      latest[rec["runId"]] = self._override_from(rec)
    return latest

  @staticmethod
  def _override_from(rec: Dict[str, Any]) -> ScoreOverride:
    return ScoreOverride(id=rec.get("id"), run_id=rec.get("runId"), score=rec["score"], passed=rec["pass"],
                         status=rec["status"], reason=rec["reason"], timestamp=rec["timestamp"])

  @staticmethod
  def _entry_from(rec: Dict[str, Any], override: Optional[ScoreOverride]) -> LedgerEntry:
    thresholds = Thresholds.from_dict(rec.get("thresholds"))
    return LedgerEntry(
        id=rec["id"],
        test_id=rec["testId"],
        suite_path=rec.get("suitePath") or [],
        timestamp=rec["timestamp"],
        agent_runner=rec["agentRunner"],
        judge_model=rec["judgeModel"],
        score=rec["score"],
        passed=rec["pass"],
        status=rec.get("status") or compute_status(rec["score"], thresholds),
        reason=rec["reason"],
        improvement=rec.get("improvement", ""),
        context=RunContextSnapshot.from_dict(rec.get("context")),
        duration_ms=rec.get("durationMs", 0),
        thresholds=thresholds,
        override=override,
    )

  def _entries(self) -> List[LedgerEntry]:
    latest = self._latest_overrides()
    return [self._entry_from(rec, latest.get(rec["id"])) for rec in self._iter(self.runs_path)]

  def record_run(self, entry: LedgerEntry) -> int:
    run_id = max((rec["id"] for rec in self._iter(self.runs_path)), default=0) + 1
    entry.id = run_id
    rec = entry.to_dict()
    rec.pop("override", None)
    self._append(self.runs_path, rec)
    return run_id

  def get_runs(self, test_id: Optional[str] = None) -> List[LedgerEntry]:
    return [e for e in self._entries() if test_id is None or e.test_id == test_id]

  def get_run_by_id(self, run_id: int) -> Optional[LedgerEntry]:
    for e in self._entries():
      if e.id == run_id:
        return e
    return None

  def get_test_ids(self) -> List[str]:
    return sorted({e.test_id for e in self._entries()})

  def get_test_tree(self) -> List[TestTreeNode]:
    return build_test_tree((e.test_id, e.suite_path) for e in self._entries())

  def get_latest_entries(self) -> List[LedgerEntry]:
    latest: Dict[str, LedgerEntry] = {}
    for e in self._entries():
      latest[e.test_id] = e
    return [latest[k] for k in sorted(latest)]

  def get_stats(self, test_id: Optional[str] = None) -> List[RunnerStats]:
    groups: "OrderedDict[str, List[LedgerEntry]]" = OrderedDict()
    for e in self.get_runs(test_id):
      groups.setdefault(e.agent_runner, []).append(e)
    stats = [
        RunnerStats(
            agent_runner=runner,
            avg_score=sum(e.effective_score for e in es) / len(es),
            total_runs=len(es),
            pass_rate=sum(1 for e in es if e.effective_passed) / len(es),
        ) for runner, es in groups.items()
    ]
    stats.sort(key=lambda s: s.avg_score, reverse=True)
    return stats

  def override_run_score(self, run_id: int, score: float, reason: str) -> ScoreOverride:
    reason = validate_override(score, reason)
    entry = self.get_run_by_id(run_id)
    if entry is None:
      raise RunNotFoundError(run_id)
    status = compute_status(score, entry.thresholds)
    override_id = sum(1 for _ in self._iter(self.overrides_path)) + 1
    override = ScoreOverride(id=override_id, run_id=run_id, score=float(score), passed=status != FAIL, status=status,
                             reason=reason, timestamp=utc_timestamp())
    self._append(self.overrides_path, override.to_dict())
    return override

  def get_run_overrides(self, run_id: int) -> List[ScoreOverride]:
    found = [self._override_from(rec) for rec in self._iter(self.overrides_path) if rec.get("runId") == run_id]
    found.reverse()
    return found
