from __future__ import annotations

from typing import List, Optional, Protocol

from ..models import LedgerEntry, RunnerStats, ScoreOverride, TestTreeNode

LEDGER_FILENAME = "ledger.sqlite"


class Ledger(Protocol):
  name: str

  def initialize(self) -> None:
    ...

  def record_run(self, entry: LedgerEntry) -> int:
    ...

  def get_runs(self, test_id: Optional[str] = None) -> List[LedgerEntry]:
    ...

  def get_run_by_id(self, run_id: int) -> Optional[LedgerEntry]:
    ...

  def get_test_ids(self) -> List[str]:
    ...

  def get_test_tree(self) -> List[TestTreeNode]:
    ...

  def get_latest_entries(self) -> List[LedgerEntry]:
    ...

  def get_stats(self, test_id: Optional[str] = None) -> List[RunnerStats]:
    ...

  def override_run_score(self, run_id: int, score: float, reason: str) -> ScoreOverride:
    ...

  def get_run_overrides(self, run_id: int) -> List[ScoreOverride]:
    ...


def validate_override(score: float, reason: Optional[str]) -> str:
  """Check override input and return the trimmed reason."""
  if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= 1:
    raise ValueError("Score must be between 0 and 1")
  trimmed = (reason or "").strip()
  if not trimmed:
    raise ValueError("Reason is required")
  return trimmed
