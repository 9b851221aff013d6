"""Core data types shared by the pipeline, judge and ledger."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional

PASS = "PASS"
WARN = "WARN"
FAIL = "FAIL"
STATUSES = (PASS, WARN, FAIL)


def utc_timestamp() -> str:
  return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


@dataclass(frozen=True)
class Thresholds:
  """Score cutoffs for the three verdict levels.

    Attributes:
        warn: Minimum score for PASS. Scores below it are at most WARN.
        fail: Minimum score for WARN. Scores below it are FAIL.
    """

  warn: float = 0.8
  fail: float = 0.5

  def to_dict(self) -> Dict[str, float]:
    return {"warn": self.warn, "fail": self.fail}

  @classmethod
  def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Thresholds":
    if not data:
      return DEFAULT_THRESHOLDS
    return cls(warn=float(data.get("warn", 0.8)), fail=float(data.get("fail", 0.5)))


DEFAULT_THRESHOLDS = Thresholds()


def compute_status(score: float, thresholds: Optional[Thresholds] = None) -> str:
  t = thresholds or DEFAULT_THRESHOLDS
  if score >= t.warn:
    return PASS
  if score >= t.fail:
    return WARN
  return FAIL


def resolve_thresholds(*candidates: Optional[Thresholds]) -> Thresholds:
  """Return the first supplied thresholds, most specific first."""
  for t in candidates:
    if t is not None:
      return t
  return DEFAULT_THRESHOLDS


@dataclass(frozen=True)
class CommandResult:
  name: str
  command: str
  stdout: str
  stderr: str
  exit_code: int
  duration_ms: int

  def to_dict(self) -> Dict[str, Any]:
    return asdict(self)

  @classmethod
  def from_dict(cls, data: Dict[str, Any]) -> "CommandResult":
    return cls(
        name=data.get("name", ""),
        command=data.get("command", ""),
        stdout=data.get("stdout", ""),
        stderr=data.get("stderr", ""),
        exit_code=int(data.get("exit_code", data.get("exitCode", 0))),
        duration_ms=int(data.get("duration_ms", data.get("durationMs", 0))),
    )


@dataclass
class TaskDefinition:
  """A declarative verification step registered with ``ctx.add_task``."""

  name: str
  action: Callable[[], CommandResult]
  criteria: str
  weight: float = 1.0

  def __post_init__(self) -> None:
    if self.weight < 0:
      raise ValueError(f"Task '{self.name}' weight must be >= 0, got {self.weight}")


@dataclass
class JudgeResult:
  passed: bool
  score: float
  reason: str
  improvement: str = ""
  status: Optional[str] = None

  def to_dict(self) -> Dict[str, Any]:
    return {
        "pass": self.passed,
        "score": self.score,
        "reason": self.reason,
        "improvement": self.improvement,
        "status": self.status,
    }


@dataclass(frozen=True)
class TestDefinition:
  __test__ = False

  title: str
  fn: Callable[..., Any]
  tags: tuple = ()
  suite_path: tuple = ()


@dataclass
class RunContextSnapshot:
  diff: str = ""
  commands: List[CommandResult] = field(default_factory=list)

  def to_dict(self) -> Dict[str, Any]:
    return {"diff": self.diff, "commands": [c.to_dict() for c in self.commands]}

  @classmethod
  def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RunContextSnapshot":
    data = data or {}
    return cls(
        diff=data.get("diff", ""),
        commands=[CommandResult.from_dict(c) for c in data.get("commands", [])],
    )


@dataclass
class ScoreOverride:
  score: float
  passed: bool
  status: str
  reason: str
  timestamp: str
  id: Optional[int] = None
  run_id: Optional[int] = None

  def to_dict(self) -> Dict[str, Any]:
    return {
        "id": self.id,
        "runId": self.run_id,
        "score": self.score,
        "pass": self.passed,
        "status": self.status,
        "reason": self.reason,
        "timestamp": self.timestamp,
    }


@dataclass
class LedgerEntry:
  """One (test, runner) iteration outcome.

    Attributes:
        id: Identity assigned by the ledger on insert (None before).
        test_id: Title of the test.
        suite_path: Enclosing ``describe`` names, outermost first.
        timestamp: ISO-8601 UTC time of the run.
        agent_runner: Name of the runner under test.
        judge_model: Label of the judge that scored the run.
        score: Original judge score in [0, 1].
        passed: Original pass flag (status != FAIL).
        status: Original status (PASS/WARN/FAIL).
        reason: Judge reasoning (markdown) or the execution error.
        improvement: Judge improvement suggestions (markdown).
        context: Captured diff and command transcript.
        duration_ms: Wall-clock duration of the iteration.
        thresholds: Thresholds snapshot used to compute status.
        override: Latest human override, derived on read.
    """

  test_id: str
  agent_runner: str
  judge_model: str
  score: float
  passed: bool
  status: str
  reason: str
  improvement: str = ""
  suite_path: List[str] = field(default_factory=list)
  timestamp: str = field(default_factory=utc_timestamp)
  context: RunContextSnapshot = field(default_factory=RunContextSnapshot)
  duration_ms: int = 0
  thresholds: Thresholds = DEFAULT_THRESHOLDS
  id: Optional[int] = None
  override: Optional[ScoreOverride] = None

  @property
  def effective_score(self) -> float:
    return self.override.score if self.override else self.score

  @property
  def effective_passed(self) -> bool:
    return self.override.passed if self.override else self.passed

  @property
  def effective_status(self) -> str:
    return self.override.status if self.override else self.status

  def to_dict(self) -> Dict[str, Any]:
    return {
        "id": self.id,
        "testId": self.test_id,
        "suitePath": list(self.suite_path),
        "timestamp": self.timestamp,
        "agentRunner": self.agent_runner,
        "judgeModel": self.judge_model,
        "score": self.score,
        "pass": self.passed,
        "status": self.status,
        "reason": self.reason,
        "improvement": self.improvement,
        "context": self.context.to_dict(),
        "durationMs": self.duration_ms,
        "thresholds": self.thresholds.to_dict(),
        "override": self.override.to_dict() if self.override else None,
    }


@dataclass
class RunnerStats:
  agent_runner: str
  avg_score: float
  total_runs: int
  pass_rate: float

  def to_dict(self) -> Dict[str, Any]:
    return {
        "agentRunner": self.agent_runner,
        "avgScore": self.avg_score,
        "totalRuns": self.total_runs,
        "passRate": self.pass_rate,
    }


@dataclass
class TestTreeNode:
  __test__ = False

  name: str
  type: str
  test_id: Optional[str] = None
  children: Optional[List["TestTreeNode"]] = None

  def to_dict(self) -> Dict[str, Any]:
    out: Dict[str, Any] = {"name": self.name, "type": self.type}
    if self.type == "test":
      out["testId"] = self.test_id
    else:
      out["children"] = [c.to_dict() for c in (self.children or [])]
    return out


@dataclass
class RunResult:
  test_id: str
  runner: str
  entry: LedgerEntry
  error: Optional[str] = None

  @property
  def passed(self) -> bool:
    return self.entry.passed

  @property
  def status(self) -> str:
    return self.entry.status

  def to_dict(self) -> Dict[str, Any]:
    return {
        "test_id": self.test_id,
        "runner": self.runner,
        "error": self.error,
        "entry": self.entry.to_dict(),
    }
