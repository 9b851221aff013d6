"""Progress reporting and end-of-run summaries."""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import FAIL, PASS, WARN, RunResult, utc_timestamp


class SilentReporter:
  """Reporter that ignores every event. Subclass and override what you need."""

  def on_run_start(self, test_count: int, runners: List[str]) -> None:
    pass

  def on_file_start(self, path: str) -> None:
    pass

  def on_test_start(self, test_id: str, runner: str) -> None:
    pass

  def on_pipeline_step(self, test_id: str, runner: str, step: str, state: str, detail: str = "") -> None:
    pass

  def on_test_pass(self, result: RunResult) -> None:
    pass

  def on_test_warn(self, result: RunResult) -> None:
    pass

  def on_test_fail(self, result: RunResult) -> None:
    pass

  def on_test_error(self, result: RunResult) -> None:
    pass

  def on_run_end(self, summary: "RunSummary") -> None:
    pass


def notify_result(reporter: SilentReporter, result: RunResult) -> None:
  if result.error is not None:
    reporter.on_test_error(result)
  elif result.status == PASS:
    reporter.on_test_pass(result)
  elif result.status == WARN:
    reporter.on_test_warn(result)
  else:
    reporter.on_test_fail(result)


class ConsoleReporter(SilentReporter):
  """Plain ``[eval]`` progress lines.

    print_mode: quiet prints only the summary, standard adds one line per
    iteration, verbose adds pipeline steps and judge reasoning.
    """

  def __init__(self, print_mode: str = "standard"):
    self.print_mode = print_mode

  def on_run_start(self, test_count: int, runners: List[str]) -> None:
    if self.print_mode != "quiet":
      print(f"[eval] Running {test_count} test(s) x {len(runners)} runner(s): {', '.join(runners)}")

  def on_file_start(self, path: str) -> None:
    if self.print_mode == "verbose":
      print(f"[eval] File: {path}")

  def on_test_start(self, test_id: str, runner: str) -> None:
    if self.print_mode == "verbose":
      print(f"\n{'='*60}")
      print(f"[eval] Test: {test_id} [{runner}]")
      print(f"{'='*60}")

  def on_pipeline_step(self, test_id: str, runner: str, step: str, state: str, detail: str = "") -> None:
    if self.print_mode == "verbose":
      suffix = f" {detail}" if detail else ""
      print(f"[eval]   {step}: {state}{suffix}")

  def _line(self, tag: str, result: RunResult) -> None:
    if self.print_mode == "quiet":
      return
    e = result.entry
    print(f"[eval] {tag} {result.test_id} [{result.runner}] score={e.score:.2f} ({e.duration_ms / 1000:.1f}s)")
    if self.print_mode == "verbose" or tag in ("FAIL", "ERROR"):
      reason = e.reason.strip().splitlines()
      if reason:
        print(f"[eval]   {reason[0][:200]}")

  def on_test_pass(self, result: RunResult) -> None:
    self._line("PASS", result)

  def on_test_warn(self, result: RunResult) -> None:
    self._line("WARN", result)

  def on_test_fail(self, result: RunResult) -> None:
    self._line("FAIL", result)

  def on_test_error(self, result: RunResult) -> None:
    self._line("ERROR", result)

  def on_run_end(self, summary: "RunSummary") -> None:
    print(format_summary(summary))


@dataclass
class RunSummary:
  """Aggregate outcome of a run.

    Attributes:
        total: Number of (test, runner) iterations.
        passed: Iterations with status PASS.
        warned: Iterations with status WARN.
        failed: Iterations with status FAIL, errors included.
        errored: Iterations that ended in an execution error.
        avg_score: Mean judge score across iterations.
        total_duration_s: Sum of iteration durations.
        by_runner: Per-runner summaries keyed by runner name.
    """

  total: int = 0
  passed: int = 0
  warned: int = 0
  failed: int = 0
  errored: int = 0
  avg_score: float = 0.0
  total_duration_s: float = 0.0
  by_runner: Optional[Dict[str, "RunSummary"]] = None

  @property
  def ok(self) -> bool:
    return self.failed == 0 and self.errored == 0

  def to_dict(self) -> Dict[str, Any]:
    d = asdict(self)
    if self.by_runner:
      d["by_runner"] = {k: v.to_dict() for k, v in self.by_runner.items()}
    return d


def _summarize(results: List[RunResult]) -> RunSummary:
  s = RunSummary(total=len(results))
  for r in results:
    if r.status == PASS:
      s.passed += 1
    elif r.status == WARN:
      s.warned += 1
    elif r.status == FAIL:
      s.failed += 1
    if r.error is not None:
      s.errored += 1
    s.total_duration_s += r.entry.duration_ms / 1000
  if results:
    s.avg_score = sum(r.entry.score for r in results) / len(results)
  return s


def compute_summary(results: List[RunResult]) -> RunSummary:
  summary = _summarize(results)
  runners: Dict[str, List[RunResult]] = {}
  for r in results:
    runners.setdefault(r.runner, []).append(r)
  if len(runners) > 1:
    summary.by_runner = {name: _summarize(rs) for name, rs in runners.items()}
  return summary


def format_summary(summary: RunSummary) -> str:
  lines = [
      "",
      "=" * 50,
      "EVALUATION SUMMARY",
      "=" * 50,
      f"Iterations:     {summary.total}",
      f"Passed:         {summary.passed}",
      f"Warned:         {summary.warned}",
      f"Failed:         {summary.failed} ({summary.errored} errored)",
      f"Avg score:      {summary.avg_score:.2f}",
      f"Total duration: {summary.total_duration_s:.1f}s",
  ]
  if summary.by_runner:
    lines.append("")
    lines.append("By runner:")
    for name, s in summary.by_runner.items():
      lines.append(f"  {name}: {s.passed}/{s.total} passed, avg score {s.avg_score:.2f}")
  lines.append("=" * 50)
  return "\n".join(lines)


def write_report(results: List[RunResult], path: Path, config: Optional[Dict[str, Any]] = None) -> Path:
  """Write a JSON report of a run next to the ledger."""
  path = Path(path).expanduser().resolve()
  path.parent.mkdir(parents=True, exist_ok=True)
  report = {
      "timestamp": utc_timestamp(),
      "summary": compute_summary(results).to_dict(),
      "results": [r.to_dict() for r in results],
      "config": config or {},
  }
  with path.open("w", encoding="utf-8") as f:
    json.dump(report, f, indent=2, ensure_ascii=False)
    f.write("\n")
  return path
