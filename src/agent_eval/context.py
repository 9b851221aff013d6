from __future__ import annotations

import time
from typing import Any, Callable, List, Optional

from .environment import DEFAULT_COMMAND_TIMEOUT_S, Environment
from .models import CommandResult, JudgeResult, RunContextSnapshot, TaskDefinition, Thresholds


class EvalContext:
  """Per-iteration state handed to the test body and hooks.

    Commands run through ``run_command`` are recorded in execution order and
    become part of the judge prompt and the ledger entry. ``exec`` runs a
    command without recording it (setup chores in hooks, task actions).
    """

  def __init__(
      self,
      cwd: str,
      environment: Optional[Environment] = None,
      judge_config: Any = None,
      thresholds: Optional[Thresholds] = None,
      dry_run: bool = False,
  ):
    self.cwd = cwd
    self.environment = environment
    self.judge_config = judge_config
    self.thresholds = thresholds
    self.dry_run = dry_run
    self.diff: str = ""
    self.instruction: Optional[str] = None
    self.commands: List[CommandResult] = []
    self.tasks: List[TaskDefinition] = []
    self.task_results: List[CommandResult] = []
    self.judge_verdict: Optional[JudgeResult] = None
    self.judge_thresholds: Optional[Thresholds] = None
    self.judge_calls: List[str] = []

  def store_diff(self) -> str:
    if self.dry_run or self.environment is None:
      return self.diff
    self.diff = self.environment.get_diff(self.cwd)
    return self.diff

  def exec(self, command: str, timeout: Optional[float] = None, name: Optional[str] = None) -> CommandResult:
    if self.dry_run or self.environment is None:
      return CommandResult(name=name or command, command=command, stdout="", stderr="", exit_code=0, duration_ms=0)
    t0 = time.monotonic()
    res = self.environment.execute(command, self.cwd, timeout=timeout or DEFAULT_COMMAND_TIMEOUT_S)
    return CommandResult(
        name=name or command,
        command=command,
        stdout=res.stdout,
        stderr=res.stderr,
        exit_code=res.exit_code,
        duration_ms=int((time.monotonic() - t0) * 1000),
    )

  def run_command(self, name: str, command: str, timeout: Optional[float] = None) -> CommandResult:
    result = self.exec(command, timeout=timeout, name=name)
    self.commands.append(result)
    return result

  def add_task(self, name: str, action: Callable[[], CommandResult], criteria: str, weight: float = 1.0) -> None:
    self.tasks.append(TaskDefinition(name=name, action=action, criteria=criteria, weight=weight))

  def record_verdict(self, verdict: JudgeResult, thresholds: Thresholds) -> None:
    self.judge_verdict = verdict
    self.judge_thresholds = thresholds

  @property
  def logs(self) -> str:
    parts: List[str] = []
    if self.diff:
      parts.append(f"── Git Diff ──\n{self.diff}")
    for c in self.commands:
      block = f"── {c.name} (exit {c.exit_code}, {c.duration_ms}ms) ──\n$ {c.command}\n{c.stdout}"
      if c.stderr:
        block += f"\nSTDERR:\n{c.stderr}"
      parts.append(block)
    return "\n\n".join(parts)

  def snapshot(self) -> RunContextSnapshot:
    return RunContextSnapshot(diff=self.diff, commands=list(self.commands))
