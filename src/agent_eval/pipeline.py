"""Runs tests against runners: one strictly sequential iteration per (test, runner)."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .config import EvalConfig
from .context import EvalContext
from .errors import AgentExecutionError, InstructPolicyError, JudgeFailure, ModeMixError
from .hooks import HookTree
from .judge import judge, judge_label
from .models import (FAIL, CommandResult, JudgeResult, LedgerEntry, RunResult, TaskDefinition, TestDefinition,
                     Thresholds, compute_status, resolve_thresholds)
from .reporter import SilentReporter, compute_summary, notify_result
from .runners import RunnerContext, RunnerExecResult

logger = logging.getLogger(__name__)

IMPERATIVE = "imperative"
DECLARATIVE = "declarative"

NO_JUDGE_REASON = "Test completed without a judge evaluation. Call expect(ctx).to_pass_judge(...) after agent.run()."
NO_TASKS_REASON = "Test completed without tasks or judge evaluation. Register tasks with ctx.add_task(...) " \
                  "or call expect(ctx).to_pass_judge(...)."
DECLARATIVE_CRITERIA = ("Evaluate how well the agent's changes satisfy the instruction, "
                        "using the weighted task results below.")


class AgentHandle:
  """What a test body sees as ``agent``.

    ``run(prompt)`` executes immediately (imperative mode). ``instruct(prompt)``
    only registers the instruction; the pipeline executes it after the body
    returns (declarative mode). A test uses one mode, and at most one
    ``instruct``.
    """

  def __init__(self, name: str, model: str, ctx: EvalContext,
               execute: Optional[Callable[[str], RunnerExecResult]] = None):
    self.name = name
    self.model = model
    self.ctx = ctx
    self.mode: Optional[str] = None
    self.instruction: Optional[str] = None
    self.prompts: List[str] = []
    self._execute = execute

  def run(self, prompt: str) -> Optional[RunnerExecResult]:
    if self.mode == DECLARATIVE:
      raise ModeMixError("Cannot use run() after instruct(). A test is either imperative or declarative.")
    self.mode = IMPERATIVE
    self.prompts.append(prompt)
    if self._execute is None:
      return None
    return self._execute(prompt)

  def instruct(self, prompt: str) -> None:
    if self.mode == DECLARATIVE:
      raise InstructPolicyError("Single-Instruct Policy: instruct() may only be called once per test.")
    if self.mode == IMPERATIVE:
      raise ModeMixError("Cannot use instruct() after run(). A test is either imperative or declarative.")
    self.mode = DECLARATIVE
    self.instruction = prompt
    self.ctx.instruction = prompt


@dataclass
class ExecutionPlan:
  """What a test would do, collected without executing anything."""

  test_id: str
  suite_path: List[str]
  mode: str
  instruction: Optional[str] = None
  prompts: List[str] = field(default_factory=list)
  tasks: List[Dict[str, Any]] = field(default_factory=list)
  runners: List[Dict[str, str]] = field(default_factory=list)
  after_each_commands: List[Dict[str, str]] = field(default_factory=list)
  judge_assertions: int = 0
  error: Optional[str] = None

  def to_dict(self) -> Dict[str, Any]:
    return asdict(self)


class Pipeline:
  """Binds a config, its plugins and a hook tree for a sequence of iterations."""

  def __init__(self, config: EvalConfig, reporter: Optional[SilentReporter] = None,
               hooks: Optional[HookTree] = None):
    self.config = config
    self.reporter = reporter or SilentReporter()
    if hooks is None:
      from .dsl import registry
      hooks = registry.hooks
    self.hooks = hooks
    self.cwd = str(config.root_path)

  @property
  def environment(self):
    return self.config.get_environment()

  @property
  def ledger(self):
    return self.config.get_ledger()

  def _step(self, test_id: str, runner: str, step: str, state: str, detail: str = "") -> None:
    self.reporter.on_pipeline_step(test_id, runner, step, state, detail)

  def _execute_agent(self, test_id: str, runner: Any, ctx: EvalContext, prompt: str) -> RunnerExecResult:
    """Agent execution, then diff capture, then the configured after_each commands."""
    self._step(test_id, runner.name, "agent", "running")
    result = runner.execute(prompt, RunnerContext(cwd=self.cwd, env=self.environment,
                                                  timeout=self.config.agent_timeout))
    if result.exit_code:
      self._step(test_id, runner.name, "agent", "error", f"exit {result.exit_code}")
      detail = (result.stderr or result.stdout or "").strip()[:500]
      raise AgentExecutionError(f"Agent '{runner.name}' exited with code {result.exit_code}: {detail}")
    self._step(test_id, runner.name, "agent", "done",
               f"{len(result.files_written)} file(s) written" if result.files_written else "")

    self._step(test_id, runner.name, "diff", "running")
    ctx.store_diff()
    self._step(test_id, runner.name, "diff", "done")

    for cmd in self.config.after_each:
      self._step(test_id, runner.name, "after_each", "running", cmd.name)
      res = ctx.run_command(cmd.name, cmd.command)
      self._step(test_id, runner.name, "after_each", "done", f"{cmd.name} exit {res.exit_code}")
    return result

  def _declarative_verdict(self, test_def: TestDefinition, runner: Any, agent: AgentHandle,
                           ctx: EvalContext) -> Tuple[Optional[JudgeResult], Thresholds, str]:
    self._execute_agent(test_def.title, runner, ctx, agent.instruction or "")

    task_results: List[Tuple[TaskDefinition, CommandResult]] = []
    for task in ctx.tasks:
      self._step(test_def.title, runner.name, "task", "running", task.name)
      res = task.action()
      task_results.append((task, res))
      ctx.task_results.append(res)
      self._step(test_def.title, runner.name, "task", "done", f"{task.name} exit {res.exit_code}")

    thresholds = resolve_thresholds(self.config.thresholds)
    if task_results:
      self._step(test_def.title, runner.name, "judge", "running")
      verdict = judge(ctx, DECLARATIVE_CRITERIA, self.config.judge, instruction=agent.instruction,
                      task_results=task_results)
      self._step(test_def.title, runner.name, "judge", "done", f"score {verdict.score:.2f}")
      return verdict, thresholds, ""
    if ctx.judge_verdict is not None:
      return ctx.judge_verdict, ctx.judge_thresholds or thresholds, ""
    return None, thresholds, NO_TASKS_REASON

  def _entry(self, test_def: TestDefinition, runner: Any, ctx: EvalContext, started: float, score: float,
             reason: str, improvement: str, thresholds: Thresholds, status: Optional[str] = None) -> LedgerEntry:
    status = status or compute_status(score, thresholds)
    return LedgerEntry(
        test_id=test_def.title,
        suite_path=list(test_def.suite_path),
        agent_runner=runner.name,
        judge_model=judge_label(self.config.judge),
        score=score,
        passed=status != FAIL,
        status=status,
        reason=reason,
        improvement=improvement,
        context=ctx.snapshot(),
        duration_ms=int((time.monotonic() - started) * 1000),
        thresholds=thresholds,
    )

  def _persist(self, entry: LedgerEntry) -> None:
    self.ledger.record_run(entry)

  def run_iteration(self, test_def: TestDefinition, runner: Any) -> RunResult:
    test_id = test_def.title
    started = time.monotonic()
    self.reporter.on_test_start(test_id, runner.name)

    ctx = EvalContext(self.cwd, environment=self.environment, judge_config=self.config.judge,
                      thresholds=self.config.thresholds)
    agent = AgentHandle(runner.name, runner.model, ctx,
                        execute=lambda prompt: self._execute_agent(test_id, runner, ctx, prompt))
    error: Optional[str] = None
    entry: Optional[LedgerEntry] = None
    body_failed = False

    try:
      try:
        self._step(test_id, runner.name, "setup", "running")
        self.environment.setup(self.cwd)
        self._step(test_id, runner.name, "setup", "done")

        if self.config.before_each is not None:
          self.config.before_each(ctx)
        for hook in self.hooks.before_each_for(test_def.suite_path):
          hook(ctx)

        test_def.fn(agent, ctx)

        if agent.mode == DECLARATIVE:
          verdict, thresholds, missing_reason = self._declarative_verdict(test_def, runner, agent, ctx)
        else:
          verdict = ctx.judge_verdict
          thresholds = ctx.judge_thresholds or resolve_thresholds(self.config.thresholds)
          missing_reason = NO_JUDGE_REASON

        if verdict is None:
          entry = self._entry(test_def, runner, ctx, started, 0.0, missing_reason, "", thresholds, status=FAIL)
        else:
          entry = self._entry(test_def, runner, ctx, started, verdict.score, verdict.reason, verdict.improvement,
                              thresholds)
        self._persist(entry)

      except Exception as e:
        body_failed = True
        error = str(e) or type(e).__name__
        logger.warning("Iteration %s [%s] failed: %s", test_id, runner.name, error)
        self._step(test_id, runner.name, "agent" if agent.mode else "setup", "error", error)
        # A failed judge assertion keeps its suggestions.
        improvement = e.improvement if isinstance(e, JudgeFailure) else ""
        entry = self._entry(test_def, runner, ctx, started, 0.0, f"Execution error: {error}", improvement,
                            ctx.judge_thresholds or resolve_thresholds(self.config.thresholds), status=FAIL)
        self._persist_quietly(entry)

      after_hooks = self.hooks.after_each_for(test_def.suite_path)
      if body_failed:
        for hook in after_hooks:
          try:
            hook(ctx)
          except Exception as e:
            logger.warning("after_each hook failed during cleanup of %s [%s]: %s", test_id, runner.name, e)
      else:
        try:
          for hook in after_hooks:
            hook(ctx)
        except Exception as e:
          error = f"after_each hook failed: {e}"
          logger.error("Iteration %s [%s]: %s", test_id, runner.name, error)
    finally:
      teardown = getattr(self.environment, "teardown", None)
      if callable(teardown):
        try:
          teardown(self.cwd)
        except Exception as e:
          logger.error("Environment teardown failed for %s [%s]: %s", test_id, runner.name, e)

    result = RunResult(test_id=test_id, runner=runner.name, entry=entry, error=error)
    notify_result(self.reporter, result)
    return result

  def _persist_quietly(self, entry: LedgerEntry) -> None:
    try:
      self._persist(entry)
    except Exception as e:
      logger.error("Could not record failed iteration %s [%s]: %s", entry.test_id, entry.agent_runner, e)

  def run_test(self, test_def: TestDefinition) -> List[RunResult]:
    return [self.run_iteration(test_def, runner) for runner in self.config.active_runners()]

  def run_tests(self, tests: Sequence[TestDefinition]) -> List[RunResult]:
    runners = self.config.active_runners()
    self.reporter.on_run_start(len(tests), [r.name for r in runners])
    self.ledger.initialize()
    results: List[RunResult] = []
    for test_def in tests:
      results.extend(self.run_test(test_def))
    self.reporter.on_run_end(compute_summary(results))
    return results

  def dry_run(self, test_def: TestDefinition) -> ExecutionPlan:
    """Run only the test body against inert doubles. Hooks are not called."""
    ctx = EvalContext(self.cwd, environment=None, judge_config=self.config.judge,
                      thresholds=self.config.thresholds, dry_run=True)
    agent = AgentHandle("(dry-run)", "", ctx)
    error = None
    try:
      test_def.fn(agent, ctx)
    except Exception as e:
      error = str(e) or type(e).__name__

    return ExecutionPlan(
        test_id=test_def.title,
        suite_path=list(test_def.suite_path),
        mode=agent.mode or "none",
        instruction=agent.instruction,
        prompts=list(agent.prompts),
        tasks=[{"name": t.name, "criteria": t.criteria, "weight": t.weight} for t in ctx.tasks],
        runners=[{"name": r.name, "model": r.model} for r in self.config.active_runners()],
        after_each_commands=[{"name": c.name, "command": c.command} for c in self.config.after_each],
        judge_assertions=len(ctx.judge_calls),
        error=error,
    )


def run_test(test_def: TestDefinition, config: EvalConfig, reporter: Optional[SilentReporter] = None,
             hooks: Optional[HookTree] = None) -> List[RunResult]:
  return Pipeline(config, reporter=reporter, hooks=hooks).run_test(test_def)


def run_tests(tests: Sequence[TestDefinition], config: EvalConfig, reporter: Optional[SilentReporter] = None,
              hooks: Optional[HookTree] = None) -> List[RunResult]:
  return Pipeline(config, reporter=reporter, hooks=hooks).run_tests(tests)


def dry_run_test(test_def: TestDefinition, config: EvalConfig, hooks: Optional[HookTree] = None) -> ExecutionPlan:
  return Pipeline(config, hooks=hooks).dry_run(test_def)
