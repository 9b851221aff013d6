"""Structural checks for user-supplied plugins.

Plugins come from ``agenteval.config.py`` so nothing guarantees their shape
until we look. Every violation is collected so the user sees the whole list
at once instead of fixing one crash at a time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Sequence

LEDGER_METHODS = (
    "initialize",
    "record_run",
    "get_runs",
    "get_run_by_id",
    "get_test_ids",
    "get_test_tree",
    "get_latest_entries",
    "get_stats",
    "override_run_score",
    "get_run_overrides",
)
ENVIRONMENT_METHODS = ("setup", "execute", "get_diff")
RUNNER_PROPERTIES = ("name", "model")
RUNNER_METHODS = ("execute",)
MODEL_PROPERTIES = ("name", "model_id")
MODEL_METHODS = ("generate_object",)


@dataclass
class PluginValidationIssue:
  plugin: str
  member: str
  expected: str
  message: str

  def to_dict(self):
    return {"plugin": self.plugin, "member": self.member, "expected": self.expected, "message": self.message}


def is_judge_plugin(obj: Any) -> bool:
  return obj is not None and callable(getattr(obj, "judge", None))


def _check(obj: Any, label: str, properties: Sequence[str], methods: Sequence[str]) -> List[PluginValidationIssue]:
  issues: List[PluginValidationIssue] = []
  if obj is None or isinstance(obj, (str, int, float, bool, list, tuple, dict)):
    issues.append(PluginValidationIssue(
        plugin=label, member="(self)", expected="object",
        message=f"{label} must be an object, got {type(obj).__name__}"))
    return issues
  for prop in properties:
    if getattr(obj, prop, None) is None:
      issues.append(PluginValidationIssue(
          plugin=label, member=prop, expected="property",
          message=f"{label} is missing required property '{prop}'"))
  for m in methods:
    if not callable(getattr(obj, m, None)):
      issues.append(PluginValidationIssue(
          plugin=label, member=m, expected="method",
          message=f"{label} is missing required method '{m}()'"))
  return issues


def validate_ledger(obj: Any, label: str = "ledger") -> List[PluginValidationIssue]:
  return _check(obj, label, ("name",), LEDGER_METHODS)


def validate_environment(obj: Any, label: str = "environment") -> List[PluginValidationIssue]:
  return _check(obj, label, ("name",), ENVIRONMENT_METHODS)


def validate_runner(obj: Any, label: str = "runner") -> List[PluginValidationIssue]:
  return _check(obj, label, RUNNER_PROPERTIES, RUNNER_METHODS)


def validate_model(obj: Any, label: str = "model") -> List[PluginValidationIssue]:
  return _check(obj, label, MODEL_PROPERTIES, MODEL_METHODS)


def validate_judge(obj: Any, label: str = "judge") -> List[PluginValidationIssue]:
  """Only objects with a callable ``judge`` are plugins; plain judge configs are skipped."""
  if is_judge_plugin(obj):
    return _check(obj, label, ("name",), ("judge",))
  llm = getattr(obj, "llm", None)
  if llm is not None:
    return validate_model(llm, f"{label}.llm")
  return []


def validate_plugins(cfg: Any) -> List[PluginValidationIssue]:
  issues: List[PluginValidationIssue] = []
  if cfg.ledger is not None:
    issues.extend(validate_ledger(cfg.ledger))
  if cfg.environment is not None:
    issues.extend(validate_environment(cfg.environment))
  for i, runner in enumerate(cfg.runners or []):
    name = getattr(runner, "name", None)
    label = f"runners[{i}]" + (f" ({name})" if isinstance(name, str) else "")
    issues.extend(validate_runner(runner, label))
    llm = getattr(runner, "llm", None)
    if llm is not None:
      issues.extend(validate_model(llm, f"{label}.llm"))
  if cfg.judge is not None:
    issues.extend(validate_judge(cfg.judge))
  return issues


def format_plugin_errors(issues: Sequence[PluginValidationIssue]) -> str:
  lines = [f"Invalid agent-eval configuration ({len(issues)} problem{'s' if len(issues) != 1 else ''}):", ""]
  for i, issue in enumerate(issues, 1):
    lines.append(f"  {i}. [{issue.plugin}] {issue.message} (expected {issue.expected})")
  lines.append("")
  lines.append("Fix the plugins in agenteval.config.py and run again.")
  return "\n".join(lines)
