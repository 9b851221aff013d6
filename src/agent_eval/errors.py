"""Exception hierarchy for agent-eval."""

from __future__ import annotations

from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
  from .models import JudgeResult
  from .plugins import PluginValidationIssue


class AgentEvalError(Exception):
  pass


class ConfigError(AgentEvalError):
  pass


class PluginConfigError(ConfigError):
  """Raised at load time with every plugin contract violation found."""

  def __init__(self, issues: List["PluginValidationIssue"]):
    from .plugins import format_plugin_errors
    self.issues = issues
    super().__init__(format_plugin_errors(issues))


class InstructPolicyError(AgentEvalError):
  """Single-Instruct Policy and run()/instruct() mode mixing."""


class AgentExecutionError(AgentEvalError):
  pass


class JudgeCommandError(AgentEvalError):
  """The CLI judge could not be executed or exited abnormally. Never retried."""


class JudgeOutputError(AgentEvalError):
  """The CLI judge ran but its output did not carry a valid verdict.

    ``kind`` is one of ``no_json``, ``malformed`` or ``schema``.
    """

  NO_JSON = "no_json"
  MALFORMED = "malformed"
  SCHEMA = "schema"

  def __init__(self, kind: str, message: str, output: str = ""):
    self.kind = kind
    self.output = output
    super().__init__(message)


class JudgeFailure(AgentEvalError):
  """A judge verdict fell below the FAIL cutoff."""

  def __init__(self, result: "JudgeResult", message: Optional[str] = None):
    self.result = result
    self.score = result.score
    self.reason = result.reason
    self.improvement = result.improvement
    super().__init__(message or f"Judge evaluation failed (score {result.score:.2f}): {result.reason}")


class RunNotFoundError(AgentEvalError, LookupError):

  def __init__(self, run_id: int):
    self.run_id = run_id
    super().__init__(f"Run #{run_id} not found")


class ModeMixError(InstructPolicyError):
  """run() and instruct() used in the same test body."""
