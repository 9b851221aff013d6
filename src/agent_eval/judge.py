"""LLM-as-judge: prompt construction, verdict parsing and the CLI judge."""

from __future__ import annotations

import json
import logging
import re
import subprocess
import tempfile
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError

from .errors import ConfigError, JudgeCommandError, JudgeOutputError
from .models import CommandResult, JudgeResult, TaskDefinition
from .plugins import is_judge_plugin

logger = logging.getLogger(__name__)

CLI_JUDGE_TIMEOUT_S = 300.0
DEFAULT_MAX_RETRIES = 2
TASK_STDOUT_LIMIT = 2000
TASK_STDERR_LIMIT = 500

_DIFF_HEADER = re.compile(r"^diff --git a/(.+?) b/", re.MULTILINE)
_FENCE = re.compile(r"```(?:json)?\s*")
_PLACEHOLDER = re.compile(r"\{\{(prompt_file|prompt)\}\}")
_VERDICT_SHAPE = re.compile(r'\{[\s\S]*?"pass"\s*:[\s\S]*?"score"\s*:[\s\S]*?"reason"\s*:[\s\S]*?"improvement"\s*:[\s\S]*?\}')

TaskResults = Sequence[Tuple[TaskDefinition, CommandResult]]


class JudgeVerdict(BaseModel):
  """Structured verdict every judge must produce."""

  model_config = ConfigDict(populate_by_name=True)

  passed: StrictBool = Field(alias="pass", description="Whether the agent output meets the criteria")
  score: float = Field(ge=0, le=1, description="Score from 0.0 (total failure) to 1.0 (perfect)")
  reason: StrictStr = Field(description="Markdown-formatted explanation of the evaluation")
  improvement: StrictStr = Field(description="Markdown-formatted actionable suggestions to improve the score")

  def to_result(self) -> JudgeResult:
    return JudgeResult(passed=self.passed, score=self.score, reason=self.reason, improvement=self.improvement)


def extract_changed_files(diff: Optional[str]) -> List[str]:
  if not diff:
    return []
  seen: List[str] = []
  for m in _DIFF_HEADER.finditer(diff):
    if m.group(1) not in seen:
      seen.append(m.group(1))
  return seen


def build_file_scope_section(changed_files: Sequence[str], expected_files: Optional[Sequence[str]]) -> str:
  if not expected_files:
    return ""
  expected = set(expected_files)
  missing = [f for f in expected_files if f not in changed_files]
  unexpected = [f for f in changed_files if f not in expected]

  parts = ["\n## File Scope Analysis"]
  parts.append(f"\n**Expected files:** {', '.join(expected_files)}")
  parts.append(f"**Actually changed:** {', '.join(changed_files) if changed_files else '(none)'}")
  if missing:
    parts.append(f"\n**Missing expected files:** {', '.join(missing)}")
  if unexpected:
    parts.append(f"\n**Unexpected file changes:** {', '.join(unexpected)}")
  parts.extend([
      "\n**Instructions for file scope:**",
      "- All expected files MUST be modified. Missing expected files should significantly reduce the score.",
      "- Unexpected file changes are acceptable ONLY if they are directly necessary for the task "
      "(e.g., updating imports, adding new test files).",
      "- If many unexpected files are changed, this may indicate scope creep: lower the score and explain why.",
  ])
  return "\n".join(parts)


def _task_section(task_results: TaskResults) -> str:
  total_weight = sum(t.weight for t, _ in task_results)
  blocks = []
  for i, (task, result) in enumerate(task_results, 1):
    output = result.stdout[:TASK_STDOUT_LIMIT]
    if result.stderr:
      output += f"\nSTDERR:\n{result.stderr[:TASK_STDERR_LIMIT]}"
    blocks.append(
        f"### Task {i}: {task.name} (weight: {task.weight:g})\n"
        f"**Criteria:** {task.criteria}\n"
        f"**Exit code:** {result.exit_code}\n"
        f"**Output:**\n```\n{output}\n```")
  return (f"\n## Task Results ({len(task_results)} tasks, total weight: {total_weight:g})\n"
          + "\n\n".join(blocks) + "\n")


def build_judge_prompt(
    criteria: str,
    ctx: Any,
    instruction: Optional[str] = None,
    task_results: Optional[TaskResults] = None,
    expected_files: Optional[Sequence[str]] = None,
) -> str:
  """Build the judge prompt from whatever the iteration produced.

    Args:
        criteria: Evaluation criteria text.
        ctx: EvalContext carrying the diff and the command transcript.
        instruction: Declarative instruction given to the agent, if any.
        task_results: (task, result) pairs; adds the weighted task section.
        expected_files: Adds the file scope analysis section.

    Returns:
        The full prompt, ending with the required JSON reply shape.
    """
  changed = extract_changed_files(ctx.diff)
  scope = build_file_scope_section(changed, expected_files)
  instruction_section = f'\n## Agent Instruction\nThe agent was asked to: "{instruction}"\n' if instruction else ""
  task_section = _task_section(task_results) if task_results else ""

  scoring = ["- Evaluate whether the agent's code changes correctly fulfill the criteria."]
  if task_results:
    scoring.extend([
        "- For each task, assess whether its criteria were met. Weight the scores accordingly.",
        "- A task with exit code 0 and output matching its criteria should score positively.",
        "- A task with non-zero exit code should score negatively unless the criteria explicitly allow it.",
    ])
  scoring.extend([
      "- Score from 0.0 (complete failure) to 1.0 (perfect execution).",
      "- Set pass=true if the overall score is satisfactory.",
      '- Provide a detailed Markdown explanation in "reason".',
      '- Provide actionable Markdown suggestions in "improvement" to help the agent achieve a higher score. '
      'If the score is 1.0, write "No improvement needed.".',
      "- Be strict but fair. Partial credit is encouraged.",
      '- Respond ONLY with valid JSON: { "pass": boolean, "score": number, "reason": string, "improvement": string }',
  ])

  return (
      "You are an expert code reviewer acting as a Judge for an AI coding agent evaluation.\n\n"
      f"## Evaluation Criteria\n{criteria}\n"
      f"{instruction_section}{task_section}\n"
      f"## Code Changes\n{ctx.logs or '(no logs captured)'}\n"
      f"{scope}\n\n"
      "## Scoring Instructions\n" + "\n".join(scoring))


def extract_judge_json(stdout: str) -> JudgeResult:
  """Pull the verdict object out of free-form CLI output.

    Raises:
        JudgeOutputError: kind ``no_json`` when nothing verdict-shaped is present,
            ``malformed`` when it is present but does not parse, ``schema`` when
            it parses but has missing or out-of-range fields.
    """
  stripped = _FENCE.sub("", stdout)
  decoder = json.JSONDecoder()
  candidate = None
  idx = stripped.find("{")
  while idx != -1:
    try:
      obj, _ = decoder.raw_decode(stripped[idx:])
    except json.JSONDecodeError:
      obj = None
    if isinstance(obj, dict) and "pass" in obj:
      candidate = obj
      break
    idx = stripped.find("{", idx + 1)

  if candidate is None:
    shape = _VERDICT_SHAPE.search(stripped)
    if shape is None:
      raise JudgeOutputError(
          JudgeOutputError.NO_JSON,
          "CLI judge output does not contain valid JSON with { pass, score, reason, improvement }.\n"
          f"Output: {stdout[:500]}",
          output=stdout)
    raise JudgeOutputError(
        JudgeOutputError.MALFORMED,
        f"CLI judge output contains malformed JSON.\nExtracted: {shape.group(0)[:300]}",
        output=stdout)

  try:
    return JudgeVerdict.model_validate(candidate).to_result()
  except ValidationError as e:
    raise JudgeOutputError(JudgeOutputError.SCHEMA, f"CLI judge JSON failed schema validation: {e}",
                           output=stdout) from e


def render_command(template: str, prompt: str, prompt_file: str) -> str:
  values = {"prompt": prompt.replace('"', '\\"'), "prompt_file": prompt_file}
  # One pass, so placeholder text inside the prompt is left alone.
  return _PLACEHOLDER.sub(lambda m: values[m.group(1)], template)


def judge_cli(prompt: str, command: str, max_retries: int = DEFAULT_MAX_RETRIES,
              timeout: float = CLI_JUDGE_TIMEOUT_S) -> JudgeResult:
  """Run a CLI judge, retrying only when its output is not a valid verdict."""
  with tempfile.TemporaryDirectory(prefix="agenteval-judge-") as tmp:
    prompt_file = Path(tmp) / "prompt.txt"
    prompt_file.write_text(prompt, encoding="utf-8")
    cmd = render_command(command, prompt, str(prompt_file))

    attempts = max_retries + 1
    last_error: Optional[JudgeOutputError] = None
    for attempt in range(1, attempts + 1):
      try:
        proc = subprocess.run(cmd, shell=True, capture_output=True, text=True, timeout=timeout)
      except subprocess.TimeoutExpired as e:
        raise JudgeCommandError(f"CLI judge timed out after {timeout:g}s") from e
      except OSError as e:
        raise JudgeCommandError(f"CLI judge could not be started: {e}") from e
      if proc.returncode != 0:
        raise JudgeCommandError(
            f"CLI judge exited with code {proc.returncode}: {(proc.stderr or proc.stdout or '').strip()[:500]}")
      try:
        return extract_judge_json(proc.stdout)
      except JudgeOutputError as e:
        last_error = e
        if attempt < attempts:
          logger.warning("CLI judge attempt %d/%d failed (%s), retrying", attempt, attempts, e.kind)
    assert last_error is not None
    raise last_error


def judge_label(config: Any) -> str:
  if config is None:
    return "none"
  if is_judge_plugin(config):
    return str(getattr(config, "name", "judge"))
  return config.label


def judge(
    ctx: Any,
    criteria: str,
    config: Any,
    model_override: Optional[str] = None,
    expected_files: Optional[Sequence[str]] = None,
    instruction: Optional[str] = None,
    task_results: Optional[TaskResults] = None,
) -> JudgeResult:
  """Score an iteration against ``criteria``.

    ``config`` is either a judge plugin (anything with ``judge(ctx, prompt, model=None)``)
    or a JudgeConfig selecting the CLI path (``command``) or the model path.
    """
  if config is None:
    raise ConfigError("No judge configured")
  prompt = build_judge_prompt(criteria, ctx, instruction=instruction, task_results=task_results,
                              expected_files=expected_files)
  if is_judge_plugin(config):
    return config.judge(ctx, prompt, model=model_override)
  if config.command:
    return judge_cli(prompt, config.command, max_retries=config.max_retries)
  llm = config.get_llm()
  if llm is None:
    raise ConfigError('Judge requires an "llm" model caller, a "command", or "provider" and "model" fields')
  verdict = llm.generate_object(prompt, JudgeVerdict, model=model_override)
  return verdict.to_result()
