"""Runner plugins: the agents under test."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Protocol

from pydantic import BaseModel, Field

from .config import DEFAULT_AGENT_TIMEOUT_S
from .llm import ModelCaller

logger = logging.getLogger(__name__)


@dataclass
class RunnerContext:
  cwd: str
  env: Any
  timeout: Optional[float] = None


@dataclass
class RunnerExecResult:
  files_written: List[str] = field(default_factory=list)
  stdout: str = ""
  stderr: str = ""
  exit_code: int = 0


class Runner(Protocol):
  name: str
  model: str

  def execute(self, prompt: str, context: RunnerContext) -> RunnerExecResult:
    ...


class CLIRunner:
  """Runs a coding agent CLI, e.g. ``claude -p "{{prompt}}" --dangerously-skip-permissions``."""

  def __init__(self, name: str, command: str):
    self.name = name
    self.command = command
    self.model = command

  def render(self, prompt: str) -> str:
    return self.command.replace("{{prompt}}", prompt.replace('"', '\\"'))

  def execute(self, prompt: str, context: RunnerContext) -> RunnerExecResult:
    cmd = self.render(prompt)
    timeout = context.timeout if context.timeout is not None else DEFAULT_AGENT_TIMEOUT_S
    logger.debug("runner %s: %s", self.name, cmd)
    res = context.env.execute(cmd, context.cwd, timeout=timeout)
    return RunnerExecResult(stdout=res.stdout, stderr=res.stderr, exit_code=res.exit_code)


class FileWrite(BaseModel):
  path: str = Field(description="Relative file path from project root")
  content: str = Field(description="Full file content to write")


class FileOperations(BaseModel):
  files: List[FileWrite] = Field(description="Files to create or modify")


API_RUNNER_PROMPT = """You are an expert coding agent. You must complete the following task by modifying or creating files in a project.

Task: {prompt}

Respond with the list of files to create or modify. Each file must include the full content (not a diff). Only include files that need changes."""


class APIRunner:
  """Asks a model for whole-file contents and writes them into the working tree."""

  def __init__(self, name: str, llm: ModelCaller):
    self.name = name
    self.llm = llm
    self.model = llm.model_id

  def _safe_path(self, root: Path, rel: str) -> Path:
    p = (root / rel).resolve()
    if root not in p.parents:
      raise ValueError(f"Path escapes working tree: {rel}")
    return p

  def execute(self, prompt: str, context: RunnerContext) -> RunnerExecResult:
    ops = self.llm.generate_object(API_RUNNER_PROMPT.format(prompt=prompt), FileOperations)
    root = Path(context.cwd).resolve()
    written: List[str] = []
    for f in ops.files:
      p = self._safe_path(root, f.path)
      p.parent.mkdir(parents=True, exist_ok=True)
      p.write_text(f.content, encoding="utf-8")
      written.append(f.path)
    return RunnerExecResult(files_written=written)
