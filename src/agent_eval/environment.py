"""Execution environments: where agents run and where diffs are read from."""

from __future__ import annotations

import logging
import subprocess
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT_S = 120.0
TIMEOUT_EXIT_CODE = 124


@dataclass
class EnvironmentCommandResult:
  stdout: str
  stderr: str
  exit_code: int


class Environment(Protocol):
  name: str

  def setup(self, cwd: str) -> None:
    ...

  def execute(self, command: str, cwd: str, timeout: Optional[float] = None) -> EnvironmentCommandResult:
    ...

  def get_diff(self, cwd: str) -> str:
    ...


def run_shell(command: str, cwd: str, timeout: Optional[float]) -> EnvironmentCommandResult:
  """Run ``command`` through the shell. A timeout becomes exit code 124."""
  t = DEFAULT_COMMAND_TIMEOUT_S if timeout is None else timeout
  try:
    proc = subprocess.run(command, cwd=cwd, shell=True, capture_output=True, text=True, timeout=t)
  except subprocess.TimeoutExpired as e:
    out = e.stdout if isinstance(e.stdout, str) else (e.stdout or b"").decode("utf-8", "replace")
    return EnvironmentCommandResult(stdout=out, stderr=f"Timed out after {t:g}s", exit_code=TIMEOUT_EXIT_CODE)
  return EnvironmentCommandResult(stdout=proc.stdout, stderr=proc.stderr, exit_code=proc.returncode)


def _git(args: List[str], cwd: str, check: bool = True) -> str:
  proc = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True,
                        timeout=DEFAULT_COMMAND_TIMEOUT_S)
  if check and proc.returncode != 0:
    raise RuntimeError(f"git {' '.join(args)} failed: {proc.stderr.strip()}")
  return proc.stdout


class LocalEnvironment:
  """Runs agents directly in the working tree and resets it with git.

    ``setup`` discards every tracked change and removes untracked files, so the
    working tree must be a git repository whose HEAD is the baseline.
    """

  name = "local"

  def setup(self, cwd: str) -> None:
    _git(["reset", "--hard", "HEAD"], cwd)
    _git(["clean", "-fd"], cwd)

  def execute(self, command: str, cwd: str, timeout: Optional[float] = None) -> EnvironmentCommandResult:
    return run_shell(command, cwd, timeout)

  def get_diff(self, cwd: str) -> str:
    # Intent-to-add makes new files show up in the unstaged diff.
    _git(["add", "-N", "."], cwd, check=False)
    staged = _git(["diff", "--cached"], cwd, check=False)
    unstaged = _git(["diff"], cwd, check=False)
    return "\n".join(part for part in (staged, unstaged) if part.strip())


class DockerEnvironment:
  """One throwaway container per iteration with the working tree bind-mounted."""

  name = "docker"

  def __init__(self, image: str, workdir: str = "/workspace", docker_bin: str = "docker"):
    self.image = image
    self.workdir = workdir
    self.docker_bin = docker_bin
    self.container_id: Optional[str] = None

  def _docker(self, args: List[str], timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    return subprocess.run([self.docker_bin, *args], capture_output=True, text=True,
                          timeout=timeout or DEFAULT_COMMAND_TIMEOUT_S)

  def setup(self, cwd: str) -> None:
    host_dir = str(Path(cwd).resolve())
    name = f"agenteval-{uuid.uuid4().hex[:10]}"
    proc = self._docker([
        "create", "--name", name, "-v", f"{host_dir}:{self.workdir}", "-w", self.workdir,
        self.image, "sleep", "infinity",
    ])
    if proc.returncode != 0:
      raise RuntimeError(f"docker create failed: {proc.stderr.strip()}")
    self.container_id = proc.stdout.strip() or name
    proc = self._docker(["start", self.container_id])
    if proc.returncode != 0:
      raise RuntimeError(f"docker start failed: {proc.stderr.strip()}")
    reset = self.execute("git reset --hard HEAD && git clean -fd", cwd)
    if reset.exit_code != 0:
      raise RuntimeError(f"workspace reset failed: {reset.stderr.strip()}")

  def execute(self, command: str, cwd: str, timeout: Optional[float] = None) -> EnvironmentCommandResult:
    if not self.container_id:
      raise RuntimeError("DockerEnvironment.execute called before setup()")
    t = DEFAULT_COMMAND_TIMEOUT_S if timeout is None else timeout
    try:
      proc = self._docker(["exec", "-w", self.workdir, self.container_id, "sh", "-c", command], timeout=t)
    except subprocess.TimeoutExpired:
      return EnvironmentCommandResult(stdout="", stderr=f"Timed out after {t:g}s", exit_code=TIMEOUT_EXIT_CODE)
    return EnvironmentCommandResult(stdout=proc.stdout, stderr=proc.stderr, exit_code=proc.returncode)

  def get_diff(self, cwd: str) -> str:
    res = self.execute("git add -N . && git diff --cached && git diff", cwd)
    return res.stdout

  def teardown(self, cwd: str) -> None:
    if not self.container_id:
      return
    proc = self._docker(["rm", "-f", self.container_id])
    if proc.returncode != 0:
      logger.warning("docker rm -f %s failed: %s", self.container_id, proc.stderr.strip())
    self.container_id = None
