"""Run configuration and loading of ``agenteval.config.py``."""

from __future__ import annotations

import importlib.util
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .errors import ConfigError, PluginConfigError
from .llm import LLMConfig, LLMFactory, ModelCaller
from .models import Thresholds

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "agenteval.config.py"
DEFAULT_TEST_GLOB = "**/*.eval.py"
DEFAULT_OUTPUT_DIR = ".agenteval"
DEFAULT_AGENT_TIMEOUT_S = 600.0


@dataclass
class AfterEachCommand:
  name: str
  command: str


@dataclass
class JudgeConfig:
  """How verdicts are produced when no judge plugin is configured.

    Attributes:
        llm: Model caller used for structured verdicts.
        command: CLI template with ``{{prompt}}`` or ``{{prompt_file}}``.
        max_retries: Extra CLI attempts after an invalid-JSON response.
        provider: Shorthand for building ``llm`` via ``LLMFactory``.
        model: Model name for ``provider``.
        base_url: Endpoint override for ``provider``.
        api_key: Key override for ``provider``.
    """

  llm: Optional[ModelCaller] = None
  command: Optional[str] = None
  max_retries: int = 2
  provider: Optional[str] = None
  model: Optional[str] = None
  base_url: Optional[str] = None
  api_key: Optional[str] = None

  def get_llm(self) -> Optional[ModelCaller]:
    if self.llm is None and self.provider:
      self.llm = LLMFactory.build(LLMConfig(
          provider=self.provider,
          model=self.model or "gpt-4.1-mini",
          base_url=self.base_url,
          api_key=self.api_key,
      ))
    return self.llm

  @property
  def label(self) -> str:
    if self.llm is not None:
      return getattr(self.llm, "model_id", None) or getattr(self.llm, "name", "llm")
    if self.model:
      return f"{self.provider}:{self.model}" if self.provider else self.model
    if self.command:
      return self.command.split()[0]
    return "unknown"


@dataclass
class EvalConfig:
  """Configuration for an evaluation run.

    Attributes:
        runners: Agents under test (objects with name, model, execute).
        judge: A JudgeConfig or a judge plugin (object with a ``judge`` method).
        root_dir: Working tree the agents operate on.
        test_files: Glob (relative to root_dir) for eval files.
        matrix_runners: Restrict the run to these runner names.
        output_dir: Directory for the ledger and reports, relative to root_dir.
        timeout: Agent execution timeout in seconds.
        after_each: Commands run after every agent execution.
        before_each: Callable run with the context before every test body.
        thresholds: Global status thresholds.
        ledger: Ledger plugin; defaults to SqliteLedger(output_dir).
        environment: Environment plugin; defaults to LocalEnvironment.
        print_mode: Console verbosity (quiet, standard, verbose).
    """

  runners: List[Any] = field(default_factory=list)
  judge: Any = None
  root_dir: str = "."
  test_files: str = DEFAULT_TEST_GLOB
  matrix_runners: Optional[List[str]] = None
  output_dir: str = DEFAULT_OUTPUT_DIR
  timeout: Optional[float] = None
  after_each: List[AfterEachCommand] = field(default_factory=list)
  before_each: Optional[Callable[[Any], Any]] = None
  thresholds: Optional[Thresholds] = None
  ledger: Any = None
  environment: Any = None
  print_mode: str = "standard"

  @property
  def root_path(self) -> Path:
    return Path(self.root_dir).expanduser().resolve()

  @property
  def output_path(self) -> Path:
    p = Path(self.output_dir).expanduser()
    return p if p.is_absolute() else self.root_path / p

  @property
  def agent_timeout(self) -> float:
    return self.timeout if self.timeout is not None else DEFAULT_AGENT_TIMEOUT_S

  def active_runners(self) -> List[Any]:
    if not self.matrix_runners:
      return list(self.runners)
    wanted = set(self.matrix_runners)
    return [r for r in self.runners if r.name in wanted]

  def get_environment(self):
    if self.environment is None:
      from .environment import LocalEnvironment
      self.environment = LocalEnvironment()
    return self.environment

  def get_ledger(self):
    if self.ledger is None:
      from .ledger import SqliteLedger
      self.ledger = SqliteLedger(self.output_path)
    return self.ledger

  def to_dict(self) -> Dict[str, Any]:
    return {
        "root_dir": str(self.root_path),
        "test_files": self.test_files,
        "runners": [getattr(r, "name", "?") for r in self.runners],
        "matrix_runners": self.matrix_runners,
        "output_dir": str(self.output_path),
        "timeout": self.agent_timeout,
        "after_each": [{"name": a.name, "command": a.command} for a in self.after_each],
        "thresholds": self.thresholds.to_dict() if self.thresholds else None,
    }


def _coerce_thresholds(value: Union[Thresholds, Dict[str, float], None]) -> Optional[Thresholds]:
  if value is None or isinstance(value, Thresholds):
    return value
  if isinstance(value, dict):
    return Thresholds(warn=float(value.get("warn", 0.8)), fail=float(value.get("fail", 0.5)))
  raise ConfigError(f"thresholds must be a Thresholds or a dict, got {type(value).__name__}")


def threshold_problems(t: Thresholds) -> List[str]:
  problems = []
  for key in ("warn", "fail"):
    v = getattr(t, key)
    if not 0 <= v <= 1:
      problems.append(f"thresholds.{key} must be between 0 and 1, got {v}")
  if t.fail > t.warn:
    problems.append(f"thresholds.fail ({t.fail}) must not exceed thresholds.warn ({t.warn})")
  return problems


def validate_thresholds(t: Optional[Thresholds]) -> Optional[Thresholds]:
  if t is None:
    return None
  problems = threshold_problems(t)
  if problems:
    raise ConfigError("; ".join(problems))
  return t


def define_config(**kwargs: Any) -> EvalConfig:
  """Build an EvalConfig, accepting plain dicts for thresholds and after_each."""
  if "thresholds" in kwargs:
    kwargs["thresholds"] = _coerce_thresholds(kwargs["thresholds"])
  if "after_each" in kwargs:
    kwargs["after_each"] = [
        a if isinstance(a, AfterEachCommand) else AfterEachCommand(**a) for a in kwargs["after_each"] or []
    ]
  if isinstance(kwargs.get("judge"), dict):
    kwargs["judge"] = JudgeConfig(**kwargs["judge"])
  try:
    return EvalConfig(**kwargs)
  except TypeError as e:
    raise ConfigError(f"Invalid config: {e}") from e


def validate_config(cfg: EvalConfig) -> EvalConfig:
  """Fail fast with every plugin and threshold problem found."""
  from .plugins import PluginValidationIssue, validate_plugins

  issues = validate_plugins(cfg)
  if cfg.thresholds is not None:
    for msg in threshold_problems(cfg.thresholds):
      issues.append(PluginValidationIssue(plugin="thresholds", member="thresholds", expected="number in [0, 1]",
                                          message=msg))
  if issues:
    raise PluginConfigError(issues)
  return cfg


def find_config_file(cwd: Path) -> Optional[Path]:
  p = Path(cwd) / CONFIG_FILENAME
  return p if p.is_file() else None


def load_config(cwd: Union[str, Path] = ".", path: Optional[Union[str, Path]] = None) -> EvalConfig:
  """Import ``agenteval.config.py`` and return its module-level ``config``.

    Args:
        cwd: Directory searched for the config file.
        path: Explicit config file path (overrides the search).

    Returns:
        A validated EvalConfig. Without a config file, the defaults.
    """
  cwd = Path(cwd).expanduser().resolve()
  cfg_path = Path(path).expanduser().resolve() if path else find_config_file(cwd)
  if cfg_path is None:
    logger.info("No %s found in %s; using defaults", CONFIG_FILENAME, cwd)
    return validate_config(EvalConfig(root_dir=str(cwd)))
  if not cfg_path.is_file():
    raise ConfigError(f"Config file not found: {cfg_path}")

  spec = importlib.util.spec_from_file_location("agenteval_user_config", cfg_path)
  if spec is None or spec.loader is None:
    raise ConfigError(f"Cannot import config file: {cfg_path}")
  module = importlib.util.module_from_spec(spec)
  spec.loader.exec_module(module)

  cfg = getattr(module, "config", None)
  if not isinstance(cfg, EvalConfig):
    raise ConfigError(f"{cfg_path.name} must define `config = define_config(...)`")
  root = Path(cfg.root_dir).expanduser()
  if not root.is_absolute():
    cfg.root_dir = str((cfg_path.parent / root).resolve())
  logger.debug("Loaded config from %s", cfg_path)
  return validate_config(cfg)
