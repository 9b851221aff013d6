from __future__ import annotations

import importlib.util
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .dsl import registry
from .errors import ConfigError
from .models import TestDefinition

logger = logging.getLogger(__name__)

SKIP_DIRS = {".git", "node_modules", ".venv", "venv", "__pycache__", ".agenteval"}


def discover_test_files(root: Path, pattern: str) -> List[Path]:
  root = Path(root)
  found = []
  for p in sorted(root.glob(pattern)):
    if not p.is_file():
      continue
    if any(part in SKIP_DIRS for part in p.relative_to(root).parts[:-1]):
      continue
    found.append(p)
  return found


def load_test_file(path: Path) -> List[TestDefinition]:
  """Import an eval file and return the tests it registered."""
  before = len(registry.tests)
  module_name = "agenteval_tests_" + "_".join(path.with_suffix("").parts[-3:]).replace(".", "_").replace("-", "_")
  spec = importlib.util.spec_from_file_location(module_name, path)
  if spec is None or spec.loader is None:
    raise ConfigError(f"Cannot import eval file: {path}")
  module = importlib.util.module_from_spec(spec)
  spec.loader.exec_module(module)
  tests = registry.tests[before:]
  logger.debug("Loaded %d test(s) from %s", len(tests), path)
  return tests


def load_tests(root: Path, pattern: str) -> List[Tuple[Path, List[TestDefinition]]]:
  return [(p, load_test_file(p)) for p in discover_test_files(root, pattern)]


def filter_tests(tests: Sequence[TestDefinition], name_filter: Optional[str] = None,
                 tags: Optional[Sequence[str]] = None) -> List[TestDefinition]:
  out = []
  for t in tests:
    if name_filter and name_filter.lower() not in t.title.lower():
      continue
    if tags and not set(tags) & set(t.tags):
      continue
    out.append(t)
  return out
