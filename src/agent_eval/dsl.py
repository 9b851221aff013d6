"""Test-authoring DSL used inside ``*.eval.py`` files.

Example::

    from agent_eval import test, describe, before_each, expect

    with describe("auth"):
      before_each(lambda ctx: ctx.exec("npm install"))

      @test("adds a login route")
      def _(agent, ctx):
        agent.instruct("Add a /login route")
        ctx.add_task("build", lambda: ctx.exec("npm run build"), "Build succeeds")
"""

from __future__ import annotations

import contextlib
from typing import Any, Callable, Iterator, List, Optional, Sequence

from .errors import ConfigError
from .hooks import HookTree
from .models import TestDefinition


class TestRegistry:
  __test__ = False

  def __init__(self):
    self.tests: List[TestDefinition] = []
    self.hooks = HookTree()
    self._suite_stack: List[str] = []

  @property
  def current_suite_path(self) -> tuple:
    return tuple(self._suite_stack)

  def add(self, title: str, fn: Callable[..., Any], tags: Sequence[str] = ()) -> TestDefinition:
    if any(t.title == title for t in self.tests):
      raise ConfigError(f"Duplicate test title: {title!r}")
    td = TestDefinition(title=title, fn=fn, tags=tuple(tags), suite_path=self.current_suite_path)
    self.tests.append(td)
    return td

  @contextlib.contextmanager
  def describe(self, name: str) -> Iterator[None]:
    self._suite_stack.append(name)
    try:
      yield
    finally:
      self._suite_stack.pop()

  def clear(self) -> None:
    self.tests = []
    self.hooks.clear()
    self._suite_stack = []


registry = TestRegistry()


def test(title: str, fn: Optional[Callable[..., Any]] = None, tags: Sequence[str] = ()):
  """Register a test. Works as a call ``test("t", fn)`` or a decorator ``@test("t")``."""
  if fn is not None:
    registry.add(title, fn, tags)
    return fn

  def decorator(f: Callable[..., Any]) -> Callable[..., Any]:
    registry.add(title, f, tags)
    return f

  return decorator


def _tagged(tags: Sequence[str], title: str, fn: Optional[Callable[..., Any]] = None):
  return test(title, fn, tags=tags)


def _skip(title: str, fn: Optional[Callable[..., Any]] = None):
  # Skipped tests are never registered.
  if fn is not None:
    return fn
  return lambda f: f


test.tagged = _tagged
test.skip = _skip


def describe(name: str):
  return registry.describe(name)


def before_each(fn: Callable[[Any], Any]) -> Callable[[Any], Any]:
  registry.hooks.add_before_each(registry.current_suite_path, fn)
  return fn


def after_each(fn: Callable[[Any], Any]) -> Callable[[Any], Any]:
  registry.hooks.add_after_each(registry.current_suite_path, fn)
  return fn


def get_registered_tests() -> List[TestDefinition]:
  return list(registry.tests)


def clear_registry() -> None:
  registry.clear()
