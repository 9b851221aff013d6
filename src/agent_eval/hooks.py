"""Suite-scoped before/after hooks stored as a tree keyed by suite path."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence, Tuple

Hook = Callable[[Any], Any]


@dataclass
class HookNode:
  name: str
  before_each: List[Tuple[int, Hook]] = field(default_factory=list)
  after_each: List[Tuple[int, Hook]] = field(default_factory=list)
  children: Dict[str, "HookNode"] = field(default_factory=dict)


class HookTree:
  """Registry of hooks where a node's hooks apply to every test beneath it.

    The root node stands for the empty suite path, so hooks registered outside
    any ``describe`` block match every test. Lookups walk at most one node per
    suite-path segment. A global sequence number keeps registration order when
    hooks from several levels are merged.
    """

  def __init__(self):
    self.root = HookNode(name="")
    self._seq = itertools.count()

  def _node(self, suite_path: Sequence[str]) -> HookNode:
    node = self.root
    for name in suite_path:
      node = node.children.setdefault(name, HookNode(name=name))
    return node

  def add_before_each(self, suite_path: Sequence[str], fn: Hook) -> None:
    self._node(suite_path).before_each.append((next(self._seq), fn))

  def add_after_each(self, suite_path: Sequence[str], fn: Hook) -> None:
    self._node(suite_path).after_each.append((next(self._seq), fn))

  def _collect(self, suite_path: Sequence[str], attr: str) -> List[Hook]:
    found: List[Tuple[int, Hook]] = list(getattr(self.root, attr))
    node = self.root
    for name in suite_path:
      node = node.children.get(name)
      if node is None:
        break
      found.extend(getattr(node, attr))
    found.sort(key=lambda pair: pair[0])
    return [fn for _, fn in found]

  def before_each_for(self, suite_path: Sequence[str]) -> List[Hook]:
    return self._collect(suite_path, "before_each")

  def after_each_for(self, suite_path: Sequence[str]) -> List[Hook]:
    return self._collect(suite_path, "after_each")

  def clear(self) -> None:
    self.root = HookNode(name="")
    self._seq = itertools.count()
