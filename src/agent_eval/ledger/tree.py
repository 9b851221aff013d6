from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple

from ..models import TestTreeNode


def build_test_tree(pairs: Iterable[Tuple[str, Sequence[str]]]) -> List[TestTreeNode]:
  """Turn distinct (test_id, suite_path) pairs into a suite/test hierarchy.

    Pairs are consumed in order, so siblings keep first-seen order.
    """
  roots: List[TestTreeNode] = []
  # Suite nodes by their full path.
  suites: Dict[Tuple[str, ...], TestTreeNode] = {}
  seen = set()

  for test_id, suite_path in pairs:
    path = tuple(suite_path or ())
    if (test_id, path) in seen:
      continue
    seen.add((test_id, path))

    siblings = roots
    for depth in range(1, len(path) + 1):
      key = path[:depth]
      node = suites.get(key)
      if node is None:
        node = TestTreeNode(name=key[-1], type="suite", children=[])
        suites[key] = node
        siblings.append(node)
      siblings = node.children
    siblings.append(TestTreeNode(name=test_id, type="test", test_id=test_id))
  return roots
