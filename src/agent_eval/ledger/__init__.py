from .base import Ledger, validate_override
from .jsonl import JsonLedger
from .sqlite import SqliteLedger
from .tree import build_test_tree

__all__ = [
    "Ledger",
    "JsonLedger",
    "SqliteLedger",
    "build_test_tree",
    "validate_override",
]
