"""Evaluation harness for AI coding agents.

Write tests in ``*.eval.py`` files with the DSL below, configure runners and a
judge in ``agenteval.config.py``, and run ``agenteval run``. Every
(test, runner) iteration is scored by the judge and recorded in the ledger.
"""

from .config import AfterEachCommand, EvalConfig, JudgeConfig, define_config, load_config
from .dsl import after_each, before_each, describe, test
from .environment import DockerEnvironment, LocalEnvironment
from .expect import expect
from .ledger import JsonLedger, SqliteLedger
from .llm import LLMConfig, LLMFactory
from .models import DEFAULT_THRESHOLDS, Thresholds, compute_status
from .pipeline import dry_run_test, run_test, run_tests
from .runners import APIRunner, CLIRunner

__all__ = [
    "AfterEachCommand",
    "EvalConfig",
    "JudgeConfig",
    "define_config",
    "load_config",
    "test",
    "describe",
    "before_each",
    "after_each",
    "expect",
    "LocalEnvironment",
    "DockerEnvironment",
    "SqliteLedger",
    "JsonLedger",
    "LLMConfig",
    "LLMFactory",
    "Thresholds",
    "DEFAULT_THRESHOLDS",
    "compute_status",
    "run_test",
    "run_tests",
    "dry_run_test",
    "CLIRunner",
    "APIRunner",
]
