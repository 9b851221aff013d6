from types import SimpleNamespace

import pytest

from agent_eval.config import EvalConfig
from agent_eval.dsl import clear_registry
from agent_eval.environment import EnvironmentCommandResult
from agent_eval.hooks import HookTree
from agent_eval.ledger import SqliteLedger
from agent_eval.models import JudgeResult
from agent_eval.runners import RunnerExecResult


class FakeEnvironment:
    name = "fake"

    def __init__(self, log, diff=""):
        self.log = log
        self.diff = diff
        self.commands = []

    def setup(self, cwd):
        self.log.append("setup")

    def execute(self, command, cwd, timeout=None):
        self.commands.append((command, timeout))
        self.log.append(f"exec:{command}")
        return EnvironmentCommandResult(stdout=f"ran {command}", stderr="", exit_code=0)

    def get_diff(self, cwd):
        self.log.append("diff")
        return self.diff

    def teardown(self, cwd):
        self.log.append("teardown")


class FakeRunner:
    model = "fake-model"

    def __init__(self, name, log, exit_code=0):
        self.name = name
        self.log = log
        self.exit_code = exit_code
        self.prompts = []

    def execute(self, prompt, context):
        self.prompts.append(prompt)
        self.log.append(f"agent:{self.name}")
        return RunnerExecResult(stdout="done", stderr="boom" if self.exit_code else "", exit_code=self.exit_code)


class FakeJudge:
    name = "fake-judge"

    def __init__(self, log, score=0.9):
        self.log = log
        self.score = score
        self.prompts = []

    def judge(self, ctx, prompt, model=None):
        self.prompts.append(prompt)
        self.log.append("judge")
        return JudgeResult(passed=True, score=self.score, reason="looks right", improvement="none")


class FakeModel:
    name = "fake"
    model_id = "fake-model-1"

    def __init__(self, payload):
        self.payload = payload
        self.calls = []

    def generate_object(self, prompt, schema, model=None):
        self.calls.append(SimpleNamespace(prompt=prompt, schema=schema, model=model))
        return schema.model_validate(self.payload)


@pytest.fixture(autouse=True)
def _clean_registry():
    clear_registry()
    yield
    clear_registry()


@pytest.fixture
def log():
    return []


@pytest.fixture
def fake_model():
    return FakeModel


@pytest.fixture
def fake_env(log):
    return FakeEnvironment(log)


@pytest.fixture
def harness(tmp_path, log):
    """A config wired to fakes plus a fresh hook tree and a real SQLite ledger."""
    env = FakeEnvironment(log, diff="diff --git a/app.py b/app.py\n+print('hi')\n")
    judge = FakeJudge(log)
    runners = [FakeRunner("alpha", log), FakeRunner("beta", log)]
    ledger = SqliteLedger(tmp_path / ".agenteval")
    cfg = EvalConfig(
        runners=runners,
        judge=judge,
        root_dir=str(tmp_path),
        environment=env,
        ledger=ledger,
    )
    return SimpleNamespace(
        config=cfg, env=env, judge=judge, runners=runners, ledger=ledger, hooks=HookTree(), log=log,
        make_runner=lambda name, exit_code=0: FakeRunner(name, log, exit_code=exit_code),
    )
