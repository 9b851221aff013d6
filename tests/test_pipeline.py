"""Tests for the per-iteration pipeline: modes, hooks, errors and ordering."""

import pytest

from agent_eval.config import AfterEachCommand
from agent_eval.context import EvalContext
from agent_eval.errors import InstructPolicyError, ModeMixError
from agent_eval.expect import expect
from agent_eval.models import FAIL, PASS, WARN, TestDefinition, Thresholds
from agent_eval.pipeline import AgentHandle, Pipeline, NO_TASKS_REASON, run_test


def _pipeline(h):
    return Pipeline(h.config, hooks=h.hooks)


def test_agent_handle_single_instruct_policy():
    agent = AgentHandle("a", "m", EvalContext("."))
    agent.instruct("do it")
    with pytest.raises(InstructPolicyError, match="Single-Instruct Policy"):
        agent.instruct("do it again")


def test_agent_handle_rejects_mode_mixing():
    agent = AgentHandle("a", "m", EvalContext("."))
    agent.instruct("do it")
    with pytest.raises(ModeMixError, match=r"Cannot use run\(\) after instruct\(\)"):
        agent.run("x")

    agent = AgentHandle("a", "m", EvalContext("."))
    agent.run("x")
    agent.run("y")
    with pytest.raises(ModeMixError, match=r"Cannot use instruct\(\) after run\(\)"):
        agent.instruct("z")
    assert agent.prompts == ["x", "y"]


def test_imperative_flow_records_one_entry_per_runner(harness):
    harness.config.after_each = [AfterEachCommand(name="tests", command="pytest -q")]

    def body(agent, ctx):
        agent.run("Add a greeting")
        expect(ctx).to_pass_judge("Prints hi")

    results = run_test(TestDefinition(title="greets", fn=body), harness.config, hooks=harness.hooks)

    assert [r.runner for r in results] == ["alpha", "beta"]
    assert all(r.status == PASS and r.passed for r in results)
    runs = harness.ledger.get_runs()
    assert len(runs) == 2
    entry = runs[0]
    assert entry.test_id == "greets"
    assert entry.judge_model == "fake-judge"
    assert entry.context.diff.startswith("diff --git a/app.py")
    assert [c.name for c in entry.context.commands] == ["tests"]
    # agent -> diff -> after_each inline, then the judge
    first = harness.log[:6]
    assert first == ["setup", "agent:alpha", "diff", "exec:pytest -q", "judge", "teardown"]


def test_imperative_without_judge_is_fail(harness):
    results = run_test(TestDefinition(title="t", fn=lambda agent, ctx: agent.run("x")), harness.config,
                       hooks=harness.hooks)
    assert results[0].status == FAIL
    assert "without a judge evaluation" in results[0].entry.reason
    assert results[0].error is None


def test_judge_failure_is_an_execution_error(harness):
    harness.judge.score = 0.2
    harness.config.runners = harness.runners[:1]

    def body(agent, ctx):
        agent.run("x")
        expect(ctx).to_pass_judge("criteria")
        raise AssertionError("never reached")

    res = run_test(TestDefinition(title="t", fn=body), harness.config, hooks=harness.hooks)[0]
    entry = res.entry
    assert entry.status == FAIL
    assert entry.score == 0.0
    assert entry.reason.startswith("Execution error: ")
    assert "score 0.20" in entry.reason
    assert "looks right" in entry.reason
    assert entry.improvement == "none"
    assert res.error is not None
    assert harness.ledger.get_runs()[0].reason == entry.reason


def test_per_call_thresholds_override_global(harness):
    harness.judge.score = 0.7
    harness.config.thresholds = Thresholds(warn=0.95, fail=0.9)

    def strict(agent, ctx):
        agent.run("x")
        expect(ctx).to_pass_judge("c")

    def lenient(agent, ctx):
        agent.run("x")
        expect(ctx).to_pass_judge("c", thresholds=Thresholds(warn=0.6, fail=0.3))

    harness.config.runners = harness.runners[:1]
    assert run_test(TestDefinition(title="strict", fn=strict), harness.config, hooks=harness.hooks)[0].status == FAIL
    res = run_test(TestDefinition(title="lenient", fn=lenient), harness.config, hooks=harness.hooks)[0]
    assert res.status == PASS
    assert res.entry.thresholds == Thresholds(warn=0.6, fail=0.3)


def test_declarative_runs_tasks_and_builds_weighted_prompt(harness):
    harness.judge.score = 0.6
    harness.config.runners = harness.runners[:1]

    def body(agent, ctx):
        agent.instruct("Add a /health route")
        ctx.add_task("build", lambda: ctx.exec("make build"), "Build succeeds", weight=2)
        ctx.add_task("test", lambda: ctx.exec("make test"), "Tests pass")

    res = run_test(TestDefinition(title="health", fn=body), harness.config, hooks=harness.hooks)[0]

    assert res.status == WARN
    assert harness.runners[0].prompts == ["Add a /health route"]
    assert harness.log.index("agent:alpha") < harness.log.index("exec:make build") < harness.log.index(
        "exec:make test") < harness.log.index("judge")
    prompt = harness.judge.prompts[0]
    assert "## Task Results (2 tasks, total weight: 3)" in prompt
    assert "### Task 1: build (weight: 2)" in prompt
    assert 'The agent was asked to: "Add a /health route"' in prompt


def test_declarative_without_tasks_or_judge_is_fail_not_crash(harness):
    harness.config.runners = harness.runners[:1]
    res = run_test(TestDefinition(title="t", fn=lambda agent, ctx: agent.instruct("x")), harness.config,
                   hooks=harness.hooks)[0]
    assert res.status == FAIL
    assert res.entry.reason == NO_TASKS_REASON
    assert "without tasks or judge evaluation" in res.entry.reason


def test_errors_are_isolated_per_iteration(harness):
    harness.config.runners = [harness.make_runner("broken", exit_code=3), harness.runners[0]]

    def body(agent, ctx):
        agent.run("x")
        expect(ctx).to_pass_judge("c")

    results = run_test(TestDefinition(title="t", fn=body), harness.config, hooks=harness.hooks)
    assert results[0].status == FAIL
    assert results[0].entry.reason.startswith("Execution error: Agent 'broken' exited with code 3")
    assert results[0].error is not None
    assert results[1].status == PASS
    assert len(harness.ledger.get_runs()) == 2


def test_double_instruct_recorded_as_execution_error(harness):
    harness.config.runners = harness.runners[:1]

    def body(agent, ctx):
        agent.instruct("a")
        agent.instruct("b")

    res = run_test(TestDefinition(title="t", fn=body), harness.config, hooks=harness.hooks)[0]
    assert res.status == FAIL
    assert "Single-Instruct Policy" in res.entry.reason


def test_hooks_match_suite_prefix_in_registration_order(harness):
    harness.config.runners = harness.runners[:1]
    calls = []
    harness.config.before_each = lambda ctx: calls.append("config")
    harness.hooks.add_before_each([], lambda ctx: calls.append("root"))
    harness.hooks.add_before_each(["api"], lambda ctx: calls.append("api"))
    harness.hooks.add_before_each(["api", "auth"], lambda ctx: calls.append("auth"))
    harness.hooks.add_before_each(["ui"], lambda ctx: calls.append("ui"))
    harness.hooks.add_after_each(["api"], lambda ctx: calls.append("after-api"))

    def body(agent, ctx):
        calls.append("body")

    run_test(TestDefinition(title="t", fn=body, suite_path=("api", "auth")), harness.config, hooks=harness.hooks)
    assert calls == ["config", "root", "api", "auth", "body", "after-api"]


def test_after_each_hook_errors_swallowed_on_error_path(harness):
    harness.config.runners = harness.runners[:1]

    def bad_hook(ctx):
        raise RuntimeError("cleanup broke")

    harness.hooks.add_after_each([], bad_hook)

    def body(agent, ctx):
        raise RuntimeError("body broke")

    res = run_test(TestDefinition(title="t", fn=body), harness.config, hooks=harness.hooks)[0]
    assert res.entry.reason == "Execution error: body broke"
    assert harness.log[-1] == "teardown"


def test_after_each_hook_error_on_success_path_marks_iteration(harness):
    harness.config.runners = harness.runners[:1]

    def bad_hook(ctx):
        raise RuntimeError("cleanup broke")

    harness.hooks.add_after_each([], bad_hook)

    def body(agent, ctx):
        agent.run("x")
        expect(ctx).to_pass_judge("c")

    res = run_test(TestDefinition(title="t", fn=body), harness.config, hooks=harness.hooks)[0]
    assert res.error == "after_each hook failed: cleanup broke"
    assert harness.log[-1] == "teardown"


def test_iterations_are_strictly_sequential(harness):
    tests = [
        TestDefinition(title=f"t{i}", fn=lambda agent, ctx: (agent.run("x"), expect(ctx).to_pass_judge("c")))
        for i in range(3)
    ]
    Pipeline(harness.config, hooks=harness.hooks).run_tests(tests)

    lifecycle = [e for e in harness.log if e in ("setup", "teardown")]
    assert len(lifecycle) == 2 * 3 * len(harness.runners)
    # never two setups without a teardown in between
    assert lifecycle == ["setup", "teardown"] * (len(lifecycle) // 2)


def test_matrix_filter_limits_runners(harness):
    harness.config.matrix_runners = ["beta"]
    results = run_test(TestDefinition(title="t", fn=lambda agent, ctx: None), harness.config, hooks=harness.hooks)
    assert [r.runner for r in results] == ["beta"]
