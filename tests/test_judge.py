"""Tests for judge prompt construction, verdict extraction and the CLI judge."""

import subprocess
from types import SimpleNamespace

import pytest

import agent_eval.judge as judge_mod
from agent_eval.config import JudgeConfig
from agent_eval.context import EvalContext
from agent_eval.errors import ConfigError, JudgeCommandError, JudgeOutputError
from agent_eval.models import CommandResult, TaskDefinition

DIFF = (
    "diff --git a/src/app.py b/src/app.py\n"
    "--- a/src/app.py\n+++ b/src/app.py\n+x = 1\n"
    "diff --git a/README.md b/README.md\n+docs\n"
)

VALID = '{"pass": true, "score": 0.9, "reason": "good", "improvement": "none"}'


def _ctx(diff=DIFF):
    ctx = EvalContext(".")
    ctx.diff = diff
    return ctx


def test_extract_changed_files():
    assert judge_mod.extract_changed_files(DIFF) == ["src/app.py", "README.md"]
    assert judge_mod.extract_changed_files("") == []
    assert judge_mod.extract_changed_files(None) == []


def test_prompt_includes_file_scope_analysis():
    prompt = judge_mod.build_judge_prompt("Adds x", _ctx(), expected_files=["src/app.py", "src/util.py"])
    assert "## File Scope Analysis" in prompt
    assert "**Missing expected files:** src/util.py" in prompt
    assert "**Unexpected file changes:** README.md" in prompt
    assert "scope creep" in prompt


def test_prompt_without_expected_files_has_no_scope_section():
    prompt = judge_mod.build_judge_prompt("Adds x", _ctx())
    assert "File Scope Analysis" not in prompt
    assert prompt.startswith("You are an expert code reviewer")
    assert "## Evaluation Criteria\nAdds x" in prompt
    assert "── Git Diff ──" in prompt
    assert prompt.rstrip().endswith('"improvement": string }')


def test_prompt_without_logs():
    prompt = judge_mod.build_judge_prompt("c", _ctx(diff=""))
    assert "(no logs captured)" in prompt


def test_task_output_is_truncated():
    task = TaskDefinition(name="t", action=lambda: None, criteria="c")
    res = CommandResult(name="t", command="x", stdout="a" * 5000, stderr="e" * 900, exit_code=1, duration_ms=5)
    prompt = judge_mod.build_judge_prompt("c", _ctx(), task_results=[(task, res)])
    assert "a" * 2000 in prompt and "a" * 2001 not in prompt
    assert "e" * 500 in prompt and "e" * 501 not in prompt
    assert "**Exit code:** 1" in prompt
    assert "non-zero exit code" in prompt


def test_extract_valid_json_with_preamble_and_fences():
    out = "Here is my verdict:\n```json\n" + VALID + "\n```\nthanks"
    result = judge_mod.extract_judge_json(out)
    assert result.passed is True
    assert result.score == 0.9
    assert result.reason == "good"


@pytest.mark.parametrize("output,kind", [
    ("no evaluation possible", JudgeOutputError.NO_JSON),
    ('{"pass": true, "score": 0.9, "reason": "unterminated, "improvement": "x"}', JudgeOutputError.MALFORMED),
    ('{"pass": true, "score": 1.5, "reason": "r", "improvement": "i"}', JudgeOutputError.SCHEMA),
    ('{"pass": "yes", "score": 0.5, "reason": "r", "improvement": "i"}', JudgeOutputError.SCHEMA),
    ('{"pass": true, "score": 0.5, "reason": "r"}', JudgeOutputError.SCHEMA),
])
def test_extract_failure_kinds(output, kind):
    with pytest.raises(JudgeOutputError) as exc:
        judge_mod.extract_judge_json(output)
    assert exc.value.kind == kind


def test_failure_messages_are_distinct():
    with pytest.raises(JudgeOutputError, match="does not contain valid JSON"):
        judge_mod.extract_judge_json("nothing here")
    with pytest.raises(JudgeOutputError, match="malformed JSON"):
        judge_mod.extract_judge_json('{"pass": true, "score": 0.9, "reason": "a, "improvement": "b"}')


def _fake_run(outputs, calls, returncode=0):
    def run(cmd, **kwargs):
        calls.append(cmd)
        out = outputs[min(len(calls), len(outputs)) - 1]
        return SimpleNamespace(stdout=out, stderr="", returncode=returncode)
    return run


def test_cli_judge_retries_until_exhausted(monkeypatch):
    calls = []
    monkeypatch.setattr(judge_mod.subprocess, "run", _fake_run(["no evaluation possible"], calls))
    with pytest.raises(JudgeOutputError) as exc:
        judge_mod.judge_cli("prompt", "judge-cli {{prompt_file}}", max_retries=1)
    assert exc.value.kind == JudgeOutputError.NO_JSON
    assert len(calls) == 2


def test_cli_judge_succeeds_on_second_attempt(monkeypatch):
    calls = []
    monkeypatch.setattr(judge_mod.subprocess, "run", _fake_run(["{not json", VALID], calls))
    result = judge_mod.judge_cli("prompt", "judge-cli", max_retries=2)
    assert result.score == 0.9
    assert len(calls) == 2


def test_cli_judge_does_not_retry_command_failures(monkeypatch):
    calls = []
    monkeypatch.setattr(judge_mod.subprocess, "run", _fake_run(["oops"], calls, returncode=127))
    with pytest.raises(JudgeCommandError):
        judge_mod.judge_cli("prompt", "missing-cli", max_retries=3)
    assert len(calls) == 1


def test_cli_judge_timeout_not_retried(monkeypatch):
    calls = []

    def run(cmd, **kwargs):
        calls.append(kwargs["timeout"])
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(judge_mod.subprocess, "run", run)
    with pytest.raises(JudgeCommandError, match="timed out"):
        judge_mod.judge_cli("prompt", "slow-cli", max_retries=2)
    assert calls == [300.0]


def test_cli_judge_substitutes_prompt_and_prompt_file(monkeypatch):
    seen = {}

    def run(cmd, **kwargs):
        seen["cmd"] = cmd
        path = cmd.split("FILE=")[1]
        with open(path, encoding="utf-8") as f:
            seen["file"] = f.read()
        return SimpleNamespace(stdout=VALID, stderr="", returncode=0)

    monkeypatch.setattr(judge_mod.subprocess, "run", run)
    judge_mod.judge_cli('say "hi"', 'judge -p "{{prompt}}" FILE={{prompt_file}}')
    assert 'judge -p "say \\"hi\\""' in seen["cmd"]
    assert seen["file"] == 'say "hi"'


def test_judge_model_path_uses_structured_output(fake_model):
    model = fake_model({"pass": False, "score": 0.4, "reason": "meh", "improvement": "more"})
    result = judge_mod.judge(_ctx(), "criteria", JudgeConfig(llm=model), model_override="big-model")
    assert result.score == 0.4
    assert result.passed is False
    assert model.calls[0].model == "big-model"
    assert "criteria" in model.calls[0].prompt


def test_judge_dispatches_to_cli(monkeypatch):
    calls = []
    monkeypatch.setattr(judge_mod.subprocess, "run", _fake_run([VALID], calls))
    result = judge_mod.judge(_ctx(), "criteria", JudgeConfig(command="judge {{prompt_file}}"))
    assert result.reason == "good"
    assert len(calls) == 1


def test_judge_without_backend_is_config_error():
    with pytest.raises(ConfigError):
        judge_mod.judge(_ctx(), "criteria", JudgeConfig())
    with pytest.raises(ConfigError):
        judge_mod.judge(_ctx(), "criteria", None)


def test_render_command_leaves_placeholders_inside_prompt():
    prompt = "diff mentions {{prompt_file}} and {{prompt}}"
    cmd = judge_mod.render_command('judge -p "{{prompt}}" --file {{prompt_file}}', prompt, "/tmp/p.txt")
    assert cmd == 'judge -p "diff mentions {{prompt_file}} and {{prompt}}" --file /tmp/p.txt'
