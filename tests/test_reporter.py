import json

import pytest

from agent_eval.models import FAIL, PASS, WARN, LedgerEntry, RunResult
from agent_eval.reporter import ConsoleReporter, SilentReporter, compute_summary, notify_result, write_report


def _result(runner, status, score, error=None, test_id="t"):
    entry = LedgerEntry(test_id=test_id, agent_runner=runner, judge_model="j", score=score, passed=status != FAIL,
                        status=status, reason="first line\nsecond", duration_ms=1500)
    return RunResult(test_id=test_id, runner=runner, entry=entry, error=error)


def test_summary_counts_and_per_runner_breakdown():
    results = [
        _result("a", PASS, 0.9),
        _result("a", WARN, 0.6),
        _result("b", FAIL, 0.0, error="boom"),
        _result("b", FAIL, 0.3),
    ]
    s = compute_summary(results)
    assert (s.total, s.passed, s.warned, s.failed, s.errored) == (4, 1, 1, 2, 1)
    assert s.avg_score == pytest.approx(0.45)
    assert s.total_duration_s == 6.0
    assert s.ok is False
    assert s.by_runner["a"].passed == 1
    assert s.by_runner["b"].errored == 1


def test_summary_ok_with_warnings_only():
    s = compute_summary([_result("a", WARN, 0.6)])
    assert s.ok is True
    assert s.by_runner is None


def test_notify_result_dispatch():
    seen = []

    class Recorder(SilentReporter):
        def on_test_pass(self, result):
            seen.append("pass")

        def on_test_warn(self, result):
            seen.append("warn")

        def on_test_fail(self, result):
            seen.append("fail")

        def on_test_error(self, result):
            seen.append("error")

    r = Recorder()
    for res in (_result("a", PASS, 1), _result("a", WARN, 0.6), _result("a", FAIL, 0.1),
                _result("a", PASS, 1, error="after_each hook failed: x")):
        notify_result(r, res)
    assert seen == ["pass", "warn", "fail", "error"]


def test_console_reporter_modes(capsys):
    ConsoleReporter("standard").on_test_fail(_result("a", FAIL, 0.2, test_id="adds route"))
    out = capsys.readouterr().out
    assert "[eval] FAIL adds route [a] score=0.20 (1.5s)" in out
    assert "[eval]   first line" in out

    ConsoleReporter("quiet").on_test_pass(_result("a", PASS, 1))
    assert capsys.readouterr().out == ""


def test_write_report(tmp_path):
    path = write_report([_result("a", PASS, 0.9)], tmp_path / "out" / "report.json", config={"runners": ["a"]})
    data = json.loads(path.read_text())
    assert data["summary"]["passed"] == 1
    assert data["results"][0]["entry"]["testId"] == "t"
    assert data["config"] == {"runners": ["a"]}
