import pytest

from agent_eval.config import define_config, validate_config, validate_thresholds
from agent_eval.errors import ConfigError, PluginConfigError
from agent_eval.models import DEFAULT_THRESHOLDS, FAIL, PASS, WARN, Thresholds, compute_status, resolve_thresholds


@pytest.mark.parametrize("score,expected", [
    (1.0, PASS),
    (0.8, PASS),
    (0.79, WARN),
    (0.65, WARN),
    (0.5, WARN),
    (0.49999, FAIL),
    (0.0, FAIL),
])
def test_default_thresholds(score, expected):
    assert compute_status(score) == expected
    assert compute_status(score, DEFAULT_THRESHOLDS) == expected


def test_custom_thresholds():
    t = Thresholds(warn=0.9, fail=0.7)
    assert compute_status(0.85, t) == WARN
    assert compute_status(0.9, t) == PASS
    assert compute_status(0.69, t) == FAIL


def test_resolve_prefers_most_specific():
    per_call = Thresholds(warn=0.95, fail=0.9)
    global_ = Thresholds(warn=0.6, fail=0.3)
    assert resolve_thresholds(per_call, global_) is per_call
    assert resolve_thresholds(None, global_) is global_
    assert resolve_thresholds(None, None) == DEFAULT_THRESHOLDS


def test_thresholds_round_trip_legacy_missing():
    assert Thresholds.from_dict(None) == DEFAULT_THRESHOLDS
    assert Thresholds.from_dict({"warn": 0.7, "fail": 0.2}) == Thresholds(warn=0.7, fail=0.2)


def test_validate_thresholds_rejects_out_of_range_and_inverted():
    with pytest.raises(ConfigError, match="between 0 and 1"):
        validate_thresholds(Thresholds(warn=1.5, fail=0.5))
    with pytest.raises(ConfigError, match="must not exceed"):
        validate_thresholds(Thresholds(warn=0.4, fail=0.6))
    assert validate_thresholds(None) is None


def test_define_config_accepts_dict_thresholds():
    cfg = define_config(thresholds={"warn": 0.9, "fail": 0.6})
    assert cfg.thresholds == Thresholds(warn=0.9, fail=0.6)


def test_validate_config_reports_thresholds_as_issue():
    cfg = define_config(thresholds={"warn": 0.3, "fail": 0.6})
    with pytest.raises(PluginConfigError) as exc:
        validate_config(cfg)
    assert exc.value.issues[0].plugin == "thresholds"
