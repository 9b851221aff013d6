import pytest

import agent_eval.dsl as dsl
from agent_eval.errors import ConfigError


def _noop(agent, ctx):
    pass


def test_describe_sets_suite_path():
    dsl.test("top", _noop)
    with dsl.describe("api"):
        with dsl.describe("auth"):
            dsl.test("login", _noop)
        dsl.test("health", _noop)

    paths = {t.title: t.suite_path for t in dsl.get_registered_tests()}
    assert paths == {"top": (), "login": ("api", "auth"), "health": ("api",)}


def test_decorator_form_and_tags():

    @dsl.test("decorated")
    def body(agent, ctx):
        pass

    dsl.test.tagged(["smoke", "fast"], "tagged", _noop)
    tests = dsl.get_registered_tests()
    assert [t.title for t in tests] == ["decorated", "tagged"]
    assert tests[0].fn is body
    assert tests[1].tags == ("smoke", "fast")


def test_skip_never_registers():
    dsl.test.skip("skipped", _noop)

    @dsl.test.skip("also skipped")
    def body(agent, ctx):
        pass

    assert dsl.get_registered_tests() == []


def test_duplicate_title_rejected():
    dsl.test("same", _noop)
    with pytest.raises(ConfigError, match="Duplicate test title"):
        dsl.test("same", _noop)


def test_hooks_registered_at_current_suite():
    calls = []
    dsl.before_each(lambda ctx: calls.append("root"))
    with dsl.describe("api"):
        dsl.before_each(lambda ctx: calls.append("api"))
        dsl.after_each(lambda ctx: calls.append("after-api"))

    hooks = dsl.registry.hooks
    for hook in hooks.before_each_for(("api", "x")):
        hook(None)
    for hook in hooks.before_each_for(("ui",)):
        hook(None)
    assert calls == ["root", "api", "root"]
    assert len(hooks.after_each_for(("api",))) == 1
    assert hooks.after_each_for(()) == []


def test_describe_pops_on_error():
    with pytest.raises(RuntimeError):
        with dsl.describe("broken"):
            raise RuntimeError("boom")
    dsl.test("after", _noop)
    assert dsl.get_registered_tests()[0].suite_path == ()
