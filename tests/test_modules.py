import pytest

from jsbc.engine import Context, Runtime
from jsbc.errors import ModuleRegistrationError
from jsbc.modules import register_stub_modules, resolve_stub_module, stub_module_init


@pytest.fixture
def ctx():
    rt = Runtime()
    rt.set_module_loader(resolve_stub_module)
    c = Context(rt)
    yield c
    c.free()
    rt.free()


def test_stub_init_always_succeeds(ctx):
    m = resolve_stub_module(ctx, "anything")
    assert stub_module_init(ctx, m) == 0
    assert m.exports == {}


@pytest.mark.parametrize("name", ["m", "./relative.js", "node:fs", "", "with spaces"])
def test_any_string_specifier_resolves(ctx, name):
    m = resolve_stub_module(ctx, name)
    assert m is not None
    assert m.module_name == name
    assert m.is_c_module


def test_registration_makes_modules_visible(ctx):
    register_stub_modules(ctx, ["a", "b"])
    assert set(ctx.loaded_modules) == {"a", "b"}
    assert ctx.resolve_module("a") is ctx.loaded_modules["a"]


def test_registration_is_idempotent(ctx):
    register_stub_modules(ctx, ["a"])
    first = ctx.loaded_modules["a"]
    register_stub_modules(ctx, ["a"])
    assert ctx.loaded_modules["a"] is first


def test_loader_answers_unregistered_names(ctx):
    m = ctx.resolve_module("late")
    assert m.module_name == "late"


def test_non_string_specifier_is_refused(ctx):
    assert resolve_stub_module(ctx, 42) is None
    with pytest.raises(ModuleRegistrationError, match="could not create module 42"):
        register_stub_modules(ctx, ["ok", 42])
