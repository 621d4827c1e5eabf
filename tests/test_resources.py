import pytest

import jsbc
from jsbc import bridge
from jsbc.engine import runtime
from jsbc.errors import CompileError


class EngineTracker:
    """Records every runtime and context the bridge allocates."""

    def __init__(self, monkeypatch):
        self.runtimes = []
        self.contexts = []
        tracker = self

        class TrackedRuntime(runtime.Runtime):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                tracker.runtimes.append(self)

        class TrackedContext(runtime.Context):
            def __init__(self, rt):
                super().__init__(rt)
                tracker.contexts.append(self)

        monkeypatch.setattr(bridge, "Runtime", TrackedRuntime)
        monkeypatch.setattr(bridge, "Context", TrackedContext)

    def assert_all_freed(self, count: int) -> None:
        assert len(self.runtimes) == count
        assert len(self.contexts) == count
        assert all(rt.freed for rt in self.runtimes)
        assert all(ctx.freed for ctx in self.contexts)


@pytest.fixture
def tracker(monkeypatch):
    return EngineTracker(monkeypatch)


def test_compile_frees_its_engine(tracker):
    jsbc.compile("export default 1;", "r.js", ["m"])
    tracker.assert_all_freed(1)


def test_failed_compile_frees_its_engine(tracker):
    with pytest.raises(CompileError):
        jsbc.compile("let = ;", "r.js")
    tracker.assert_all_freed(1)


def test_execute_frees_on_every_path(tracker):
    data = jsbc.compile("throw new Error('x');", "r.js", script=True)
    jsbc.execute(data)
    jsbc.execute(data[:5])
    jsbc.execute(jsbc.compile("1;", "r.js", script=True))
    tracker.assert_all_freed(5)


def test_disassemble_frees_its_engine(tracker):
    data = jsbc.compile("export const a = 1;", "r.js")
    jsbc.disassemble(data)
    tracker.assert_all_freed(2)


def test_runtime_refuses_to_free_with_live_context():
    rt = runtime.Runtime()
    ctx = runtime.Context(rt)
    with pytest.raises(RuntimeError, match="contexts are alive"):
        rt.free()
    ctx.free()
    rt.free()
    with pytest.raises(RuntimeError, match="already freed"):
        rt.free()


def test_engine_scope_releases_after_body_error():
    seen = []
    with pytest.raises(ValueError):
        with bridge.engine_scope(["m"]) as ctx:
            seen.append(ctx)
            raise ValueError("body failed")
    assert seen[0].freed
    assert seen[0].rt.freed


def test_operations_do_not_share_state():
    # a global defined by one execution is invisible to the next
    jsbc.execute(jsbc.compile("globalThis.leak = 1;", "a.js", script=True))
    assert jsbc.execute(jsbc.compile("typeof leak;", "b.js", script=True)) == "undefined"
