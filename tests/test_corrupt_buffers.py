import re
import signal
import struct
from contextlib import contextmanager
from functools import lru_cache

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

import jsbc
from jsbc import bridge
from jsbc.engine import read_object, write_object
from jsbc.engine.function import ClosureVar, FunctionBytecode
from jsbc.engine.writer import iter_instructions

STAGES = (bridge.STAGE_READ, bridge.STAGE_EVAL_MODULE, bridge.STAGE_CREATE_FUNCTION,
          bridge.STAGE_RUNTIME, bridge.STAGE_EVAL_OBJECT)

SCRIPT = """
var a = [1, 'two', {k: 3}];
function f(x) {
  try { return x + a.length; } finally { a.pop(); }
}
f(4) + ':' + (a[0] ? 'y' : 'n');
"""

MODULE = """
import * as ns from "m";
export const y = 2;
export function g() { return y + Object.keys(ns).length; }
g();
"""

needs_alarm = pytest.mark.skipif(not hasattr(signal, "setitimer"), reason="needs SIGALRM")


class Hang(Exception):
    pass


@contextmanager
def time_limit(seconds: float):
    # a flipped jump can turn straight-line code into a loop that never ends
    def on_alarm(signum, frame):
        raise Hang()
    previous = signal.signal(signal.SIGALRM, on_alarm)
    signal.setitimer(signal.ITIMER_REAL, seconds)
    try:
        yield
    finally:
        signal.setitimer(signal.ITIMER_REAL, 0)
        signal.signal(signal.SIGALRM, previous)


@lru_cache(maxsize=None)
def compiled(kind: str) -> bytes:
    if kind == "script":
        return jsbc.compile(SCRIPT, "flip.js", script=True)
    return jsbc.compile(MODULE, "flip.js", ["m"])


def run_flipped(kind: str, pos: int, value: int):
    data = bytearray(compiled(kind))
    data[pos % len(data)] = value
    try:
        with time_limit(5.0):
            return jsbc.execute_result(bytes(data), ["m"])
    except Hang:
        return None


def check(result):
    if result is None:
        return
    assert isinstance(result.text, str)
    if not result.ok:
        assert result.text.startswith("ERROR: ")
        assert result.stage in STAGES


def test_clean_buffers_run():
    assert jsbc.execute(compiled("script"), ["m"]) == "7:y"
    assert jsbc.execute(compiled("module"), ["m"]) == "undefined"


@needs_alarm
@pytest.mark.parametrize("kind", ["script", "module"])
@pytest.mark.parametrize("mask", [0x01, 0x80, 0xFF])
def test_every_single_byte_flip(kind, mask):
    data = compiled(kind)
    for pos in range(len(data)):
        check(run_flipped(kind, pos, data[pos] ^ mask))


@needs_alarm
@settings(max_examples=300, deadline=None,
          suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(kind=st.sampled_from(["script", "module"]),
       pos=st.integers(min_value=0, max_value=4096),
       value=st.integers(min_value=0, max_value=255))
def test_any_byte_value(kind, pos, value):
    check(run_flipped(kind, pos, value))


def _function(engine, source: str) -> FunctionBytecode:
    return read_object(engine, jsbc.compile(source, "t.js", script=True))


def test_local_index_out_of_range(engine):
    func = _function(engine, "let a = 1; a;")
    func.vars.clear()
    result = jsbc.execute(write_object(engine, func))
    assert re.match(r"ERROR: Failed to read bytecode: invalid \w+ index \d+ \(pc=\d+\)\n", result)


def test_constant_index_out_of_range(engine):
    func = _function(engine, "function f() { return 1; } f();")
    func.cpool.clear()
    result = jsbc.execute(write_object(engine, func))
    assert result.startswith("ERROR: Failed to read bytecode: invalid fclosure")


def test_closure_variable_out_of_range(engine):
    func = _function(engine, "let n = 1; function f() { return n; } f();")
    child = next(v for v in func.cpool if isinstance(v, FunctionBytecode))
    cv = child.closure_var[0]
    child.closure_var[0] = ClosureVar(cv.name, True, False, 50)
    result = jsbc.execute(write_object(engine, func))
    assert result.startswith("ERROR: Failed to read bytecode: invalid closure variable index 50")


def test_null_atom_operand(engine):
    func = _function(engine, "undeclared_name;")
    code = bytearray(func.byte_code)
    pc = next(pc for pc, d in iter_instructions(engine.rt.defs, code) if d.fmt == "atom")
    struct.pack_into("<I", code, pc + 1, 0)
    func.byte_code = bytes(code)
    result = jsbc.execute(write_object(engine, func))
    assert result.startswith(f"ERROR: Failed to read bytecode: invalid atom index (pc={pc})")


@pytest.mark.parametrize("entries", ["import_entries", "export_entries"])
def test_module_variable_index_out_of_range(engine, entries):
    module = read_object(engine, jsbc.compile(MODULE, "t.js", ["m"]))
    getattr(module, entries)[0].var_idx = 99
    result = jsbc.execute(write_object(engine, module), ["m"])
    assert result == "ERROR: Failed to read bytecode: invalid module variable index 99\n"


def test_code_without_return(engine):
    func = _function(engine, "1;")
    defs = engine.rt.defs
    last = max(pc for pc, _ in iter_instructions(defs, func.byte_code))
    func.byte_code = func.byte_code[:last]
    func.pc2line = [(pc, line) for pc, line in func.pc2line if pc < last]
    result = jsbc.execute(write_object(engine, func))
    assert result.startswith("ERROR: Failed to read bytecode: byte code ends without a return")


def test_engine_fault_becomes_stage_failure(monkeypatch):
    data = jsbc.compile("1;", "t.js", script=True)

    def broken(ctx, obj):
        raise KeyError(7)
    monkeypatch.setattr(bridge.Context, "eval_function", broken)
    result = jsbc.execute_result(data)
    assert result.stage == bridge.STAGE_CREATE_FUNCTION
    assert result.text == "ERROR: Failed to create function from bytecode: KeyError: 7\n"
