import pytest

import jsbc
from jsbc import bridge
from jsbc.bridge import ExecutionResult
from jsbc.engine import read_object, write_object
from jsbc.engine.function import ClosureVar
from jsbc.errors import ExecutionError


def run_script(source: str, label: str = "t.js") -> str:
    return jsbc.execute(jsbc.compile(source, label, script=True))


def run_module(source: str, label: str = "t.js", module_names=()) -> str:
    return jsbc.execute(jsbc.compile(source, label, module_names), module_names)


def test_script_completion_value():
    assert run_script("42;") == "42"


def test_module_evaluates_to_undefined():
    assert run_module("export default 1+1;") == "undefined"


def test_script_called_with_undefined_receiver():
    assert run_script("typeof this;") == "object"
    assert run_script('"use strict"; typeof this;') == "undefined"


def test_truncated_buffer():
    data = jsbc.compile("export default 1+1;", "t.js")
    result = jsbc.execute(data[:len(data) // 2])
    assert result.startswith("ERROR: Failed to read bytecode: ")


def test_wrong_version_byte():
    data = bytearray(jsbc.compile("1;", "t.js", script=True))
    data[0] = 0x06
    assert jsbc.execute(bytes(data)) == \
        "ERROR: Failed to read bytecode: invalid version (6 expected=5)\n"


def test_empty_buffer():
    assert jsbc.execute(b"").startswith("ERROR: Failed to read bytecode: read after the end")


def test_invalid_tag():
    result = jsbc.execute(bytes([0x05, 0x00, 0x7f]))
    assert result.startswith("ERROR: Failed to read bytecode: invalid tag (tag=127")


def test_module_throw():
    result = run_module("export const a = 1;\nthrow new Error('boom');", "mod.js")
    assert result.startswith("ERROR: Failed to eval module: boom\n")
    assert "mod.js:2" in result


def test_script_throw():
    result = run_script("function fail() {\n  throw new TypeError('bad value');\n}\nfail();")
    assert result.startswith("ERROR: Runtime exception: bad value\n")
    assert "at fail (t.js:2)" in result


def test_thrown_primitive():
    assert run_script("throw 7;") == "ERROR: Runtime exception: 7\n"


def test_named_import_from_stub_fails_to_link():
    result = run_module('import { x } from "m"; export default x;', module_names=["m"])
    assert result.startswith("ERROR: Failed to eval module: Could not find export 'x' in module 'm'")


def test_bare_and_namespace_imports_succeed():
    source = '''
    import "side";
    import * as ns from "m";
    if (Object.keys(ns).length !== 0) throw new Error("namespace not empty");
    '''
    assert run_module(source, module_names=["m"]) == "undefined"


def test_unregistered_specifier_still_resolves():
    # the loader stub answers for any specifier, registered or not
    assert run_module('import "never-registered";') == "undefined"


def test_function_with_unbound_closure_cannot_be_instantiated(engine):
    func = read_object(engine, jsbc.compile("1;", "t.js", script=True))
    func.closure_var.append(ClosureVar("outer", True, False, 0))
    result = jsbc.execute(write_object(engine, func))
    assert result.startswith("ERROR: Failed to create function from bytecode: "
                             "function has unbound closure variables")


def test_plain_value_root(engine):
    assert jsbc.execute(write_object(engine, 3.0)) == "3"
    assert jsbc.execute(write_object(engine, "text")) == "text"
    obj = engine.new_object()
    obj.set_own("a", 1.0)
    assert jsbc.execute(write_object(engine, obj)) == "[object Object]"


def test_stack_overflow_is_reported(monkeypatch):
    monkeypatch.setenv("JSBC_STACK_LIMIT", "40")
    result = run_script("function f(n) { return f(n + 1); } f(0);")
    assert result.startswith("ERROR: Runtime exception: stack overflow\n")


def test_execution_result_success():
    result = jsbc.execute_result(jsbc.compile("'a' + 'b';", "t.js", script=True))
    assert isinstance(result, ExecutionResult)
    assert result.ok
    assert result.stage is None
    assert result.text == "ab"
    assert str(result) == "ab"
    assert result.raise_for_error() == "ab"


def test_execution_result_failure():
    result = jsbc.execute_result(jsbc.compile("null.x;", "t.js", script=True))
    assert not result.ok
    assert result.stage == bridge.STAGE_RUNTIME
    assert result.error.message == "cannot read property 'x' of null"
    assert str(result) == result.text
    with pytest.raises(ExecutionError) as info:
        result.raise_for_error()
    assert str(info.value) == result.text


def test_successful_output_is_indistinguishable_from_failure_text():
    # a script may legitimately produce text that looks like a failure
    source = "'ERROR: Runtime exception: fake';"
    result = jsbc.execute_result(jsbc.compile(source, "t.js", script=True))
    assert result.ok
    assert jsbc.execute(jsbc.compile(source, "t.js", script=True)) == \
        "ERROR: Runtime exception: fake"


def test_bignum_build_round_trip(monkeypatch):
    monkeypatch.setenv("JSBC_CONFIG_BIGNUM", "1")
    assert run_script("(2n ** 64n).toString();") == "18446744073709551616"


def test_long_opcode_build(monkeypatch):
    monkeypatch.setenv("JSBC_SHORT_OPCODES", "0")
    assert run_script("var s = 0; for (var i = 0; i < 4; i++) s += i; s;") == "6"


def test_execute_with_cy_codec(codec_mode):
    assert run_module("export default 'x';") == "undefined"
    assert run_script("'caf\\u00e9'.length;") == "4"


def test_recursive_to_string_overflows_cleanly():
    source = "var o = {}; o.toString = function () { return '' + o; }; '' + o;"
    assert run_script(source).startswith("ERROR: Runtime exception: stack overflow\n")


def test_native_reentry_overflow_can_be_caught():
    source = """
    var o = {};
    o.toString = function () { return '' + o; };
    var r;
    try { '' + o; } catch (e) { r = e.name + ': ' + e.message; }
    r;
    """
    assert run_script(source) == "InternalError: stack overflow"


@pytest.mark.parametrize("source", [
    "({toString() { throw new Error('no'); }});",
    "({toString: function () { throw new Error('no'); }});",
])
def test_unprintable_script_result_is_a_runtime_failure(source):
    result = jsbc.execute_result(jsbc.compile(source, "t.js", script=True))
    assert not result.ok
    assert result.stage == bridge.STAGE_RUNTIME
    assert result.text.startswith("ERROR: Runtime exception: no\n")
    assert result.error.message == "no"
