import pytest

import jsbc
from jsbc import bridge
from jsbc.engine import FunctionBytecode, JSThrow, ModuleDef, read_object, write_object
from jsbc.errors import CompileError, SerializationError


def test_compile_returns_versioned_bytes():
    data = jsbc.compile("export const answer = 42;", "answer.js")
    assert isinstance(data, bytes)
    assert data[0] == jsbc.get_format_version()


def test_syntax_error_raises_compile_error():
    with pytest.raises(CompileError) as info:
        jsbc.compile("function (", "t.js")
    assert info.value.message
    assert "t.js" in info.value.stack
    assert info.value.detail() == f"{info.value.message}\n{info.value.stack}"


def test_syntax_error_line_in_stack():
    with pytest.raises(CompileError) as info:
        jsbc.compile("let a = 1;\nlet b = ;\n", "lines.js")
    assert "lines.js:2" in info.value.stack


@pytest.mark.parametrize("source", [
    "class A {}",
    "function* g() {}",
    "async function f() {}",
    "var [a, b] = [1, 2];",
    "f(...args);",
])
def test_unsupported_syntax_is_a_compile_error(source):
    with pytest.raises(CompileError, match="not supported"):
        jsbc.compile(source, "unsupported.js", script=True)


def test_static_errors():
    with pytest.raises(CompileError, match="duplicate exported name 'a'"):
        jsbc.compile("export const a = 1; export { a };", "dup.js")
    with pytest.raises(CompileError, match="invalid redefinition of lexical identifier 'x'"):
        jsbc.compile("let x = 1; let x = 2;", "redef.js")
    with pytest.raises(CompileError, match="break must be inside loop or switch"):
        jsbc.compile("break;", "brk.js", script=True)


def test_import_is_rejected_in_script_mode():
    with pytest.raises(CompileError):
        jsbc.compile('import "m";', "script.js", script=True)


def test_module_and_script_roots(engine):
    module = read_object(engine, jsbc.compile("export default 1;", "mod.js"))
    assert isinstance(module, ModuleDef)
    assert module.module_name == "mod.js"
    assert [e.export_name for e in module.export_entries] == ["default"]

    script = read_object(engine, jsbc.compile("1;", "script.js", script=True))
    assert isinstance(script, FunctionBytecode)
    assert script.filename == "script.js"


def test_module_records_its_imports(engine):
    source = 'import d, { a, b as c } from "lib"; import * as ns from "other"; import "side";'
    module = read_object(engine, jsbc.compile(source, "imports.js"))
    assert module.req_modules == ["lib", "other", "side"]
    imports = [(e.import_name, module.req_modules[e.req_module_idx]) for e in module.import_entries]
    assert imports == [("default", "lib"), ("a", "lib"), ("b", "lib"), ("*", "other")]


def test_compile_is_deterministic():
    source = "export function f(x) { return x * 2 + 'suffix'; }"
    assert jsbc.compile(source, "det.js") == jsbc.compile(source, "det.js")


def test_stub_registration_does_not_change_output():
    source = 'import "a"; export const v = 1;'
    assert jsbc.compile(source, "s.js") == jsbc.compile(source, "s.js", ["a", "b"])


def test_source_label_is_part_of_the_buffer():
    assert jsbc.compile("1;", "one.js", script=True) != jsbc.compile("1;", "two.js", script=True)


def test_write_read_write_is_stable(engine, codec_mode):
    source = """
    var table = {name: "t", sizes: [1, 2.5, -3], nested: {ok: true, none: null}};
    function area(w, h) { let k = w * h; return function () { return k + table.sizes[0]; }; }
    export default area(2, 3)();
    export const big = 12345678901234567890n;
    export const wide = "caf" + "\\u00e9 \\u2603";
    """
    data = jsbc.compile(source, "stable.js")
    assert write_object(engine, read_object(engine, data)) == data


def test_plain_values_serialize(engine):
    obj = engine.new_object()
    obj.set_own("a", 1.0)
    obj.set_own("list", engine.new_array([True, "x", 2.5]))
    data = write_object(engine, obj)
    back = read_object(engine, data)
    assert back.get_own("a") == 1.0
    assert back.get_own("list").items == [True, "x", 2.5]


def test_unsupported_value_cannot_be_written(engine):
    native = engine.get_property(engine.global_obj, "parseInt")
    with pytest.raises(JSThrow) as info:
        write_object(engine, native)
    assert engine.to_cstring(engine.get_property(info.value.value, "message")) == \
        "unsupported object class"


def test_write_failure_raises_serialization_error(monkeypatch):
    def failing_write(ctx, obj):
        ctx.throw_type_error("unsupported object class")

    monkeypatch.setattr(bridge, "write_object", failing_write)
    with pytest.raises(SerializationError, match="Failed to write bytecode: unsupported object class"):
        jsbc.compile("1;", "w.js")


def test_compiled_function_flags(engine):
    script = read_object(engine, jsbc.compile(
        '"use strict"; var f = (a, b = 1) => a; var g = {m() {}};', "flags.js",
        script=True))
    assert script.is_strict
    arrow, method = [c for c in script.cpool if isinstance(c, FunctionBytecode)]
    assert arrow.is_arrow and not arrow.has_prototype
    assert arrow.arg_count == 2 and arrow.defined_arg_count == 1
    assert not method.has_prototype


@pytest.mark.parametrize("source", [
    "(" * 3000 + "1" + ")" * 3000 + ";",
    "[" * 3000 + "]" * 3000 + ";",
    "!" * 3000 + "1;",
])
def test_deep_nesting_is_a_compile_error(source):
    with pytest.raises(CompileError, match="stack overflow"):
        jsbc.compile(source, "t.js", [])
