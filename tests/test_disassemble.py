import re

import pytest

import jsbc
from jsbc.errors import CompileError, DeserializationError

SOURCE = """import { helper } from "lib";
export function outer(a) {
    let k = a * 2;
    return function inner() { return k + 1; };
}
export default outer(20)();
"""


def test_disassemble_module():
    text = jsbc.disassemble(jsbc.compile(SOURCE, "d.js", ["lib"]))
    lines = text.splitlines()
    assert lines[0] == "module: d.js"
    assert "  requires: 'lib'" in lines
    assert "  import helper from 'lib' -> ref0" in lines
    assert "  export ref1 as outer" in lines
    assert "d.js:1: function: d.js" in lines
    assert "d.js:2: function: outer" in lines
    assert "d.js:4: function: inner" in lines
    assert "  args: a" in lines
    assert "    0: let k [captured]" in lines
    assert "  opcodes:" in lines
    assert any("return_undef" in line for line in lines)
    assert any("; line 3" in line for line in lines)
    assert text.endswith("\n")


def test_disassemble_script_modes():
    text = jsbc.disassemble(jsbc.compile('"use strict"; var f = () => 1;', "s.js", script=True))
    assert "s.js:1: function: <eval>" in text
    assert "  mode: strict" in text
    assert "  mode: strict arrow" in text
    assert "define_var 'f'" in text


def test_operands_are_named():
    text = jsbc.dump("export const greeting = 'hi' + 1.5;", "ops.js")
    assert "push_atom_value 'hi'" in text
    # push_const8 in the default build
    assert re.search(r"push_const8? 0: 1\.5", text)


def test_dump_matches_disassemble_of_compile():
    assert jsbc.dump(SOURCE, "d.js") == jsbc.disassemble(jsbc.compile(SOURCE, "d.js"))


def test_dump_propagates_compile_errors():
    with pytest.raises(CompileError):
        jsbc.dump("export default (", "bad.js")


def test_dump_disabled(monkeypatch):
    data = jsbc.compile(SOURCE, "d.js")
    monkeypatch.setenv("JSBC_DUMP_BYTECODE", "0")
    assert jsbc.disassemble(data) == ""
    assert jsbc.dump(SOURCE, "d.js") == ""
    # no gate check either when disabled
    assert jsbc.disassemble(b"") == ""


def test_incompatible_buffer_is_rejected():
    data = bytearray(jsbc.compile(SOURCE, "d.js"))
    data[0] ^= 0x40
    with pytest.raises(DeserializationError, match="incompatible bytecode version"):
        jsbc.disassemble(bytes(data))


def test_malformed_buffer_is_rejected():
    data = jsbc.compile(SOURCE, "d.js")
    with pytest.raises(DeserializationError, match="read after the end of the buffer"):
        jsbc.disassemble(data[:-3])


def test_long_opcode_build_has_no_short_forms(monkeypatch):
    monkeypatch.setenv("JSBC_SHORT_OPCODES", "0")
    text = jsbc.dump("export default 1;", "long.js")
    assert "push_i32 1" in text
    assert "push_1" not in text
