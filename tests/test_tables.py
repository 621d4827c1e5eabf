import shutil

import pytest

from jsbc import config
from jsbc.engine import tables
from jsbc.errors import DefinitionDriftError


@pytest.fixture
def defs_copy(tmp_path):
    root = tmp_path / "defs"
    shutil.copytree(config.get_defs_root(), root)
    return root


def test_all_builds_verify():
    tables.verify_all()


def test_copied_definitions_load(defs_copy):
    defs = tables.load_definitions(defs_copy, False, True)
    assert len(defs.opcodes) == 243
    assert len(defs.atoms) == 206
    assert defs.opcode("get_loc").id == 88


def test_edited_definitions_are_refused(defs_copy):
    path = defs_copy / tables.OPCODE_FILE
    path.write_text(path.read_text() + "\nDEF(extra, 1, 0, 0, none)\n")
    with pytest.raises(DefinitionDriftError, match="opcodes.def changed"):
        tables.load_definitions(defs_copy, False, True)


def test_expansion_per_build():
    text = (config.get_defs_root() / tables.OPCODE_FILE).read_text()
    formats, opcodes, temps = tables.parse_opcodes(text, True, False)
    assert len(formats) == 29
    assert len(opcodes) == 179
    assert len(temps) == 15
    nop = next(d for d in opcodes if d.name == "nop")
    assert nop.id == 178
    assert temps[0].id == nop.id + 1

    atoms = tables.parse_atoms((config.get_defs_root() / tables.ATOM_FILE).read_text(), True)
    assert len(atoms) == 221
    assert atoms[0] == tables.AtomDef(1, "null", "null")


def test_conditional_blocks():
    text = """
FMT(none)
DEF(a, 1, 0, 0, none) /* always */
#ifdef SHORT_OPCODES
DEF(b, 1, 0, 0, none)
#endif
#if CONFIG_BIGNUM
def(c, 1, 0, 0, none)
#endif
DEF(nop, 1, 0, 0, none)
"""
    _, opcodes, temps = tables.parse_opcodes(text, False, True)
    assert [d.name for d in opcodes] == ["a", "b", "nop"]
    assert temps == ()
    _, opcodes, temps = tables.parse_opcodes(text, True, False)
    assert [d.name for d in opcodes] == ["a", "nop"]
    assert [(d.name, d.id) for d in temps] == [("c", 2)]


@pytest.mark.parametrize("text,message", [
    ("FMT(none)\nDEF(a, 2, 0, 0, none)\n", "does not match format"),
    ("FMT(none)\nDEF(a, 1, 0, 0, u8)\n", "unknown format"),
    ("FMT(none)\n#ifdef OTHER\n#endif\n", "unknown symbol"),
    ("FMT(none)\n#ifdef SHORT_OPCODES\n", "unterminated conditional"),
    ("FMT(none)\n#endif\n", "unbalanced"),
    ("FMT(none)\nDEF(a, 1, 0, 0, none)\n", "nop is not defined"),
])
def test_malformed_opcodes(text, message):
    with pytest.raises(DefinitionDriftError, match=message):
        tables.parse_opcodes(text, False, True)


def test_atom_escapes():
    atoms = tables.parse_atoms('DEF(q, "a\\"b")\n', False)
    assert atoms == (tables.AtomDef(1, "q", 'a"b'),)


def test_definitions_path_is_read_per_call(defs_copy, tmp_path, monkeypatch):
    from jsbc.engine.runtime import Runtime

    monkeypatch.setenv("JSBC_DEFS_PATH", str(defs_copy))
    assert tables.current().opcode("get_loc").id == 88
    Runtime().free()

    edited = tmp_path / "edited"
    shutil.copytree(defs_copy, edited)
    path = edited / tables.OPCODE_FILE
    path.write_text(path.read_text() + "\nDEF(extra, 1, 0, 0, none)\n")
    monkeypatch.setenv("JSBC_DEFS_PATH", str(edited))
    with pytest.raises(DefinitionDriftError, match="opcodes.def changed"):
        tables.current()
    with pytest.raises(DefinitionDriftError):
        Runtime()

    monkeypatch.delenv("JSBC_DEFS_PATH")
    assert tables.current() is tables.get_definitions(False, True)
