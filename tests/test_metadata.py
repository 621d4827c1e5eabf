from collections import defaultdict

import pytest

from jsbc import metadata
from jsbc.metadata import CompileOption

# (bignum, short_opcodes) -> opcode count
OPCODE_COUNTS = {
    (False, True): 243,
    (True, True): 245,
    (False, False): 177,
    (True, False): 179,
}


def test_opcode_table_size_per_build(build):
    assert len(metadata.get_opcode_table()) == OPCODE_COUNTS[build]


def test_opcode_ids_are_dense_and_declaration_ordered(build):
    table = metadata.get_opcode_table()
    assert [op.id for op in table] == list(range(len(table)))
    assert table[0].name == "invalid"
    assert table[1].name == "push_i32"


def test_opcode_anchors():
    by_name = {op.name: op for op in metadata.get_opcode_table()}
    assert by_name["get_loc"].id == 88
    assert by_name["if_false"].id == 105
    assert by_name["goto"].id == 107
    assert by_name["add"].id == 157
    assert by_name["nop"].id == 176
    assert by_name["push_minus1"].id == 177


def test_opcode_arities_and_sizes():
    by_name = {op.name: op for op in metadata.get_opcode_table()}
    formats = [f.name for f in metadata.get_operand_format_table()]
    push_i32 = by_name["push_i32"]
    assert (push_i32.n_pop, push_i32.n_push, push_i32.size) == (0, 1, 5)
    assert formats[push_i32.fmt] == "i32"
    add = by_name["add"]
    assert (add.n_pop, add.n_push, add.size) == (2, 1, 1)
    assert formats[by_name["get_loc0"].fmt] == "none_loc"
    assert formats[by_name["call1"].fmt] == "npopx"


def test_temporary_opcodes_are_never_exported(build):
    names = {op.name for op in metadata.get_opcode_table()}
    for temp in ("enter_scope", "leave_scope", "label", "scope_get_var", "line_num"):
        assert temp not in names


def test_bignum_opcodes(monkeypatch):
    names = {op.name for op in metadata.get_opcode_table()}
    assert "mul_pow10" not in names and "math_mod" not in names
    monkeypatch.setenv("JSBC_CONFIG_BIGNUM", "1")
    by_name = {op.name: op for op in metadata.get_opcode_table()}
    assert "mul_pow10" in by_name and "math_mod" in by_name
    assert by_name["nop"].id == 178


def test_short_opcodes_only_when_enabled(monkeypatch):
    monkeypatch.setenv("JSBC_SHORT_OPCODES", "0")
    names = {op.name for op in metadata.get_opcode_table()}
    assert "push_minus1" not in names
    assert "get_loc0" not in names
    assert metadata.get_opcode_table()[-1].name == "nop"


@pytest.mark.parametrize("bignum,size,first_atom", [(False, 241, 207), (True, 257, 222)])
def test_atom_table_size(monkeypatch, bignum, size, first_atom):
    monkeypatch.setenv("JSBC_CONFIG_BIGNUM", "1" if bignum else "0")
    assert len(metadata.get_atom_table()) == size
    assert metadata.get_first_atom_id() == first_atom


def test_atom_table_entries():
    table = metadata.get_atom_table()
    ids = defaultdict(set)
    for entry in table:
        ids[entry.name].add(entry.id)
    assert ids["null"] == {1}
    assert ids["length"] == {48}
    assert ids["empty_string"] == {47}
    assert ids[""] == {47}
    # symbolic name and literal text both map to the same id
    assert ids["_eval_"] == {80}
    assert ids["<eval>"] == {80}


def test_atom_names_never_map_to_two_ids(build):
    ids = defaultdict(set)
    for entry in metadata.get_atom_table():
        ids[entry.name].add(entry.id)
    assert all(len(v) == 1 for v in ids.values())


@pytest.mark.parametrize("bignum,brand_id", [(False, 193), (True, 207)])
def test_private_brand_alias(monkeypatch, bignum, brand_id):
    monkeypatch.setenv("JSBC_CONFIG_BIGNUM", "1" if bignum else "0")
    table = metadata.get_atom_table()
    assert table[-1] == (brand_id, "<private_brand>")
    assert (brand_id, "Private_brand") in table
    # the literal "<brand>" belongs to the earlier 'brand' atom
    assert (119, "<brand>") in table
    assert (brand_id, "<brand>") not in table


def test_atom_ids_are_predefined_only():
    first = metadata.get_first_atom_id()
    assert all(0 < entry.id < first for entry in metadata.get_atom_table())


def test_operand_format_table():
    formats = metadata.get_operand_format_table()
    assert len(formats) == 29
    assert formats[0] == (0, "none")
    assert formats[-1] == (28, "label_u16")
    assert "atom_label_u16" in {f.name for f in formats}


def test_bytecode_tag_table():
    tags = dict((name, i) for i, name in metadata.get_bytecode_tag_table())
    assert tags["TC_TAG_NULL"] == 1
    assert tags["TC_TAG_FUNCTION_BYTECODE"] == 12
    assert tags["TC_TAG_MODULE"] == 13
    assert tags["TC_TAG_OBJECT_REFERENCE"] == 19
    assert len(tags) == 19


def test_function_kind_table():
    assert metadata.get_function_kind_table() == (
        (0, "JS_FUNC_NORMAL"),
        (1, "JS_FUNC_GENERATOR"),
        (2, "JS_FUNC_ASYNC"),
        (3, "JS_FUNC_ASYNC_GENERATOR"),
    )


def test_mode_flag_table():
    assert metadata.get_mode_flag_table() == (
        (1, "JS_MODE_STRICT"),
        (4, "JS_MODE_ASYNC"),
        (8, "JS_MODE_BACKTRACE_BARRIER"),
    )


def test_compile_options_follow_environment(monkeypatch):
    assert metadata.get_compile_options() == {CompileOption.DUMP, CompileOption.SHORT_OPCODES}
    monkeypatch.setenv("JSBC_DUMP_BYTECODE", "off")
    monkeypatch.setenv("JSBC_CONFIG_BIGNUM", "on")
    monkeypatch.setenv("JSBC_SHORT_OPCODES", "no")
    assert metadata.get_compile_options() == {CompileOption.BIGNUM}


def test_compile_option_values():
    assert [(o.name, int(o)) for o in CompileOption] == [
        ("DUMP", 1), ("BIGNUM", 2), ("SHORT_OPCODES", 4)]


def test_format_version(monkeypatch):
    assert metadata.get_format_version() == 0x05
    monkeypatch.setenv("JSBC_CONFIG_BIGNUM", "1")
    assert metadata.get_format_version() == 0x45


def test_tables_are_stable_between_calls():
    assert metadata.get_atom_table() is metadata.get_atom_table()
    assert metadata.get_opcode_table() == metadata.get_opcode_table()
