"""
  Numbering tables of the engine build, for tools reading bytecode buffers.

Everything here is derived from the definition tables of jsbc.engine.tables
(expanded from defs/opcodes.def and defs/atoms.def and checked against their
golden values), so the exported numbering is the one the engine uses.
"""

from __future__ import annotations

from enum import IntEnum
from functools import lru_cache
from pathlib import Path
from typing import FrozenSet, NamedTuple, Tuple

from jsbc import config
from jsbc.engine import bc_get_version, tables
from jsbc.engine.tables import BCTag, FuncKind, JSMode


class CompileOption(IntEnum):
    DUMP = 1 << 0
    BIGNUM = 1 << 1
    SHORT_OPCODES = 1 << 2


class AtomEntry(NamedTuple):
    id: int
    name: str


class OpcodeEntry(NamedTuple):
    id: int
    name: str
    n_pop: int
    n_push: int
    fmt: int  # operand format id
    size: int


class EnumEntry(NamedTuple):
    id: int
    name: str


def get_format_version() -> int:
    return bc_get_version()


def get_compile_options() -> FrozenSet[CompileOption]:
    options = set()
    if config.dump_enabled():
        options.add(CompileOption.DUMP)
    if config.bignum_enabled():
        options.add(CompileOption.BIGNUM)
    if config.short_opcodes_enabled():
        options.add(CompileOption.SHORT_OPCODES)
    return frozenset(options)


@lru_cache(maxsize=None)
def _atom_table(root: Path, bignum: bool) -> Tuple[AtomEntry, ...]:
    defs = tables.get_definitions(bignum, True, root)
    entries = []
    ids = {}
    for a in defs.atoms:
        entries.append(AtomEntry(a.id, a.name))
        ids.setdefault(a.name, a.id)
        # a literal already naming another atom (Private_brand is "<brand>") gets an alias below
        if a.text != a.name and ids.setdefault(a.text, a.id) == a.id:
            entries.append(AtomEntry(a.id, a.text))
    # friendly aliases for atoms whose text is not a usable key
    empty = AtomEntry(defs.atom_id('empty_string'), 'empty_string')
    if empty not in entries:
        entries.append(empty)
    entries.append(AtomEntry(defs.atom_id('Private_brand'), '<private_brand>'))
    return tuple(entries)


def get_atom_table() -> Tuple[AtomEntry, ...]:
    """Predefined atoms: symbolic name, then literal text when it differs."""
    return _atom_table(config.get_defs_root(), config.bignum_enabled())


def get_first_atom_id() -> int:
    """Id of the first atom that is not predefined."""
    return tables.current().atom_end


@lru_cache(maxsize=None)
def _opcode_table(root: Path, bignum: bool, short_opcodes: bool) -> Tuple[OpcodeEntry, ...]:
    defs = tables.get_definitions(bignum, short_opcodes, root)
    return tuple(OpcodeEntry(d.id, d.name, d.n_pop, d.n_push, d.fmt_id, d.size)
                 for d in defs.opcodes)


def get_opcode_table() -> Tuple[OpcodeEntry, ...]:
    """Opcodes in declaration order; compiler-only temporary opcodes are left out."""
    return _opcode_table(config.get_defs_root(), config.bignum_enabled(),
                         config.short_opcodes_enabled())


def get_operand_format_table() -> Tuple[EnumEntry, ...]:
    return tuple(EnumEntry(i, f) for i, f in enumerate(tables.current().formats))


def get_bytecode_tag_table() -> Tuple[EnumEntry, ...]:
    return tuple(EnumEntry(int(t), f"TC_TAG_{t.name}") for t in BCTag)


def get_function_kind_table() -> Tuple[EnumEntry, ...]:
    return tuple(EnumEntry(int(k), f"JS_FUNC_{k.name}") for k in FuncKind)


def get_mode_flag_table() -> Tuple[EnumEntry, ...]:
    return tuple(EnumEntry(int(m), f"JS_MODE_{m.name}") for m in JSMode)
