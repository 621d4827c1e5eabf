"""
  Engine numbering tables.

Opcodes, operand formats and predefined atoms are not hand-maintained: they
are expanded from the definition files in ``defs/`` the same way the engine
numbers them, for a given (bignum, short opcodes) build configuration.

Every expansion is checked against golden values (file checksums, table
sizes and a few anchor ids). Editing a definition file without updating the
golden values below raises DefinitionDriftError at import time.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Tuple

from jsbc import config
from jsbc.errors import DefinitionDriftError


OPCODE_FILE = 'opcodes.def'
ATOM_FILE = 'atoms.def'

_GOLDEN_SHA256 = {
    OPCODE_FILE: 'faa6aaba5e0a5f9fc58e366bf76c18f3a9145ed4b904c99ba760997e9e699458',
    ATOM_FILE: 'c87c93a6278f5b75d2a30fc2df6955fa4bd9c252acb49c16a3cd89a1eb230e8b',
}

# (bignum, short_opcodes) -> (opcode count, atom count)
_GOLDEN_COUNTS = {
    (False, True): (243, 206),
    (True, True): (245, 221),
    (False, False): (177, 206),
    (True, False): (179, 221),
}
_GOLDEN_FORMAT_COUNT = 29
_GOLDEN_TEMP_COUNT = 15

_OPCODE_ANCHORS = {
    'invalid': 0,
    'push_i32': 1,
    'get_loc': 88,
    'if_false': 105,
    'goto': 107,
    'add': 157,
}
_ATOM_ANCHORS = {
    'null': 1,
    'empty_string': 47,
    'length': 48,
    '_eval_': 80,
    '_ret_': 81,
    'brand': 119,
}
# bignum -> (nop id, Private_brand atom id)
_BIGNUM_ANCHORS = {False: (176, 193), True: (178, 207)}

# Control flow classes of final opcodes, shared by the assembler and the reader.
TERMINATOR_OPCODES = frozenset(('return', 'return_undef', 'throw', 'throw_error', 'ret'))
GOTO_OPCODES = frozenset(('goto', 'goto8', 'goto16'))
CONDITIONAL_OPCODES = frozenset(('if_false', 'if_true', 'if_false8', 'if_true8'))

# Bytes following the opcode byte for each operand format.
FMT_OPERAND_SIZE: Dict[str, int] = {
    'none': 0, 'none_int': 0, 'none_loc': 0, 'none_arg': 0, 'none_var_ref': 0,
    'npopx': 0,
    'u8': 1, 'i8': 1, 'loc8': 1, 'const8': 1, 'label8': 1,
    'u16': 2, 'i16': 2, 'label16': 2, 'npop': 2, 'loc': 2, 'arg': 2, 'var_ref': 2,
    'npop_u16': 4, 'u32': 4, 'i32': 4, 'const': 4, 'label': 4, 'atom': 4,
    'atom_u8': 5, 'atom_u16': 6, 'label_u16': 6,
    'atom_label_u8': 9, 'atom_label_u16': 10,
}


class BCTag(IntEnum):
    NULL = 1
    UNDEFINED = 2
    BOOL_FALSE = 3
    BOOL_TRUE = 4
    INT32 = 5
    FLOAT64 = 6
    STRING = 7
    OBJECT = 8
    ARRAY = 9
    BIG_INT = 10
    TEMPLATE_OBJECT = 11
    FUNCTION_BYTECODE = 12
    MODULE = 13
    TYPED_ARRAY = 14
    ARRAY_BUFFER = 15
    SHARED_ARRAY_BUFFER = 16
    DATE = 17
    OBJECT_VALUE = 18
    OBJECT_REFERENCE = 19


class FuncKind(IntEnum):
    NORMAL = 0
    GENERATOR = 1
    ASYNC = 2
    ASYNC_GENERATOR = 3


class JSMode(IntFlag):
    STRICT = 1 << 0
    ASYNC = 1 << 2
    BACKTRACE_BARRIER = 1 << 3


class OpcodeDef(NamedTuple):
    id: int
    name: str
    size: int
    n_pop: int
    n_push: int
    fmt: str
    fmt_id: int


class AtomDef(NamedTuple):
    id: int
    name: str
    text: str


_COMMENT_RE = re.compile(r'/\*.*?\*/', re.DOTALL)
_FMT_RE = re.compile(r'^FMT\(\s*(\w+)\s*\)$')
_OP_RE = re.compile(r'^(DEF|def)\(\s*(\w+)\s*,\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*,\s*(\w+)\s*\)$')
_ATOM_RE = re.compile(r'^DEF\(\s*(\w+)\s*,\s*"((?:[^"\\]|\\.)*)"\s*\)$')
_DIRECTIVE_RE = re.compile(r'^#\s*(ifdef|if|endif)\b\s*(\w*)')


def _active_lines(text: str, symbols: Dict[str, bool], filename: str):
    """Yield (lineno, line) for lines enabled by the #if/#ifdef blocks."""
    # Comments are blanked line-preserving so line numbers stay meaningful.
    text = _COMMENT_RE.sub(lambda m: '\n' * m.group(0).count('\n'), text)
    stack: List[bool] = []
    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line:
            continue
        if line.startswith('#'):
            m = _DIRECTIVE_RE.match(line)
            if not m:
                raise DefinitionDriftError(f"{filename}:{lineno}: unknown directive {line!r}")
            kind, name = m.groups()
            if kind == 'endif':
                if not stack:
                    raise DefinitionDriftError(f"{filename}:{lineno}: unbalanced #endif")
                stack.pop()
            else:
                if name not in symbols:
                    raise DefinitionDriftError(f"{filename}:{lineno}: unknown symbol {name!r}")
                stack.append(symbols[name])
            continue
        if all(stack):
            yield lineno, line
    if stack:
        raise DefinitionDriftError(f"{filename}: unterminated conditional block")


def parse_opcodes(text: str, bignum: bool, short_opcodes: bool
                  ) -> Tuple[Tuple[str, ...], Tuple[OpcodeDef, ...], Tuple[OpcodeDef, ...]]:
    """Expand opcodes.def into (formats, opcodes, temporary opcodes)."""
    symbols = {'CONFIG_BIGNUM': bignum, 'SHORT_OPCODES': short_opcodes}
    formats: List[str] = []
    final: List[tuple] = []
    temp: List[tuple] = []
    for lineno, line in _active_lines(text, symbols, OPCODE_FILE):
        m = _FMT_RE.match(line)
        if m:
            formats.append(m.group(1))
            continue
        m = _OP_RE.match(line)
        if not m:
            raise DefinitionDriftError(f"{OPCODE_FILE}:{lineno}: cannot parse {line!r}")
        kind, name, size, n_pop, n_push, fmt = m.groups()
        if fmt not in formats:
            raise DefinitionDriftError(f"{OPCODE_FILE}:{lineno}: unknown format {fmt!r}")
        if FMT_OPERAND_SIZE[fmt] + 1 != int(size):
            raise DefinitionDriftError(
                f"{OPCODE_FILE}:{lineno}: size {size} of {name} does not match format {fmt}")
        entry = (name, int(size), int(n_pop), int(n_push), fmt)
        (final if kind == 'DEF' else temp).append(entry)

    fmt_ids = {f: i for i, f in enumerate(formats)}
    opcodes = tuple(OpcodeDef(i, *e, fmt_ids[e[-1]]) for i, e in enumerate(final))
    nop = next((d for d in opcodes if d.name == 'nop'), None)
    if nop is None:
        raise DefinitionDriftError(f"{OPCODE_FILE}: nop is not defined")
    # temporary opcodes overlap the short opcodes, starting right after nop
    temps = tuple(OpcodeDef(nop.id + 1 + i, *e, fmt_ids[e[-1]]) for i, e in enumerate(temp))
    return tuple(formats), opcodes, temps


def parse_atoms(text: str, bignum: bool) -> Tuple[AtomDef, ...]:
    atoms = []
    for lineno, line in _active_lines(text, {'CONFIG_BIGNUM': bignum}, ATOM_FILE):
        m = _ATOM_RE.match(line)
        if not m:
            raise DefinitionDriftError(f"{ATOM_FILE}:{lineno}: cannot parse {line!r}")
        name, literal = m.groups()
        literal = re.sub(r'\\(.)', r'\1', literal)
        # JS_ATOM_NULL is 0, predefined atoms start at 1
        atoms.append(AtomDef(len(atoms) + 1, name, literal))
    return tuple(atoms)


@dataclass(frozen=True, eq=False)
class Definitions:
    """Numbering tables of one engine build configuration."""

    bignum: bool
    short_opcodes: bool
    formats: Tuple[str, ...]
    opcodes: Tuple[OpcodeDef, ...]
    temp_opcodes: Tuple[OpcodeDef, ...]
    atoms: Tuple[AtomDef, ...]
    Opcode: type
    OperandFormat: type
    by_name: Dict[str, OpcodeDef] = field(init=False, repr=False)
    by_id: List[Optional[OpcodeDef]] = field(init=False, repr=False)
    atom_ids: Dict[str, int] = field(init=False, repr=False)

    def __post_init__(self):
        names = {d.name: d for d in self.temp_opcodes}
        names.update((d.name, d) for d in self.opcodes)
        by_id: List[Optional[OpcodeDef]] = [None] * 256
        for d in self.opcodes:
            if d.id < 256:
                by_id[d.id] = d
        object.__setattr__(self, 'by_name', names)
        object.__setattr__(self, 'by_id', by_id)
        object.__setattr__(self, 'atom_ids', {a.name: a.id for a in self.atoms})

    def opcode(self, name: str) -> OpcodeDef:
        return self.by_name[name]

    @property
    def atom_end(self) -> int:
        return len(self.atoms) + 1

    def atom_id(self, name: str) -> int:
        return self.atom_ids[name]


def _read(root: Path, filename: str) -> str:
    data = (root / filename).read_bytes()
    digest = hashlib.sha256(data).hexdigest()
    if digest != _GOLDEN_SHA256[filename]:
        raise DefinitionDriftError(
            f"{filename} changed (sha256 {digest}); update the golden values in "
            f"jsbc/engine/tables.py and bump BC_BASE_VERSION")
    return data.decode('utf-8')


def _check(defs: Definitions) -> None:
    key = (defs.bignum, defs.short_opcodes)
    n_ops, n_atoms = _GOLDEN_COUNTS[key]
    if len(defs.opcodes) != n_ops:
        raise DefinitionDriftError(f"opcode count {len(defs.opcodes)} != {n_ops} for {key}")
    if len(defs.atoms) != n_atoms:
        raise DefinitionDriftError(f"atom count {len(defs.atoms)} != {n_atoms} for {key}")
    if len(defs.formats) != _GOLDEN_FORMAT_COUNT:
        raise DefinitionDriftError(f"format count {len(defs.formats)} != {_GOLDEN_FORMAT_COUNT}")
    if len(defs.temp_opcodes) != _GOLDEN_TEMP_COUNT:
        raise DefinitionDriftError(
            f"temporary opcode count {len(defs.temp_opcodes)} != {_GOLDEN_TEMP_COUNT}")
    if len(defs.opcodes) > 256:
        raise DefinitionDriftError("opcodes no longer fit in one byte")

    nop_id, brand_id = _BIGNUM_ANCHORS[defs.bignum]
    anchors = dict(_OPCODE_ANCHORS, nop=nop_id)
    if defs.short_opcodes:
        anchors['push_minus1'] = nop_id + 1
    for name, expected in anchors.items():
        got = defs.by_name[name].id
        if got != expected:
            raise DefinitionDriftError(f"opcode {name} is {got}, expected {expected}")
    atom_anchors = dict(_ATOM_ANCHORS, Private_brand=brand_id)
    for name, expected in atom_anchors.items():
        got = defs.atom_id(name)
        if got != expected:
            raise DefinitionDriftError(f"atom {name} is {got}, expected {expected}")

    seen: Dict[str, int] = {}
    for d in defs.opcodes:
        if seen.setdefault(d.name, d.id) != d.id:
            raise DefinitionDriftError(f"opcode {d.name} defined twice")
    if len(defs.atom_ids) != len(defs.atoms):
        raise DefinitionDriftError("atom symbolic names are not unique")


def load_definitions(root: Path, bignum: bool, short_opcodes: bool) -> Definitions:
    """Expand and verify the definition files found in root."""
    formats, opcodes, temps = parse_opcodes(_read(root, OPCODE_FILE), bignum, short_opcodes)
    atoms = parse_atoms(_read(root, ATOM_FILE), bignum)
    Opcode = IntEnum('Opcode', [(d.name.upper(), d.id) for d in opcodes], module=__name__)
    OperandFormat = IntEnum('OperandFormat', [(f.upper(), i) for i, f in enumerate(formats)],
                            module=__name__)
    defs = Definitions(bignum, short_opcodes, formats, opcodes, temps, atoms,
                       Opcode, OperandFormat)
    _check(defs)
    return defs


@lru_cache(maxsize=None)
def _cached_definitions(root: Path, bignum: bool, short_opcodes: bool) -> Definitions:
    return load_definitions(root, bignum, short_opcodes)


def get_definitions(bignum: bool, short_opcodes: bool, root: Optional[Path] = None) -> Definitions:
    """Tables of one build, expanded from root (default: JSBC_DEFS_PATH or the bundled defs)."""
    root = Path(root) if root is not None else config.get_defs_root()
    return _cached_definitions(root.resolve(), bignum, short_opcodes)


def current() -> Definitions:
    """Tables of the build configured through the environment."""
    return get_definitions(config.bignum_enabled(), config.short_opcodes_enabled())


def verify_all() -> None:
    for bignum, short_opcodes in _GOLDEN_COUNTS:
        get_definitions(bignum, short_opcodes)


verify_all()
