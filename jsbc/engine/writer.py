"""
  Bytecode writer.

Buffer layout:

  u8        version (BC_BASE_VERSION, | BC_BIGNUM_FLAG on bignum builds)
  leb128    number of atoms in the atom table
  string*   atom table (atoms that are not predefined, in first-use order)
  value     the root value, tag byte first

Atoms are written as leb128 indexes: predefined atoms keep their id, the
others are first_atom_id + their position in the atom table. Atom operands
inside byte code are rewritten the same way (as u32).
"""

from __future__ import annotations

import logging
import math
import struct
from typing import Any, Dict, List

from .codec import select_codec
from .function import FunctionBytecode, ModuleDef, VarDef
from .tables import BCTag
from .values import NULL, UNDEFINED, JSArray, JSBigInt, JSObject

log = logging.getLogger(__name__)

# function header flags (u16)
FUNC_HAS_PROTOTYPE = 1 << 0
FUNC_HAS_SIMPLE_PARAMETER_LIST = 1 << 1
FUNC_KIND_SHIFT = 4
FUNC_KIND_MASK = 3 << FUNC_KIND_SHIFT
FUNC_ARGUMENTS_ALLOWED = 1 << 9
FUNC_HAS_DEBUG = 1 << 10
FUNC_IS_ARROW = 1 << 12

# variable definition flags (u8)
VAR_IS_CONST = 1 << 0
VAR_IS_LEXICAL = 1 << 1
VAR_IS_CAPTURED = 1 << 2

# closure variable flags (u8)
CV_IS_LOCAL = 1 << 0
CV_IS_ARG = 1 << 1
CV_IS_CONST = 1 << 2
CV_IS_LEXICAL = 1 << 3

EXPORT_TYPE_LOCAL = 0

ATOM_OPERAND_FORMATS = frozenset(('atom', 'atom_u8', 'atom_u16', 'atom_label_u8',
                                  'atom_label_u16'))

_U32 = struct.Struct('<I')


def is_int32_number(v: float) -> bool:
    return v.is_integer() and -2 ** 31 <= v < 2 ** 31 and math.copysign(1.0, v) > 0


def iter_instructions(defs, code: bytes):
    """Yield (pc, OpcodeDef) for each instruction of code."""
    pc = 0
    n = len(code)
    while pc < n:
        d = defs.by_id[code[pc]]
        if d is None or pc + d.size > n:
            raise ValueError(f"invalid opcode at pc={pc}")
        yield pc, d
        pc += d.size


class BCWriter:
    def __init__(self, ctx):
        self.ctx = ctx
        self.rt = ctx.rt
        self.defs = ctx.rt.defs
        self.codec = select_codec()
        self.first_atom = ctx.rt.first_atom_id
        self.atoms: List[str] = []
        self.atom_index: Dict[int, int] = {}
        self.buf = bytearray()

    # --- primitives ---
    def put_u8(self, v: int) -> None:
        self.buf.append(v)

    def put_u16(self, v: int) -> None:
        self.buf += struct.pack('<H', v)

    def put_leb128(self, v: int) -> None:
        self.codec.put_leb128(self.buf, v)

    def put_sleb128(self, v: int) -> None:
        self.codec.put_sleb128(self.buf, v)

    def put_string(self, s: str) -> None:
        self.codec.put_string(self.buf, s)

    def atom_to_idx(self, atom: int) -> int:
        if atom < self.first_atom:
            return atom
        idx = self.atom_index.get(atom)
        if idx is None:
            idx = self.first_atom + len(self.atoms)
            self.atoms.append(self.rt.atom_to_string(atom))
            self.atom_index[atom] = idx
        return idx

    def put_atom(self, name: str) -> None:
        """Write a name as an atom; the empty name is the null atom."""
        self.put_leb128(self.atom_to_idx(self.rt.new_atom(name)) if name else 0)

    # --- values ---
    def write_value(self, v: Any) -> None:
        if v is UNDEFINED:
            self.put_u8(BCTag.UNDEFINED)
        elif v is NULL:
            self.put_u8(BCTag.NULL)
        elif v is True or v is False:
            self.put_u8(BCTag.BOOL_TRUE if v else BCTag.BOOL_FALSE)
        elif isinstance(v, (int, float)):
            v = float(v)
            if is_int32_number(v):
                self.put_u8(BCTag.INT32)
                self.put_sleb128(int(v))
            else:
                self.put_u8(BCTag.FLOAT64)
                self.buf += struct.pack('<d', v)
        elif isinstance(v, str):
            self.put_u8(BCTag.STRING)
            self.put_string(v)
        elif isinstance(v, JSBigInt):
            self.write_bigint(v.value)
        elif isinstance(v, FunctionBytecode):
            self.write_function(v)
        elif isinstance(v, ModuleDef):
            self.write_module(v)
        elif type(v) is JSArray:
            self.put_u8(BCTag.ARRAY)
            self.put_leb128(len(v.items))
            for item in v.items:
                self.write_value(item)
        elif type(v) is JSObject:
            self.put_u8(BCTag.OBJECT)
            keys = v.own_keys()
            self.put_leb128(len(keys))
            for key in keys:
                self.put_atom(key)
                self.write_value(v.get_own(key))
        else:
            self.ctx.throw_type_error("unsupported object class")

    def write_bigint(self, value: int) -> None:
        self.put_u8(BCTag.BIG_INT)
        mag = abs(value)
        raw = mag.to_bytes((mag.bit_length() + 7) // 8, 'little')
        self.put_leb128(len(raw) << 1 | (value < 0))
        self.buf += raw

    def write_vardef(self, vd: VarDef) -> None:
        self.put_atom(vd.name)
        self.put_leb128(vd.scope_level)
        flags = ((VAR_IS_CONST if vd.is_const else 0) | (VAR_IS_LEXICAL if vd.is_lexical else 0)
                 | (VAR_IS_CAPTURED if vd.is_captured else 0))
        self.put_u8(flags)

    def write_code(self, code: bytes) -> None:
        code = bytearray(code)
        for pc, d in iter_instructions(self.defs, code):
            if d.fmt in ATOM_OPERAND_FORMATS:
                atom = _U32.unpack_from(code, pc + 1)[0]
                _U32.pack_into(code, pc + 1, self.atom_to_idx(atom))
        self.buf += code

    def write_function(self, b: FunctionBytecode) -> None:
        self.put_u8(BCTag.FUNCTION_BYTECODE)
        flags = (int(b.func_kind) << FUNC_KIND_SHIFT) | FUNC_HAS_DEBUG
        if b.has_prototype:
            flags |= FUNC_HAS_PROTOTYPE
        if b.defined_arg_count == b.arg_count:
            flags |= FUNC_HAS_SIMPLE_PARAMETER_LIST
        if b.is_arrow:
            flags |= FUNC_IS_ARROW
        else:
            flags |= FUNC_ARGUMENTS_ALLOWED
        self.put_u16(flags)
        self.put_u8(b.js_mode)
        self.put_atom(b.func_name)
        self.put_leb128(b.arg_count)
        self.put_leb128(b.var_count)
        self.put_leb128(b.defined_arg_count)
        self.put_leb128(b.stack_size)
        self.put_leb128(len(b.closure_var))
        self.put_leb128(len(b.cpool))
        self.put_leb128(len(b.byte_code))
        for vd in b.args:
            self.write_vardef(vd)
        for vd in b.vars:
            self.write_vardef(vd)
        for cv in b.closure_var:
            self.put_atom(cv.name)
            self.put_leb128(cv.var_idx)
            self.put_u8((CV_IS_LOCAL if cv.is_local else 0) | (CV_IS_ARG if cv.is_arg else 0)
                        | (CV_IS_CONST if cv.is_const else 0)
                        | (CV_IS_LEXICAL if cv.is_lexical else 0))
        self.write_code(b.byte_code)
        # debug info
        self.put_atom(b.filename)
        self.put_leb128(b.line_num)
        self.put_leb128(len(b.pc2line))
        last_pc, last_line = 0, b.line_num
        for pc, line in b.pc2line:
            self.put_leb128(pc - last_pc)
            self.put_sleb128(line - last_line)
            last_pc, last_line = pc, line
        self.put_string(b.source)
        for v in b.cpool:
            self.write_value(v)

    def write_module(self, m: ModuleDef) -> None:
        self.put_u8(BCTag.MODULE)
        self.put_atom(m.module_name)
        self.put_leb128(len(m.req_modules))
        for name in m.req_modules:
            self.put_atom(name)
        self.put_leb128(len(m.export_entries))
        for e in m.export_entries:
            self.put_u8(EXPORT_TYPE_LOCAL)
            self.put_leb128(e.var_idx)
            self.put_atom(e.export_name)
        self.put_leb128(len(m.import_entries))
        for i in m.import_entries:
            self.put_leb128(i.var_idx)
            self.put_atom(i.import_name)
            self.put_leb128(i.req_module_idx)
        self.write_function(m.func)

    def output(self) -> bytes:
        header = bytearray([self.rt.options.version])
        self.codec.put_leb128(header, len(self.atoms))
        for s in self.atoms:
            self.codec.put_string(header, s)
        return bytes(header + self.buf)


def write_object(ctx, obj: Any) -> bytes:
    """Serialize a compiled unit (or a plain value) of ctx's runtime."""
    w = BCWriter(ctx)
    w.write_value(obj)
    data = w.output()
    log.debug("wrote %d bytes (%d atoms)", len(data), len(w.atoms))
    return data
