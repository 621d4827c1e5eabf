"""
  Bytecode reader: the inverse of writer.py.

Every failure is thrown into the context as a SyntaxError, as the engine
does for malformed input.
"""

from __future__ import annotations

import logging
import struct
from typing import Any, List

from .codec import BufferUnderflow, InvalidEncoding, select_codec
from .function import (
    ClosureVar, ExportEntry, FunctionBytecode, ImportEntry, ModuleDef, VarDef,
)
from .tables import (
    CONDITIONAL_OPCODES, GOTO_OPCODES, TERMINATOR_OPCODES, BCTag, FuncKind,
)
from .values import NULL, UNDEFINED, JSBigInt
from .vm import DECODERS, IMPLIED_FORMATS, implied_operand
from .writer import (
    ATOM_OPERAND_FORMATS, CV_IS_ARG, CV_IS_CONST, CV_IS_LEXICAL, CV_IS_LOCAL,
    FUNC_HAS_DEBUG, FUNC_HAS_PROTOTYPE, FUNC_IS_ARROW, FUNC_KIND_MASK, FUNC_KIND_SHIFT,
    VAR_IS_CAPTURED, VAR_IS_CONST, VAR_IS_LEXICAL, iter_instructions,
)

log = logging.getLogger(__name__)

_U32 = struct.Struct('<I')

# operand format -> function field its index must stay below
_INDEX_LIMITS = {
    'loc': 'var_count', 'loc8': 'var_count', 'none_loc': 'var_count',
    'arg': 'arg_count', 'none_arg': 'arg_count',
    'var_ref': 'closure_var', 'none_var_ref': 'closure_var',
    'const': 'cpool', 'const8': 'cpool',
}
_LABEL_FORMATS = frozenset(('label', 'label8', 'label16'))


def _jump_target(fmt: str, operand: Any):
    if fmt in _LABEL_FORMATS:
        return operand
    if fmt == 'label_u16':
        return operand[0]
    if fmt in ('atom_label_u8', 'atom_label_u16'):
        return operand[1]
    return None


class BCReader:
    def __init__(self, ctx, data: bytes):
        self.ctx = ctx
        self.rt = ctx.rt
        self.defs = ctx.rt.defs
        self.codec = select_codec()
        self.first_atom = ctx.rt.first_atom_id
        self.data = memoryview(data)
        self.pos = 0
        self.atoms: List[int] = []

    def error(self, message: str):
        self.ctx.throw('SyntaxError', message)

    # --- primitives ---
    def need(self, n: int) -> None:
        if self.pos + n > len(self.data):
            self.error("read after the end of the buffer")

    def get_u8(self) -> int:
        self.need(1)
        v = self.data[self.pos]
        self.pos += 1
        return v

    def get_u16(self) -> int:
        self.need(2)
        v = struct.unpack_from('<H', self.data, self.pos)[0]
        self.pos += 2
        return v

    def get_bytes(self, n: int) -> bytes:
        self.need(n)
        v = bytes(self.data[self.pos:self.pos + n])
        self.pos += n
        return v

    def _decode(self, fn):
        try:
            v, self.pos = fn(self.data, self.pos)
        except BufferUnderflow:
            self.error("read after the end of the buffer")
        except InvalidEncoding as e:
            self.error(str(e))
        return v

    def get_leb128(self) -> int:
        return self._decode(self.codec.get_leb128)

    def get_sleb128(self) -> int:
        return self._decode(self.codec.get_sleb128)

    def get_string(self) -> str:
        return self._decode(self.codec.get_string)

    def idx_to_atom(self, idx: int) -> int:
        if idx < self.first_atom:
            return idx
        i = idx - self.first_atom
        if i >= len(self.atoms):
            self.error(f"invalid atom index (pos={self.pos})")
        return self.atoms[i]

    def get_atom(self) -> str:
        idx = self.get_leb128()
        if idx == 0:
            return ''
        return self.rt.atom_to_string(self.idx_to_atom(idx))

    # --- header ---
    def read_header(self) -> None:
        version = self.get_u8()
        expected = self.rt.options.version
        if version != expected:
            self.error(f"invalid version ({version} expected={expected})")
        count = self.get_leb128()
        for _ in range(count):
            self.atoms.append(self.rt.new_atom(self.get_string()))

    # --- values ---
    def read_value(self) -> Any:
        start = self.pos
        tag = self.get_u8()
        if tag == BCTag.NULL:
            return NULL
        if tag == BCTag.UNDEFINED:
            return UNDEFINED
        if tag == BCTag.BOOL_FALSE:
            return False
        if tag == BCTag.BOOL_TRUE:
            return True
        if tag == BCTag.INT32:
            return float(self.get_sleb128())
        if tag == BCTag.FLOAT64:
            return struct.unpack('<d', self.get_bytes(8))[0]
        if tag == BCTag.STRING:
            return self.get_string()
        if tag == BCTag.BIG_INT:
            header = self.get_leb128()
            mag = int.from_bytes(self.get_bytes(header >> 1), 'little')
            return JSBigInt(-mag if header & 1 else mag)
        if tag == BCTag.ARRAY:
            n = self.get_leb128()
            return self.ctx.new_array([self.read_value() for _ in range(n)])
        if tag == BCTag.OBJECT:
            obj = self.ctx.new_object()
            for _ in range(self.get_leb128()):
                key = self.get_atom()
                obj.set_own(key, self.read_value())
            return obj
        if tag == BCTag.FUNCTION_BYTECODE:
            return self.read_function()
        if tag == BCTag.MODULE:
            return self.read_module()
        if tag in BCTag.__members__.values():
            self.error(f"unsupported tag (tag={tag})")
        self.error(f"invalid tag (tag={tag} pos={start})")

    def read_vardef(self) -> VarDef:
        name = self.get_atom()
        scope_level = self.get_leb128()
        flags = self.get_u8()
        return VarDef(name, bool(flags & VAR_IS_CONST), bool(flags & VAR_IS_LEXICAL),
                      bool(flags & VAR_IS_CAPTURED), scope_level)

    def read_code(self, n: int) -> bytes:
        code = bytearray(self.get_bytes(n))
        try:
            for pc, d in iter_instructions(self.defs, code):
                if d.fmt in ATOM_OPERAND_FORMATS:
                    idx = _U32.unpack_from(code, pc + 1)[0]
                    if idx == 0:
                        self.error(f"invalid atom index (pc={pc})")
                    _U32.pack_into(code, pc + 1, self.idx_to_atom(idx))
        except ValueError as e:
            self.error(str(e))
        return bytes(code)

    def read_function(self) -> FunctionBytecode:
        flags = self.get_u16()
        b = FunctionBytecode()
        b.has_prototype = bool(flags & FUNC_HAS_PROTOTYPE)
        b.is_arrow = bool(flags & FUNC_IS_ARROW)
        b.func_kind = FuncKind((flags & FUNC_KIND_MASK) >> FUNC_KIND_SHIFT)
        b.js_mode = self.get_u8()
        b.func_name = self.get_atom()
        b.arg_count = self.get_leb128()
        var_count = self.get_leb128()
        b.defined_arg_count = self.get_leb128()
        b.stack_size = self.get_leb128()
        closure_var_count = self.get_leb128()
        cpool_count = self.get_leb128()
        code_len = self.get_leb128()
        b.args = [self.read_vardef() for _ in range(b.arg_count)]
        b.vars = [self.read_vardef() for _ in range(var_count)]
        for _ in range(closure_var_count):
            name = self.get_atom()
            var_idx = self.get_leb128()
            cv_flags = self.get_u8()
            b.closure_var.append(ClosureVar(
                name, bool(cv_flags & CV_IS_LOCAL), bool(cv_flags & CV_IS_ARG), var_idx,
                bool(cv_flags & CV_IS_CONST), bool(cv_flags & CV_IS_LEXICAL)))
        b.byte_code = self.read_code(code_len)
        if flags & FUNC_HAS_DEBUG:
            b.filename = self.get_atom()
            b.line_num = self.get_leb128()
            pc, line = 0, b.line_num
            for _ in range(self.get_leb128()):
                pc += self.get_leb128()
                line += self.get_sleb128()
                b.pc2line.append((pc, line))
            b.source = self.get_string()
        b.cpool = [self.read_value() for _ in range(cpool_count)]
        self.check_function(b)
        return b

    def check_function(self, b: FunctionBytecode) -> None:
        """Reject byte code whose operands point outside its own function."""
        code = b.byte_code
        limits = {'var_count': b.var_count, 'arg_count': b.arg_count,
                  'closure_var': len(b.closure_var), 'cpool': len(b.cpool)}
        insns = {}
        for pc, d in iter_instructions(self.defs, code):
            if d.fmt in IMPLIED_FORMATS:
                insns[pc] = (d, implied_operand(d.name, d.fmt))
            else:
                insns[pc] = (d, DECODERS[d.fmt](code, pc))
        for pc, (d, operand) in insns.items():
            limit = _INDEX_LIMITS.get(d.fmt)
            if limit is not None and operand >= limits[limit]:
                self.error(f"invalid {d.name} index {operand} (pc={pc})")
            target = _jump_target(d.fmt, operand)
            if target is not None and target not in insns:
                self.error(f"invalid jump target (pc={pc})")
            if d.name.startswith('fclosure') and not isinstance(b.cpool[operand], FunctionBytecode):
                self.error(f"function expected (pc={pc})")
        self.check_stack(insns)
        for child in b.cpool:
            if isinstance(child, FunctionBytecode):
                for cv in child.closure_var:
                    if cv.is_local:
                        n = b.arg_count if cv.is_arg else b.var_count
                    else:
                        n = len(b.closure_var)
                    if cv.var_idx >= n:
                        self.error(f"invalid closure variable index {cv.var_idx}")

    def check_stack(self, insns) -> None:
        # same walk as the assembler's stack sizing: first visit of a pc fixes its depth
        seen = set()
        work = [(0, 0)]
        while work:
            pc, depth = work.pop()
            while pc not in seen:
                if pc not in insns:
                    self.error(f"byte code ends without a return (pc={pc})")
                seen.add(pc)
                d, operand = insns[pc]
                n_pop = d.n_pop
                if d.fmt in ('npop', 'npopx'):
                    n_pop += operand
                if depth < n_pop:
                    self.error(f"stack underflow (pc={pc})")
                depth += d.n_push - n_pop
                if d.name in TERMINATOR_OPCODES:
                    break
                if d.name in GOTO_OPCODES:
                    pc = operand
                    continue
                if d.name in CONDITIONAL_OPCODES or d.name == 'catch':
                    work.append((operand, depth))
                elif d.name == 'gosub':
                    work.append((operand, depth + 1))
                pc += d.size

    def read_module(self) -> ModuleDef:
        m = ModuleDef(self.get_atom())
        m.req_modules = [self.get_atom() for _ in range(self.get_leb128())]
        for _ in range(self.get_leb128()):
            self.get_u8()  # export type: local only
            var_idx = self.get_leb128()
            m.export_entries.append(ExportEntry(var_idx, self.get_atom()))
        for _ in range(self.get_leb128()):
            var_idx = self.get_leb128()
            name = self.get_atom()
            req_idx = self.get_leb128()
            if req_idx >= len(m.req_modules):
                self.error(f"invalid module index (pos={self.pos})")
            m.import_entries.append(ImportEntry(var_idx, name, req_idx))
        func = self.read_value()
        if not isinstance(func, FunctionBytecode):
            self.error("module function expected")
        n = len(func.closure_var)
        for e in m.export_entries + m.import_entries:
            if e.var_idx >= n:
                self.error(f"invalid module variable index {e.var_idx}")
        m.func = func
        return m


def read_object(ctx, data: bytes) -> Any:
    """Deserialize a buffer produced by write_object() on the same build."""
    r = BCReader(ctx, data)
    try:
        r.read_header()
        obj = r.read_value()
    except RecursionError:
        r.error("stack overflow")
    finally:
        r.data.release()
    log.debug("read %d bytes (%d atoms)", len(data), len(r.atoms))
    return obj
