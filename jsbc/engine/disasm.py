from __future__ import annotations

from typing import Any, List

from .function import FunctionBytecode, ModuleDef
from .reader import read_object
from .tables import FuncKind
from .vm import DECODERS, IMPLIED_FORMATS, implied_operand
from .writer import iter_instructions

_LOCAL_FORMATS = ('loc', 'loc8', 'none_loc')
_ARG_FORMATS = ('arg', 'none_arg')
_VAR_REF_FORMATS = ('var_ref', 'none_var_ref')
_LABEL_FORMATS = ('label', 'label8', 'label16')


def _format_operand(ctx, b: FunctionBytecode, name: str, fmt: str, code: bytes, pc: int) -> str:
    if fmt == 'none':
        return ''
    if fmt in IMPLIED_FORMATS:
        arg = implied_operand(name, fmt)
    else:
        arg = DECODERS[fmt](code, pc)
    atom_name = ctx.rt.atom_to_string
    if fmt in _LOCAL_FORMATS:
        return f"{arg}: {b.vars[arg].name}" if arg < len(b.vars) else str(arg)
    if fmt in _ARG_FORMATS:
        return f"{arg}: {b.args[arg].name}" if arg < len(b.args) else str(arg)
    if fmt in _VAR_REF_FORMATS:
        return f"{arg}: {b.closure_var[arg].name}" if arg < len(b.closure_var) else str(arg)
    if fmt in _LABEL_FORMATS:
        return f"{arg}"
    if fmt in ('const', 'const8'):
        c = b.cpool[arg] if arg < len(b.cpool) else None
        if isinstance(c, FunctionBytecode):
            return f"{arg}: [function {c.func_name or '<anonymous>'}]"
        return f"{arg}: {c!r}"
    if fmt == 'atom':
        return repr(atom_name(arg))
    if fmt in ('atom_u8', 'atom_u16'):
        return f"{atom_name(arg[0])!r},{arg[1]}"
    if fmt in ('atom_label_u8', 'atom_label_u16'):
        return f"{atom_name(arg[0])!r},{arg[1]},{arg[2]}"
    if fmt in ('npop_u16', 'label_u16'):
        return f"{arg[0]},{arg[1]}"
    return str(arg)


def _dump_function(ctx, b: FunctionBytecode, out: List[str]) -> None:
    name = b.func_name or '<anonymous>'
    out.append(f"{b.filename}:{b.line_num}: function: {name}")
    mode = ['strict'] if b.is_strict else []
    if b.func_kind != FuncKind.NORMAL:
        mode.append(FuncKind(b.func_kind).name.lower())
    if b.is_arrow:
        mode.append('arrow')
    if mode:
        out.append(f"  mode: {' '.join(mode)}")
    if b.args:
        out.append(f"  args: {' '.join(vd.name for vd in b.args)}")
    if b.vars:
        out.append("  locals:")
        for i, vd in enumerate(b.vars):
            kind = 'const' if vd.is_const else 'let' if vd.is_lexical else 'var'
            out.append(f"    {i}: {kind} {vd.name}" + (" [captured]" if vd.is_captured else ""))
    if b.closure_var:
        out.append("  closure vars:")
        for i, cv in enumerate(b.closure_var):
            where = ('arg' if cv.is_arg else 'loc') if cv.is_local else 'ref'
            kind = 'const' if cv.is_const else 'let' if cv.is_lexical else 'var'
            out.append(f"    {i}: {cv.name} {where}{cv.var_idx} {kind}")
    out.append(f"  stack_size: {b.stack_size}")
    out.append("  opcodes:")
    code = b.byte_code
    lines = dict(b.pc2line)
    for pc, d in iter_instructions(ctx.rt.defs, code):
        operand = _format_operand(ctx, b, d.name, d.fmt, code, pc)
        text = f"    {pc:5d}: {d.name}" + (f" {operand}" if operand else "")
        if pc in lines:
            text = f"{text:<48}; line {lines[pc]}"
        out.append(text)
    for c in b.cpool:
        if isinstance(c, FunctionBytecode):
            out.append("")
            _dump_function(ctx, c, out)


def dump_object(ctx, obj: Any) -> str:
    out: List[str] = []
    if isinstance(obj, ModuleDef):
        out.append(f"module: {obj.module_name}")
        for name in obj.req_modules:
            out.append(f"  requires: {name!r}")
        for e in obj.import_entries:
            out.append(f"  import {e.import_name} from {obj.req_modules[e.req_module_idx]!r}"
                       f" -> ref{e.var_idx}")
        for e in obj.export_entries:
            out.append(f"  export ref{e.var_idx} as {e.export_name}")
        out.append("")
        _dump_function(ctx, obj.func, out)
    elif isinstance(obj, FunctionBytecode):
        _dump_function(ctx, obj, out)
    else:
        out.append(f"value: {ctx.to_cstring(obj)}")
    return "\n".join(out) + "\n"


def dump_function_bytecode_bin(ctx, data: bytes) -> str:
    """Read a serialized buffer and return its disassembly.

    Malformed buffers throw into ctx like read_object() does.
    """
    return dump_object(ctx, read_object(ctx, data))
