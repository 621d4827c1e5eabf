from __future__ import annotations

import math
import operator
import re
import struct
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .function import FunctionBytecode
from .runtime import JSThrow
from .values import (
    NULL, UNDEFINED, UNINITIALIZED, JSArray, JSBigInt, JSFunction, JSObject,
    NativeFunction, VarRef, is_callable, strict_equals, string_to_number,
    to_boolean, to_int32, to_uint32, type_of,
)

_U16 = struct.Struct('<H')
_I16 = struct.Struct('<h')
_U32 = struct.Struct('<I')
_I32 = struct.Struct('<i')


class RunSignal:
    NORMAL = 0
    RETURN = 1


class CatchOffset:
    """Stack marker pushed by 'catch': where to resume when an exception unwinds."""

    __slots__ = ('pc',)

    def __init__(self, pc: int):
        self.pc = pc

    def __repr__(self) -> str:
        return f"<catch {self.pc}>"


@dataclass
class Frame:
    func: JSFunction
    b: FunctionBytecode
    code: bytes
    args: List[Any]
    vars: List[Any]
    var_refs: List[VarRef]
    this_val: Any
    new_target: Any = UNDEFINED
    stack: List[Any] = field(default_factory=list)
    pc: int = 0
    cur_pc: int = 0
    open_refs: Dict[Tuple[bool, int], VarRef] = field(default_factory=dict)
    is_construct: bool = False
    is_entry: bool = False


# --- operand decoders: (code, pc) -> operand ---
def _dec_none(code, pc):
    return None


def _dec_u8(code, pc):
    return code[pc + 1]


def _dec_i8(code, pc):
    v = code[pc + 1]
    return v - 256 if v & 0x80 else v


def _dec_u16(code, pc):
    return _U16.unpack_from(code, pc + 1)[0]


def _dec_i16(code, pc):
    return _I16.unpack_from(code, pc + 1)[0]


def _dec_u32(code, pc):
    return _U32.unpack_from(code, pc + 1)[0]


def _dec_i32(code, pc):
    return _I32.unpack_from(code, pc + 1)[0]


def _dec_label(code, pc):
    return pc + 1 + _I32.unpack_from(code, pc + 1)[0]


def _dec_label8(code, pc):
    return pc + 1 + _dec_i8(code, pc)


def _dec_label16(code, pc):
    return pc + 1 + _I16.unpack_from(code, pc + 1)[0]


def _dec_atom_u8(code, pc):
    return _U32.unpack_from(code, pc + 1)[0], code[pc + 5]


def _dec_atom_u16(code, pc):
    return _U32.unpack_from(code, pc + 1)[0], _U16.unpack_from(code, pc + 5)[0]


def _dec_atom_label_u8(code, pc):
    return (_U32.unpack_from(code, pc + 1)[0], pc + 5 + _I32.unpack_from(code, pc + 5)[0],
            code[pc + 9])


def _dec_atom_label_u16(code, pc):
    return (_U32.unpack_from(code, pc + 1)[0], pc + 5 + _I32.unpack_from(code, pc + 5)[0],
            _U16.unpack_from(code, pc + 9)[0])


def _dec_label_u16(code, pc):
    return pc + 1 + _I32.unpack_from(code, pc + 1)[0], _U16.unpack_from(code, pc + 5)[0]


def _dec_npop_u16(code, pc):
    return _U16.unpack_from(code, pc + 1)[0], _U16.unpack_from(code, pc + 3)[0]


DECODERS: Dict[str, Callable] = {
    'none': _dec_none,
    'u8': _dec_u8, 'loc8': _dec_u8, 'const8': _dec_u8,
    'i8': _dec_i8,
    'label8': _dec_label8,
    'u16': _dec_u16, 'npop': _dec_u16, 'loc': _dec_u16, 'arg': _dec_u16, 'var_ref': _dec_u16,
    'i16': _dec_i16,
    'label16': _dec_label16,
    'u32': _dec_u32, 'const': _dec_u32, 'atom': _dec_u32,
    'i32': _dec_i32,
    'label': _dec_label,
    'atom_u8': _dec_atom_u8,
    'atom_u16': _dec_atom_u16,
    'atom_label_u8': _dec_atom_label_u8,
    'atom_label_u16': _dec_atom_label_u16,
    'label_u16': _dec_label_u16,
    'npop_u16': _dec_npop_u16,
}

# formats whose operand is implied by the mnemonic
IMPLIED_FORMATS = ('none_int', 'none_loc', 'none_arg', 'none_var_ref', 'npopx')

_SHORT_RE = re.compile(
    r'^(get_loc|put_loc|set_loc|get_arg|put_arg|set_arg|get_var_ref|put_var_ref|set_var_ref'
    r'|call|if_false|if_true|goto|push_const|fclosure)(\d+)$')


def base_name(name: str) -> str:
    """Long-form opcode a short opcode is an encoding of."""
    if name in ('push_minus1', 'push_i8', 'push_i16') or re.fullmatch(r'push_\d', name):
        return 'push_i32'
    m = _SHORT_RE.match(name)
    return m.group(1) if m else name


def implied_operand(name: str, fmt: str) -> int:
    if fmt == 'none_int':
        return -1 if name == 'push_minus1' else int(name[len('push_'):])
    return int(name[-1])


def _pop_n(stack: List[Any], n: int) -> List[Any]:
    if not n:
        return []
    items = stack[-n:]
    del stack[-n:]
    return items


def _wrap32(n: int) -> int:
    n &= 0xFFFFFFFF
    return n - 0x100000000 if n & 0x80000000 else n


def _js_div(a: float, b: float) -> float:
    try:
        return a / b
    except ZeroDivisionError:
        if a != a or a == 0:
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)


def _js_mod(a: float, b: float) -> float:
    if b == 0 or a != a or b != b or math.isinf(a):
        return math.nan
    if math.isinf(b):
        return a
    return math.fmod(a, b)


def _is_odd_integer(y: float) -> bool:
    return y.is_integer() and int(y) % 2 == 1


def _js_pow(x: float, y: float) -> float:
    if y != y:
        return math.nan
    if y == 0:
        return 1.0
    if x != x:
        return math.nan
    if abs(x) == 1 and math.isinf(y):
        return math.nan
    try:
        return math.pow(x, y)
    except OverflowError:
        return -math.inf if x < 0 and _is_odd_integer(y) else math.inf
    except ValueError:
        if x == 0:
            negative_zero = math.copysign(1.0, x) < 0
            return -math.inf if negative_zero and _is_odd_integer(y) else math.inf
        return math.nan


_NUMBER_OPS: Dict[str, Callable[[float, float], float]] = {
    'add': operator.add,
    'sub': operator.sub,
    'mul': operator.mul,
    'div': _js_div,
    'mod': _js_mod,
    'pow': _js_pow,
    'and': lambda a, b: float(to_int32(a) & to_int32(b)),
    'or': lambda a, b: float(to_int32(a) | to_int32(b)),
    'xor': lambda a, b: float(to_int32(a) ^ to_int32(b)),
    'shl': lambda a, b: float(_wrap32(to_int32(a) << (to_uint32(b) & 31))),
    'sar': lambda a, b: float(to_int32(a) >> (to_uint32(b) & 31)),
    'shr': lambda a, b: float(to_uint32(a) >> (to_uint32(b) & 31)),
}

_COMPARE_OPS = {
    'lt': operator.lt,
    'lte': operator.le,
    'gt': operator.gt,
    'gte': operator.ge,
}


class VM:
    """Bytecode interpreter of one context.

    JS to JS calls push a Frame and keep running in the same loop; native
    functions calling back into JS start a nested run.
    """

    def __init__(self, ctx):
        self.ctx = ctx
        self.defs = ctx.rt.defs
        self.stack_limit = ctx.rt.options.stack_limit
        self.frames: List[Frame] = []
        self._atom = ctx.rt.atom_to_string
        self._dispatch: List[Tuple[Callable, Callable, int]] = []
        self._init_dispatch()

    def _init_dispatch(self) -> None:
        invalid = (self.op_invalid, _dec_none, 1)
        d = [invalid] * 256
        for op in self.defs.opcodes:
            handler = getattr(self, 'op_' + base_name(op.name), None)
            if handler is None:
                handler = self._unsupported(op.name)
            if op.fmt in IMPLIED_FORMATS:
                value = implied_operand(op.name, op.fmt)
                decode = (lambda v: lambda code, pc: v)(value)
            else:
                decode = DECODERS[op.fmt]
            d[op.id] = (handler, decode, op.size)
        self._dispatch = d

    def _unsupported(self, name: str) -> Callable:
        def handler(frame: Frame, arg: Any) -> None:
            self.ctx.throw('InternalError', f"unsupported opcode: {name}")
        return handler

    # --- entry points ---
    def new_closure(self, b: FunctionBytecode, var_refs: List[VarRef]) -> JSFunction:
        ctx = self.ctx
        f = JSFunction(ctx.function_proto, b, var_refs)
        f.define('length', float(b.defined_arg_count), enumerable=False)
        f.define('name', b.func_name, enumerable=False)
        if b.has_prototype:
            proto = ctx.new_object()
            proto.define('constructor', f, enumerable=False)
            f.define('prototype', proto, enumerable=False)
        return f

    def call(self, func: Any, this_val: Any, args: List[Any]) -> Any:
        try:
            if isinstance(func, NativeFunction):
                return func.fn(self.ctx, this_val, args)
            entry = len(self.frames)
            self._push_frame(func, this_val, args, UNDEFINED, is_construct=False, is_entry=True)
            return self._run(entry)
        except RecursionError:
            # re-entry through natives (toString, valueOf) recurses in Python
            self.ctx.throw('InternalError', "stack overflow")

    def construct(self, func: Any, args: List[Any], new_target: Any) -> Any:
        ctx = self.ctx
        if isinstance(func, NativeFunction) and func.ctor is not None:
            return func.ctor(ctx, args, new_target)
        if not isinstance(func, JSFunction) or not func.is_constructor:
            ctx.throw_type_error("not a constructor")
        entry = len(self.frames)
        try:
            self._push_frame(func, self._new_this(new_target), args, new_target,
                             is_construct=True, is_entry=True)
            return self._run(entry)
        except RecursionError:
            ctx.throw('InternalError', "stack overflow")

    def backtrace(self) -> List[str]:
        out = []
        for f in reversed(self.frames):
            name = f.b.func_name or '<anonymous>'
            out.append(f"    at {name} ({f.b.filename}:{f.b.line_at(f.cur_pc)})\n")
        return out

    # --- frames ---
    def _new_this(self, new_target: Any) -> JSObject:
        proto = self.ctx.get_property(new_target, 'prototype')
        if not isinstance(proto, JSObject):
            proto = self.ctx.object_proto
        return JSObject(proto)

    def _push_frame(self, func: JSFunction, this_val: Any, args: List[Any], new_target: Any,
                    is_construct: bool, is_entry: bool) -> None:
        if len(self.frames) >= self.stack_limit:
            self.ctx.throw('InternalError', "stack overflow")
        b = func.bytecode
        n = b.arg_count
        if len(args) >= n:
            arg_buf = list(args[:n])
        else:
            arg_buf = list(args) + [UNDEFINED] * (n - len(args))
        self.frames.append(Frame(func, b, b.byte_code, arg_buf, [UNDEFINED] * b.var_count,
                                 func.var_refs, this_val, new_target,
                                 is_construct=is_construct, is_entry=is_entry))

    def _close_refs(self, frame: Frame) -> None:
        for ref in frame.open_refs.values():
            ref.close()
        frame.open_refs.clear()

    def _get_var_ref(self, frame: Frame, is_arg: bool, idx: int) -> VarRef:
        key = (is_arg, idx)
        ref = frame.open_refs.get(key)
        if ref is None:
            ref = VarRef(frame.args if is_arg else frame.vars, idx)
            frame.open_refs[key] = ref
        return ref

    def _run(self, entry: int) -> Any:
        frames = self.frames
        dispatch = self._dispatch
        try:
            while True:
                frame = frames[-1]
                code = frame.code
                pc = frame.pc
                handler, decode, size = dispatch[code[pc]]
                frame.cur_pc = pc
                frame.pc = pc + size
                try:
                    r = handler(frame, decode(code, pc))
                except JSThrow as exc:
                    if not self._unwind(exc.value, entry):
                        raise
                    continue
                if r is not None:
                    return r[1]
        finally:
            del frames[entry:]

    def _unwind(self, value: Any, entry: int) -> bool:
        """Resume at the innermost catch marker above entry; False if none."""
        frames = self.frames
        while len(frames) > entry:
            frame = frames[-1]
            stack = frame.stack
            while stack:
                v = stack.pop()
                if type(v) is CatchOffset:
                    stack.append(value)
                    frame.pc = v.pc
                    return True
            self._close_refs(frame)
            frames.pop()
        return False

    def _return(self, frame: Frame, value: Any):
        self._close_refs(frame)
        self.frames.pop()
        if frame.is_construct and not isinstance(value, JSObject):
            value = frame.this_val
        if frame.is_entry:
            return RunSignal.RETURN, value
        self.frames[-1].stack.append(value)
        return None

    def _call_value(self, frame: Frame, func: Any, this_val: Any, args: List[Any]) -> None:
        if isinstance(func, JSFunction):
            self._push_frame(func, this_val, args, UNDEFINED, is_construct=False, is_entry=False)
        elif isinstance(func, NativeFunction):
            frame.stack.append(func.fn(self.ctx, this_val, args))
        else:
            self.ctx.throw_type_error("not a function")

    # --- conversions shared by the operators ---
    def _arith(self, op: str, a: Any, b: Any) -> Any:
        ctx = self.ctx
        a = ctx.to_numeric(a)
        b = ctx.to_numeric(b)
        if type(a) is JSBigInt or type(b) is JSBigInt:
            if type(a) is not type(b):
                ctx.throw_type_error("cannot mix BigInt and other types, use explicit conversions")
            return JSBigInt(self._bigint_op(op, a.value, b.value))
        return _NUMBER_OPS[op](a, b)

    def _bigint_op(self, op: str, a: int, b: int) -> int:
        ctx = self.ctx
        if op == 'add':
            return a + b
        if op == 'sub':
            return a - b
        if op == 'mul':
            return a * b
        if op in ('div', 'mod'):
            if b == 0:
                ctx.throw_range_error("division by zero")
            q = abs(a) // abs(b)
            if (a < 0) != (b < 0):
                q = -q
            return q if op == 'div' else a - b * q
        if op == 'pow':
            if b < 0:
                ctx.throw_range_error("negative exponent")
            return a ** b
        if op == 'and':
            return a & b
        if op == 'or':
            return a | b
        if op == 'xor':
            return a ^ b
        if op == 'shl':
            return a << b if b >= 0 else a >> -b
        if op == 'sar':
            return a >> b if b >= 0 else a << -b
        ctx.throw_type_error("bigint: unsigned right shift is not supported")

    def _compare(self, op: str, a: Any, b: Any) -> bool:
        ctx = self.ctx
        a = ctx.to_primitive(a, 'number')
        b = ctx.to_primitive(b, 'number')
        if type(a) is str and type(b) is str:
            return _COMPARE_OPS[op](a, b)
        if type(a) is JSBigInt or type(b) is JSBigInt:
            x = a.value if type(a) is JSBigInt else ctx.to_number(a)
            y = b.value if type(b) is JSBigInt else ctx.to_number(b)
            return _COMPARE_OPS[op](x, y)
        return _COMPARE_OPS[op](ctx.to_number(a), ctx.to_number(b))

    def _loose_equals(self, a: Any, b: Any) -> bool:
        ta, tb = type(a), type(b)
        a_obj, b_obj = isinstance(a, JSObject), isinstance(b, JSObject)
        if a_obj and b_obj:
            return a is b
        if ta is tb:
            return strict_equals(a, b)
        a_nullish = a is NULL or a is UNDEFINED
        b_nullish = b is NULL or b is UNDEFINED
        if a_nullish or b_nullish:
            return a_nullish and b_nullish
        if ta is bool:
            return self._loose_equals(1.0 if a else 0.0, b)
        if tb is bool:
            return self._loose_equals(a, 1.0 if b else 0.0)
        if a_obj:
            return self._loose_equals(self.ctx.to_primitive(a), b)
        if b_obj:
            return self._loose_equals(a, self.ctx.to_primitive(b))
        if ta is float and tb is str:
            return a == string_to_number(b)
        if ta is str and tb is float:
            return string_to_number(a) == b
        if ta is JSBigInt or tb is JSBigInt:
            x, y = (a, b) if ta is JSBigInt else (b, a)
            if type(y) is str:
                try:
                    return x.value == int(y.strip() or '0')
                except ValueError:
                    return False
            return x.value == y
        return False

    def _instance_of(self, v: Any, target: Any) -> bool:
        ctx = self.ctx
        if not is_callable(target):
            ctx.throw_type_error("invalid 'instanceof' right operand")
        if not isinstance(v, JSObject):
            return False
        proto = ctx.get_property(target, 'prototype')
        if not isinstance(proto, JSObject):
            ctx.throw_type_error("operand 'prototype' property is not an object")
        o = v.proto
        while o is not None:
            if o is proto:
                return True
            o = o.proto
        return False

    def _throw_uninitialized(self, name: str) -> None:
        self.ctx.throw_reference_error(f"{name} is not initialized")

    # --- per-op handlers ---
    def op_invalid(self, frame: Frame, arg: Any) -> None:
        self.ctx.throw('InternalError', f"invalid opcode at pc {frame.cur_pc}")

    def op_nop(self, frame: Frame, arg: Any) -> None:
        pass

    # push values
    def op_push_i32(self, frame: Frame, value: int) -> None:
        frame.stack.append(float(value))

    def op_push_const(self, frame: Frame, idx: int) -> None:
        frame.stack.append(frame.b.cpool[idx])

    def op_fclosure(self, frame: Frame, idx: int) -> None:
        b = frame.b.cpool[idx]
        refs = []
        for cv in b.closure_var:
            if cv.is_local:
                refs.append(self._get_var_ref(frame, cv.is_arg, cv.var_idx))
            else:
                refs.append(frame.var_refs[cv.var_idx])
        frame.stack.append(self.new_closure(b, refs))

    def op_push_atom_value(self, frame: Frame, atom: int) -> None:
        frame.stack.append(self._atom(atom))

    def op_push_empty_string(self, frame: Frame, arg: Any) -> None:
        frame.stack.append('')

    def op_undefined(self, frame: Frame, arg: Any) -> None:
        frame.stack.append(UNDEFINED)

    def op_null(self, frame: Frame, arg: Any) -> None:
        frame.stack.append(NULL)

    def op_push_this(self, frame: Frame, arg: Any) -> None:
        v = frame.this_val
        if not frame.b.is_strict:
            if v is UNDEFINED or v is NULL:
                v = self.ctx.global_obj
            elif not isinstance(v, JSObject):
                v = self.ctx.to_object(v)
        frame.stack.append(v)

    def op_push_false(self, frame: Frame, arg: Any) -> None:
        frame.stack.append(False)

    def op_push_true(self, frame: Frame, arg: Any) -> None:
        frame.stack.append(True)

    def op_object(self, frame: Frame, arg: Any) -> None:
        frame.stack.append(self.ctx.new_object())

    def op_special_object(self, frame: Frame, kind: int) -> None:
        # 2: the running function, 3: new.target
        if kind == 2:
            frame.stack.append(frame.func)
        elif kind == 3:
            frame.stack.append(frame.new_target)
        else:
            self.ctx.throw('InternalError', f"unsupported special object {kind}")

    # stack manipulation
    def op_drop(self, frame: Frame, arg: Any) -> None:
        frame.stack.pop()

    def op_nip(self, frame: Frame, arg: Any) -> None:
        del frame.stack[-2]

    def op_nip1(self, frame: Frame, arg: Any) -> None:
        del frame.stack[-3]

    def op_dup(self, frame: Frame, arg: Any) -> None:
        frame.stack.append(frame.stack[-1])

    def op_dup1(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.insert(-1, s[-2])

    def op_dup2(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.extend(s[-2:])

    def op_dup3(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.extend(s[-3:])

    def op_insert2(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.insert(-2, s[-1])

    def op_insert3(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.insert(-3, s[-1])

    def op_insert4(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.insert(-4, s[-1])

    def op_perm3(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s[-3], s[-2] = s[-2], s[-3]

    def op_perm4(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s[-4], s[-3], s[-2] = s[-2], s[-4], s[-3]

    def op_perm5(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s[-5], s[-4], s[-3], s[-2] = s[-2], s[-5], s[-4], s[-3]

    def op_swap(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s[-2], s[-1] = s[-1], s[-2]

    def op_swap2(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s[-4:] = s[-2:] + s[-4:-2]

    def op_rot3l(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.append(s.pop(-3))

    def op_rot3r(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.insert(-2, s.pop())

    def op_rot4l(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.append(s.pop(-4))

    def op_rot5l(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.append(s.pop(-5))

    # calls
    def op_call(self, frame: Frame, argc: int) -> None:
        args = _pop_n(frame.stack, argc)
        func = frame.stack.pop()
        self._call_value(frame, func, UNDEFINED, args)

    def op_call_method(self, frame: Frame, argc: int) -> None:
        args = _pop_n(frame.stack, argc)
        func = frame.stack.pop()
        this_val = frame.stack.pop()
        self._call_value(frame, func, this_val, args)

    def op_call_constructor(self, frame: Frame, argc: int) -> None:
        ctx = self.ctx
        args = _pop_n(frame.stack, argc)
        new_target = frame.stack.pop()
        func = frame.stack.pop()
        if isinstance(func, JSFunction) and func.is_constructor:
            self._push_frame(func, self._new_this(new_target), args, new_target,
                             is_construct=True, is_entry=False)
        elif isinstance(func, NativeFunction) and func.ctor is not None:
            frame.stack.append(func.ctor(ctx, args, new_target))
        else:
            ctx.throw_type_error("not a constructor")

    def op_array_from(self, frame: Frame, argc: int) -> None:
        items = _pop_n(frame.stack, argc)
        frame.stack.append(self.ctx.new_array(items))

    def op_return(self, frame: Frame, arg: Any):
        return self._return(frame, frame.stack.pop())

    def op_return_undef(self, frame: Frame, arg: Any):
        return self._return(frame, UNDEFINED)

    def op_throw(self, frame: Frame, arg: Any) -> None:
        raise JSThrow(frame.stack.pop())

    def op_throw_error(self, frame: Frame, arg: Tuple[int, int]) -> None:
        atom, kind = arg
        name = self._atom(atom)
        ctx = self.ctx
        if kind == 0:
            ctx.throw_type_error(f"'{name}' is read-only")
        elif kind == 1:
            ctx.throw('SyntaxError', f"redeclaration of '{name}'")
        elif kind == 2:
            self._throw_uninitialized(name)
        elif kind == 3:
            ctx.throw('SyntaxError', "unsupported reference to 'super'")
        ctx.throw_type_error("iterator does not have a throw method")

    # global variables
    def op_check_var(self, frame: Frame, atom: int) -> None:
        frame.stack.append(self.ctx.has_property(self.ctx.global_obj, self._atom(atom)))

    def op_get_var_undef(self, frame: Frame, atom: int) -> None:
        frame.stack.append(self.ctx.get_property(self.ctx.global_obj, self._atom(atom)))

    def op_get_var(self, frame: Frame, atom: int) -> None:
        ctx = self.ctx
        name = self._atom(atom)
        if not ctx.has_property(ctx.global_obj, name):
            ctx.throw_reference_error(f"'{name}' is not defined")
        frame.stack.append(ctx.get_property(ctx.global_obj, name))

    def op_put_var(self, frame: Frame, atom: int) -> None:
        ctx = self.ctx
        name = self._atom(atom)
        value = frame.stack.pop()
        if frame.b.is_strict and not ctx.has_property(ctx.global_obj, name):
            ctx.throw_reference_error(f"'{name}' is not defined")
        ctx.set_property(ctx.global_obj, name, value)

    def op_put_var_strict(self, frame: Frame, atom: int) -> None:
        ctx = self.ctx
        name = self._atom(atom)
        value = frame.stack.pop()
        if not frame.stack.pop():
            ctx.throw_reference_error(f"'{name}' is not defined")
        ctx.set_property(ctx.global_obj, name, value)

    def op_put_var_init(self, frame: Frame, atom: int) -> None:
        self.ctx.global_obj.define(self._atom(atom), frame.stack.pop())

    def op_define_var(self, frame: Frame, arg: Tuple[int, int]) -> None:
        name = self._atom(arg[0])
        g = self.ctx.global_obj
        if not g.has_own(name):
            g.define(name, UNDEFINED)

    def op_check_define_var(self, frame: Frame, arg: Tuple[int, int]) -> None:
        pass

    def op_define_func(self, frame: Frame, arg: Tuple[int, int]) -> None:
        self.ctx.global_obj.define(self._atom(arg[0]), frame.stack.pop())

    def op_delete_var(self, frame: Frame, atom: int) -> None:
        frame.stack.append(self.ctx.delete_property(self.ctx.global_obj, self._atom(atom)))

    # properties
    def op_get_field(self, frame: Frame, atom: int) -> None:
        s = frame.stack
        s.append(self.ctx.get_property(s.pop(), self._atom(atom)))

    def op_get_field2(self, frame: Frame, atom: int) -> None:
        s = frame.stack
        s.append(self.ctx.get_property(s[-1], self._atom(atom)))

    def op_put_field(self, frame: Frame, atom: int) -> None:
        s = frame.stack
        value = s.pop()
        obj = s.pop()
        self.ctx.set_property(obj, self._atom(atom), value)

    def op_get_length(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.append(self.ctx.get_property(s.pop(), 'length'))

    def _key_of(self, obj: Any, prop: Any) -> str:
        if obj is UNDEFINED or obj is NULL:
            key = self.ctx.to_property_key(prop)
            self.ctx.throw_type_error(f"cannot read property '{key}' of {obj!r}")
        return self.ctx.to_property_key(prop)

    def op_get_array_el(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        prop = s.pop()
        obj = s.pop()
        s.append(self.ctx.get_property(obj, self._key_of(obj, prop)))

    def op_get_array_el2(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        prop = s.pop()
        obj = s[-1]
        s.append(self.ctx.get_property(obj, self._key_of(obj, prop)))

    def op_put_array_el(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        value = s.pop()
        prop = s.pop()
        obj = s.pop()
        self.ctx.set_property(obj, self.ctx.to_property_key(prop), value)

    def op_define_field(self, frame: Frame, atom: int) -> None:
        s = frame.stack
        value = s.pop()
        s[-1].define(self._atom(atom), value)

    def op_define_array_el(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        value = s.pop()
        s[-2].define(self.ctx.to_property_key(s[-1]), value)

    def op_to_object(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.append(self.ctx.to_object(s.pop()))

    def op_to_propkey(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.append(self.ctx.to_property_key(s.pop()))

    def op_to_propkey2(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.append(self._key_of(s[-2], s.pop()))

    # locals, arguments and closure variables
    def op_get_loc(self, frame: Frame, idx: int) -> None:
        frame.stack.append(frame.vars[idx])

    def op_put_loc(self, frame: Frame, idx: int) -> None:
        frame.vars[idx] = frame.stack.pop()

    def op_set_loc(self, frame: Frame, idx: int) -> None:
        frame.vars[idx] = frame.stack[-1]

    def op_get_arg(self, frame: Frame, idx: int) -> None:
        frame.stack.append(frame.args[idx])

    def op_put_arg(self, frame: Frame, idx: int) -> None:
        frame.args[idx] = frame.stack.pop()

    def op_set_arg(self, frame: Frame, idx: int) -> None:
        frame.args[idx] = frame.stack[-1]

    def op_get_var_ref(self, frame: Frame, idx: int) -> None:
        frame.stack.append(frame.var_refs[idx].get())

    def op_put_var_ref(self, frame: Frame, idx: int) -> None:
        frame.var_refs[idx].set(frame.stack.pop())

    def op_set_var_ref(self, frame: Frame, idx: int) -> None:
        frame.var_refs[idx].set(frame.stack[-1])

    def op_set_loc_uninitialized(self, frame: Frame, idx: int) -> None:
        frame.vars[idx] = UNINITIALIZED

    def op_get_loc_check(self, frame: Frame, idx: int) -> None:
        v = frame.vars[idx]
        if v is UNINITIALIZED:
            self._throw_uninitialized(frame.b.vars[idx].name)
        frame.stack.append(v)

    def op_put_loc_check(self, frame: Frame, idx: int) -> None:
        if frame.vars[idx] is UNINITIALIZED:
            self._throw_uninitialized(frame.b.vars[idx].name)
        frame.vars[idx] = frame.stack.pop()

    def op_put_loc_check_init(self, frame: Frame, idx: int) -> None:
        frame.vars[idx] = frame.stack.pop()

    def op_get_var_ref_check(self, frame: Frame, idx: int) -> None:
        v = frame.var_refs[idx].get()
        if v is UNINITIALIZED:
            self._throw_uninitialized(frame.b.closure_var[idx].name)
        frame.stack.append(v)

    def op_put_var_ref_check(self, frame: Frame, idx: int) -> None:
        ref = frame.var_refs[idx]
        if ref.get() is UNINITIALIZED:
            self._throw_uninitialized(frame.b.closure_var[idx].name)
        ref.set(frame.stack.pop())

    def op_put_var_ref_check_init(self, frame: Frame, idx: int) -> None:
        frame.var_refs[idx].set(frame.stack.pop())

    def op_close_loc(self, frame: Frame, idx: int) -> None:
        ref = frame.open_refs.pop((False, idx), None)
        if ref is not None:
            ref.close()

    # control flow
    def op_if_false(self, frame: Frame, target: int) -> None:
        if not to_boolean(frame.stack.pop()):
            frame.pc = target

    def op_if_true(self, frame: Frame, target: int) -> None:
        if to_boolean(frame.stack.pop()):
            frame.pc = target

    def op_goto(self, frame: Frame, target: int) -> None:
        frame.pc = target

    def op_catch(self, frame: Frame, target: int) -> None:
        frame.stack.append(CatchOffset(target))

    def op_gosub(self, frame: Frame, target: int) -> None:
        # return address; JS numbers are floats so a bare int is unambiguous
        frame.stack.append(frame.pc)
        frame.pc = target

    def op_ret(self, frame: Frame, arg: Any) -> None:
        addr = frame.stack.pop()
        if type(addr) is not int:
            self.ctx.throw('InternalError', "invalid ret value")
        frame.pc = addr

    # arithmetic / logic
    def _unary_numeric(self, frame: Frame, num_fn, big_fn) -> Any:
        v = self.ctx.to_numeric(frame.stack.pop())
        return JSBigInt(big_fn(v.value)) if type(v) is JSBigInt else num_fn(v)

    def op_neg(self, frame: Frame, arg: Any) -> None:
        frame.stack.append(self._unary_numeric(frame, operator.neg, operator.neg))

    def op_plus(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.append(self.ctx.to_number(s.pop()))

    def op_inc(self, frame: Frame, arg: Any) -> None:
        frame.stack.append(self._unary_numeric(frame, lambda x: x + 1.0, lambda x: x + 1))

    def op_dec(self, frame: Frame, arg: Any) -> None:
        frame.stack.append(self._unary_numeric(frame, lambda x: x - 1.0, lambda x: x - 1))

    def _post_update(self, frame: Frame, delta: int) -> None:
        s = frame.stack
        v = self.ctx.to_numeric(s.pop())
        s.append(v)
        s.append(JSBigInt(v.value + delta) if type(v) is JSBigInt else v + delta)

    def op_post_inc(self, frame: Frame, arg: Any) -> None:
        self._post_update(frame, 1)

    def op_post_dec(self, frame: Frame, arg: Any) -> None:
        self._post_update(frame, -1)

    def _update_loc(self, frame: Frame, idx: int, delta: int) -> None:
        v = self.ctx.to_numeric(frame.vars[idx])
        frame.vars[idx] = JSBigInt(v.value + delta) if type(v) is JSBigInt else v + delta

    def op_inc_loc(self, frame: Frame, idx: int) -> None:
        self._update_loc(frame, idx, 1)

    def op_dec_loc(self, frame: Frame, idx: int) -> None:
        self._update_loc(frame, idx, -1)

    def op_add_loc(self, frame: Frame, idx: int) -> None:
        frame.vars[idx] = self._add(frame.vars[idx], frame.stack.pop())

    def op_not(self, frame: Frame, arg: Any) -> None:
        frame.stack.append(self._unary_numeric(frame, lambda x: float(~to_int32(x)), operator.invert))

    def op_lnot(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.append(not to_boolean(s.pop()))

    def op_typeof(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.append(type_of(s.pop()))

    def op_delete(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        prop = s.pop()
        obj = s.pop()
        s.append(self.ctx.delete_property(obj, self.ctx.to_property_key(prop)))

    def _add(self, a: Any, b: Any) -> Any:
        if type(a) is float and type(b) is float:
            return a + b
        ctx = self.ctx
        a = ctx.to_primitive(a)
        b = ctx.to_primitive(b)
        if type(a) is str or type(b) is str:
            return ctx.to_string(a) + ctx.to_string(b)
        return self._arith('add', a, b)

    def op_add(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        b = s.pop()
        s.append(self._add(s.pop(), b))

    def _binary(self, frame: Frame, op: str) -> None:
        s = frame.stack
        b = s.pop()
        s.append(self._arith(op, s.pop(), b))

    def op_sub(self, frame: Frame, arg: Any) -> None:
        self._binary(frame, 'sub')

    def op_mul(self, frame: Frame, arg: Any) -> None:
        self._binary(frame, 'mul')

    def op_div(self, frame: Frame, arg: Any) -> None:
        self._binary(frame, 'div')

    def op_mod(self, frame: Frame, arg: Any) -> None:
        self._binary(frame, 'mod')

    def op_pow(self, frame: Frame, arg: Any) -> None:
        self._binary(frame, 'pow')

    def op_shl(self, frame: Frame, arg: Any) -> None:
        self._binary(frame, 'shl')

    def op_sar(self, frame: Frame, arg: Any) -> None:
        self._binary(frame, 'sar')

    def op_shr(self, frame: Frame, arg: Any) -> None:
        self._binary(frame, 'shr')

    def op_and(self, frame: Frame, arg: Any) -> None:
        self._binary(frame, 'and')

    def op_or(self, frame: Frame, arg: Any) -> None:
        self._binary(frame, 'or')

    def op_xor(self, frame: Frame, arg: Any) -> None:
        self._binary(frame, 'xor')

    def _relational(self, frame: Frame, op: str) -> None:
        s = frame.stack
        b = s.pop()
        s.append(self._compare(op, s.pop(), b))

    def op_lt(self, frame: Frame, arg: Any) -> None:
        self._relational(frame, 'lt')

    def op_lte(self, frame: Frame, arg: Any) -> None:
        self._relational(frame, 'lte')

    def op_gt(self, frame: Frame, arg: Any) -> None:
        self._relational(frame, 'gt')

    def op_gte(self, frame: Frame, arg: Any) -> None:
        self._relational(frame, 'gte')

    def op_instanceof(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        target = s.pop()
        s.append(self._instance_of(s.pop(), target))

    def op_in(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        obj = s.pop()
        key = s.pop()
        if not isinstance(obj, JSObject):
            self.ctx.throw_type_error("invalid 'in' operand")
        s.append(self.ctx.has_property(obj, self.ctx.to_property_key(key)))

    def op_eq(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        b = s.pop()
        s.append(self._loose_equals(s.pop(), b))

    def op_neq(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        b = s.pop()
        s.append(not self._loose_equals(s.pop(), b))

    def op_strict_eq(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        b = s.pop()
        s.append(strict_equals(s.pop(), b))

    def op_strict_neq(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        b = s.pop()
        s.append(not strict_equals(s.pop(), b))

    def op_is_undefined(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.append(s.pop() is UNDEFINED)

    def op_is_null(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.append(s.pop() is NULL)

    def op_typeof_is_undefined(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.append(type_of(s.pop()) == 'undefined')

    def op_typeof_is_function(self, frame: Frame, arg: Any) -> None:
        s = frame.stack
        s.append(type_of(s.pop()) == 'function')
