"""
  Intrinsic objects installed into every context.

Native functions take (ctx, this, args); constructors additionally provide
a ctor(ctx, args, new_target).
"""

from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, List, Optional

from .runtime import ERROR_CLASSES
from .values import (
    NULL, UNDEFINED, JSArray, JSBigInt, JSFunction, JSObject, NativeFunction,
    is_callable, number_to_string, same_value_zero, strict_equals, to_boolean,
)

_DIGITS = '0123456789abcdefghijklmnopqrstuvwxyz'
_FLOAT_PREFIX_RE = re.compile(r'[+-]?(?:Infinity|\d+\.?\d*(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?)')


def _arg(args: List[Any], i: int) -> Any:
    return args[i] if i < len(args) else UNDEFINED


def _method(ctx, obj: JSObject, name: str, fn: Callable, length: int = 0) -> NativeFunction:
    f = NativeFunction(ctx.function_proto, name, fn, length)
    obj.define(name, f, enumerable=False)
    return f


def _constructor(ctx, name: str, fn: Callable, ctor: Optional[Callable], proto: JSObject,
                 length: int = 1) -> NativeFunction:
    f = NativeFunction(ctx.function_proto, name, fn, length, ctor)
    f.define('prototype', proto, enumerable=False)
    proto.define('constructor', f, enumerable=False)
    ctx.global_obj.define(name, f, enumerable=False)
    return f


def _this_value(ctx, this: Any, kind: type, class_name: str) -> Any:
    if type(this) is kind:
        return this
    if isinstance(this, JSObject) and type(getattr(this, 'primitive_value', None)) is kind:
        return this.primitive_value
    ctx.throw_type_error(f"{class_name} expected")


def _to_integer(ctx, v: Any) -> float:
    n = ctx.to_number(v)
    if n != n:
        return 0.0
    if math.isinf(n):
        return n
    return float(math.trunc(n))


def _relative_index(ctx, v: Any, length: int, default: int) -> int:
    if v is UNDEFINED:
        return default
    n = _to_integer(ctx, v)
    if n < 0:
        return int(max(length + n, 0))
    return int(min(n, length))


# --- Object ---
def _object_call(ctx, this, args):
    v = _arg(args, 0)
    if v is UNDEFINED or v is NULL:
        return ctx.new_object()
    return ctx.to_object(v)


def _object_keys(ctx, this, args):
    return ctx.new_array(ctx.to_object(_arg(args, 0)).own_keys())


def _object_to_string(ctx, this, args):
    if this is UNDEFINED:
        return '[object Undefined]'
    if this is NULL:
        return '[object Null]'
    return f"[object {ctx.to_object(this).class_name}]"


def _object_has_own(ctx, this, args):
    return ctx.to_object(this).has_own(ctx.to_property_key(_arg(args, 0)))


def _object_value_of(ctx, this, args):
    return ctx.to_object(this)


# --- Function ---
def _function_to_string(ctx, this, args):
    if isinstance(this, JSFunction):
        if this.bytecode.source:
            return this.bytecode.source
        name = this.bytecode.func_name
    elif isinstance(this, NativeFunction):
        name = this.name
    else:
        ctx.throw_type_error("not a function")
    return f"function {name}() {{\n    [native code]\n}}"


def _function_call(ctx, this, args):
    return ctx.call(this, _arg(args, 0), args[1:])


def _function_apply(ctx, this, args):
    arr = _arg(args, 1)
    if arr is UNDEFINED or arr is NULL:
        items = []
    elif isinstance(arr, JSArray):
        items = list(arr.items)
    else:
        ctx.throw_type_error("not an array")
    return ctx.call(this, _arg(args, 0), items)


# --- Array ---
def _array_construct(ctx, args, new_target):
    if len(args) == 1 and type(args[0]) is float:
        n = args[0]
        if n < 0 or n >= 2 ** 32 or not n.is_integer():
            ctx.throw_range_error("invalid array length")
        return ctx.new_array([UNDEFINED] * int(n))
    return ctx.new_array(args)


def _this_array(ctx, this) -> JSArray:
    if not isinstance(this, JSArray):
        ctx.throw_type_error("not an array")
    return this


def _array_is_array(ctx, this, args):
    return isinstance(_arg(args, 0), JSArray)


def _array_push(ctx, this, args):
    a = _this_array(ctx, this)
    a.items.extend(args)
    return float(len(a.items))


def _array_pop(ctx, this, args):
    a = _this_array(ctx, this)
    return a.items.pop() if a.items else UNDEFINED


def _array_join(ctx, this, args):
    a = _this_array(ctx, this)
    sep = _arg(args, 0)
    sep = ',' if sep is UNDEFINED else ctx.to_string(sep)
    return sep.join('' if v is UNDEFINED or v is NULL else ctx.to_string(v) for v in a.items)


def _array_to_string(ctx, this, args):
    return _array_join(ctx, this, [])


def _array_index_of(ctx, this, args):
    a = _this_array(ctx, this)
    target = _arg(args, 0)
    start = _relative_index(ctx, _arg(args, 1), len(a.items), 0)
    for i in range(start, len(a.items)):
        if strict_equals(a.items[i], target):
            return float(i)
    return -1.0


def _array_includes(ctx, this, args):
    a = _this_array(ctx, this)
    target = _arg(args, 0)
    return any(same_value_zero(v, target) for v in a.items)


def _array_slice(ctx, this, args):
    a = _this_array(ctx, this)
    n = len(a.items)
    start = _relative_index(ctx, _arg(args, 0), n, 0)
    end = _relative_index(ctx, _arg(args, 1), n, n)
    return ctx.new_array(a.items[start:end])


def _callback(ctx, args) -> Any:
    fn = _arg(args, 0)
    if not is_callable(fn):
        ctx.throw_type_error("not a function")
    return fn


def _array_for_each(ctx, this, args):
    a = _this_array(ctx, this)
    fn = _callback(ctx, args)
    i = 0
    while i < len(a.items):
        ctx.call(fn, _arg(args, 1), [a.items[i], float(i), a])
        i += 1
    return UNDEFINED


def _array_map(ctx, this, args):
    a = _this_array(ctx, this)
    fn = _callback(ctx, args)
    out = [ctx.call(fn, _arg(args, 1), [v, float(i), a]) for i, v in enumerate(list(a.items))]
    return ctx.new_array(out)


def _array_filter(ctx, this, args):
    a = _this_array(ctx, this)
    fn = _callback(ctx, args)
    out = [v for i, v in enumerate(list(a.items))
           if to_boolean(ctx.call(fn, _arg(args, 1), [v, float(i), a]))]
    return ctx.new_array(out)


def _array_reduce(ctx, this, args):
    a = _this_array(ctx, this)
    fn = _callback(ctx, args)
    items = list(a.items)
    if len(args) >= 2:
        acc, start = args[1], 0
    elif items:
        acc, start = items[0], 1
    else:
        ctx.throw_type_error("empty array")
    for i in range(start, len(items)):
        acc = ctx.call(fn, UNDEFINED, [acc, items[i], float(i), a])
    return acc


# --- String ---
def _string_call(ctx, this, args):
    return ctx.to_string(args[0]) if args else ''


def _string_construct(ctx, args, new_target):
    return ctx.to_object(_string_call(ctx, UNDEFINED, args))


def _this_string(ctx, this) -> str:
    if this is UNDEFINED or this is NULL:
        ctx.throw_type_error("not an object")
    if isinstance(this, JSObject) and type(getattr(this, 'primitive_value', None)) is str:
        return this.primitive_value
    return ctx.to_string(this)


def _string_value_of(ctx, this, args):
    return _this_value(ctx, this, str, 'String')


def _string_char_at(ctx, this, args):
    s = _this_string(ctx, this)
    i = _to_integer(ctx, _arg(args, 0))
    return s[int(i)] if 0 <= i < len(s) else ''


def _string_char_code_at(ctx, this, args):
    s = _this_string(ctx, this)
    i = _to_integer(ctx, _arg(args, 0))
    return float(ord(s[int(i)])) if 0 <= i < len(s) else math.nan


def _string_index_of(ctx, this, args):
    s = _this_string(ctx, this)
    needle = ctx.to_string(_arg(args, 0))
    start = int(min(max(_to_integer(ctx, _arg(args, 1)), 0), len(s)))
    return float(s.find(needle, start))


def _string_slice(ctx, this, args):
    s = _this_string(ctx, this)
    start = _relative_index(ctx, _arg(args, 0), len(s), 0)
    end = _relative_index(ctx, _arg(args, 1), len(s), len(s))
    return s[start:end]


def _string_split(ctx, this, args):
    s = _this_string(ctx, this)
    sep = _arg(args, 0)
    if sep is UNDEFINED:
        return ctx.new_array([s])
    sep = ctx.to_string(sep)
    if sep == '':
        return ctx.new_array(list(s))
    return ctx.new_array(s.split(sep))


def _string_to_upper(ctx, this, args):
    return _this_string(ctx, this).upper()


def _string_to_lower(ctx, this, args):
    return _this_string(ctx, this).lower()


# --- Number / Boolean / BigInt ---
def _number_call(ctx, this, args):
    if not args:
        return 0.0
    v = ctx.to_numeric(args[0])
    return float(v.value) if type(v) is JSBigInt else v


def _number_construct(ctx, args, new_target):
    return ctx.to_object(_number_call(ctx, UNDEFINED, args))


def _int_to_radix(n: int, radix: int) -> str:
    if n == 0:
        return '0'
    sign = '-' if n < 0 else ''
    n = abs(n)
    out = []
    while n:
        n, r = divmod(n, radix)
        out.append(_DIGITS[r])
    return sign + ''.join(reversed(out))


def _number_to_string(ctx, this, args):
    x = _this_value(ctx, this, float, 'Number')
    radix = _arg(args, 0)
    radix = 10 if radix is UNDEFINED else int(_to_integer(ctx, radix))
    if radix < 2 or radix > 36:
        ctx.throw_range_error("radix must be between 2 and 36")
    if radix == 10 or x != x or math.isinf(x):
        return number_to_string(x)
    if not x.is_integer():
        ctx.throw_range_error("fractional radix conversion is not supported")
    return _int_to_radix(int(x), radix)


def _number_to_fixed(ctx, this, args):
    x = _this_value(ctx, this, float, 'Number')
    digits = int(_to_integer(ctx, _arg(args, 0)))
    if digits < 0 or digits > 100:
        ctx.throw_range_error("toFixed() digits argument must be between 0 and 100")
    if x != x or abs(x) >= 1e21:
        return number_to_string(x)
    q = Decimal(x).quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_UP)
    s = f"{q:f}"
    return s[1:] if s.startswith('-') and q == 0 else s


def _number_value_of(ctx, this, args):
    return _this_value(ctx, this, float, 'Number')


def _boolean_call(ctx, this, args):
    return to_boolean(_arg(args, 0))


def _boolean_construct(ctx, args, new_target):
    return ctx.to_object(to_boolean(_arg(args, 0)))


def _boolean_to_string(ctx, this, args):
    return 'true' if _this_value(ctx, this, bool, 'Boolean') else 'false'


def _boolean_value_of(ctx, this, args):
    return _this_value(ctx, this, bool, 'Boolean')


def _bigint_call(ctx, this, args):
    v = ctx.to_primitive(_arg(args, 0), 'number')
    t = type(v)
    if t is JSBigInt:
        return v
    if t is bool:
        return JSBigInt(int(v))
    if t is float:
        if v != v or math.isinf(v) or not v.is_integer():
            ctx.throw_range_error("cannot convert to bigint: not an integer")
        return JSBigInt(int(v))
    if t is str:
        try:
            return JSBigInt(int(v.strip() or '0', 0))
        except ValueError:
            ctx.throw('SyntaxError', "invalid bigint literal")
    ctx.throw_type_error("cannot convert to bigint")


def _bigint_to_string(ctx, this, args):
    v = _this_value(ctx, this, JSBigInt, 'BigInt')
    radix = _arg(args, 0)
    radix = 10 if radix is UNDEFINED else int(_to_integer(ctx, radix))
    if radix < 2 or radix > 36:
        ctx.throw_range_error("radix must be between 2 and 36")
    return _int_to_radix(v.value, radix)


# --- Math ---
def _math_fn(fn: Callable[[float], float]) -> Callable:
    def native(ctx, this, args):
        x = ctx.to_number(_arg(args, 0))
        if x != x:
            return math.nan
        try:
            return float(fn(x))
        except (ValueError, OverflowError):
            return math.nan
    return native


def _floor(x: float) -> float:
    return x if math.isinf(x) else float(math.floor(x))


def _ceil(x: float) -> float:
    if math.isinf(x):
        return x
    return math.copysign(float(math.ceil(x)), x) if -1 < x < 0 else float(math.ceil(x))


def _round(x: float) -> float:
    if math.isinf(x) or x == 0:
        return x
    r = float(math.floor(x + 0.5))
    return -0.0 if r == 0 and x < 0 else r


def _trunc(x: float) -> float:
    if math.isinf(x):
        return x
    return math.copysign(float(math.trunc(x)), x)


def _sign(x: float) -> float:
    if x == 0:
        return x
    return 1.0 if x > 0 else -1.0


def _sqrt(x: float) -> float:
    if x == math.inf:
        return x
    return math.sqrt(x)


def _math_max(ctx, this, args):
    result = -math.inf
    for v in args:
        x = ctx.to_number(v)
        if x != x:
            result = math.nan
        elif result == result and (x > result or (x == 0 and result == 0 and math.copysign(1, result) < 0)):
            result = x
    return result


def _math_min(ctx, this, args):
    result = math.inf
    for v in args:
        x = ctx.to_number(v)
        if x != x:
            result = math.nan
        elif result == result and (x < result or (x == 0 and result == 0 and math.copysign(1, x) < 0)):
            result = x
    return result


def _math_pow(ctx, this, args):
    from .vm import _js_pow
    return _js_pow(ctx.to_number(_arg(args, 0)), ctx.to_number(_arg(args, 1)))


# --- globals ---
def _is_nan(ctx, this, args):
    x = ctx.to_number(_arg(args, 0))
    return x != x


def _is_finite(ctx, this, args):
    x = ctx.to_number(_arg(args, 0))
    return not (x != x or math.isinf(x))


def _parse_int(ctx, this, args):
    s = ctx.to_string(_arg(args, 0)).lstrip()
    radix = int(_to_integer(ctx, _arg(args, 1)))
    sign = 1
    if s[:1] in ('+', '-'):
        sign = -1 if s[0] == '-' else 1
        s = s[1:]
    if radix == 0 or radix == 16:
        if s[:2].lower() == '0x':
            s = s[2:]
            radix = 16
    if radix == 0:
        radix = 10
    if radix < 2 or radix > 36:
        return math.nan
    valid = _DIGITS[:radix]
    n = 0
    while n < len(s) and s[n].lower() in valid:
        n += 1
    if n == 0:
        return math.nan
    return float(sign * int(s[:n], radix))


def _parse_float(ctx, this, args):
    s = ctx.to_string(_arg(args, 0)).lstrip()
    m = _FLOAT_PREFIX_RE.match(s)
    if not m:
        return math.nan
    text = m.group(0)
    if text.endswith('Infinity'):
        return -math.inf if text.startswith('-') else math.inf
    return float(text)


# --- errors ---
def _error_to_string(ctx, this, args):
    if not isinstance(this, JSObject):
        ctx.throw_type_error("not an object")
    name = ctx.get_property(this, 'name')
    name = 'Error' if name is UNDEFINED else ctx.to_string(name)
    msg = ctx.get_property(this, 'message')
    msg = '' if msg is UNDEFINED else ctx.to_string(msg)
    if not name:
        return msg
    if not msg:
        return name
    return f"{name}: {msg}"


def _make_error_ctor(kind: str) -> Callable:
    def construct(ctx, args, new_target):
        proto = ctx.get_property(new_target, 'prototype') if isinstance(new_target, JSObject) else None
        if not isinstance(proto, JSObject):
            proto = ctx.error_protos[kind]
        err = JSObject(proto, 'Error')
        msg = _arg(args, 0)
        if msg is not UNDEFINED:
            err.define('message', ctx.to_string(msg), enumerable=False)
        ctx.build_backtrace(err)
        return err
    return construct


def add_intrinsics(ctx) -> None:
    object_proto = JSObject(None)
    ctx.object_proto = object_proto
    ctx.function_proto = JSObject(object_proto, 'Function')
    ctx.array_proto = JSObject(object_proto, 'Array')
    ctx.string_proto = JSObject(object_proto, 'String')
    ctx.number_proto = JSObject(object_proto, 'Number')
    ctx.boolean_proto = JSObject(object_proto, 'Boolean')
    ctx.bigint_proto = JSObject(object_proto, 'BigInt')
    g = JSObject(object_proto, 'global')
    ctx.global_obj = g

    g.define('globalThis', g, enumerable=False)
    g.define('undefined', UNDEFINED, enumerable=False)
    g.define('NaN', math.nan, enumerable=False)
    g.define('Infinity', math.inf, enumerable=False)

    obj_ctor = _constructor(ctx, 'Object', _object_call,
                            lambda ctx, args, nt: _object_call(ctx, UNDEFINED, args), object_proto)
    _method(ctx, obj_ctor, 'keys', _object_keys, 1)
    _method(ctx, object_proto, 'toString', _object_to_string)
    _method(ctx, object_proto, 'hasOwnProperty', _object_has_own, 1)
    _method(ctx, object_proto, 'valueOf', _object_value_of)

    fp = ctx.function_proto
    _method(ctx, fp, 'toString', _function_to_string)
    _method(ctx, fp, 'call', _function_call, 1)
    _method(ctx, fp, 'apply', _function_apply, 2)

    array_ctor = _constructor(ctx, 'Array', lambda ctx, this, args: _array_construct(ctx, args, UNDEFINED),
                              _array_construct, ctx.array_proto)
    _method(ctx, array_ctor, 'isArray', _array_is_array, 1)
    ap = ctx.array_proto
    for name, fn, n in (('push', _array_push, 1), ('pop', _array_pop, 0), ('join', _array_join, 1),
                        ('toString', _array_to_string, 0), ('indexOf', _array_index_of, 1),
                        ('includes', _array_includes, 1), ('slice', _array_slice, 2),
                        ('forEach', _array_for_each, 1), ('map', _array_map, 1),
                        ('filter', _array_filter, 1), ('reduce', _array_reduce, 1)):
        _method(ctx, ap, name, fn, n)

    _constructor(ctx, 'String', _string_call, _string_construct, ctx.string_proto)
    sp = ctx.string_proto
    for name, fn, n in (('toString', _string_value_of, 0), ('valueOf', _string_value_of, 0),
                        ('charAt', _string_char_at, 1), ('charCodeAt', _string_char_code_at, 1),
                        ('indexOf', _string_index_of, 1), ('slice', _string_slice, 2),
                        ('split', _string_split, 2), ('toUpperCase', _string_to_upper, 0),
                        ('toLowerCase', _string_to_lower, 0)):
        _method(ctx, sp, name, fn, n)

    _constructor(ctx, 'Number', _number_call, _number_construct, ctx.number_proto)
    _method(ctx, ctx.number_proto, 'toString', _number_to_string, 1)
    _method(ctx, ctx.number_proto, 'toFixed', _number_to_fixed, 1)
    _method(ctx, ctx.number_proto, 'valueOf', _number_value_of)

    _constructor(ctx, 'Boolean', _boolean_call, _boolean_construct, ctx.boolean_proto)
    _method(ctx, ctx.boolean_proto, 'toString', _boolean_to_string)
    _method(ctx, ctx.boolean_proto, 'valueOf', _boolean_value_of)

    _constructor(ctx, 'BigInt', _bigint_call, None, ctx.bigint_proto)
    _method(ctx, ctx.bigint_proto, 'toString', _bigint_to_string)

    m = JSObject(object_proto, 'Math')
    g.define('Math', m, enumerable=False)
    m.define('PI', math.pi, enumerable=False)
    m.define('E', math.e, enumerable=False)
    for name, fn in (('floor', _floor), ('ceil', _ceil), ('abs', abs), ('sqrt', _sqrt),
                     ('round', _round), ('trunc', _trunc), ('sign', _sign)):
        _method(ctx, m, name, _math_fn(fn), 1)
    _method(ctx, m, 'max', _math_max, 2)
    _method(ctx, m, 'min', _math_min, 2)
    _method(ctx, m, 'pow', _math_pow, 2)

    for name, fn, n in (('isNaN', _is_nan, 1), ('isFinite', _is_finite, 1),
                        ('parseInt', _parse_int, 2), ('parseFloat', _parse_float, 1)):
        _method(ctx, g, name, fn, n)

    error_proto = JSObject(object_proto, 'Error')
    for kind in ERROR_CLASSES:
        proto = error_proto if kind == 'Error' else JSObject(error_proto, 'Error')
        proto.define('name', kind, enumerable=False)
        proto.define('message', '', enumerable=False)
        construct = _make_error_ctor(kind)
        ctor = _constructor(ctx, kind, None, construct, proto)
        ctor.fn = (lambda c: lambda ctx, this, args: c.ctor(ctx, args, c))(ctor)
        ctx.error_protos[kind] = proto
    _method(ctx, error_proto, 'toString', _error_to_string)
