"""
  Engine value model.

- undefined / null -> UNDEFINED / NULL singletons
- booleans -> bool
- numbers -> float (always; int32 is only a serialization detail)
- strings -> str
- BigInt -> JSBigInt
- objects -> JSObject and subclasses
"""

from __future__ import annotations

import math
import re
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional


class _Singleton:
    __slots__ = ()
    _name = ''

    def __repr__(self) -> str:
        return self._name

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


class _Undefined(_Singleton):
    _name = 'undefined'


class _Null(_Singleton):
    _name = 'null'


class _Uninitialized(_Singleton):
    """Value of a lexical binding in its temporal dead zone."""
    _name = '<uninitialized>'


UNDEFINED = _Undefined()
NULL = _Null()
UNINITIALIZED = _Uninitialized()

_MISSING = object()


class JSBigInt:
    __slots__ = ('value',)

    def __init__(self, value: int):
        self.value = value

    def __eq__(self, other) -> bool:
        return isinstance(other, JSBigInt) and other.value == self.value

    def __hash__(self) -> int:
        return hash(('bigint', self.value))

    def __repr__(self) -> str:
        return f"{self.value}n"


class VarRef:
    """A captured variable.

    While open it aliases a slot of a live frame (args or locals list); once
    closed it owns the value.
    """

    __slots__ = ('vars', 'idx', 'value')

    def __init__(self, vars: Optional[List[Any]] = None, idx: int = 0, value: Any = UNDEFINED):
        self.vars = vars
        self.idx = idx
        self.value = value

    @property
    def is_detached(self) -> bool:
        return self.vars is None

    def get(self) -> Any:
        if self.vars is None:
            return self.value
        return self.vars[self.idx]

    def set(self, value: Any) -> None:
        if self.vars is None:
            self.value = value
        else:
            self.vars[self.idx] = value

    def close(self) -> None:
        if self.vars is not None:
            self.value = self.vars[self.idx]
            self.vars = None


def array_index(key: str) -> int:
    """Return the array index denoted by key, or -1."""
    if key.isdigit() and key.isascii() and (key == '0' or key[0] != '0'):
        idx = int(key)
        if idx < 0xFFFFFFFF:
            return idx
    return -1


class JSObject:
    class_name = 'Object'

    def __init__(self, proto: Optional['JSObject'] = None, class_name: Optional[str] = None):
        self.proto = proto
        self.props: Dict[str, Any] = {}
        # non-enumerable own keys
        self.hidden: set = set()
        if class_name is not None:
            self.class_name = class_name

    def get_own(self, key: str) -> Any:
        return self.props.get(key, _MISSING)

    def has_own(self, key: str) -> bool:
        return key in self.props

    def set_own(self, key: str, value: Any) -> None:
        self.props[key] = value

    def define(self, key: str, value: Any, enumerable: bool = True) -> None:
        self.set_own(key, value)
        if enumerable:
            self.hidden.discard(key)
        else:
            self.hidden.add(key)

    def delete_own(self, key: str) -> bool:
        self.props.pop(key, None)
        self.hidden.discard(key)
        return True

    def own_keys(self) -> List[str]:
        """Enumerable own keys: integer keys ascending, then insertion order."""
        keys = [k for k in self.props if k not in self.hidden]
        ints = sorted((k for k in keys if array_index(k) >= 0), key=int)
        return ints + [k for k in keys if array_index(k) < 0]

    def __repr__(self) -> str:
        return f"<{self.class_name} object>"


class JSArray(JSObject):
    class_name = 'Array'

    def __init__(self, proto: Optional[JSObject] = None, items: Optional[List[Any]] = None):
        super().__init__(proto)
        self.items: List[Any] = list(items) if items is not None else []

    def get_own(self, key: str) -> Any:
        if key == 'length':
            return float(len(self.items))
        idx = array_index(key)
        if idx >= 0:
            return self.items[idx] if idx < len(self.items) else _MISSING
        return super().get_own(key)

    def has_own(self, key: str) -> bool:
        return self.get_own(key) is not _MISSING

    def set_own(self, key: str, value: Any) -> None:
        if key == 'length':
            self.set_length(value)
            return
        idx = array_index(key)
        if idx < 0:
            super().set_own(key, value)
            return
        if idx >= len(self.items):
            self.items.extend([UNDEFINED] * (idx + 1 - len(self.items)))
        self.items[idx] = value

    def set_length(self, value: Any) -> None:
        n = int(value)
        if n < len(self.items):
            del self.items[n:]
        else:
            self.items.extend([UNDEFINED] * (n - len(self.items)))

    def delete_own(self, key: str) -> bool:
        if key == 'length':
            return False
        idx = array_index(key)
        if 0 <= idx < len(self.items):
            self.items[idx] = UNDEFINED
            return True
        return super().delete_own(key)

    def own_keys(self) -> List[str]:
        return [str(i) for i in range(len(self.items))] + super().own_keys()


class JSFunction(JSObject):
    """A closure: function bytecode plus its captured variables."""

    class_name = 'Function'

    def __init__(self, proto: Optional[JSObject], bytecode: Any, var_refs: List[VarRef]):
        super().__init__(proto)
        self.bytecode = bytecode
        self.var_refs = var_refs

    @property
    def is_constructor(self) -> bool:
        return self.bytecode.has_prototype

    def __repr__(self) -> str:
        return f"<function {self.bytecode.func_name or '<anonymous>'}>"


class NativeFunction(JSObject):
    class_name = 'Function'

    def __init__(self, proto: Optional[JSObject], name: str, fn: Callable, length: int = 0,
                 ctor: Optional[Callable] = None):
        super().__init__(proto)
        self.name = name
        self.fn = fn
        self.ctor = ctor
        self.define('name', name, enumerable=False)
        self.define('length', float(length), enumerable=False)

    @property
    def is_constructor(self) -> bool:
        return self.ctor is not None

    def __repr__(self) -> str:
        return f"<native function {self.name}>"


class ModuleNamespace(JSObject):
    """Exports of a module, read through their live bindings."""

    class_name = 'Module'

    def __init__(self, exports: Dict[str, VarRef]):
        super().__init__(None)
        self.exports = dict(sorted(exports.items()))

    def get_own(self, key: str) -> Any:
        ref = self.exports.get(key)
        return _MISSING if ref is None else ref.get()

    def has_own(self, key: str) -> bool:
        return key in self.exports

    def set_own(self, key: str, value: Any) -> None:
        pass

    def delete_own(self, key: str) -> bool:
        return key not in self.exports

    def own_keys(self) -> List[str]:
        return list(self.exports)


def is_object(v: Any) -> bool:
    return isinstance(v, JSObject)


def is_callable(v: Any) -> bool:
    return isinstance(v, (JSFunction, NativeFunction))


def type_of(v: Any) -> str:
    if v is UNDEFINED:
        return 'undefined'
    if v is NULL:
        return 'object'
    t = type(v)
    if t is bool:
        return 'boolean'
    if t is float:
        return 'number'
    if t is str:
        return 'string'
    if t is JSBigInt:
        return 'bigint'
    if is_callable(v):
        return 'function'
    return 'object'


def to_boolean(v: Any) -> bool:
    t = type(v)
    if t is bool:
        return v
    if t is float:
        return not (v == 0 or v != v)
    if t is str:
        return v != ''
    if v is UNDEFINED or v is NULL:
        return False
    if t is JSBigInt:
        return v.value != 0
    return True


def number_to_string(x: float) -> str:
    """Number::toString(10)."""
    if x != x:
        return 'NaN'
    if x == 0:
        return '0'
    if math.isinf(x):
        return 'Infinity' if x > 0 else '-Infinity'
    if x < 0:
        return '-' + number_to_string(-x)
    if x.is_integer() and x < 1e21:
        return str(int(x))
    _, digits, exp = Decimal(repr(x)).as_tuple()
    digits = list(digits)
    while len(digits) > 1 and digits[-1] == 0:
        digits.pop()
        exp += 1
    s = ''.join(map(str, digits))
    k = len(s)
    n = k + exp
    if k <= n <= 21:
        return s + '0' * (n - k)
    if 0 < n <= 21:
        return s[:n] + '.' + s[n:]
    if -6 < n <= 0:
        return '0.' + '0' * (-n) + s
    e = n - 1
    exponent = ('+' if e >= 0 else '-') + str(abs(e))
    if k == 1:
        return s + 'e' + exponent
    return s[0] + '.' + s[1:] + 'e' + exponent


_JS_SPACE = ' \t\n\r\v\f' + ''.join(map(chr, (
    0xA0, 0x1680, *range(0x2000, 0x200B), 0x2028, 0x2029, 0x202F, 0x205F, 0x3000, 0xFEFF)))
_DECIMAL_RE = re.compile(r'[+-]?(?:\d+\.?\d*(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?)')
_RADIX_RE = re.compile(r'0(?:[xX](?P<hex>[0-9a-fA-F]+)|[oO](?P<oct>[0-7]+)|[bB](?P<bin>[01]+))')


def string_to_number(s: str) -> float:
    s = s.strip(_JS_SPACE)
    if not s:
        return 0.0
    if s in ('Infinity', '+Infinity'):
        return math.inf
    if s == '-Infinity':
        return -math.inf
    m = _RADIX_RE.fullmatch(s)
    if m:
        if m.group('hex'):
            return float(int(m.group('hex'), 16))
        if m.group('oct'):
            return float(int(m.group('oct'), 8))
        return float(int(m.group('bin'), 2))
    if _DECIMAL_RE.fullmatch(s):
        return float(s)
    return math.nan


def to_int32(x: float) -> int:
    if x != x or math.isinf(x):
        return 0
    n = int(x) & 0xFFFFFFFF
    return n - 0x100000000 if n & 0x80000000 else n


def to_uint32(x: float) -> int:
    if x != x or math.isinf(x):
        return 0
    return int(x) & 0xFFFFFFFF


def same_value_zero(a: Any, b: Any) -> bool:
    if type(a) is float and type(b) is float and a != a and b != b:
        return True
    return strict_equals(a, b)


def strict_equals(a: Any, b: Any) -> bool:
    ta, tb = type(a), type(b)
    if ta is not tb:
        return False
    if ta is float or ta is str or ta is bool or ta is JSBigInt:
        return a == b
    return a is b
