from __future__ import annotations

import logging
import math
from typing import Any, Callable, Dict, List, NoReturn, Optional

from jsbc import config
from jsbc.config import EngineOptions

from . import tables
from .function import FunctionBytecode, ModuleDef
from .values import (
    NULL, UNDEFINED, UNINITIALIZED, _MISSING, JSArray, JSBigInt, JSObject,
    ModuleNamespace, VarRef, array_index, is_callable, number_to_string,
    string_to_number,
)

log = logging.getLogger(__name__)

EVAL_TYPE_GLOBAL = 0
EVAL_TYPE_MODULE = 1
EVAL_TYPE_MASK = 3
EVAL_FLAG_STRICT = 1 << 3
EVAL_FLAG_COMPILE_ONLY = 1 << 5

ERROR_CLASSES = (
    'Error', 'EvalError', 'RangeError', 'ReferenceError', 'SyntaxError',
    'TypeError', 'URIError', 'InternalError',
)


class JSThrow(Exception):
    """A JavaScript exception in flight; value is the thrown JS value."""

    def __init__(self, value: Any):
        super().__init__(value)
        self.value = value


class Runtime:
    """Owns the atom table, the build options and the module loader."""

    def __init__(self, options: Optional[EngineOptions] = None):
        self.options = options or config.load_options()
        self.defs = tables.get_definitions(self.options.bignum, self.options.short_opcodes)
        self._atoms: List[Optional[str]] = [None] + [a.text for a in self.defs.atoms]
        self._atom_ids: Dict[str, int] = {}
        for a in self.defs.atoms:
            # symbols are not interned by their description
            if a.name.startswith('Symbol_') or a.name == 'Private_brand':
                continue
            self._atom_ids.setdefault(a.text, a.id)
        self.module_loader: Optional[Callable] = None
        self.module_loader_opaque: Any = None
        self.contexts: List['Context'] = []
        self.freed = False
        log.debug("runtime allocated (version=0x%02x)", self.options.version)

    @property
    def first_atom_id(self) -> int:
        return self.defs.atom_end

    def new_atom(self, s: str) -> int:
        atom = self._atom_ids.get(s)
        if atom is None:
            atom = len(self._atoms)
            self._atoms.append(s)
            self._atom_ids[s] = atom
        return atom

    def atom_to_string(self, atom: int) -> str:
        if atom <= 0 or atom >= len(self._atoms):
            raise KeyError(f"invalid atom {atom}")
        return self._atoms[atom]

    def set_module_loader(self, func: Optional[Callable], opaque: Any = None) -> None:
        self.module_loader = func
        self.module_loader_opaque = opaque

    def free(self) -> None:
        if self.freed:
            raise RuntimeError("runtime already freed")
        if self.contexts:
            raise RuntimeError("runtime freed while contexts are alive")
        self.freed = True
        self._atoms = []
        self._atom_ids = {}
        log.debug("runtime freed")


def new_c_module(ctx: 'Context', name: Any, init_func: Callable) -> Optional[ModuleDef]:
    """Create and register a native module; None when the name is unusable."""
    if not isinstance(name, str) or init_func is None:
        return None
    m = ModuleDef(name, init_func=init_func)
    ctx.loaded_modules.setdefault(name, m)
    return m


class Context:
    def __init__(self, rt: Runtime):
        if rt.freed:
            raise RuntimeError("runtime already freed")
        from .builtins import add_intrinsics
        from .vm import VM
        self.rt = rt
        self.loaded_modules: Dict[str, ModuleDef] = {}
        self.freed = False
        self.vm = VM(self)
        self.error_protos: Dict[str, JSObject] = {}
        add_intrinsics(self)
        rt.contexts.append(self)

    def free(self) -> None:
        if self.freed:
            raise RuntimeError("context already freed")
        self.freed = True
        self.loaded_modules.clear()
        self.rt.contexts.remove(self)

    # --- exceptions ---
    def new_error(self, kind: str, message: str, filename: Optional[str] = None,
                  line: int = 0) -> JSObject:
        err = JSObject(self.error_protos[kind], 'Error')
        err.define('message', message, enumerable=False)
        self.build_backtrace(err, filename, line)
        return err

    def build_backtrace(self, err: JSObject, filename: Optional[str] = None, line: int = 0) -> None:
        lines = []
        if filename is not None:
            lines.append(f"    at {filename}:{line}\n")
        lines.extend(self.vm.backtrace())
        err.define('stack', ''.join(lines), enumerable=False)

    def throw(self, kind: str, message: str) -> NoReturn:
        raise JSThrow(self.new_error(kind, message))

    def throw_type_error(self, message: str) -> NoReturn:
        self.throw('TypeError', message)

    def throw_reference_error(self, message: str) -> NoReturn:
        self.throw('ReferenceError', message)

    def throw_range_error(self, message: str) -> NoReturn:
        self.throw('RangeError', message)

    # --- objects ---
    def new_object(self, proto: Any = _MISSING) -> JSObject:
        return JSObject(self.object_proto if proto is _MISSING else proto)

    def new_array(self, items=()) -> JSArray:
        return JSArray(self.array_proto, list(items))

    def proto_of_primitive(self, v: Any) -> JSObject:
        t = type(v)
        if t is str:
            return self.string_proto
        if t is float:
            return self.number_proto
        if t is bool:
            return self.boolean_proto
        if t is JSBigInt:
            return self.bigint_proto
        self.throw_type_error("cannot convert to object")

    def to_object(self, v: Any) -> JSObject:
        if isinstance(v, JSObject):
            return v
        if v is UNDEFINED or v is NULL:
            self.throw_type_error("cannot convert to object")
        wrapper = JSObject(self.proto_of_primitive(v), self.proto_of_primitive(v).class_name)
        wrapper.primitive_value = v
        return wrapper

    def get_property(self, obj: Any, key: str) -> Any:
        if isinstance(obj, JSObject):
            o = obj
        else:
            if obj is UNDEFINED or obj is NULL:
                self.throw_type_error(f"cannot read property '{key}' of {obj!r}")
            if type(obj) is str:
                if key == 'length':
                    return float(len(obj))
                idx = array_index(key)
                if 0 <= idx < len(obj):
                    return obj[idx]
            o = self.proto_of_primitive(obj)
        while o is not None:
            v = o.get_own(key)
            if v is not _MISSING:
                return v
            o = o.proto
        return UNDEFINED

    def set_property(self, obj: Any, key: str, value: Any) -> None:
        if isinstance(obj, JSObject):
            if isinstance(obj, ModuleNamespace):
                self.throw_type_error(f"'{key}' is read-only")
            if isinstance(obj, JSArray) and key == 'length':
                n = self.to_number(value)
                if n != n or n < 0 or n >= 2 ** 32 or not float(n).is_integer():
                    self.throw_range_error("invalid array length")
                value = n
            obj.set_own(key, value)
        elif obj is UNDEFINED or obj is NULL:
            self.throw_type_error(f"cannot set property '{key}' of {obj!r}")

    def has_property(self, obj: JSObject, key: str) -> bool:
        o = obj
        while o is not None:
            if o.has_own(key):
                return True
            o = o.proto
        return False

    def delete_property(self, obj: Any, key: str) -> bool:
        if isinstance(obj, JSObject):
            return obj.delete_own(key)
        if obj is UNDEFINED or obj is NULL:
            self.throw_type_error(f"cannot delete property '{key}' of {obj!r}")
        return True

    # --- conversions ---
    def to_primitive(self, v: Any, hint: str = 'default') -> Any:
        if not isinstance(v, JSObject):
            return v
        order = ('toString', 'valueOf') if hint == 'string' else ('valueOf', 'toString')
        for name in order:
            method = self.get_property(v, name)
            if is_callable(method):
                r = self.call(method, v, [])
                if not isinstance(r, JSObject):
                    return r
        self.throw_type_error("toPrimitive")

    def to_number(self, v: Any) -> float:
        t = type(v)
        if t is float:
            return v
        if t is bool:
            return 1.0 if v else 0.0
        if t is str:
            return string_to_number(v)
        if v is UNDEFINED:
            return math.nan
        if v is NULL:
            return 0.0
        if t is JSBigInt:
            self.throw_type_error("cannot convert bigint to number")
        return self.to_number(self.to_primitive(v, 'number'))

    def to_numeric(self, v: Any) -> Any:
        if isinstance(v, JSObject):
            v = self.to_primitive(v, 'number')
        if type(v) is JSBigInt:
            return v
        return self.to_number(v)

    def to_string(self, v: Any) -> str:
        t = type(v)
        if t is str:
            return v
        if t is float:
            return number_to_string(v)
        if t is bool:
            return 'true' if v else 'false'
        if v is UNDEFINED:
            return 'undefined'
        if v is NULL:
            return 'null'
        if t is JSBigInt:
            return str(v.value)
        return self.to_string(self.to_primitive(v, 'string'))

    def to_property_key(self, v: Any) -> str:
        if type(v) is str:
            return v
        if type(v) is float:
            return number_to_string(v)
        return self.to_string(self.to_primitive(v, 'string'))

    def to_cstring(self, v: Any) -> Optional[str]:
        """Stringify v; None if the conversion itself throws."""
        try:
            return self.to_string(v)
        except JSThrow:
            return None

    # --- calls ---
    def call(self, func: Any, this_val: Any, args: List[Any]) -> Any:
        if not is_callable(func):
            self.throw_type_error("not a function")
        return self.vm.call(func, this_val, list(args))

    def construct(self, func: Any, args: List[Any]) -> Any:
        return self.vm.construct(func, list(args), func)

    # --- evaluation ---
    def eval(self, source: str, filename: str = '<input>', flags: int = EVAL_TYPE_GLOBAL) -> Any:
        """Compile source; unless EVAL_FLAG_COMPILE_ONLY is set, evaluate it too."""
        from .compiler import compile_program
        is_module = (flags & EVAL_TYPE_MASK) == EVAL_TYPE_MODULE
        compiled = compile_program(self, source, filename, is_module=is_module,
                                   strict=bool(flags & EVAL_FLAG_STRICT))
        if flags & EVAL_FLAG_COMPILE_ONLY:
            return compiled
        if isinstance(compiled, FunctionBytecode):
            return self.call(self.eval_function(compiled), UNDEFINED, [])
        return self.eval_function(compiled)

    def eval_function(self, obj: Any) -> Any:
        """Modules are linked and evaluated; function bytecode is instantiated.

        Any other value evaluates to itself.
        """
        if isinstance(obj, ModuleDef):
            self.loaded_modules.setdefault(obj.module_name, obj)
            self._link_module(obj)
            self._evaluate_module(obj)
            return UNDEFINED
        if isinstance(obj, FunctionBytecode):
            if obj.closure_var:
                self.throw('InternalError', "function has unbound closure variables")
            return self.vm.new_closure(obj, [])
        return obj

    # --- modules ---
    def resolve_module(self, name: str) -> ModuleDef:
        m = self.loaded_modules.get(name)
        if m is not None:
            return m
        if self.rt.module_loader is not None:
            m = self.rt.module_loader(self, name, self.rt.module_loader_opaque)
        if m is None:
            self.throw_reference_error(f"could not load module '{name}'")
        return m

    def module_namespace(self, m: ModuleDef) -> ModuleNamespace:
        if m.namespace is None:
            m.namespace = ModuleNamespace(m.exports)
        return m.namespace

    def _link_module(self, m: ModuleDef) -> None:
        if m.linked:
            return
        m.linked = True
        m.resolved = [self.resolve_module(name) for name in m.req_modules]
        for dep in m.resolved:
            if not dep.is_c_module:
                self._link_module(dep)
        if m.is_c_module:
            return
        b = m.func
        m.var_refs = [VarRef(value=UNINITIALIZED if cv.is_lexical else UNDEFINED)
                      for cv in b.closure_var]
        for imp in m.import_entries:
            dep = m.resolved[imp.req_module_idx]
            if imp.import_name == '*':
                m.var_refs[imp.var_idx] = VarRef(value=self.module_namespace(dep))
                continue
            ref = dep.exports.get(imp.import_name)
            if ref is None:
                self.throw('SyntaxError', f"Could not find export '{imp.import_name}' "
                                          f"in module '{dep.module_name}'")
            m.var_refs[imp.var_idx] = ref
        for e in m.export_entries:
            m.exports[e.export_name] = m.var_refs[e.var_idx]

    def _evaluate_module(self, m: ModuleDef) -> None:
        if m.evaluated:
            return
        m.evaluated = True
        for dep in m.resolved:
            self._evaluate_module(dep)
        if m.is_c_module:
            if m.init_func(self, m) < 0:
                self.throw('InternalError', f"initialization of module '{m.module_name}' failed")
            return
        func = self.vm.new_closure(m.func, m.var_refs)
        self.call(func, UNDEFINED, [])
