from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .tables import FuncKind, JSMode


@dataclass
class VarDef:
    name: str
    is_const: bool = False
    is_lexical: bool = False
    is_captured: bool = False
    # block nesting level the variable was declared at (0: function body)
    scope_level: int = 0


@dataclass
class ClosureVar:
    name: str
    is_local: bool  # slot of the parent frame, else a closure var of the parent
    is_arg: bool
    var_idx: int
    is_const: bool = False
    is_lexical: bool = False


@dataclass
class FunctionBytecode:
    func_name: str = ''
    js_mode: int = 0
    func_kind: int = FuncKind.NORMAL
    has_prototype: bool = False
    is_arrow: bool = False
    arg_count: int = 0
    # value of the function's 'length' property
    defined_arg_count: int = 0
    stack_size: int = 0
    args: List[VarDef] = field(default_factory=list)
    vars: List[VarDef] = field(default_factory=list)
    closure_var: List[ClosureVar] = field(default_factory=list)
    cpool: List[Any] = field(default_factory=list)
    byte_code: bytes = b''
    filename: str = ''
    line_num: int = 1
    # (pc, line) pairs, pc ascending
    pc2line: List[Tuple[int, int]] = field(default_factory=list)
    source: str = ''

    @property
    def var_count(self) -> int:
        return len(self.vars)

    @property
    def is_strict(self) -> bool:
        return bool(self.js_mode & JSMode.STRICT)

    def line_at(self, pc: int) -> int:
        line = self.line_num
        for start, ln in self.pc2line:
            if start > pc:
                break
            line = ln
        return line


@dataclass
class ImportEntry:
    var_idx: int  # closure var of the module function
    import_name: str  # '*' for a namespace import
    req_module_idx: int


@dataclass
class ExportEntry:
    var_idx: int
    export_name: str


@dataclass
class ModuleDef:
    """A module record. JS modules carry a function; native modules an init hook."""

    module_name: str
    req_modules: List[str] = field(default_factory=list)
    import_entries: List[ImportEntry] = field(default_factory=list)
    export_entries: List[ExportEntry] = field(default_factory=list)
    func: Optional[FunctionBytecode] = None
    init_func: Optional[Callable] = None
    # link / evaluation state
    resolved: List['ModuleDef'] = field(default_factory=list)
    var_refs: List[Any] = field(default_factory=list)
    exports: Dict[str, Any] = field(default_factory=dict)
    namespace: Any = None
    linked: bool = False
    evaluated: bool = False

    @property
    def is_c_module(self) -> bool:
        return self.init_func is not None
