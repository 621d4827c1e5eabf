from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple


class Node:
    line = 0


# --- expressions ---
@dataclass
class Num(Node):
    value: float


@dataclass
class BigIntLit(Node):
    value: int


@dataclass
class Str(Node):
    value: str


@dataclass
class Bool(Node):
    value: bool


@dataclass
class Null(Node):
    pass


@dataclass
class This(Node):
    pass


@dataclass
class Ident(Node):
    name: str


@dataclass
class ArrayLit(Node):
    elements: List[Node]


@dataclass
class Property(Node):
    key: Any  # str, or a Node when computed
    value: Node
    computed: bool = False


@dataclass
class ObjectLit(Node):
    props: List[Property]


@dataclass
class FunctionNode(Node):
    name: str
    params: List[Tuple[str, Optional[Node]]]
    body: List[Node]
    is_arrow: bool = False
    is_expression: bool = False  # a named function expression binds its own name
    is_method: bool = False
    strict: bool = False
    source: str = ''
    end_line: int = 0


@dataclass
class Member(Node):
    obj: Node
    prop: str


@dataclass
class Index(Node):
    obj: Node
    index: Node


@dataclass
class Call(Node):
    callee: Node
    args: List[Node]


@dataclass
class New(Node):
    callee: Node
    args: List[Node]


@dataclass
class Unary(Node):
    op: str
    arg: Node


@dataclass
class Update(Node):
    op: str  # '++' or '--'
    prefix: bool
    target: Node


@dataclass
class Binary(Node):
    op: str
    left: Node
    right: Node


@dataclass
class Logical(Node):
    op: str  # '&&', '||', '??'
    left: Node
    right: Node


@dataclass
class Conditional(Node):
    test: Node
    cons: Node
    alt: Node


@dataclass
class Assign(Node):
    op: str  # '=' or a compound operator such as '+='
    target: Node
    value: Node


@dataclass
class Sequence(Node):
    exprs: List[Node]


# --- statements ---
@dataclass
class VarDecl(Node):
    kind: str  # var, let, const
    decls: List[Tuple[str, Optional[Node]]]


@dataclass
class FunctionDecl(Node):
    func: FunctionNode


@dataclass
class Return(Node):
    arg: Optional[Node]


@dataclass
class If(Node):
    test: Node
    cons: Node
    alt: Optional[Node]


@dataclass
class While(Node):
    test: Node
    body: Node


@dataclass
class DoWhile(Node):
    body: Node
    test: Node


@dataclass
class For(Node):
    init: Optional[Node]
    test: Optional[Node]
    update: Optional[Node]
    body: Node


@dataclass
class Break(Node):
    label: Optional[str]


@dataclass
class Continue(Node):
    label: Optional[str]


@dataclass
class Block(Node):
    body: List[Node]


@dataclass
class Throw(Node):
    arg: Node


@dataclass
class Try(Node):
    block: Block
    param: Optional[str]
    handler: Optional[Block]
    finalizer: Optional[Block]


@dataclass
class ExprStmt(Node):
    expr: Node


@dataclass
class Empty(Node):
    pass


@dataclass
class SwitchCase(Node):
    test: Optional[Node]
    body: List[Node]


@dataclass
class Switch(Node):
    disc: Node
    cases: List[SwitchCase]


@dataclass
class Labeled(Node):
    label: str
    body: Node


# --- modules ---
@dataclass
class Import(Node):
    module: str
    default: Optional[str] = None
    namespace: Optional[str] = None
    # (imported name, local name)
    named: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class ExportDecl(Node):
    decl: Node  # VarDecl or FunctionDecl


@dataclass
class ExportNamed(Node):
    # (local name, exported name)
    specifiers: List[Tuple[str, str]]


@dataclass
class ExportDefault(Node):
    value: Node  # an expression, or a FunctionDecl


@dataclass
class Program(Node):
    body: List[Node]
    is_module: bool
    strict: bool = False
    source: str = ''
