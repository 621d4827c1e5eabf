"""
  Bytecode compiler.

AST -> per-function instruction lists (symbolic labels) -> assembler:

- short opcode selection when the build enables them
- jump relaxation (goto8/goto16/if_false8/if_true8)
- stack size by abstract interpretation over the final code
- pc -> line table

Scripts keep 'var' and function declarations on the global object;
modules keep every top-level binding in a closure variable of the module
function so the linker can share them with importers.
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from . import ast_nodes as ast
from .function import (
    ClosureVar, ExportEntry, FunctionBytecode, ImportEntry, ModuleDef, VarDef,
)
from .lexer import JSSyntaxError
from .parser import parse
from .runtime import JSThrow
from .tables import (
    CONDITIONAL_OPCODES, GOTO_OPCODES, TERMINATOR_OPCODES, FuncKind, JSMode,
)
from .values import JSBigInt

BINARY_OPCODES = {
    '+': 'add', '-': 'sub', '*': 'mul', '/': 'div', '%': 'mod', '**': 'pow',
    '<<': 'shl', '>>': 'sar', '>>>': 'shr', '&': 'and', '|': 'or', '^': 'xor',
    '<': 'lt', '<=': 'lte', '>': 'gt', '>=': 'gte',
    '==': 'eq', '!=': 'neq', '===': 'strict_eq', '!==': 'strict_neq',
    'instanceof': 'instanceof', 'in': 'in',
}

THROW_VAR_RO = 0

# opcodes whose jump may be shortened; candidate forms in growing size
RELAXABLE = {
    'goto': ('goto8', 'goto16', 'goto'),
    'if_false': ('if_false8', 'if_false'),
    'if_true': ('if_true8', 'if_true'),
}
_RANGE = {'label8': (-128, 127), 'label16': (-32768, 32767), 'label': (-2 ** 31, 2 ** 31 - 1)}


@dataclass
class Instr:
    op: str  # opcode name, or 'label'
    arg: Any = None
    line: int = 0


@dataclass
class Binding:
    kind: str  # loc, arg, ref
    idx: int
    is_lexical: bool = False
    is_const: bool = False


@dataclass
class BlockEnv:
    kind: str  # loop, switch, label, try, finally
    labels: List[str] = field(default_factory=list)
    break_label: Optional[int] = None
    continue_label: Optional[int] = None
    drop_count: int = 0
    finally_label: Optional[int] = None
    scope_depth: int = 0


class FuncState:
    def __init__(self, parent: Optional['FuncState'], kind: str, name: str, strict: bool,
                 is_arrow: bool = False, line: int = 1):
        self.parent = parent
        self.kind = kind  # function, script, module
        self.name = name
        self.strict = strict
        self.is_arrow = is_arrow
        self.args: List[VarDef] = []
        self.vars: List[VarDef] = []
        self.closure_var: List[ClosureVar] = []
        self.cpool: List[Any] = []
        self.code: List[Instr] = []
        self.scopes: List[Dict[str, Binding]] = [{}]
        self.envs: List[BlockEnv] = []
        self.label_count = 0
        self.line = line
        self.line_num = line
        self.this_idx = -1
        self.ret_idx = -1
        self.has_prototype = False
        self.defined_arg_count = 0
        self.source = ''

    def lookup(self, name: str) -> Optional[Binding]:
        for scope in reversed(self.scopes):
            b = scope.get(name)
            if b is not None:
                return b
        for i, cv in enumerate(self.closure_var):
            if cv.name == name:
                return Binding('ref', i, cv.is_lexical, cv.is_const)
        return None


def _collect_var_names(stmts: List[ast.Node], out: List[str]) -> List[str]:
    """Names declared with 'var' anywhere in stmts, not entering nested functions."""
    for s in stmts:
        if isinstance(s, ast.ExportDecl):
            s = s.decl
        if isinstance(s, ast.VarDecl):
            if s.kind == 'var':
                out.extend(name for name, _ in s.decls if name not in out)
        elif isinstance(s, ast.If):
            _collect_var_names([s.cons] + ([s.alt] if s.alt else []), out)
        elif isinstance(s, (ast.While, ast.DoWhile, ast.Labeled)):
            _collect_var_names([s.body], out)
        elif isinstance(s, ast.For):
            _collect_var_names(([s.init] if s.init else []) + [s.body], out)
        elif isinstance(s, ast.Block):
            _collect_var_names(s.body, out)
        elif isinstance(s, ast.Try):
            for block in (s.block, s.handler, s.finalizer):
                if block is not None:
                    _collect_var_names(block.body, out)
        elif isinstance(s, ast.Switch):
            for case in s.cases:
                _collect_var_names(case.body, out)
    return out


def _is_anonymous_function(node: ast.Node) -> bool:
    return isinstance(node, ast.FunctionNode) and not node.name


class Compiler:
    def __init__(self, ctx, filename: str):
        self.ctx = ctx
        self.defs = ctx.rt.defs
        self.filename = filename
        self.fs: Optional[FuncState] = None
        self._pending_labels: List[str] = []

    # --- emission ---
    def atom(self, name: str) -> int:
        return self.ctx.rt.new_atom(name)

    def emit(self, op: str, arg: Any = None) -> None:
        self.fs.code.append(Instr(op, arg, self.fs.line))

    def emit_atom(self, op: str, name: str, extra: Optional[int] = None) -> None:
        a = self.atom(name)
        self.emit(op, a if extra is None else (a, extra))

    def new_label(self) -> int:
        self.fs.label_count += 1
        return self.fs.label_count

    def emit_label(self, label: int) -> None:
        self.emit('label', label)

    def emit_push_number(self, v: float) -> None:
        if v.is_integer() and -2 ** 31 <= v < 2 ** 31 and math.copysign(1.0, v) > 0:
            self.emit('push_i32', int(v))
        else:
            self.emit('push_const', self.add_const(v))

    def add_const(self, v: Any) -> int:
        cpool = self.fs.cpool
        for i, c in enumerate(cpool):
            if type(c) is type(v) and (struct.pack('<d', c) == struct.pack('<d', v) if type(v) is float
                                       else c == v):
                return i
        cpool.append(v)
        return len(cpool) - 1

    def error(self, message: str, node: ast.Node) -> JSSyntaxError:
        return JSSyntaxError(message, node.line)

    # --- scopes and bindings ---
    def push_scope(self) -> None:
        self.fs.scopes.append({})

    def pop_scope(self) -> None:
        scope = self.fs.scopes.pop()
        self.emit_close_scope(scope)

    def emit_close_scope(self, scope: Dict[str, Binding]) -> None:
        # kept by finish() only for variables a closure captured
        for b in scope.values():
            if b.kind == 'loc':
                self.emit('close_loc', b.idx)

    def declare_local(self, name: str, is_lexical: bool = False, is_const: bool = False,
                      node: Optional[ast.Node] = None) -> Binding:
        fs = self.fs
        scope = fs.scopes[-1]
        if name in scope:
            if is_lexical or scope[name].is_lexical:
                raise self.error(f"invalid redefinition of lexical identifier '{name}'", node)
            return scope[name]
        idx = len(fs.vars)
        fs.vars.append(VarDef(name, is_const, is_lexical, scope_level=len(fs.scopes) - 1))
        b = Binding('loc', idx, is_lexical, is_const)
        scope[name] = b
        return b

    def resolve(self, fs: FuncState, name: str) -> Optional[Binding]:
        """Binding visible from fs, adding closure variables on the way; None for a global."""
        b = fs.lookup(name)
        if b is not None:
            return b
        if fs.parent is None:
            return None
        pb = self.resolve(fs.parent, name)
        if pb is None:
            return None
        if pb.kind == 'loc':
            fs.parent.vars[pb.idx].is_captured = True
            cv = ClosureVar(name, True, False, pb.idx, pb.is_const, pb.is_lexical)
        elif pb.kind == 'arg':
            fs.parent.args[pb.idx].is_captured = True
            cv = ClosureVar(name, True, True, pb.idx, pb.is_const, pb.is_lexical)
        else:
            cv = ClosureVar(name, False, False, pb.idx, pb.is_const, pb.is_lexical)
        fs.closure_var.append(cv)
        return Binding('ref', len(fs.closure_var) - 1, pb.is_lexical, pb.is_const)

    def emit_get_var(self, name: str, for_typeof: bool = False) -> None:
        b = self.resolve(self.fs, name)
        if b is None:
            if name == 'undefined':
                self.emit('undefined')
            else:
                self.emit_atom('get_var_undef' if for_typeof else 'get_var', name)
        elif b.kind == 'loc':
            self.emit('get_loc_check' if b.is_lexical else 'get_loc', b.idx)
        elif b.kind == 'arg':
            self.emit('get_arg', b.idx)
        else:
            self.emit('get_var_ref_check' if b.is_lexical else 'get_var_ref', b.idx)

    def emit_put_var(self, name: str, keep: bool, init: bool = False) -> None:
        """Store the value on top of the stack; it stays there when keep is set."""
        b = self.resolve(self.fs, name)
        if b is None:
            if keep:
                self.emit('dup')
            self.emit_atom('put_var', name)
            return
        if b.is_const and not init:
            self.emit_atom('throw_error', name, THROW_VAR_RO)
            return
        if b.kind == 'arg':
            self.emit('set_arg' if keep else 'put_arg', b.idx)
            return
        checked = b.is_lexical and not init
        if checked:
            if keep:
                self.emit('dup')
            self.emit('put_loc_check' if b.kind == 'loc' else 'put_var_ref_check', b.idx)
        elif b.kind == 'loc':
            self.emit('set_loc' if keep else 'put_loc', b.idx)
        else:
            self.emit('set_var_ref' if keep else 'put_var_ref', b.idx)

    def declare_block(self, stmts: List[ast.Node]) -> None:
        """Declare the lexical bindings of a block and hoist its function declarations."""
        funcs = []
        for s in stmts:
            if isinstance(s, ast.VarDecl) and s.kind != 'var':
                for name, _ in s.decls:
                    b = self.declare_local(name, True, s.kind == 'const', s)
                    self.emit('set_loc_uninitialized', b.idx)
            elif isinstance(s, ast.FunctionDecl):
                self.declare_local(s.func.name, node=s)
                funcs.append(s.func)
        for func in funcs:
            self.emit('fclosure', self.compile_function(func))
            self.emit_put_var(func.name, keep=False, init=True)

    # --- programs and functions ---
    def compile_program(self, prog: ast.Program) -> Any:
        if prog.is_module:
            return self.compile_module(prog)
        fs = FuncState(None, 'script', '<eval>', prog.strict, line=prog.line or 1)
        self.fs = fs
        for name in _collect_var_names(prog.body, []):
            self.emit_atom('define_var', name, 0)
        funcs = [s.func for s in prog.body if isinstance(s, ast.FunctionDecl)]
        for s in prog.body:
            if isinstance(s, ast.VarDecl) and s.kind != 'var':
                for name, _ in s.decls:
                    b = self.declare_local(name, True, s.kind == 'const', s)
                    self.emit('set_loc_uninitialized', b.idx)
        for func in funcs:
            self.emit('fclosure', self.compile_function(func))
            self.emit_atom('define_func', func.name, 0)
        fs.ret_idx = self.declare_local('<ret>').idx
        for s in prog.body:
            self.compile_stmt(s)
        self.emit('get_loc', fs.ret_idx)
        self.emit('return')
        return self.finish(fs)

    def compile_module(self, prog: ast.Program) -> ModuleDef:
        fs = FuncState(None, 'module', self.filename, True, line=prog.line or 1)
        self.fs = fs
        m = ModuleDef(self.filename)
        scope = fs.scopes[0]

        def bind(name: str, node: ast.Node, is_lexical=False, is_const=False) -> int:
            if name in scope:
                if is_lexical or scope[name].is_lexical:
                    raise self.error(f"invalid redefinition of lexical identifier '{name}'", node)
                return scope[name].idx
            fs.closure_var.append(ClosureVar(name, False, False, len(fs.closure_var),
                                             is_const, is_lexical))
            idx = len(fs.closure_var) - 1
            scope[name] = Binding('ref', idx, is_lexical, is_const)
            return idx

        for s in prog.body:
            if isinstance(s, ast.Import):
                if s.module not in m.req_modules:
                    m.req_modules.append(s.module)
                req = m.req_modules.index(s.module)
                locals_ = []
                if s.default:
                    locals_.append(('default', s.default))
                if s.namespace:
                    locals_.append(('*', s.namespace))
                locals_.extend(s.named)
                for imported, local in locals_:
                    idx = bind(local, s, is_lexical=True, is_const=True)
                    m.import_entries.append(ImportEntry(idx, imported, req))
        for name in _collect_var_names(prog.body, []):
            bind(name, prog)
        funcs = []
        for s in prog.body:
            decl = s.decl if isinstance(s, ast.ExportDecl) else s
            if isinstance(s, ast.ExportDefault) and isinstance(s.value, ast.FunctionDecl):
                decl = s.value
                if not decl.func.name:
                    decl.func.name = 'default'
                    idx = bind('*default*', s)
                    funcs.append((decl.func, idx))
                    m.export_entries.append(ExportEntry(idx, 'default'))
                    continue
            if isinstance(decl, ast.FunctionDecl):
                funcs.append((decl.func, bind(decl.func.name, decl)))
            elif isinstance(decl, ast.VarDecl) and decl.kind != 'var':
                for name, _ in decl.decls:
                    bind(name, decl, is_lexical=True, is_const=decl.kind == 'const')
            elif isinstance(s, ast.ExportDefault):
                bind('*default*', s, is_lexical=True)
        for func, idx in funcs:
            self.emit('fclosure', self.compile_function(func))
            self.emit('put_var_ref', idx)

        for s in prog.body:
            if isinstance(s, ast.ExportDecl):
                decl = s.decl
                names = ([decl.func.name] if isinstance(decl, ast.FunctionDecl)
                         else [name for name, _ in decl.decls])
                for name in names:
                    m.export_entries.append(ExportEntry(scope[name].idx, name))
                self.compile_stmt(decl)
            elif isinstance(s, ast.ExportDefault):
                if isinstance(s.value, ast.FunctionDecl):
                    if s.value.func.name != 'default':
                        m.export_entries.append(ExportEntry(scope[s.value.func.name].idx, 'default'))
                    continue
                fs.line = s.line
                self.compile_expr(s.value, name_hint='default')
                self.emit('put_var_ref', scope['*default*'].idx)
                m.export_entries.append(ExportEntry(scope['*default*'].idx, 'default'))
            elif isinstance(s, ast.ExportNamed):
                for local, exported in s.specifiers:
                    b = scope.get(local)
                    if b is None:
                        raise self.error(f"local export '{local}' is not defined", s)
                    m.export_entries.append(ExportEntry(b.idx, exported))
            elif not isinstance(s, ast.Import):
                self.compile_stmt(s)
        seen = set()
        for e in m.export_entries:
            if e.export_name in seen:
                raise self.error(f"duplicate exported name '{e.export_name}'", prog)
            seen.add(e.export_name)
        self.emit('return_undef')
        m.func = self.finish(fs)
        return m

    def compile_function(self, node: ast.FunctionNode, name_hint: str = '',
                         is_method: bool = False) -> int:
        parent = self.fs
        fs = FuncState(parent, 'function', node.name or name_hint, node.strict or parent.strict,
                       is_arrow=node.is_arrow, line=node.line)
        fs.has_prototype = not node.is_arrow and not is_method
        fs.source = node.source
        self.fs = fs
        try:
            scope = fs.scopes[0]
            for i, (name, _) in enumerate(node.params):
                if name in scope and fs.strict:
                    raise self.error("duplicate argument names not allowed in this context", node)
                fs.args.append(VarDef(name))
                scope[name] = Binding('arg', i)
            fs.defined_arg_count = next(
                (i for i, (_, default) in enumerate(node.params) if default is not None),
                len(node.params))
            for name in _collect_var_names(node.body, []):
                if name not in scope:
                    self.declare_local(name)
            if node.is_expression and node.name not in scope:
                b = self.declare_local(node.name)
                self.emit('special_object', 2)
                self.emit('put_loc', b.idx)
            for i, (name, default) in enumerate(node.params):
                if default is None:
                    continue
                skip = self.new_label()
                fs.line = default.line
                self.emit('get_arg', i)
                self.emit('undefined')
                self.emit('strict_eq')
                self.emit('if_false', skip)
                self.compile_expr(default)
                self.emit('put_arg', i)
                self.emit_label(skip)
            self.declare_block(node.body)
            for s in node.body:
                self.compile_stmt(s)
            fs.line = node.end_line or fs.line
            self.emit('return_undef')
            b = self.finish(fs)
        finally:
            self.fs = parent
        parent.cpool.append(b)
        return len(parent.cpool) - 1

    # --- statements ---
    def compile_stmt(self, node: ast.Node) -> None:
        self.fs.line = node.line
        method = getattr(self, 'stmt_' + type(node).__name__)
        method(node)

    def compile_body(self, stmts: List[ast.Node]) -> None:
        self.push_scope()
        self.declare_block(stmts)
        for s in stmts:
            self.compile_stmt(s)
        self.pop_scope()

    def stmt_Block(self, node: ast.Block) -> None:
        self.compile_body(node.body)

    def stmt_Empty(self, node: ast.Empty) -> None:
        pass

    def stmt_ExprStmt(self, node: ast.ExprStmt) -> None:
        fs = self.fs
        self.compile_expr(node.expr)
        if fs.ret_idx >= 0:
            self.emit('put_loc', fs.ret_idx)
        else:
            self.emit('drop')

    def stmt_VarDecl(self, node: ast.VarDecl) -> None:
        for name, init in node.decls:
            if init is None:
                if node.kind == 'var':
                    continue
                self.emit('undefined')
            else:
                self.compile_expr(init, name_hint=name)
            self.emit_put_var(name, keep=False, init=True)

    def stmt_FunctionDecl(self, node: ast.FunctionDecl) -> None:
        # hoisted when the enclosing block was entered
        pass

    def stmt_Return(self, node: ast.Return) -> None:
        if node.arg is None:
            self.emit('undefined')
        else:
            self.compile_expr(node.arg)
        envs = self.fs.envs
        if any(e.finally_label is not None for e in envs):
            for env in reversed(envs):
                for _ in range(env.drop_count):
                    self.emit('nip')
                if env.finally_label is not None:
                    self.emit('gosub', env.finally_label)
        self.emit('return')

    def stmt_Throw(self, node: ast.Throw) -> None:
        self.compile_expr(node.arg)
        self.emit('throw')

    def stmt_If(self, node: ast.If) -> None:
        else_label = self.new_label()
        self.compile_expr(node.test)
        self.emit('if_false', else_label)
        self.compile_stmt(node.cons)
        if node.alt is None:
            self.emit_label(else_label)
            return
        end_label = self.new_label()
        self.emit('goto', end_label)
        self.emit_label(else_label)
        self.compile_stmt(node.alt)
        self.emit_label(end_label)

    def take_labels(self) -> List[str]:
        labels, self._pending_labels = self._pending_labels, []
        return labels

    def _loop_env(self, labels: List[str], break_label: int, continue_label: int) -> BlockEnv:
        return BlockEnv('loop', labels, break_label, continue_label,
                        scope_depth=len(self.fs.scopes))

    def _loop_body(self, env: BlockEnv, body: ast.Node) -> None:
        self.fs.envs.append(env)
        self.compile_stmt(body)
        self.fs.envs.pop()

    def stmt_While(self, node: ast.While) -> None:
        cont, brk = self.new_label(), self.new_label()
        env = self._loop_env(self.take_labels(), brk, cont)
        self.emit_label(cont)
        self.fs.line = node.line
        self.compile_expr(node.test)
        self.emit('if_false', brk)
        self._loop_body(env, node.body)
        self.emit('goto', cont)
        self.emit_label(brk)

    def stmt_DoWhile(self, node: ast.DoWhile) -> None:
        top, cont, brk = self.new_label(), self.new_label(), self.new_label()
        env = self._loop_env(self.take_labels(), brk, cont)
        self.emit_label(top)
        self._loop_body(env, node.body)
        self.emit_label(cont)
        self.fs.line = node.test.line
        self.compile_expr(node.test)
        self.emit('if_true', top)
        self.emit_label(brk)

    def stmt_For(self, node: ast.For) -> None:
        labels = self.take_labels()
        self.push_scope()
        init = node.init
        head_vars: List[Binding] = []
        if isinstance(init, ast.VarDecl):
            if init.kind != 'var':
                for name, _ in init.decls:
                    b = self.declare_local(name, True, init.kind == 'const', init)
                    self.emit('set_loc_uninitialized', b.idx)
                    head_vars.append(b)
            self.stmt_VarDecl(init)
        elif init is not None:
            self.compile_expr(init.expr)
            self.emit('drop')
        test, cont, brk = self.new_label(), self.new_label(), self.new_label()
        env = self._loop_env(labels, brk, cont)
        self.emit_label(test)
        if node.test is not None:
            self.fs.line = node.test.line
            self.compile_expr(node.test)
            self.emit('if_false', brk)
        self._loop_body(env, node.body)
        self.emit_label(cont)
        # a fresh binding per iteration for captured loop variables
        for b in head_vars:
            self.emit('close_loc', b.idx)
        if node.update is not None:
            self.fs.line = node.update.line
            self.compile_expr(node.update)
            self.emit('drop')
        self.emit('goto', test)
        self.emit_label(brk)
        self.pop_scope()

    def stmt_Labeled(self, node: ast.Labeled) -> None:
        for env in self.fs.envs:
            if node.label in env.labels:
                raise self.error(f"duplicate label name '{node.label}'", node)
        if isinstance(node.body, (ast.While, ast.DoWhile, ast.For, ast.Labeled)):
            self._pending_labels = self._pending_labels + [node.label]
            self.compile_stmt(node.body)
            return
        labels = self.take_labels() + [node.label]
        brk = self.new_label()
        self.fs.envs.append(BlockEnv('label', labels, brk, scope_depth=len(self.fs.scopes)))
        self.compile_stmt(node.body)
        self.fs.envs.pop()
        self.emit_label(brk)

    def _emit_unwind(self, envs: List[BlockEnv], target: BlockEnv) -> None:
        """Leave every env above target: drop their stack slots and run finally blocks."""
        for env in envs:
            if env is target:
                break
            if env.kind == 'try':
                self.emit('drop')
                if env.finally_label is not None:
                    self.emit('undefined')
                    self.emit('gosub', env.finally_label)
                    self.emit('drop')
            else:
                for _ in range(env.drop_count):
                    self.emit('drop')
        for scope in reversed(self.fs.scopes[target.scope_depth:]):
            self.emit_close_scope(scope)

    def stmt_Break(self, node: ast.Break) -> None:
        envs = list(reversed(self.fs.envs))
        for env in envs:
            if (node.label is None and env.kind in ('loop', 'switch')) or \
                    (node.label is not None and node.label in env.labels):
                self._emit_unwind(envs, env)
                self.emit('goto', env.break_label)
                return
        if node.label is not None:
            raise self.error(f"break: label '{node.label}' not found", node)
        raise self.error("break must be inside loop or switch", node)

    def stmt_Continue(self, node: ast.Continue) -> None:
        envs = list(reversed(self.fs.envs))
        for env in envs:
            if env.kind == 'loop' and (node.label is None or node.label in env.labels):
                self._emit_unwind(envs, env)
                self.emit('goto', env.continue_label)
                return
        if node.label is not None:
            raise self.error(f"continue: label '{node.label}' not found", node)
        raise self.error("continue must be inside loop", node)

    def stmt_Try(self, node: ast.Try) -> None:
        fs = self.fs
        end = self.new_label()
        catch_label = self.new_label()
        finally_label = self.new_label() if node.finalizer is not None else None
        rethrow_label = self.new_label() if finally_label is not None else None

        def run_finally():
            if finally_label is not None:
                self.emit('undefined')
                self.emit('gosub', finally_label)
                self.emit('drop')

        self.emit('catch', catch_label if node.handler is not None else rethrow_label)
        fs.envs.append(BlockEnv('try', drop_count=1, finally_label=finally_label,
                                scope_depth=len(fs.scopes)))
        self.compile_stmt(node.block)
        fs.envs.pop()
        self.emit('drop')
        run_finally()
        self.emit('goto', end)

        if node.handler is not None:
            self.emit_label(catch_label)
            self.push_scope()
            if node.param is not None:
                self.emit('put_loc', self.declare_local(node.param, node=node).idx)
            else:
                self.emit('drop')
            if finally_label is not None:
                self.emit('catch', rethrow_label)
                fs.envs.append(BlockEnv('try', drop_count=1, finally_label=finally_label,
                                        scope_depth=len(fs.scopes)))
            self.compile_stmt(node.handler)
            if finally_label is not None:
                fs.envs.pop()
                self.emit('drop')
                run_finally()
            self.pop_scope()
            self.emit('goto', end)

        if finally_label is not None:
            self.emit_label(rethrow_label)
            self.emit('gosub', finally_label)
            self.emit('throw')
            self.emit_label(finally_label)
            fs.envs.append(BlockEnv('finally', drop_count=2, scope_depth=len(fs.scopes)))
            self.compile_stmt(node.finalizer)
            fs.envs.pop()
            self.emit('ret')
        self.emit_label(end)

    def stmt_Switch(self, node: ast.Switch) -> None:
        fs = self.fs
        labels = self.take_labels()
        self.compile_expr(node.disc)
        self.push_scope()
        self.declare_block([s for case in node.cases for s in case.body])
        brk = self.new_label()
        case_labels = [self.new_label() for _ in node.cases]
        default_label = brk
        for case, label in zip(node.cases, case_labels):
            if case.test is None:
                default_label = label
                continue
            fs.line = case.line
            self.emit('dup')
            self.compile_expr(case.test)
            self.emit('strict_eq')
            self.emit('if_true', label)
        self.emit('goto', default_label)
        env = BlockEnv('switch', labels, brk, drop_count=1, scope_depth=len(fs.scopes))
        fs.envs.append(env)
        for case, label in zip(node.cases, case_labels):
            self.emit_label(label)
            for s in case.body:
                self.compile_stmt(s)
        fs.envs.pop()
        self.emit_label(brk)
        self.emit('drop')
        self.pop_scope()

    def stmt_Import(self, node: ast.Node) -> None:
        raise self.error("import statements are only valid in modules", node)

    stmt_ExportDecl = stmt_ExportNamed = stmt_ExportDefault = stmt_Import

    # --- expressions ---
    def compile_expr(self, node: ast.Node, name_hint: str = '') -> None:
        method = getattr(self, 'expr_' + type(node).__name__)
        if isinstance(node, ast.FunctionNode):
            method(node, name_hint)
        else:
            method(node)

    def expr_Num(self, node: ast.Num) -> None:
        self.emit_push_number(node.value)

    def expr_BigIntLit(self, node: ast.BigIntLit) -> None:
        self.emit('push_const', self.add_const(JSBigInt(node.value)))

    def expr_Str(self, node: ast.Str) -> None:
        self.emit_atom('push_atom_value', node.value)

    def expr_Bool(self, node: ast.Bool) -> None:
        self.emit('push_true' if node.value else 'push_false')

    def expr_Null(self, node: ast.Null) -> None:
        self.emit('null')

    def expr_This(self, node: ast.This) -> None:
        fs = self.fs
        if not fs.is_arrow:
            self.emit('push_this')
            return
        owner = fs
        while owner.is_arrow:
            owner = owner.parent
        if owner.this_idx < 0:
            owner.this_idx = len(owner.vars)
            owner.vars.append(VarDef('this'))
            owner.scopes[0]['this'] = Binding('loc', owner.this_idx)
        self.emit_get_var('this')

    def expr_Ident(self, node: ast.Ident) -> None:
        self.emit_get_var(node.name)

    def expr_ArrayLit(self, node: ast.ArrayLit) -> None:
        for e in node.elements:
            self.compile_expr(e)
        self.emit('array_from', len(node.elements))

    def expr_ObjectLit(self, node: ast.ObjectLit) -> None:
        self.emit('object')
        for p in node.props:
            if p.computed:
                self.compile_expr(p.key)
                self.emit('to_propkey')
                self.compile_expr(p.value)
                self.emit('define_array_el')
                self.emit('drop')
            else:
                self.compile_expr(p.value, name_hint=p.key)
                self.emit_atom('define_field', p.key)

    def expr_FunctionNode(self, node: ast.FunctionNode, name_hint: str = '') -> None:
        self.emit('fclosure', self.compile_function(node, name_hint, node.is_method))

    def expr_Member(self, node: ast.Member) -> None:
        self.compile_expr(node.obj)
        self.fs.line = node.line
        self.emit_atom('get_field', node.prop)

    def expr_Index(self, node: ast.Index) -> None:
        self.compile_expr(node.obj)
        self.compile_expr(node.index)
        self.fs.line = node.line
        self.emit('get_array_el')

    def expr_Call(self, node: ast.Call) -> None:
        callee = node.callee
        if isinstance(callee, ast.Member):
            self.compile_expr(callee.obj)
            self.emit_atom('get_field2', callee.prop)
            op = 'call_method'
        elif isinstance(callee, ast.Index):
            self.compile_expr(callee.obj)
            self.compile_expr(callee.index)
            self.emit('get_array_el2')
            op = 'call_method'
        else:
            self.compile_expr(callee)
            op = 'call'
        for a in node.args:
            self.compile_expr(a)
        self.fs.line = node.line
        self.emit(op, len(node.args))

    def expr_New(self, node: ast.New) -> None:
        self.compile_expr(node.callee)
        self.emit('dup')
        for a in node.args:
            self.compile_expr(a)
        self.fs.line = node.line
        self.emit('call_constructor', len(node.args))

    def expr_Unary(self, node: ast.Unary) -> None:
        op, arg = node.op, node.arg
        if op == '-' and isinstance(arg, ast.Num):
            self.emit_push_number(-arg.value)
        elif op == 'typeof':
            if isinstance(arg, ast.Ident):
                self.emit_get_var(arg.name, for_typeof=True)
            else:
                self.compile_expr(arg)
            self.emit('typeof')
        elif op == 'void':
            self.compile_expr(arg)
            self.emit('drop')
            self.emit('undefined')
        elif op == 'delete':
            self.compile_delete(arg)
        else:
            self.compile_expr(arg)
            self.emit({'-': 'neg', '+': 'plus', '!': 'lnot', '~': 'not'}[op])

    def compile_delete(self, arg: ast.Node) -> None:
        if isinstance(arg, ast.Member):
            self.compile_expr(arg.obj)
            self.emit_atom('push_atom_value', arg.prop)
            self.emit('delete')
        elif isinstance(arg, ast.Index):
            self.compile_expr(arg.obj)
            self.compile_expr(arg.index)
            self.emit('delete')
        elif isinstance(arg, ast.Ident):
            if self.resolve(self.fs, arg.name) is None:
                self.emit_atom('delete_var', arg.name)
            else:
                self.emit('push_false')
        else:
            self.compile_expr(arg)
            self.emit('drop')
            self.emit('push_true')

    def expr_Binary(self, node: ast.Binary) -> None:
        self.compile_expr(node.left)
        self.compile_expr(node.right)
        self.fs.line = node.line
        self.emit(BINARY_OPCODES[node.op])

    def _emit_short_circuit(self, op: str, label: int) -> None:
        """Jump to label keeping the value when op short-circuits; else drop it."""
        self.emit('dup')
        if op == '??':
            self.emit('null')
            self.emit('eq')
            self.emit('if_false', label)
        else:
            self.emit('if_false' if op == '&&' else 'if_true', label)
        self.emit('drop')

    def expr_Logical(self, node: ast.Logical) -> None:
        end = self.new_label()
        self.compile_expr(node.left)
        self._emit_short_circuit(node.op, end)
        self.compile_expr(node.right)
        self.emit_label(end)

    def expr_Conditional(self, node: ast.Conditional) -> None:
        alt, end = self.new_label(), self.new_label()
        self.compile_expr(node.test)
        self.emit('if_false', alt)
        self.compile_expr(node.cons)
        self.emit('goto', end)
        self.emit_label(alt)
        self.compile_expr(node.alt)
        self.emit_label(end)

    def expr_Sequence(self, node: ast.Sequence) -> None:
        for e in node.exprs[:-1]:
            self.compile_expr(e)
            self.emit('drop')
        self.compile_expr(node.exprs[-1])

    # references: prepare pushes the object (and key); get keeps them below the value
    def ref_prepare(self, target: ast.Node) -> str:
        if isinstance(target, ast.Member):
            self.compile_expr(target.obj)
            return 'field'
        if isinstance(target, ast.Index):
            self.compile_expr(target.obj)
            self.compile_expr(target.index)
            self.emit('to_propkey2')
            return 'index'
        return 'var'

    def ref_get(self, kind: str, target: ast.Node) -> None:
        if kind == 'field':
            self.emit_atom('get_field2', target.prop)
        elif kind == 'index':
            self.emit('dup2')
            self.emit('get_array_el')
        else:
            self.emit_get_var(target.name)

    def ref_put(self, kind: str, target: ast.Node, keep: bool = True) -> None:
        if kind == 'field':
            if keep:
                self.emit('insert2')
            self.emit_atom('put_field', target.prop)
        elif kind == 'index':
            if keep:
                self.emit('insert3')
            self.emit('put_array_el')
        else:
            self.emit_put_var(target.name, keep=keep)

    def expr_Assign(self, node: ast.Assign) -> None:
        target, op = node.target, node.op
        kind = self.ref_prepare(target)
        hint = target.name if isinstance(target, ast.Ident) else ''
        if op == '=':
            self.compile_expr(node.value, name_hint=hint)
            self.fs.line = node.line
            self.ref_put(kind, target)
            return
        self.ref_get(kind, target)
        if op in ('&&=', '||=', '??='):
            skip, end = self.new_label(), self.new_label()
            self._emit_short_circuit(op[:-1], skip)
            self.compile_expr(node.value, name_hint=hint)
            self.fs.line = node.line
            self.ref_put(kind, target)
            self.emit('goto', end)
            self.emit_label(skip)
            for _ in range({'var': 0, 'field': 1, 'index': 2}[kind]):
                self.emit('nip')
            self.emit_label(end)
            return
        self.compile_expr(node.value)
        self.fs.line = node.line
        self.emit(BINARY_OPCODES[op[:-1]])
        self.ref_put(kind, target)

    def expr_Update(self, node: ast.Update) -> None:
        target = node.target
        kind = self.ref_prepare(target)
        self.ref_get(kind, target)
        self.fs.line = node.line
        if node.prefix:
            self.emit('inc' if node.op == '++' else 'dec')
            self.ref_put(kind, target)
            return
        self.emit('post_inc' if node.op == '++' else 'post_dec')
        if kind == 'field':
            self.emit('perm3')
        elif kind == 'index':
            self.emit('perm4')
        self.ref_put(kind, target, keep=False)

    # --- assembly ---
    def finish(self, fs: FuncState) -> FunctionBytecode:
        fs.code = [ins for ins in fs.code
                   if ins.op != 'close_loc' or fs.vars[ins.arg].is_captured]
        if fs.this_idx >= 0:
            fs.code[:0] = [Instr('push_this', None, fs.line_num),
                           Instr('put_loc', fs.this_idx, fs.line_num)]
        code, pc2line, stack_size = Assembler(self.defs, self.atom('length'),
                                              self.atom('')).assemble(fs.code, fs.line_num)
        js_mode = JSMode.STRICT if fs.strict else 0
        return FunctionBytecode(
            func_name=fs.name, js_mode=int(js_mode), func_kind=FuncKind.NORMAL,
            has_prototype=fs.has_prototype, is_arrow=fs.is_arrow,
            arg_count=len(fs.args), defined_arg_count=fs.defined_arg_count,
            stack_size=stack_size, args=fs.args, vars=fs.vars, closure_var=fs.closure_var,
            cpool=fs.cpool, byte_code=code, filename=self.filename, line_num=fs.line_num,
            pc2line=pc2line, source=fs.source)


class Assembler:
    """Turns symbolic instructions into byte code."""

    def __init__(self, defs, length_atom: int, empty_atom: int):
        self.defs = defs
        self.short = defs.short_opcodes
        self.length_atom = length_atom
        self.empty_atom = empty_atom

    def select(self, op: str, arg: Any) -> Tuple[str, Any]:
        """Pick the most compact encoding of op for its operand."""
        if not self.short:
            return op, arg
        if op == 'push_i32':
            if arg == -1:
                return 'push_minus1', None
            if 0 <= arg <= 7:
                return f'push_{arg}', None
            if -128 <= arg <= 127:
                return 'push_i8', arg
            if -32768 <= arg <= 32767:
                return 'push_i16', arg
            return op, arg
        if op in ('get_loc', 'put_loc', 'set_loc'):
            if arg < 4:
                return f'{op}{arg}', None
            if arg < 256:
                return f'{op}8', arg
            return op, arg
        if op in ('get_arg', 'put_arg', 'set_arg', 'get_var_ref', 'put_var_ref', 'set_var_ref'):
            return (f'{op}{arg}', None) if arg < 4 else (op, arg)
        if op in ('push_const', 'fclosure') and arg < 256:
            return f'{op}8', arg
        if op == 'call' and arg < 4:
            return f'call{arg}', None
        if op == 'push_atom_value' and arg == self.empty_atom:
            return 'push_empty_string', None
        if op == 'get_field' and arg == self.length_atom:
            return 'get_length', None
        return op, arg

    @staticmethod
    def peephole(code: List[Instr]) -> List[Instr]:
        out: List[Instr] = []
        for ins in code:
            if ins.op == 'drop' and out and out[-1].op in ('set_loc', 'set_arg', 'set_var_ref'):
                prev = out[-1]
                out[-1] = Instr('put_' + prev.op[4:], prev.arg, prev.line)
                continue
            out.append(ins)
        return out

    def assemble(self, code: List[Instr], line_num: int):
        by_name = self.defs.by_name
        items = []  # [op, arg, line] or ['label', id, line]
        for ins in self.peephole(code):
            if ins.op == 'label':
                items.append(['label', ins.arg, ins.line])
            else:
                op, arg = self.select(ins.op, ins.arg)
                items.append([op, arg, ins.line])

        # jump relaxation: start from the shortest form and grow until all fit
        forms: Dict[int, int] = {}
        if self.short:
            for i, it in enumerate(items):
                if it[0] in RELAXABLE:
                    forms[i] = 0
        while True:
            pcs, labels = self._layout(items, forms)
            changed = False
            for i, level in forms.items():
                name = RELAXABLE[items[i][0]][level]
                lo, hi = _RANGE[by_name[name].fmt]
                offset = labels[items[i][1]] - (pcs[i] + 1)
                if not lo <= offset <= hi:
                    forms[i] = level + 1
                    changed = True
            if not changed:
                break
        for i, level in forms.items():
            items[i][0] = RELAXABLE[items[i][0]][level]

        pcs, labels = self._layout(items, {})
        buf = bytearray()
        pc2line: List[Tuple[int, int]] = []
        last_line = line_num
        for i, (op, arg, line) in enumerate(items):
            if op == 'label':
                continue
            pc = pcs[i]
            if line != last_line:
                pc2line.append((pc, line))
                last_line = line
            d = by_name[op]
            buf.append(d.id)
            self._encode_operand(buf, d.fmt, arg, pc, labels)
        stack_size = self._stack_size(items, labels)
        return bytes(buf), pc2line, stack_size

    def _layout(self, items, forms):
        by_name = self.defs.by_name
        pcs = []
        labels = {}
        pc = 0
        for i, (op, arg, _) in enumerate(items):
            pcs.append(pc)
            if op == 'label':
                labels[arg] = pc
                continue
            if i in forms:
                op = RELAXABLE[op][forms[i]]
            pc += by_name[op].size
        return pcs, labels

    @staticmethod
    def _encode_operand(buf: bytearray, fmt: str, arg: Any, pc: int, labels: Dict[int, int]) -> None:
        if fmt in ('none', 'none_int', 'none_loc', 'none_arg', 'none_var_ref', 'npopx'):
            return
        if fmt in ('u8', 'loc8', 'const8'):
            buf += struct.pack('<B', arg)
        elif fmt == 'i8':
            buf += struct.pack('<b', arg)
        elif fmt == 'label8':
            buf += struct.pack('<b', labels[arg] - (pc + 1))
        elif fmt in ('u16', 'npop', 'loc', 'arg', 'var_ref'):
            buf += struct.pack('<H', arg)
        elif fmt == 'i16':
            buf += struct.pack('<h', arg)
        elif fmt == 'label16':
            buf += struct.pack('<h', labels[arg] - (pc + 1))
        elif fmt in ('u32', 'const', 'atom'):
            buf += struct.pack('<I', arg)
        elif fmt == 'i32':
            buf += struct.pack('<i', arg)
        elif fmt == 'label':
            buf += struct.pack('<i', labels[arg] - (pc + 1))
        elif fmt == 'atom_u8':
            buf += struct.pack('<IB', *arg)
        elif fmt == 'atom_u16':
            buf += struct.pack('<IH', *arg)
        elif fmt == 'npop_u16':
            buf += struct.pack('<HH', *arg)
        else:
            raise ValueError(f"cannot encode operand format {fmt}")

    def _stack_size(self, items, labels: Dict[int, int]) -> int:
        by_name = self.defs.by_name
        label_index = {it[1]: i for i, it in enumerate(items) if it[0] == 'label'}
        seen: Dict[int, int] = {}
        work = [(0, 0)]
        max_depth = 0
        while work:
            i, depth = work.pop()
            while i < len(items) and i not in seen:
                seen[i] = depth
                op, arg, _ = items[i]
                i += 1
                if op == 'label':
                    continue
                d = by_name[op]
                n_pop = d.n_pop
                if d.fmt == 'npop':
                    n_pop += arg
                elif d.fmt == 'npopx':
                    n_pop += int(op[-1])
                depth += d.n_push - n_pop
                max_depth = max(max_depth, depth)
                if op in TERMINATOR_OPCODES:
                    break
                if op in GOTO_OPCODES:
                    i = label_index[arg]
                elif op in CONDITIONAL_OPCODES or op == 'catch':
                    work.append((label_index[arg], depth))
                elif op == 'gosub':
                    max_depth = max(max_depth, depth + 1)
                    work.append((label_index[arg], depth + 1))
        return max_depth


def compile_program(ctx, source: str, filename: str, is_module: bool = False,
                    strict: bool = False) -> Any:
    """Compile source into FunctionBytecode (script) or ModuleDef (module).

    Syntax errors are thrown as JS SyntaxError objects.
    """
    compiler = Compiler(ctx, filename)
    try:
        prog = parse(source, is_module=is_module, strict=strict)
        return compiler.compile_program(prog)
    except JSSyntaxError as e:
        raise JSThrow(ctx.new_error('SyntaxError', e.message, filename, e.line))
    except RecursionError:
        line = compiler.fs.line if compiler.fs is not None else 1
        raise JSThrow(ctx.new_error('SyntaxError', "stack overflow", filename, line)) from None
