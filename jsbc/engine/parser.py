"""
  Recursive-descent parser for the script subset.

Binary operators use precedence climbing. Constructs outside the subset
(classes, generators, async functions, regular expressions, templates,
destructuring, spread) fail with a JSSyntaxError naming the construct.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from . import ast_nodes as ast
from .lexer import JSSyntaxError, Token, tokenize
from .values import number_to_string

BINARY_PREC = {
    '??': 1, '||': 2, '&&': 3, '|': 4, '^': 5, '&': 6,
    '==': 7, '!=': 7, '===': 7, '!==': 7,
    '<': 8, '>': 8, '<=': 8, '>=': 8, 'instanceof': 8, 'in': 8,
    '<<': 9, '>>': 9, '>>>': 9,
    '+': 10, '-': 10,
    '*': 11, '/': 11, '%': 11,
    '**': 12,
}

ASSIGN_OPS = frozenset((
    '=', '+=', '-=', '*=', '/=', '%=', '**=', '<<=', '>>=', '>>>=', '&=', '|=', '^=',
    '&&=', '||=', '??=',
))

UNARY_OPS = frozenset(('-', '+', '!', '~', 'typeof', 'void', 'delete'))


def _not_supported(what: str, line: int) -> JSSyntaxError:
    return JSSyntaxError(f"{what} are not supported", line)


class Parser:
    def __init__(self, source: str, is_module: bool = False, strict: bool = False):
        self.source = source
        self.tokens = tokenize(source)
        self.i = 0
        self.is_module = is_module
        self.strict = strict or is_module
        self.func_depth = 0
        self.no_in = False

    # --- token helpers ---
    @property
    def tok(self) -> Token:
        return self.tokens[self.i]

    def peek(self, k: int = 1) -> Token:
        return self.tokens[min(self.i + k, len(self.tokens) - 1)]

    def next(self) -> Token:
        tok = self.tokens[self.i]
        if tok.kind != 'eof':
            self.i += 1
        return tok

    def is_(self, value: str, tok: Optional[Token] = None) -> bool:
        tok = tok or self.tok
        return tok.kind in ('punct', 'keyword') and tok.value == value

    def is_ident(self, name: Optional[str] = None, tok: Optional[Token] = None) -> bool:
        tok = tok or self.tok
        return tok.kind == 'ident' and (name is None or tok.value == name)

    def accept(self, value: str) -> bool:
        if self.is_(value):
            self.next()
            return True
        return False

    def expect(self, value: str) -> Token:
        if not self.is_(value):
            raise self.error(f"expecting '{value}'")
        return self.next()

    def error(self, message: str, tok: Optional[Token] = None) -> JSSyntaxError:
        return JSSyntaxError(message, (tok or self.tok).line)

    def unexpected(self) -> JSSyntaxError:
        tok = self.tok
        if tok.kind == 'eof':
            return self.error("unexpected end of input")
        text = self.source[tok.pos:tok.end]
        return self.error(f"unexpected token: '{text}'")

    def ident_name(self) -> str:
        tok = self.tok
        if tok.kind != 'ident':
            raise self.error("identifier expected")
        if self.strict and tok.value in ('eval', 'arguments'):
            raise self.error(f"invalid use of '{tok.value}'")
        self.next()
        return tok.value

    def consume_semicolon(self) -> None:
        if self.accept(';'):
            return
        tok = self.tok
        if self.is_('}') or tok.kind == 'eof' or tok.nl_before:
            return
        raise self.error("expecting ';'")

    @staticmethod
    def at(node: ast.Node, tok: Token) -> ast.Node:
        node.line = tok.line
        return node

    # --- program ---
    def parse_program(self) -> ast.Program:
        first = self.tok
        self.strict = self.parse_directives() or self.strict
        body = []
        while self.tok.kind != 'eof':
            body.append(self.parse_module_item() if self.is_module else self.parse_statement())
        prog = ast.Program(body, self.is_module, self.strict, self.source)
        return self.at(prog, first)

    def parse_directives(self) -> bool:
        """Scan the directive prologue; True if it contains 'use strict'."""
        strict = False
        j = self.i
        while self.tokens[j].kind == 'str':
            tok = self.tokens[j]
            after = self.tokens[j + 1]
            if not (self.is_(';', after) or self.is_('}', after) or after.kind == 'eof'
                    or after.nl_before):
                break
            if self.source[tok.pos + 1:tok.end - 1] == 'use strict':
                strict = True
            j += 2 if self.is_(';', after) else 1
        return strict

    def parse_module_item(self) -> ast.Node:
        if self.is_('import') and not (self.is_('(', self.peek()) or self.is_('.', self.peek())):
            return self.parse_import()
        if self.is_('export'):
            return self.parse_export()
        return self.parse_statement()

    def parse_import(self) -> ast.Import:
        start = self.next()
        node = ast.Import('')
        if self.tok.kind == 'str':
            node.module = self.next().value
            self.consume_semicolon()
            return self.at(node, start)
        if self.is_ident():
            node.default = self.ident_name()
            if not self.accept(','):
                return self.finish_import(node, start)
        if self.accept('*'):
            if not self.is_ident('as'):
                raise self.error("expecting 'as'")
            self.next()
            node.namespace = self.ident_name()
        elif self.accept('{'):
            while not self.is_('}'):
                tok = self.next()
                if tok.kind not in ('ident', 'keyword', 'str'):
                    raise self.error("identifier expected", tok)
                imported = tok.value
                local = imported
                if self.is_ident('as'):
                    self.next()
                    local = self.ident_name()
                elif tok.kind != 'ident':
                    raise self.error("identifier expected", tok)
                node.named.append((imported, local))
                if not self.accept(','):
                    break
            self.expect('}')
        else:
            raise self.unexpected()
        return self.finish_import(node, start)

    def finish_import(self, node: ast.Import, start: Token) -> ast.Import:
        if not self.is_ident('from'):
            raise self.error("expecting 'from'")
        self.next()
        if self.tok.kind != 'str':
            raise self.error("string expected")
        node.module = self.next().value
        self.consume_semicolon()
        return self.at(node, start)

    def parse_export(self) -> ast.Node:
        start = self.next()
        if self.accept('default'):
            if self.is_('function'):
                func = self.parse_function(is_decl=True, allow_anonymous=True)
                return self.at(ast.ExportDefault(self.at(ast.FunctionDecl(func), start)), start)
            if self.is_('class'):
                raise _not_supported("classes", self.tok.line)
            value = self.parse_assign()
            self.consume_semicolon()
            return self.at(ast.ExportDefault(value), start)
        if self.is_('var') or self.is_('const') or self.is_ident('let'):
            return self.at(ast.ExportDecl(self.parse_var_decl()), start)
        if self.is_('function'):
            func = self.parse_function(is_decl=True)
            return self.at(ast.ExportDecl(self.at(ast.FunctionDecl(func), start)), start)
        if self.is_('*'):
            raise self.error("'export *' is not supported")
        if self.is_('class'):
            raise _not_supported("classes", self.tok.line)
        self.expect('{')
        specs = []
        while not self.is_('}'):
            local = self.next()
            if local.kind not in ('ident', 'keyword'):
                raise self.error("identifier expected", local)
            exported = local.value
            if self.is_ident('as'):
                self.next()
                tok = self.next()
                if tok.kind not in ('ident', 'keyword', 'str'):
                    raise self.error("identifier expected", tok)
                exported = tok.value
            specs.append((local.value, exported))
            if not self.accept(','):
                break
        self.expect('}')
        if self.is_ident('from'):
            raise self.error("'export ... from' is not supported")
        self.consume_semicolon()
        return self.at(ast.ExportNamed(specs), start)

    # --- statements ---
    def parse_statement(self) -> ast.Node:
        tok = self.tok
        if tok.kind == 'punct':
            if tok.value == '{':
                return self.parse_block()
            if tok.value == ';':
                self.next()
                return self.at(ast.Empty(), tok)
        elif tok.kind == 'keyword':
            method = getattr(self, 'parse_' + tok.value + '_statement', None)
            if method is not None:
                return method()
            if tok.value in ('var', 'const'):
                return self.parse_var_decl()
            if tok.value == 'class':
                raise _not_supported("classes", tok.line)
            if tok.value in ('import', 'export'):
                if self.is_('(', self.peek()):
                    raise self.error("dynamic import is not supported")
                raise self.error(f"{tok.value} statements are only valid in modules")
            if tok.value == 'with':
                raise self.error("with statements are not supported")
            if tok.value == 'debugger':
                self.next()
                self.consume_semicolon()
                return self.at(ast.Empty(), tok)
        elif tok.kind == 'ident':
            nxt = self.peek()
            if tok.value == 'let' and (nxt.kind == 'ident' or self.is_('[', nxt) or self.is_('{', nxt)):
                return self.parse_var_decl()
            if tok.value == 'async' and self.is_('function', nxt) and not nxt.nl_before:
                raise _not_supported("async functions", tok.line)
            if self.is_(':', nxt):
                self.next()
                self.next()
                return self.at(ast.Labeled(tok.value, self.parse_statement()), tok)
        expr = self.parse_expression()
        self.consume_semicolon()
        return self.at(ast.ExprStmt(expr), tok)

    def parse_block(self) -> ast.Block:
        start = self.expect('{')
        body = []
        while not self.is_('}'):
            if self.tok.kind == 'eof':
                raise self.unexpected()
            body.append(self.parse_statement())
        self.next()
        return self.at(ast.Block(body), start)

    def parse_var_decl(self, in_for: bool = False) -> ast.VarDecl:
        start = self.next()
        kind = start.value
        decls: List[Tuple[str, Optional[ast.Node]]] = []
        while True:
            if self.is_('[') or self.is_('{'):
                raise _not_supported("destructuring assignments", self.tok.line)
            name = self.ident_name()
            if kind != 'var' and name == 'let':
                raise self.error("'let' is not a valid lexical identifier")
            init = None
            if self.accept('='):
                init = self.parse_assign()
            elif kind == 'const' and not (in_for and (self.is_('in') or self.is_ident('of'))):
                raise self.error("missing initializer for const variable")
            decls.append((name, init))
            if not self.accept(','):
                break
        if not in_for:
            self.consume_semicolon()
        return self.at(ast.VarDecl(kind, decls), start)

    def parse_function_statement(self) -> ast.Node:
        tok = self.tok
        return self.at(ast.FunctionDecl(self.parse_function(is_decl=True)), tok)

    def parse_return_statement(self) -> ast.Node:
        tok = self.next()
        if self.func_depth == 0:
            raise self.error("return not in a function", tok)
        arg = None
        if not (self.is_(';') or self.is_('}') or self.tok.kind == 'eof' or self.tok.nl_before):
            arg = self.parse_expression()
        self.consume_semicolon()
        return self.at(ast.Return(arg), tok)

    def parse_if_statement(self) -> ast.Node:
        tok = self.next()
        self.expect('(')
        test = self.parse_expression()
        self.expect(')')
        cons = self.parse_statement()
        alt = self.parse_statement() if self.accept('else') else None
        return self.at(ast.If(test, cons, alt), tok)

    def parse_while_statement(self) -> ast.Node:
        tok = self.next()
        self.expect('(')
        test = self.parse_expression()
        self.expect(')')
        return self.at(ast.While(test, self.parse_statement()), tok)

    def parse_do_statement(self) -> ast.Node:
        tok = self.next()
        body = self.parse_statement()
        self.expect('while')
        self.expect('(')
        test = self.parse_expression()
        self.expect(')')
        self.accept(';')
        return self.at(ast.DoWhile(body, test), tok)

    def parse_for_statement(self) -> ast.Node:
        tok = self.next()
        if self.is_ident('await'):
            raise self.error("for await loops are not supported")
        self.expect('(')
        init = None
        if self.is_('var') or self.is_('const') or (
                self.is_ident('let') and (self.peek().kind == 'ident' or self.is_('[', self.peek()))):
            init = self.parse_var_decl(in_for=True)
        elif not self.is_(';'):
            self.no_in = True
            try:
                init = self.at(ast.ExprStmt(self.parse_expression()), tok)
            finally:
                self.no_in = False
        if self.is_('in') or self.is_ident('of'):
            raise self.error(f"for-{self.tok.value} loops are not supported")
        self.expect(';')
        test = None if self.is_(';') else self.parse_expression()
        self.expect(';')
        update = None if self.is_(')') else self.parse_expression()
        self.expect(')')
        return self.at(ast.For(init, test, update, self.parse_statement()), tok)

    def _jump_label(self) -> Optional[str]:
        if self.tok.kind == 'ident' and not self.tok.nl_before:
            return self.next().value
        return None

    def parse_break_statement(self) -> ast.Node:
        tok = self.next()
        label = self._jump_label()
        self.consume_semicolon()
        return self.at(ast.Break(label), tok)

    def parse_continue_statement(self) -> ast.Node:
        tok = self.next()
        label = self._jump_label()
        self.consume_semicolon()
        return self.at(ast.Continue(label), tok)

    def parse_throw_statement(self) -> ast.Node:
        tok = self.next()
        if self.tok.nl_before:
            raise self.error("line terminator not allowed after throw")
        arg = self.parse_expression()
        self.consume_semicolon()
        return self.at(ast.Throw(arg), tok)

    def parse_try_statement(self) -> ast.Node:
        tok = self.next()
        block = self.parse_block()
        param = handler = finalizer = None
        if self.accept('catch'):
            if self.accept('('):
                if self.is_('[') or self.is_('{'):
                    raise _not_supported("destructuring assignments", self.tok.line)
                param = self.ident_name()
                self.expect(')')
            handler = self.parse_block()
        if self.accept('finally'):
            finalizer = self.parse_block()
        if handler is None and finalizer is None:
            raise self.error("expecting 'catch' or 'finally'")
        return self.at(ast.Try(block, param, handler, finalizer), tok)

    def parse_switch_statement(self) -> ast.Node:
        tok = self.next()
        self.expect('(')
        disc = self.parse_expression()
        self.expect(')')
        self.expect('{')
        cases = []
        has_default = False
        while not self.accept('}'):
            case_tok = self.tok
            if self.accept('default'):
                if has_default:
                    raise self.error("duplicate default", case_tok)
                has_default = True
                test = None
            else:
                self.expect('case')
                test = self.parse_expression()
            self.expect(':')
            body = []
            while not (self.is_('case') or self.is_('default') or self.is_('}')):
                if self.tok.kind == 'eof':
                    raise self.unexpected()
                body.append(self.parse_statement())
            cases.append(self.at(ast.SwitchCase(test, body), case_tok))
        return self.at(ast.Switch(disc, cases), tok)

    # --- functions ---
    def parse_function(self, is_decl: bool, allow_anonymous: bool = False) -> ast.FunctionNode:
        start = self.expect('function')
        if self.is_('*'):
            raise _not_supported("generators", start.line)
        name = ''
        if self.tok.kind == 'ident':
            name = self.ident_name()
        elif is_decl and not allow_anonymous:
            raise self.error("function name expected")
        params = self.parse_params()
        return self.parse_function_body(start, name, params, is_arrow=False,
                                        is_expression=not is_decl and bool(name))

    def parse_params(self) -> List[Tuple[str, Optional[ast.Node]]]:
        self.expect('(')
        params = []
        while not self.is_(')'):
            if self.is_('...'):
                raise self.error("rest parameters are not supported")
            if self.is_('[') or self.is_('{'):
                raise _not_supported("destructuring assignments", self.tok.line)
            name = self.ident_name()
            default = self.parse_assign() if self.accept('=') else None
            params.append((name, default))
            if not self.accept(','):
                break
        self.expect(')')
        return params

    def parse_function_body(self, start: Token, name: str, params, is_arrow: bool,
                            is_expression: bool = False,
                            is_method: bool = False) -> ast.FunctionNode:
        saved_strict, saved_no_in = self.strict, self.no_in
        self.func_depth += 1
        self.no_in = False
        try:
            if is_arrow and not self.is_('{'):
                tok = self.tok
                expr = self.parse_assign()
                body = [self.at(ast.Return(expr), tok)]
                strict = self.strict
            else:
                self.expect('{')
                strict = self.parse_directives() or self.strict
                self.strict = strict
                body = []
                while not self.is_('}'):
                    if self.tok.kind == 'eof':
                        raise self.unexpected()
                    body.append(self.parse_statement())
                self.next()
        finally:
            self.func_depth -= 1
            self.strict, self.no_in = saved_strict, saved_no_in
        end = self.tokens[self.i - 1]
        func = ast.FunctionNode(name, params, body, is_arrow=is_arrow, is_expression=is_expression,
                                is_method=is_method, strict=strict,
                                source=self.source[start.pos:end.end],
                                end_line=end.line)
        return self.at(func, start)

    def is_arrow_ahead(self) -> bool:
        """True if the '(' at the cursor opens an arrow function parameter list."""
        depth = 0
        j = self.i
        while True:
            tok = self.tokens[j]
            if tok.kind == 'eof':
                return False
            if tok.kind == 'punct':
                if tok.value in ('(', '[', '{'):
                    depth += 1
                elif tok.value in (')', ']', '}'):
                    depth -= 1
                    if depth == 0:
                        nxt = self.tokens[j + 1]
                        return self.is_('=>', nxt) and not nxt.nl_before
            j += 1

    def parse_arrow(self) -> ast.FunctionNode:
        start = self.tok
        if self.tok.kind == 'ident':
            params = [(self.ident_name(), None)]
        else:
            params = self.parse_params()
        self.expect('=>')
        return self.parse_function_body(start, '', params, is_arrow=True)

    # --- expressions ---
    def parse_expression(self) -> ast.Node:
        tok = self.tok
        expr = self.parse_assign()
        if not self.is_(','):
            return expr
        exprs = [expr]
        while self.accept(','):
            exprs.append(self.parse_assign())
        return self.at(ast.Sequence(exprs), tok)

    def parse_assign(self) -> ast.Node:
        tok = self.tok
        if tok.kind == 'ident':
            nxt = self.peek()
            if self.is_('=>', nxt) and not nxt.nl_before:
                return self.parse_arrow()
            if tok.value == 'async' and (nxt.kind == 'ident' or self.is_('(', nxt) or self.is_('function', nxt)) \
                    and not nxt.nl_before:
                raise _not_supported("async functions", tok.line)
        elif self.is_('(') and self.is_arrow_ahead():
            return self.parse_arrow()
        elif self.is_('yield'):
            raise _not_supported("generators", tok.line)
        left = self.parse_conditional()
        op_tok = self.tok
        if op_tok.kind == 'punct' and op_tok.value in ASSIGN_OPS:
            if isinstance(left, (ast.ArrayLit, ast.ObjectLit)) and op_tok.value == '=':
                raise _not_supported("destructuring assignments", op_tok.line)
            if not isinstance(left, (ast.Ident, ast.Member, ast.Index)):
                raise self.error("invalid assignment left-hand side", op_tok)
            self.next()
            value = self.parse_assign()
            return self.at(ast.Assign(op_tok.value, left, value), op_tok)
        return left

    def parse_conditional(self) -> ast.Node:
        tok = self.tok
        test = self.parse_binary(0)
        if not self.accept('?'):
            return test
        saved = self.no_in
        self.no_in = False
        try:
            cons = self.parse_assign()
        finally:
            self.no_in = saved
        self.expect(':')
        alt = self.parse_assign()
        return self.at(ast.Conditional(test, cons, alt), tok)

    def _binary_op(self) -> Optional[str]:
        tok = self.tok
        if tok.kind not in ('punct', 'keyword'):
            return None
        op = tok.value
        if op not in BINARY_PREC or (op == 'in' and self.no_in):
            return None
        return op

    def parse_binary(self, min_prec: int) -> ast.Node:
        left = self.parse_unary()
        while True:
            op = self._binary_op()
            if op is None:
                return left
            prec = BINARY_PREC[op]
            if prec <= min_prec:
                return left
            tok = self.next()
            # '**' is right associative
            right = self.parse_binary(prec - 1 if op == '**' else prec)
            if op in ('&&', '||', '??'):
                left = self.at(ast.Logical(op, left, right), tok)
            else:
                left = self.at(ast.Binary(op, left, right), tok)

    def parse_unary(self) -> ast.Node:
        tok = self.tok
        if tok.kind in ('punct', 'keyword') and tok.value in UNARY_OPS:
            self.next()
            arg = self.parse_unary()
            if self.is_('**'):
                raise self.error("unparenthesized unary expression can't appear on the "
                                 "left-hand side of '**'")
            if tok.value == 'delete' and self.strict and isinstance(arg, ast.Ident):
                raise self.error("cannot delete a direct reference in strict mode", tok)
            return self.at(ast.Unary(tok.value, arg), tok)
        if self.is_('++') or self.is_('--'):
            self.next()
            target = self.parse_unary()
            self._check_update_target(target, tok)
            return self.at(ast.Update(tok.value, True, target), tok)
        if self.is_ident('await') and self.func_depth > 0:
            raise _not_supported("async functions", tok.line)
        return self.parse_postfix()

    def _check_update_target(self, target: ast.Node, tok: Token) -> None:
        if not isinstance(target, (ast.Ident, ast.Member, ast.Index)):
            raise self.error("invalid increment/decrement operand", tok)

    def parse_postfix(self) -> ast.Node:
        expr = self.parse_call()
        tok = self.tok
        if (self.is_('++') or self.is_('--')) and not tok.nl_before:
            self.next()
            self._check_update_target(expr, tok)
            return self.at(ast.Update(tok.value, False, expr), tok)
        return expr

    def parse_arguments(self) -> List[ast.Node]:
        self.expect('(')
        args = []
        saved = self.no_in
        self.no_in = False
        try:
            while not self.is_(')'):
                if self.is_('...'):
                    raise self.error("spread arguments are not supported")
                args.append(self.parse_assign())
                if not self.accept(','):
                    break
            self.expect(')')
        finally:
            self.no_in = saved
        return args

    def parse_member_suffix(self, expr: ast.Node, allow_call: bool) -> ast.Node:
        while True:
            tok = self.tok
            if self.accept('.'):
                name_tok = self.next()
                if name_tok.kind not in ('ident', 'keyword'):
                    if self.is_('#', name_tok):
                        raise _not_supported("private fields", name_tok.line)
                    raise self.error("identifier expected", name_tok)
                expr = self.at(ast.Member(expr, name_tok.value), tok)
            elif self.is_('['):
                self.next()
                saved = self.no_in
                self.no_in = False
                try:
                    index = self.parse_expression()
                finally:
                    self.no_in = saved
                self.expect(']')
                expr = self.at(ast.Index(expr, index), tok)
            elif allow_call and self.is_('('):
                expr = self.at(ast.Call(expr, self.parse_arguments()), tok)
            elif self.is_('?.'):
                raise self.error("optional chaining is not supported")
            else:
                return expr

    def parse_call(self) -> ast.Node:
        if self.is_('new'):
            expr = self.parse_new()
        else:
            expr = self.parse_primary()
        return self.parse_member_suffix(expr, allow_call=True)

    def parse_new(self) -> ast.Node:
        tok = self.next()
        if self.is_('.'):
            raise self.error("new.target is not supported")
        if self.is_('new'):
            callee = self.parse_new()
        else:
            callee = self.parse_primary()
        callee = self.parse_member_suffix(callee, allow_call=False)
        args = self.parse_arguments() if self.is_('(') else []
        return self.at(ast.New(callee, args), tok)

    def parse_primary(self) -> ast.Node:
        tok = self.tok
        kind = tok.kind
        if kind == 'num':
            self.next()
            return self.at(ast.Num(tok.value), tok)
        if kind == 'bigint':
            self.next()
            return self.at(ast.BigIntLit(tok.value), tok)
        if kind == 'str':
            self.next()
            return self.at(ast.Str(tok.value), tok)
        if kind == 'ident':
            self.next()
            return self.at(ast.Ident(tok.value), tok)
        if kind == 'keyword':
            v = tok.value
            if v in ('true', 'false'):
                self.next()
                return self.at(ast.Bool(v == 'true'), tok)
            if v == 'null':
                self.next()
                return self.at(ast.Null(), tok)
            if v == 'this':
                self.next()
                return self.at(ast.This(), tok)
            if v == 'function':
                return self.parse_function(is_decl=False)
            if v == 'class':
                raise _not_supported("classes", tok.line)
            if v == 'super':
                raise self.error("'super' is not supported")
            if v == 'import':
                raise self.error("dynamic import is not supported")
        if kind == 'punct':
            if tok.value == '(':
                self.next()
                saved = self.no_in
                self.no_in = False
                try:
                    expr = self.parse_expression()
                finally:
                    self.no_in = saved
                self.expect(')')
                return expr
            if tok.value == '[':
                return self.parse_array()
            if tok.value == '{':
                return self.parse_object()
        raise self.unexpected()

    def parse_array(self) -> ast.Node:
        start = self.next()
        elements = []
        while not self.is_(']'):
            if self.is_(','):
                self.next()
                elements.append(self.at(ast.Ident('undefined'), start))
                continue
            if self.is_('...'):
                raise self.error("spread elements are not supported")
            elements.append(self.parse_assign())
            if not self.accept(','):
                break
        self.expect(']')
        return self.at(ast.ArrayLit(elements), start)

    def _property_key(self) -> Tuple[object, bool]:
        tok = self.next()
        if tok.kind in ('ident', 'keyword', 'str'):
            return tok.value, False
        if tok.kind == 'num':
            return number_to_string(tok.value), False
        if tok.kind == 'bigint':
            return str(tok.value), False
        if self.is_('[', tok):
            key = self.parse_assign()
            self.expect(']')
            return key, True
        raise self.error("invalid property name", tok)

    def parse_object(self) -> ast.Node:
        start = self.next()
        props = []
        while not self.is_('}'):
            tok = self.tok
            if self.is_('...'):
                raise self.error("spread properties are not supported")
            if self.is_('*') or (self.is_ident('async') and not self.is_(':', self.peek())
                                 and not self.is_('(', self.peek())):
                raise _not_supported("generator and async methods", tok.line)
            if self.is_ident('get') or self.is_ident('set'):
                nxt = self.peek()
                if not (self.is_(':', nxt) or self.is_('(', nxt) or self.is_(',', nxt) or self.is_('}', nxt)):
                    raise _not_supported("getters and setters", tok.line)
            key, computed = self._property_key()
            if self.accept(':'):
                value = self.parse_assign()
            elif self.is_('('):
                params = self.parse_params()
                value = self.parse_function_body(tok, key if not computed else '', params,
                                                 is_arrow=False, is_method=True)
            elif tok.kind == 'ident' and not computed and (self.is_(',') or self.is_('}')):
                value = self.at(ast.Ident(key), tok)
            else:
                raise self.unexpected()
            props.append(self.at(ast.Property(key, value, computed), tok))
            if not self.accept(','):
                break
        self.expect('}')
        return self.at(ast.ObjectLit(props), start)


def parse(source: str, is_module: bool = False, strict: bool = False) -> ast.Program:
    p = Parser(source, is_module, strict)
    try:
        return p.parse_program()
    except RecursionError:
        raise p.error("stack overflow") from None
