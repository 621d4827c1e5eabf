"""
  Tokenizer for the script subset.

- numbers -> float (BigInt literals -> int, kind 'bigint')
- strings -> str with escapes decoded
- identifiers / keywords / punctuators -> str
"""

from __future__ import annotations

import re
from typing import List, NamedTuple


class JSSyntaxError(Exception):
    def __init__(self, message: str, line: int):
        super().__init__(message)
        self.message = message
        self.line = line


class Token(NamedTuple):
    kind: str  # num, bigint, str, ident, keyword, punct, eof
    value: object
    line: int
    pos: int
    end: int
    nl_before: bool


KEYWORDS = frozenset((
    'break', 'case', 'catch', 'class', 'const', 'continue', 'debugger', 'default',
    'delete', 'do', 'else', 'export', 'extends', 'finally', 'for', 'function', 'if',
    'import', 'in', 'instanceof', 'new', 'return', 'super', 'switch', 'this', 'throw',
    'try', 'typeof', 'var', 'void', 'while', 'with', 'yield', 'true', 'false', 'null',
    'enum',
))

PUNCTUATORS = sorted((
    '>>>=', '...', '===', '!==', '**=', '<<=', '>>=', '>>>', '&&=', '||=', '??=',
    '=>', '==', '!=', '<=', '>=', '&&', '||', '??', '?.', '++', '--', '+=', '-=',
    '*=', '/=', '%=', '&=', '|=', '^=', '**', '<<', '>>',
    '{', '}', '(', ')', '[', ']', ';', ',', '<', '>', '+', '-', '*', '/', '%', '&',
    '|', '^', '!', '~', '?', ':', '=', '.', '@', '#',
), key=len, reverse=True)

TOKEN_RE = re.compile(
    r"(?P<bigint>(?:0[xX][0-9a-fA-F]+|0[oO][0-7]+|0[bB][01]+|[1-9]\d*|0)n)"
    r"|(?P<radix>0[xX][0-9a-fA-F]+|0[oO][0-7]+|0[bB][01]+)"
    r"|(?P<num>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)"
    r"|(?P<ident>(?:[^\W\d]|\$)(?:\w|\$)*)"
    r"|(?P<string>['\"])"
    r"|(?P<template>`)"
    r"|(?P<punct>" + '|'.join(re.escape(p) if p != '?.' else r'\?\.(?!\d)' for p in PUNCTUATORS) + r")"
)

_SPACE_RE = re.compile("[ \\t\\f\\v\\r" + chr(0xA0) + chr(0xFEFF) + "]+")

_SIMPLE_ESCAPES = {
    'n': '\n', 't': '\t', 'r': '\r', 'b': '\b', 'f': '\f', 'v': '\v', '0': '\0',
}

# after these tokens a '/' starts a regular expression rather than a division
_VALUE_END_PUNCT = frozenset((')', ']', '}'))
_VALUE_END_KEYWORDS = frozenset(('this', 'true', 'false', 'null', 'super'))


def _read_string(source: str, pos: int, quote: str, line: int):
    """Decode a string literal starting after its opening quote."""
    out = []
    n = len(source)
    while True:
        if pos >= n:
            raise JSSyntaxError("unexpected end of string", line)
        c = source[pos]
        if c == quote:
            return ''.join(out), pos + 1, line
        if c == '\n' or c == '\r':
            raise JSSyntaxError("unexpected end of string", line)
        if c != '\\':
            out.append(c)
            pos += 1
            continue
        pos += 1
        if pos >= n:
            raise JSSyntaxError("unexpected end of string", line)
        c = source[pos]
        pos += 1
        if c in _SIMPLE_ESCAPES and not (c == '0' and pos < n and source[pos].isdigit()):
            out.append(_SIMPLE_ESCAPES[c])
        elif c == 'x':
            digits = source[pos:pos + 2]
            if not re.fullmatch(r'[0-9a-fA-F]{2}', digits):
                raise JSSyntaxError("invalid escape sequence", line)
            out.append(chr(int(digits, 16)))
            pos += 2
        elif c == 'u':
            if source.startswith('{', pos):
                close = source.find('}', pos)
                digits = source[pos + 1:close] if close > 0 else ''
                if not re.fullmatch(r'[0-9a-fA-F]{1,6}', digits) or int(digits, 16) > 0x10FFFF:
                    raise JSSyntaxError("invalid escape sequence", line)
                out.append(chr(int(digits, 16)))
                pos = close + 1
            else:
                digits = source[pos:pos + 4]
                if not re.fullmatch(r'[0-9a-fA-F]{4}', digits):
                    raise JSSyntaxError("invalid escape sequence", line)
                out.append(chr(int(digits, 16)))
                pos += 4
        elif c == '\r':
            if source.startswith('\n', pos):
                pos += 1
            line += 1
        elif c == '\n':
            line += 1
        elif c.isdigit():
            raise JSSyntaxError("octal escape sequences are not supported", line)
        else:
            out.append(c)


def tokenize(source: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    n = len(source)
    line = 1
    nl_before = False

    def regex_allowed() -> bool:
        if not tokens:
            return True
        prev = tokens[-1]
        if prev.kind in ('num', 'bigint', 'str', 'ident'):
            return False
        if prev.kind == 'keyword':
            return prev.value not in _VALUE_END_KEYWORDS
        return prev.value not in _VALUE_END_PUNCT

    while True:
        # whitespace and comments
        while pos < n:
            m = _SPACE_RE.match(source, pos)
            if m:
                pos = m.end()
                continue
            c = source[pos]
            if c == '\n' or c == chr(0x2028) or c == chr(0x2029):
                line += 1
                nl_before = True
                pos += 1
            elif source.startswith('//', pos):
                end = source.find('\n', pos)
                pos = n if end < 0 else end
            elif source.startswith('/*', pos):
                end = source.find('*/', pos + 2)
                if end < 0:
                    raise JSSyntaxError("unexpected end of comment", line)
                newlines = source.count('\n', pos, end)
                if newlines:
                    line += newlines
                    nl_before = True
                pos = end + 2
            else:
                break
        if pos >= n:
            tokens.append(Token('eof', None, line, pos, pos, nl_before))
            return tokens

        start = pos
        m = TOKEN_RE.match(source, pos)
        if m is None:
            raise JSSyntaxError(f"unexpected character '{source[pos]}'", line)
        group = m.lastgroup
        text = m.group(group)
        if group == 'bigint':
            tok = Token('bigint', int(text[:-1], 0), line, start, m.end(), nl_before)
            pos = m.end()
        elif group == 'radix':
            tok = Token('num', float(int(text, 0)), line, start, m.end(), nl_before)
            pos = m.end()
        elif group == 'num':
            pos = m.end()
            if pos < n and (source[pos].isalpha() or source[pos] in '_$'):
                raise JSSyntaxError("invalid number literal", line)
            tok = Token('num', float(text), line, start, pos, nl_before)
        elif group == 'ident':
            kind = 'keyword' if text in KEYWORDS else 'ident'
            tok = Token(kind, text, line, start, m.end(), nl_before)
            pos = m.end()
        elif group == 'string':
            first_line = line
            value, pos, line = _read_string(source, m.end(), text, line)
            tok = Token('str', value, first_line, start, pos, nl_before)
        elif group == 'template':
            raise JSSyntaxError("template literals are not supported", line)
        else:
            if text in ('/', '/=') and regex_allowed():
                raise JSSyntaxError("regular expressions are not supported", line)
            tok = Token('punct', text, line, start, m.end(), nl_before)
            pos = m.end()
        tokens.append(tok)
        nl_before = False
