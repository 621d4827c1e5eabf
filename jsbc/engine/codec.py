"""
  Primitive encodings of the bytecode serializer.

- unsigned LEB128 (at most 5 bytes, 32-bit values)
- signed values as zigzag LEB128
- strings as leb128(length << 1 | is_wide) followed by latin-1 bytes, or by
  UTF-16LE code units when any character is above U+00FF

codec_cy.pyx is a Cython build of the same functions; select_codec() picks
one of the two according to JSBC_CY_CODEC.
"""

from __future__ import annotations

import sys
from typing import Tuple

from jsbc import config


class BufferUnderflow(ValueError):
    """ Raised when a read goes past the end of the buffer"""


class InvalidEncoding(ValueError):
    """ Raised for a malformed LEB128 or string encoding"""


def put_leb128(buf: bytearray, v: int) -> None:
    if v < 0 or v > 0xFFFFFFFF:
        raise InvalidEncoding(f"leb128 value out of range: {v}")
    while True:
        byte = v & 0x7F
        v >>= 7
        if v:
            buf.append(byte | 0x80)
        else:
            buf.append(byte)
            return


def put_sleb128(buf: bytearray, v: int) -> None:
    if v < -0x80000000 or v > 0x7FFFFFFF:
        raise InvalidEncoding(f"sleb128 value out of range: {v}")
    put_leb128(buf, ((v << 1) ^ (v >> 31)) & 0xFFFFFFFF)


def get_leb128(data: bytes, pos: int) -> Tuple[int, int]:
    v = 0
    end = len(data)
    for i in range(5):
        if pos >= end:
            raise BufferUnderflow("read after the end of the buffer")
        byte = data[pos]
        pos += 1
        v |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            if v > 0xFFFFFFFF:
                raise InvalidEncoding("invalid leb128 encoding")
            return v, pos
    raise InvalidEncoding("invalid leb128 encoding")


def get_sleb128(data: bytes, pos: int) -> Tuple[int, int]:
    v, pos = get_leb128(data, pos)
    return (v >> 1) ^ -(v & 1), pos


def put_string(buf: bytearray, s: str) -> None:
    if all(ord(c) < 0x100 for c in s):
        put_leb128(buf, len(s) << 1)
        buf += s.encode('latin-1')
    else:
        raw = s.encode('utf-16-le', 'surrogatepass')
        put_leb128(buf, (len(raw) // 2) << 1 | 1)
        buf += raw


def get_string(data: bytes, pos: int) -> Tuple[str, int]:
    header, pos = get_leb128(data, pos)
    length = header >> 1
    if header & 1:
        end = pos + 2 * length
        if end > len(data):
            raise BufferUnderflow("read after the end of the buffer")
        return bytes(data[pos:end]).decode('utf-16-le', 'surrogatepass'), end
    end = pos + length
    if end > len(data):
        raise BufferUnderflow("read after the end of the buffer")
    return bytes(data[pos:end]).decode('latin-1'), end


def select_codec():
    """Return the codec module configured through JSBC_CY_CODEC."""
    if config.cy_codec_enabled():
        from jsbc.engine import codec_cy
        return codec_cy
    return sys.modules[__name__]
