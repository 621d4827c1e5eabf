import pytest
from hypothesis import given, strategies as st

from jsbc.engine import codec
from jsbc.engine.codec import BufferUnderflow, InvalidEncoding

cy = pytest.importorskip("jsbc.engine.codec_cy")


def _encode(fn, value) -> bytes:
    buf = bytearray()
    fn(buf, value)
    return bytes(buf)


@given(st.integers(min_value=0, max_value=0xFFFFFFFF))
def test_leb128_agrees(value):
    encoded = _encode(codec.put_leb128, value)
    assert _encode(cy.put_leb128, value) == encoded
    assert cy.get_leb128(encoded, 0) == codec.get_leb128(encoded, 0)


@given(st.integers(min_value=-0x80000000, max_value=0x7FFFFFFF))
def test_sleb128_agrees(value):
    encoded = _encode(codec.put_sleb128, value)
    assert _encode(cy.put_sleb128, value) == encoded
    assert cy.get_sleb128(encoded, 0) == (value, len(encoded))


@given(st.text(max_size=40))
def test_strings_agree(text):
    encoded = _encode(codec.put_string, text)
    assert _encode(cy.put_string, text) == encoded
    assert cy.get_string(encoded, 0) == codec.get_string(encoded, 0)


def test_same_errors():
    with pytest.raises(InvalidEncoding):
        cy.put_leb128(bytearray(), -1)
    with pytest.raises(BufferUnderflow):
        cy.get_leb128(b"\x80", 0)
    with pytest.raises(InvalidEncoding):
        cy.get_leb128(b"\x80\x80\x80\x80\x80\x01", 0)
    with pytest.raises(BufferUnderflow):
        cy.get_string(b"\x0aab", 0)
