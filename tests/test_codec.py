import pytest
from hypothesis import given, strategies as st

from jsbc.engine import codec
from jsbc.engine.codec import BufferUnderflow, InvalidEncoding


def _encode(fn, value) -> bytes:
    buf = bytearray()
    fn(buf, value)
    return bytes(buf)


@pytest.mark.parametrize("value,encoded", [
    (0, b"\x00"),
    (1, b"\x01"),
    (127, b"\x7f"),
    (128, b"\x80\x01"),
    (300, b"\xac\x02"),
    (0xFFFFFFFF, b"\xff\xff\xff\xff\x0f"),
])
def test_leb128(value, encoded):
    assert _encode(codec.put_leb128, value) == encoded
    assert codec.get_leb128(encoded, 0) == (value, len(encoded))


@pytest.mark.parametrize("value,encoded", [
    (0, b"\x00"),
    (-1, b"\x01"),
    (1, b"\x02"),
    (-64, b"\x7f"),
    (64, b"\x80\x01"),
    (-0x80000000, b"\xff\xff\xff\xff\x0f"),
])
def test_sleb128_zigzag(value, encoded):
    assert _encode(codec.put_sleb128, value) == encoded
    assert codec.get_sleb128(encoded, 0) == (value, len(encoded))


def test_leb128_range():
    with pytest.raises(InvalidEncoding):
        codec.put_leb128(bytearray(), -1)
    with pytest.raises(InvalidEncoding):
        codec.put_leb128(bytearray(), 1 << 32)
    with pytest.raises(InvalidEncoding):
        codec.put_sleb128(bytearray(), 1 << 31)


def test_leb128_malformed():
    with pytest.raises(BufferUnderflow):
        codec.get_leb128(b"\x80\x80", 0)
    with pytest.raises(InvalidEncoding):
        codec.get_leb128(b"\x80\x80\x80\x80\x80\x01", 0)
    with pytest.raises(InvalidEncoding):
        codec.get_leb128(b"\xff\xff\xff\xff\x1f", 0)


def test_narrow_and_wide_strings():
    assert _encode(codec.put_string, "abc") == b"\x06abc"
    assert _encode(codec.put_string, "caf" + chr(0xE9)) == b"\x08caf\xe9"
    snowman = chr(0x2603)
    assert _encode(codec.put_string, snowman) == b"\x03" + snowman.encode("utf-16-le")
    assert codec.get_string(b"\x03\x03\x26", 0) == (snowman, 3)


def test_truncated_string():
    with pytest.raises(BufferUnderflow):
        codec.get_string(b"\x0aab", 0)
    with pytest.raises(BufferUnderflow):
        codec.get_string(b"\x05\x03", 0)


def test_select_codec(monkeypatch):
    assert codec.select_codec() is codec
    cy = pytest.importorskip("jsbc.engine.codec_cy")
    monkeypatch.setenv("JSBC_CY_CODEC", "1")
    assert codec.select_codec() is cy


@given(st.text(max_size=40))
def test_strings_decode_to_themselves(text):
    encoded = _encode(codec.put_string, text)
    assert codec.get_string(encoded, 0) == (text, len(encoded))
