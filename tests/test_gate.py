import pytest

import jsbc
from jsbc import gate
from jsbc.errors import DeserializationError


def test_build_version(monkeypatch):
    assert gate.get_format_version() == 0x05
    monkeypatch.setenv("JSBC_CONFIG_BIGNUM", "1")
    assert gate.get_format_version() == 0x45


def test_buffer_version_is_first_byte():
    assert gate.get_format_version(b"\x05rest") == 5
    assert gate.get_format_version(bytes([0x45])) == 0x45
    assert gate.get_format_version(b"\xff\x05") == 255


def test_empty_buffer():
    assert gate.get_format_version(b"") == -1
    assert not gate.is_compatible(b"")


def test_compiled_buffer_is_compatible():
    data = jsbc.compile("export const x = 1;", "gate.js")
    assert gate.get_format_version(data) == gate.get_format_version()
    assert gate.is_compatible(data)


def test_only_the_version_byte_is_inspected():
    assert gate.is_compatible(bytes([0x05]) + b"garbage that no reader would accept")
    assert not gate.is_compatible(bytes([0x06]))


def test_bignum_buffer_rejected_by_default_build(monkeypatch):
    monkeypatch.setenv("JSBC_CONFIG_BIGNUM", "1")
    data = jsbc.compile("export default 1n;", "big.js")
    assert data[0] == 0x45
    monkeypatch.setenv("JSBC_CONFIG_BIGNUM", "0")
    assert not gate.is_compatible(data)
    with pytest.raises(DeserializationError, match="incompatible bytecode version 69"):
        gate.require_compatible(data)


def test_require_compatible_passes_for_own_buffers():
    gate.require_compatible(jsbc.compile("1;", "ok.js", script=True))
