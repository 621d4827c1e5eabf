import pytest

from jsbc import config


def test_defaults():
    assert config.dump_enabled() is True
    assert config.bignum_enabled() is False
    assert config.short_opcodes_enabled() is True
    assert config.cy_codec_enabled() is False
    assert config.stack_limit() == 256
    assert config.get_defs_root().name == "defs"


@pytest.mark.parametrize("raw,expected", [
    ("1", True), ("true", True), ("YES", True), (" on ", True),
    ("0", False), ("false", False), ("No", False), ("off", False),
    ("", True),
])
def test_flag_parsing(monkeypatch, raw, expected):
    monkeypatch.setenv("JSBC_DUMP_BYTECODE", raw)
    assert config.dump_enabled() is expected


def test_invalid_flag(monkeypatch):
    monkeypatch.setenv("JSBC_CONFIG_BIGNUM", "maybe")
    with pytest.raises(ValueError, match="JSBC_CONFIG_BIGNUM must be a boolean flag"):
        config.bignum_enabled()


def test_stack_limit(monkeypatch):
    monkeypatch.setenv("JSBC_STACK_LIMIT", "64")
    assert config.stack_limit() == 64
    monkeypatch.setenv("JSBC_STACK_LIMIT", "0")
    with pytest.raises(ValueError, match="must be positive"):
        config.stack_limit()


def test_format_version():
    assert config.format_version(False) == 0x05
    assert config.format_version(True) == 0x45


def test_engine_options_snapshot(monkeypatch):
    monkeypatch.setenv("JSBC_CONFIG_BIGNUM", "1")
    monkeypatch.setenv("JSBC_SHORT_OPCODES", "0")
    options = config.load_options()
    assert options == config.EngineOptions(bignum=True, short_opcodes=False, stack_limit=256)
    assert options.version == 0x45
