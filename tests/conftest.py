import pytest

# Every test starts from the default build configuration: dump on, bignum off,
# short opcodes on, pure-Python codec. Tests that need another configuration
# set the JSBC_* variables themselves through monkeypatch.

JSBC_ENV = (
    "JSBC_DUMP_BYTECODE",
    "JSBC_CONFIG_BIGNUM",
    "JSBC_SHORT_OPCODES",
    "JSBC_CY_CODEC",
    "JSBC_STACK_LIMIT",
    "JSBC_DEFS_PATH",
)


@pytest.fixture(autouse=True)
def _default_build(monkeypatch):
    for var in JSBC_ENV:
        monkeypatch.delenv(var, raising=False)


# Serialization tests run twice:
# 1) with the pure-Python codec ["py"]
# 2) with the Cython codec, when the extension is built ["cy"]
@pytest.fixture(params=["py", "cy"])
def codec_mode(request, monkeypatch):
    if request.param == "cy":
        pytest.importorskip("jsbc.engine.codec_cy")
    monkeypatch.setenv("JSBC_CY_CODEC", "1" if request.param == "cy" else "0")
    return request.param


@pytest.fixture(params=[(False, True), (True, True), (False, False), (True, False)],
                ids=["default", "bignum", "long-opcodes", "bignum-long-opcodes"])
def build(request, monkeypatch):
    bignum, short_opcodes = request.param
    monkeypatch.setenv("JSBC_CONFIG_BIGNUM", "1" if bignum else "0")
    monkeypatch.setenv("JSBC_SHORT_OPCODES", "1" if short_opcodes else "0")
    return request.param


@pytest.fixture
def engine():
    """A bare runtime + context pair, freed after the test."""
    from jsbc.bridge import engine_scope
    with engine_scope() as ctx:
        yield ctx
