from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path


# Resolve installation dir (jsbc package directory)
_JSBC_DIR = Path(__file__).resolve().parent

_DEFAULT_DEFS_DIR = _JSBC_DIR / 'engine' / 'defs'

# Serialization schema revision. Bumped whenever opcodes.def or atoms.def
# change in a way that alters numbering.
BC_BASE_VERSION = 0x05
# Set in the version byte of buffers written by a bignum build.
BC_BIGNUM_FLAG = 0x40

_TRUE = ('1', 'true', 'yes', 'on')
_FALSE = ('0', 'false', 'no', 'off')


def flag_from_env(var: str, default: bool) -> bool:
    raw = os.environ.get(var)
    if raw is None or not raw.strip():
        return default
    raw = raw.strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ValueError(f"{var} must be a boolean flag, got {raw!r}")


def int_from_env(var: str, default: int) -> int:
    raw = os.environ.get(var)
    if raw is None or not raw.strip():
        return default
    value = int(raw.strip())
    if value <= 0:
        raise ValueError(f"{var} must be positive, got {value}")
    return value


def dump_enabled() -> bool:
    return flag_from_env('JSBC_DUMP_BYTECODE', True)


def bignum_enabled() -> bool:
    return flag_from_env('JSBC_CONFIG_BIGNUM', False)


def short_opcodes_enabled() -> bool:
    return flag_from_env('JSBC_SHORT_OPCODES', True)


def cy_codec_enabled() -> bool:
    return flag_from_env('JSBC_CY_CODEC', False)


def stack_limit() -> int:
    return int_from_env('JSBC_STACK_LIMIT', 256)


def get_defs_root() -> Path:
    raw = os.environ.get('JSBC_DEFS_PATH')
    return Path(raw) if raw else _DEFAULT_DEFS_DIR


def format_version(bignum: bool | None = None) -> int:
    if bignum is None:
        bignum = bignum_enabled()
    return BC_BASE_VERSION | (BC_BIGNUM_FLAG if bignum else 0)


@dataclass(frozen=True)
class EngineOptions:
    """Snapshot of the build options an engine instance runs with."""

    bignum: bool
    short_opcodes: bool
    stack_limit: int

    @property
    def version(self) -> int:
        return format_version(self.bignum)


def load_options() -> EngineOptions:
    return EngineOptions(
        bignum=bignum_enabled(),
        short_opcodes=short_opcodes_enabled(),
        stack_limit=stack_limit(),
    )
