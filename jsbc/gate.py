"""
  Compatibility gate: the leading version byte of a buffer against the build.

Only byte 0 is ever looked at; the rest of a buffer belongs to the engine.
"""

from __future__ import annotations

from typing import Optional

from jsbc.engine import bc_get_version
from jsbc.errors import DeserializationError


def get_format_version(bytecode: Optional[bytes] = None) -> int:
    """Version of this build, or of a buffer (-1 when it is empty)."""
    if bytecode is None:
        return bc_get_version()
    if len(bytecode) == 0:
        return -1
    return bytecode[0]


def is_compatible(bytecode: bytes) -> bool:
    return len(bytecode) > 0 and bytecode[0] == bc_get_version()


def require_compatible(bytecode: bytes) -> None:
    if not is_compatible(bytecode):
        raise DeserializationError(
            f"incompatible bytecode version {get_format_version(bytecode)} "
            f"(expected {bc_get_version()})")
