from __future__ import annotations

from jsbc import config

# Public surface of the script engine
from .function import FunctionBytecode, ModuleDef
from .runtime import (
    EVAL_FLAG_COMPILE_ONLY, EVAL_FLAG_STRICT, EVAL_TYPE_GLOBAL, EVAL_TYPE_MODULE,
    Context, JSThrow, Runtime, new_c_module,
)
from .writer import write_object
from .reader import read_object
from .disasm import dump_function_bytecode_bin


def bc_get_version() -> int:
    """Version byte this build writes and accepts."""
    return config.format_version()


__all__ = [
    "EVAL_FLAG_COMPILE_ONLY",
    "EVAL_FLAG_STRICT",
    "EVAL_TYPE_GLOBAL",
    "EVAL_TYPE_MODULE",
    "Context",
    "FunctionBytecode",
    "JSThrow",
    "ModuleDef",
    "Runtime",
    "bc_get_version",
    "dump_function_bytecode_bin",
    "new_c_module",
    "read_object",
    "write_object",
]
