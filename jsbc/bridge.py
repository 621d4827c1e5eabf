"""
  Compile, disassemble and execute bytecode buffers.

Every operation runs on its own engine instance (runtime + context) taken
from engine_scope(), which frees both on every exit path. Compilation
failures raise; execution failures come back as "ERROR: <stage>: ..." text.
"""

from __future__ import annotations

import logging
import struct
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence, Tuple

from jsbc import config
from jsbc.engine import (
    EVAL_FLAG_COMPILE_ONLY, EVAL_TYPE_GLOBAL, EVAL_TYPE_MODULE, Context, FunctionBytecode,
    JSThrow, ModuleDef, Runtime, dump_function_bytecode_bin, read_object, write_object,
)
from jsbc.engine.values import UNDEFINED, JSObject
from jsbc.errors import CompileError, DeserializationError, ExecutionError, SerializationError
from jsbc.gate import require_compatible
from jsbc.modules import register_stub_modules, resolve_stub_module

log = logging.getLogger(__name__)

STAGE_READ = "Failed to read bytecode"
STAGE_EVAL_MODULE = "Failed to eval module"
STAGE_CREATE_FUNCTION = "Failed to create function from bytecode"
STAGE_RUNTIME = "Runtime exception"
STAGE_EVAL_OBJECT = "Failed to eval object"


@contextmanager
def engine_scope(module_names: Sequence[str] = ()) -> Iterator[Context]:
    """A fresh runtime and context with the stub loader and stub modules installed."""
    rt = Runtime()
    try:
        rt.set_module_loader(resolve_stub_module)
        ctx = Context(rt)
        try:
            register_stub_modules(ctx, module_names)
            yield ctx
        finally:
            ctx.free()
    finally:
        rt.free()
        log.debug("engine instance released")


def exception_text(ctx: Context, value: Any) -> Tuple[str, str]:
    """(message, stack) of a thrown value."""
    if isinstance(value, JSObject):
        message = ctx.to_cstring(ctx.get_property(value, 'message'))
        stack = ctx.to_cstring(ctx.get_property(value, 'stack'))
        return message or '', stack or ''
    return ctx.to_cstring(value) or '', ''


@dataclass(frozen=True)
class ExecutionResult:
    text: str
    error: Optional[ExecutionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def stage(self) -> Optional[str]:
        return None if self.error is None else self.error.stage

    def raise_for_error(self) -> str:
        if self.error is not None:
            raise self.error
        return self.text

    def __str__(self) -> str:
        return self.text


def _failure(ctx: Context, stage: str, exc: JSThrow) -> ExecutionResult:
    message, stack = exception_text(ctx, exc.value)
    error = ExecutionError(stage, message, stack)
    log.info("execution failed: %s: %s", stage, message)
    return ExecutionResult(str(error), error)


# engine faults a malformed buffer can still provoke past the reader's checks
_ENGINE_FAULTS = (LookupError, AttributeError, TypeError, ValueError, ArithmeticError,
                  RecursionError, struct.error)


def _fault(stage: str, exc: Exception) -> ExecutionResult:
    error = ExecutionError(stage, f"{type(exc).__name__}: {exc}")
    log.warning("engine fault: %s", stage, exc_info=True)
    return ExecutionResult(str(error), error)


def compile(source: str, source_label: str, module_names: Sequence[str] = (), *,
            script: bool = False) -> bytes:
    """Compile source to a bytecode buffer.

    Module mode by default; script=True compiles a global script, whose
    buffer holds function bytecode instead of a module record.
    """
    flags = EVAL_FLAG_COMPILE_ONLY | (EVAL_TYPE_GLOBAL if script else EVAL_TYPE_MODULE)
    with engine_scope(module_names) as ctx:
        try:
            compiled = ctx.eval(source, source_label, flags)
        except JSThrow as e:
            message, stack = exception_text(ctx, e.value)
            log.info("compilation of %s failed: %s", source_label, message)
            raise CompileError(message, stack) from None
        try:
            data = write_object(ctx, compiled)
        except JSThrow as e:
            message, _ = exception_text(ctx, e.value)
            raise SerializationError(f"Failed to write bytecode: {message}") from None
    log.debug("compiled %s to %d bytes", source_label, len(data))
    return data


def disassemble(bytecode: bytes) -> str:
    """Disassembly text of a buffer; empty when the dump feature is off."""
    if not config.dump_enabled():
        return ""
    require_compatible(bytecode)
    with engine_scope() as ctx:
        try:
            return dump_function_bytecode_bin(ctx, bytecode)
        except JSThrow as e:
            message, _ = exception_text(ctx, e.value)
            raise DeserializationError(message) from None


def dump(source: str, source_label: str, module_names: Sequence[str] = ()) -> str:
    """Compile source and disassemble the resulting buffer."""
    return disassemble(compile(source, source_label, module_names))


def execute_result(bytecode: bytes, module_names: Sequence[str] = ()) -> ExecutionResult:
    """Run a buffer. Failures, including a result that cannot be stringified, carry their stage."""
    with engine_scope(module_names) as ctx:
        stage = STAGE_READ
        try:
            obj = read_object(ctx, bytecode)
            if isinstance(obj, ModuleDef):
                stage = STAGE_EVAL_MODULE
                result = ctx.eval_function(obj)
            elif isinstance(obj, FunctionBytecode):
                stage = STAGE_CREATE_FUNCTION
                func = ctx.eval_function(obj)
                stage = STAGE_RUNTIME
                # always called without arguments and with an undefined receiver
                result = ctx.call(func, UNDEFINED, [])
            else:
                stage = STAGE_EVAL_OBJECT
                result = ctx.eval_function(obj)
            return ExecutionResult(ctx.to_string(result))
        except JSThrow as e:
            return _failure(ctx, stage, e)
        except _ENGINE_FAULTS as e:
            return _fault(stage, e)


def execute(bytecode: bytes, module_names: Sequence[str] = ()) -> str:
    """Run a buffer and return the stringified result or the failure text."""
    return str(execute_result(bytecode, module_names))
