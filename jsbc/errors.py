from __future__ import annotations


class JsbcError(Exception):
    """ Base class for all jsbc errors"""
    pass


class CompileError(JsbcError):
    """ Raised when source fails to compile (syntax or static error)"""

    def __init__(self, message: str, stack: str = ""):
        super().__init__(message)
        self.message = message
        self.stack = stack

    def detail(self) -> str:
        return f"{self.message}\n{self.stack}"


class SerializationError(JsbcError):
    """ Raised when the engine cannot write a compiled unit to bytes"""


class DeserializationError(JsbcError):
    """ Raised when a buffer is malformed, truncated or from an incompatible build"""


class ExecutionError(JsbcError):
    """ Uncaught exception while evaluating a module or calling a function"""

    def __init__(self, stage: str, message: str, stack: str = ""):
        self.stage = stage
        self.message = message
        self.stack = stack
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"ERROR: {self.stage}: {self.message}\n{self.stack}"


class ModuleRegistrationError(JsbcError):
    """ Raised when a placeholder module cannot be created"""


class DefinitionDriftError(JsbcError):
    """ Raised when the definition tables disagree with their golden values"""
