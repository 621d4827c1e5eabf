# jsbc: compile script source to engine bytecode, check a buffer against the
# build, export the engine's numbering tables and run buffers back.
#
# - bridge:   compile / disassemble / dump / execute on a fresh engine instance
# - gate:     version byte checks, never looks past byte 0
# - metadata: atom, opcode, format, tag, kind and mode tables for external tools
# - modules:  placeholder modules for every import specifier

from jsbc.bridge import ExecutionResult, compile, disassemble, dump, execute, execute_result
from jsbc.errors import (
    CompileError, DeserializationError, ExecutionError, JsbcError, ModuleRegistrationError,
    SerializationError,
)
from jsbc.gate import get_format_version, is_compatible
from jsbc.metadata import (
    CompileOption, get_atom_table, get_bytecode_tag_table, get_compile_options,
    get_first_atom_id, get_function_kind_table, get_mode_flag_table, get_opcode_table,
    get_operand_format_table,
)

__all__ = [
    "CompileError",
    "CompileOption",
    "DeserializationError",
    "ExecutionError",
    "ExecutionResult",
    "JsbcError",
    "ModuleRegistrationError",
    "SerializationError",
    "compile",
    "disassemble",
    "dump",
    "execute",
    "execute_result",
    "get_atom_table",
    "get_bytecode_tag_table",
    "get_compile_options",
    "get_first_atom_id",
    "get_format_version",
    "get_function_kind_table",
    "get_mode_flag_table",
    "get_opcode_table",
    "get_operand_format_table",
    "is_compatible",
]
