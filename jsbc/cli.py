"""
jsbc command line.

Usage:
    jsbc compile SRC [-o OUT] [--label L] [--module M ...] [--script]
    jsbc run BIN [--module M ...]
    jsbc dump FILE [--source]
    jsbc version [FILE]
    jsbc tables {atoms,opcodes,formats,tags,kinds,modes,options} [--json]
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from jsbc import bridge, gate, metadata
from jsbc.errors import CompileError, DeserializationError, JsbcError

TABLES = {
    'atoms': metadata.get_atom_table,
    'opcodes': metadata.get_opcode_table,
    'formats': metadata.get_operand_format_table,
    'tags': metadata.get_bytecode_tag_table,
    'kinds': metadata.get_function_kind_table,
    'modes': metadata.get_mode_flag_table,
}


def cmd_compile(args: argparse.Namespace) -> int:
    src = Path(args.src)
    label = args.label or src.name
    try:
        data = bridge.compile(src.read_text(encoding='utf-8'), label, args.module,
                              script=args.script)
    except CompileError as e:
        print(f"Failed to compile module detail: {e.detail()}", file=sys.stderr)
        return 1
    out = Path(args.output) if args.output else src.with_suffix('.jsbc')
    out.write_bytes(data)
    print(f"{out}: {len(data)} bytes, version {gate.get_format_version(data)}")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    data = Path(args.bin).read_bytes()
    if not gate.is_compatible(data):
        print(f"incompatible bytecode version {gate.get_format_version(data)} "
              f"(this build: {gate.get_format_version()})", file=sys.stderr)
        return 2
    result = bridge.execute_result(data, args.module)
    print(result.text)
    return 0 if result.ok else 1


def cmd_dump(args: argparse.Namespace) -> int:
    path = Path(args.file)
    try:
        if args.source:
            text = bridge.dump(path.read_text(encoding='utf-8'), path.name)
        else:
            text = bridge.disassemble(path.read_bytes())
    except CompileError as e:
        print(f"Failed to compile module detail: {e.detail()}", file=sys.stderr)
        return 1
    except DeserializationError as e:
        print(str(e), file=sys.stderr)
        return 2
    if not text:
        print("disassembler disabled (JSBC_DUMP_BYTECODE=0)", file=sys.stderr)
        return 1
    sys.stdout.write(text)
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    if args.file is None:
        print(gate.get_format_version())
        return 0
    data = Path(args.file).read_bytes()
    version = gate.get_format_version(data)
    state = 'compatible' if gate.is_compatible(data) else 'incompatible'
    print(f"{version} ({state})")
    return 0 if gate.is_compatible(data) else 2


def cmd_tables(args: argparse.Namespace) -> int:
    if args.table == 'options':
        rows = sorted((int(o), o.name) for o in metadata.get_compile_options())
    else:
        rows = [tuple(entry) for entry in TABLES[args.table]()]
    if args.json:
        if args.table == 'opcodes':
            fields = metadata.OpcodeEntry._fields
        else:
            fields = ('id', 'name')
        print(json.dumps([dict(zip(fields, row)) for row in rows], indent=2))
    else:
        for row in rows:
            print('\t'.join(str(v) for v in row))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jsbc",
        description="Compile, run and inspect script engine bytecode",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Log engine activity (-vv for debug)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    compile_parser = subparsers.add_parser("compile", help="Compile a source file")
    compile_parser.add_argument("src", help="Source file")
    compile_parser.add_argument("-o", "--output", help="Output file (default: SRC with .jsbc)")
    compile_parser.add_argument("--label", help="Source label for diagnostics")
    compile_parser.add_argument("--module", "-m", action="append", default=[],
                                help="Module specifier to register as a stub")
    compile_parser.add_argument("--script", action="store_true",
                                help="Compile as a global script instead of a module")

    run_parser = subparsers.add_parser("run", help="Execute a bytecode file")
    run_parser.add_argument("bin", help="Bytecode file")
    run_parser.add_argument("--module", "-m", action="append", default=[],
                            help="Module specifier to register as a stub")

    dump_parser = subparsers.add_parser("dump", help="Disassemble a bytecode file")
    dump_parser.add_argument("file", help="Bytecode file, or source file with --source")
    dump_parser.add_argument("--source", action="store_true",
                             help="Compile FILE first, then disassemble")

    version_parser = subparsers.add_parser("version", help="Show the bytecode format version")
    version_parser.add_argument("file", nargs="?", help="Bytecode file to check")

    tables_parser = subparsers.add_parser("tables", help="Print engine numbering tables")
    tables_parser.add_argument("table", choices=sorted(TABLES) + ["options"])
    tables_parser.add_argument("--json", action="store_true", help="Print JSON")

    return parser


COMMANDS = {
    "compile": cmd_compile,
    "run": cmd_run,
    "dump": cmd_dump,
    "version": cmd_version,
    "tables": cmd_tables,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    try:
        return COMMANDS[args.command](args)
    except JsbcError as e:
        print(f"jsbc: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"jsbc: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
