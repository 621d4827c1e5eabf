import json

import pytest

from jsbc.cli import main


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "answer.js"
    path.write_text("40 + 2;\n", encoding="utf-8")
    return path


def test_compile_then_run(source, capsys):
    assert main(["compile", str(source), "--script"]) == 0
    out = source.with_suffix(".jsbc")
    assert out.exists()
    assert capsys.readouterr().out == f"{out}: {out.stat().st_size} bytes, version 5\n"

    assert main(["run", str(out)]) == 0
    assert capsys.readouterr().out == "42\n"


def test_run_reports_failures(tmp_path, capsys):
    src = tmp_path / "boom.js"
    src.write_text("throw new Error('boom');\n", encoding="utf-8")
    out = tmp_path / "boom.bin"
    assert main(["compile", str(src), "-o", str(out)]) == 0
    capsys.readouterr()
    assert main(["run", str(out)]) == 1
    assert capsys.readouterr().out.startswith("ERROR: Failed to eval module: boom\n")


def test_run_refuses_incompatible_buffer(source, tmp_path, capsys, monkeypatch):
    out = tmp_path / "big.jsbc"
    monkeypatch.setenv("JSBC_CONFIG_BIGNUM", "1")
    assert main(["compile", str(source), "-o", str(out), "--script"]) == 0
    monkeypatch.delenv("JSBC_CONFIG_BIGNUM")
    capsys.readouterr()
    assert main(["run", str(out)]) == 2
    assert "incompatible bytecode version 69" in capsys.readouterr().err
    assert main(["version", str(out)]) == 2
    assert capsys.readouterr().out == "69 (incompatible)\n"


def test_compile_error(tmp_path, capsys):
    src = tmp_path / "bad.js"
    src.write_text("let x = ;\n", encoding="utf-8")
    assert main(["compile", str(src)]) == 1
    err = capsys.readouterr().err
    assert err.startswith("Failed to compile module detail: ")
    assert "bad.js:1" in err
    assert not src.with_suffix(".jsbc").exists()


def test_dump_source(source, capsys):
    assert main(["dump", str(source), "--source"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("module: answer.js\n")
    assert "  opcodes:" in out


def test_dump_disabled(source, capsys, monkeypatch):
    monkeypatch.setenv("JSBC_DUMP_BYTECODE", "0")
    assert main(["dump", str(source), "--source"]) == 1
    assert "disassembler disabled" in capsys.readouterr().err


def test_version(capsys):
    assert main(["version"]) == 0
    assert capsys.readouterr().out == "5\n"


def test_tables_json(capsys):
    assert main(["tables", "atoms", "--json"]) == 0
    rows = json.loads(capsys.readouterr().out)
    assert len(rows) == 241
    assert rows[0] == {"id": 1, "name": "null"}

    assert main(["tables", "opcodes", "--json"]) == 0
    rows = json.loads(capsys.readouterr().out)
    add = next(r for r in rows if r["name"] == "add")
    assert add["id"] == 157
    assert (add["n_pop"], add["n_push"], add["size"]) == (2, 1, 1)


def test_tables_text(capsys):
    assert main(["tables", "modes"]) == 0
    assert capsys.readouterr().out.splitlines() == [
        "1\tJS_MODE_STRICT", "4\tJS_MODE_ASYNC", "8\tJS_MODE_BACKTRACE_BARRIER"]


def test_missing_file(tmp_path, capsys):
    assert main(["run", str(tmp_path / "nope.jsbc")]) == 1
    assert capsys.readouterr().err.startswith("jsbc: ")
