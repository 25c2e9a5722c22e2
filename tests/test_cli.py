"""Tests for the CLI entry point."""

import json
import subprocess
import sys
from pathlib import Path

import pytest

SAMPLE = Path(__file__).resolve().parent.parent / "data" / "samples" / "bundle_001.json"


def run_cli(*args) -> subprocess.CompletedProcess:
    """Run the CLI with given args and return CompletedProcess."""
    return subprocess.run(
        [sys.executable, "-m", "lab_reporting"] + list(args),
        capture_output=True,
        text=True,
    )


def test_cli_help_exits_zero():
    """--help returns exit code 0."""
    result = run_cli("--help")
    assert result.returncode == 0
    assert "--input" in result.stdout
    assert "--batch" in result.stdout


def test_cli_produces_valid_json():
    """--input produces valid JSON with success=True and every stage."""
    result = run_cli("--input", str(SAMPLE), "--date", "2025-03-04")
    assert result.returncode == 0, f"CLI failed: {result.stderr}"
    data = json.loads(result.stdout)
    assert data["success"] is True
    assert [s["stage_name"] for s in data["stages"]] == ["case", "tree", "values", "formulas", "compose"]
    assert data["case"]["dcn"] == "L01"
    assert data["case"]["payment"]["balance"] == 400
    assert [s["categoryName"] for s in data["document"]["sections"]] == ["Haematology", "Biochemistry"]
    assert data["document"]["summary"]["abnormalTests"] == ["Complete Blood Count"]


def test_cli_summary_format():
    """--format summary prints a readable table."""
    result = run_cli("--input", str(SAMPLE), "--format", "summary")
    assert result.returncode == 0, f"CLI failed: {result.stderr}"
    assert "Patient: Asha Rao (30 Years / Female)" in result.stdout
    assert "HAEMATOLOGY" in result.stdout
    assert "LDL Cholesterol" in result.stdout
    assert "HIGH" in result.stdout


def test_cli_batch_writes_output(tmp_path):
    """--batch processes each bundle and --output writes a JSON list."""
    bundles = tmp_path / "bundles"
    bundles.mkdir()
    for name in ("a.json", "b.json"):
        (bundles / name).write_text(SAMPLE.read_text())
    out = tmp_path / "out.json"

    result = run_cli("--batch", str(bundles), "--output", str(out))
    assert result.returncode == 0, f"CLI failed: {result.stderr}"
    data = json.loads(out.read_text())
    assert [d["case"]["dcn"] for d in data] == ["L01", "L02"]


def test_cli_failed_bundle_exits_one(tmp_path):
    """A bundle without a patient is reported as failed."""
    bundle = json.loads(SAMPLE.read_text())
    del bundle["case"]["patient"]
    path = tmp_path / "bad.json"
    path.write_text(json.dumps(bundle))

    result = run_cli("--input", str(path))
    assert result.returncode == 1
    data = json.loads(result.stdout)
    assert data["success"] is False
    assert "Patient" in data["error"]


@pytest.mark.parametrize("args", [[], ["--format", "json"], ["--input", "a.json", "--batch", "dir"]])
def test_cli_invalid_args_exits_nonzero(args):
    """Missing or conflicting input arguments return non-zero exit code."""
    result = run_cli(*args)
    assert result.returncode != 0


def test_cli_missing_input_file(tmp_path):
    """A missing --input file exits with code 2."""
    result = run_cli("--input", str(tmp_path / "missing.json"))
    assert result.returncode == 2
