"""Tests for the operator CLI (scripts/workflow_cli.py)."""

import pytest

from scripts.workflow_cli import main

BAD_TARGET = """
workflows:
  broken:
    initial_step: draft
    terminal_steps: [done]
    steps:
      draft:
        actions:
          finalize: {roles: [admin], to: nowhere}
      done: {}
"""


def test_list(capsys):
    assert main(["list"]) == 0
    out = capsys.readouterr().out
    assert "WORKFLOW" in out
    assert "medical_record " in out
    assert "lab_report_process" in out


def test_describe(capsys):
    assert main(["describe", "medical_record"]) == 0
    out = capsys.readouterr().out
    assert "initial:  draft" in out
    assert "terminal: archived, cancelled" in out
    assert "nurse_verify | finalized" in out
    assert "archived [terminal]" in out


def test_describe_unknown_workflow(capsys):
    assert main(["describe", "payroll"]) == 1
    assert "payroll" in capsys.readouterr().err


def test_validate_packaged_set(capsys):
    assert main(["validate"]) == 0
    out = capsys.readouterr().out
    assert "config_id: clinical-default" in out
    assert "WARNING:" in out
    assert out.rstrip().endswith("OK")


def test_validate_strict_fails(capsys):
    assert main(["validate", "--strict"]) == 1
    assert "VALIDATION FAILED" in capsys.readouterr().out


def test_validate_broken_directory(tmp_path, capsys):
    (tmp_path / "broken.yaml").write_text(BAD_TARGET, encoding="utf-8")
    assert main(["validate", "--config-dir", str(tmp_path)]) == 1
    assert "targets an undeclared step" in capsys.readouterr().out


def test_missing_directory(tmp_path, capsys):
    assert main(["--config-dir", str(tmp_path / "absent"), "list"]) == 1
    assert "not found" in capsys.readouterr().err


def test_command_required():
    with pytest.raises(SystemExit):
        main([])
