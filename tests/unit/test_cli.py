"""Tests for the steptrace command line."""

import json

from steptrace.cli import main


class TestDumpModes:
    def test_ir_only(self, capsys):
        assert main(["--ir-only"]) == 0

        out = capsys.readouterr().out
        assert "entry:" in out
        assert "linear_search" in out

    def test_cfg_only(self, capsys):
        assert main(["--cfg-only"]) == 0

        assert "[entry]" in capsys.readouterr().out


class TestRun:
    def test_demo_prints_steps_then_summary(self, capsys):
        assert main([]) == 0

        lines = capsys.readouterr().out.strip().splitlines()
        steps = [json.loads(line) for line in lines[:-1]]
        summary = json.loads(lines[-1])
        assert steps[0]["operation"] == "call_entry"
        assert [s["sequence"] for s in steps] == list(range(len(steps)))
        assert summary["reason"] == "completed"
        assert summary["total_steps"] == len(steps)

    def test_file_with_entry_point(self, tmp_path, capsys):
        path = tmp_path / "prog.py"
        path.write_text("def inc(n):\n    return n + 1\n")

        assert main([str(path), "--entry", "inc", "--args", "[1]"]) == 0

        summary = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert summary["return_value"] == {"kind": "scalar", "value": 2}

    def test_step_limit_exits_nonzero(self, capsys):
        assert main(["--max-steps", "2"]) == 1

        summary = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert summary["reason"] == "limit_exceeded"
        assert summary["limit"] == "steps"


class TestErrors:
    def test_invalid_json_arguments(self, capsys):
        assert main(["--args", "[1,"]) == 2

        assert "invalid JSON" in capsys.readouterr().err

    def test_arguments_must_be_a_list(self, capsys):
        assert main(["--args", "{}"]) == 2

    def test_policy_rejection(self, tmp_path, capsys):
        path = tmp_path / "bad.py"
        path.write_text("import os\n")

        assert main([str(path)]) == 1

        err = capsys.readouterr().err
        assert "program rejected" in err
        assert "1:" in err

    def test_unknown_entry_point(self, tmp_path, capsys):
        path = tmp_path / "prog.py"
        path.write_text("x = 1\n")

        assert main([str(path), "--entry", "missing"]) == 1

        assert "Unknown entry point" in capsys.readouterr().err
