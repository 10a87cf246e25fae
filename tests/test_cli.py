"""Tests for the nodeflow command-line interface."""

import json
import logging

import pytest

from nodeflow.cli import main

ECHO_WORKFLOW = {
    "id": "echo",
    "name": "Echo",
    "nodes": [
        {
            "id": "in",
            "name": "userInput",
            "category": "ENTRY",
            "next": ["shout"],
            "initParams": ["text"],
            "outputFields": ["text"],
        },
        {
            "id": "shout",
            "name": "passthrough",
            "category": "MIDDLE",
            "next": ["out"],
            "inputFields": ["text"],
            "outputFields": ["text"],
        },
        {
            "id": "out",
            "name": "output",
            "category": "EXIT",
            "next": ["log"],
            "inputFields": ["text"],
            "outputFields": ["text"],
        },
        {
            "id": "log",
            "name": "passthrough",
            "category": "AFTER",
            "inputFields": ["text"],
        },
    ],
}


@pytest.fixture(autouse=True)
def restore_root_logger():
    """main() reconfigures the root logger; put it back for the other tests."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def workflow_file(tmp_path):
    path = tmp_path / "echo.json"
    path.write_text(json.dumps(ECHO_WORKFLOW), encoding="utf-8")
    return path


@pytest.fixture
def broken_file(tmp_path):
    data = json.loads(json.dumps(ECHO_WORKFLOW))
    data["nodes"][2]["inputFields"].append("missing")
    path = tmp_path / "broken.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestValidate:
    def test_valid_definition(self, workflow_file, capsys):
        assert main(["--log-level", "ERROR", "validate", str(workflow_file)]) == 0

        assert "✓ echo: 4 nodes, valid" in capsys.readouterr().out

    def test_invalid_definition_lists_errors(self, broken_file, capsys):
        assert main(["--log-level", "ERROR", "validate", str(broken_file)]) == 1

        out = capsys.readouterr().out
        assert "is invalid" in out
        assert "Node 'out' reads 'missing'" in out

    def test_node_without_category_lists_errors(self, tmp_path, capsys):
        data = json.loads(json.dumps(ECHO_WORKFLOW))
        del data["nodes"][1]["category"]
        path = tmp_path / "uncategorized.json"
        path.write_text(json.dumps(data), encoding="utf-8")

        assert main(["--log-level", "ERROR", "validate", str(path)]) == 1

        out = capsys.readouterr().out
        assert "is invalid" in out
        assert "nodes.1.category" in out

    def test_missing_file(self, tmp_path, capsys):
        assert main(["--log-level", "ERROR", "validate", str(tmp_path / "nope.json")]) == 1

        assert "could not be loaded" in capsys.readouterr().out


class TestInfo:
    def test_shows_nodes_and_order(self, workflow_file, capsys):
        assert main(["--log-level", "ERROR", "info", str(workflow_file)]) == 0

        out = capsys.readouterr().out
        assert "Workflow: echo  Echo" in out
        assert "[ENTRY ] in (userInput) → shout" in out
        assert "Main chain: in → shout → out" in out
        assert "After:      log" in out


class TestRun:
    def test_run_prints_output(self, workflow_file, capsys):
        code = main(
            ["--log-level", "ERROR", "run", str(workflow_file), "--input", '{"text": "hi"}']
        )

        assert code == 0
        assert json.loads(capsys.readouterr().out) == {"text": "hi"}

    def test_run_reads_input_file(self, workflow_file, tmp_path, capsys):
        params = tmp_path / "params.json"
        params.write_text('{"text": "from file"}', encoding="utf-8")

        code = main(
            ["--log-level", "ERROR", "run", str(workflow_file), "--input", f"@{params}", "--no-after"]
        )

        assert code == 0
        assert json.loads(capsys.readouterr().out) == {"text": "from file"}

    def test_run_rejects_non_object_input(self, workflow_file, capsys):
        code = main(["--log-level", "ERROR", "run", str(workflow_file), "--input", "[1, 2]"])

        assert code == 1
        assert "must be a JSON object" in capsys.readouterr().err

    def test_run_rejects_invalid_definition(self, broken_file, capsys):
        assert main(["--log-level", "ERROR", "run", str(broken_file)]) == 1

        assert "Invalid workflow definition" in capsys.readouterr().err
