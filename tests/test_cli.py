"""Loader and the ``flowspec`` command line."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from flowspec import ConfigError
from flowspec.cli import main
from flowspec.config import reset_settings
from flowspec.loader import load_description, parse_description

GREET = {
    "version": "pf-js/1.0",
    "entry": "greet",
    "globals": {},
    "nodes": [{"id": "greet", "kind": "static-data", "exec": {"message": "hi"},
               "post": {"outputs": {"save": [
                   {"path": "out", "value": "{{exec.message}}"},
                   {"path": "to", "value": "{{ctx.name}}"},
               ]}}}],
    "edges": [],
}

GREET_YAML = """\
version: pf-js/1.0
entry: greet
globals: {}
nodes:
  - id: greet
    kind: static-data
    exec:
      message: hi
    post:
      outputs:
        save:
          - path: out
            value: "{{exec.message}}"
edges: []
"""


@pytest.fixture(autouse=True)
def _log_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("FLOWSPEC_LOG_DIR", str(tmp_path / "logs"))
    reset_settings()
    yield
    reset_settings()


def _write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content if isinstance(content, str) else json.dumps(content), encoding="utf-8")
    return str(path)


# ── loader ────────────────────────────────────────────────────────────────────

def test_load_json_and_yaml(tmp_path):
    from_json = load_description(_write(tmp_path, "g.json", GREET))
    from_yaml = load_description(_write(tmp_path, "g.yaml", GREET_YAML))
    assert from_json == GREET
    assert from_yaml["version"] == "pf-js/1.0"
    assert from_yaml["nodes"][0]["post"] == {
        "outputs": {"save": [{"path": "out", "value": "{{exec.message}}"}]}
    }


def test_parse_rejects_non_objects():
    with pytest.raises(ConfigError, match="must be an object"):
        parse_description("[1, 2]")
    with pytest.raises(ConfigError, match="Cannot parse"):
        parse_description("{broken")


# ── CLI ───────────────────────────────────────────────────────────────────────

def test_cli_validate_ok(tmp_path):
    path = _write(tmp_path, "g.json", GREET)
    result = CliRunner().invoke(main, ["validate", path])
    assert result.exit_code == 0
    assert result.output.startswith("OK")


def test_cli_validate_reports_every_problem(tmp_path):
    bad = dict(GREET, entry="nope", edges=[{"from": "greet", "to": "greet", "label": "x"}])
    result = CliRunner().invoke(main, ["validate", _write(tmp_path, "bad.json", bad)])
    assert result.exit_code == 1
    assert result.output.count("✗") == 2


def test_cli_run_prints_result_and_shared(tmp_path):
    path = _write(tmp_path, "g.yaml", GREET_YAML)
    result = CliRunner().invoke(main, ["run", path, "--shared", '{"name": "Ada"}'])
    assert result.exit_code == 0, result.output
    assert "result: default" in result.output
    assert '"out": "hi"' in result.output
    assert '"name": "Ada"' in result.output
    assert "_last_result" not in result.output


def test_cli_run_with_shared_file(tmp_path):
    graph = _write(tmp_path, "g.json", GREET)
    shared = _write(tmp_path, "shared.json", {"name": "Grace"})
    result = CliRunner().invoke(main, ["run", graph, "--shared-file", shared])
    assert result.exit_code == 0, result.output
    assert '"to": "Grace"' in result.output


def test_cli_run_without_llm_collaborator_fails_cleanly(tmp_path):
    graph = dict(GREET, nodes=[{"id": "greet", "kind": "llm-call", "exec": {"prompt": "hi"}}])
    result = CliRunner().invoke(main, ["run", _write(tmp_path, "g.json", graph)])
    assert result.exit_code == 1
    assert "llm collaborator not configured" in result.output


def test_cli_run_rejects_bad_shared_json(tmp_path):
    result = CliRunner().invoke(main, ["run", _write(tmp_path, "g.json", GREET), "--shared", "[1]"])
    assert result.exit_code == 2


def test_cli_show_and_kinds(tmp_path):
    runner = CliRunner()
    shown = runner.invoke(main, ["show", _write(tmp_path, "g.json", GREET)])
    assert shown.exit_code == 0
    assert shown.output.startswith("flowchart TD")
    assert "greet" in shown.output

    kinds = runner.invoke(main, ["kinds"])
    assert kinds.exit_code == 0
    listed = kinds.output.split()
    assert "router" in listed and "cooperative-parallel" in listed


EXAMPLE = Path(__file__).resolve().parent.parent / "examples" / "review_loop.yaml"


@pytest.mark.parametrize("score,status", [
    (3, "approved after 3 round(s)"),
    (0, "gave up at score 6"),
])
def test_cli_runs_review_loop_example(score, status):
    result = CliRunner().invoke(main, ["run", str(EXAMPLE), "--shared", json.dumps({"score": score})])
    assert result.exit_code == 0, result.output
    assert f'"status": "{status}"' in result.output
