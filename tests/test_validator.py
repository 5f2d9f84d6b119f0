"""Validator — structural checks before anything is instantiated."""

import copy

import pytest

from flowspec import ConfigError, validate
from flowspec.validator import check, producible_labels

VALID = {
    "version": "pf-js/1.0",
    "entry": "a",
    "globals": {"model": "m"},
    "nodes": [
        {"id": "a", "kind": "static-data", "post": {"next": "route"}},
        {"id": "r", "kind": "router", "exec": {"cases": [{"label": "yes", "when": "ctx.ok"},
                                                         {"label": "no"}]}},
        {"id": "y", "kind": "llm-call", "exec": {"prompt": "hi"}},
        {"id": "n", "kind": "static-data"},
    ],
    "edges": [
        {"from": "a", "to": "r", "label": "route"},
        {"from": "r", "to": "y", "label": "yes"},
        {"from": "r", "to": "n", "label": "no"},
        {"from": "y", "to": "n"},
    ],
}


def _with(**changes):
    desc = copy.deepcopy(VALID)
    desc.update(changes)
    return desc


def test_valid_description_passes():
    result = validate(VALID)
    assert result
    assert result.errors == []


def test_empty_edges_allowed():
    assert validate(_with(nodes=[{"id": "a", "kind": "static-data"}], edges=[]))


def test_missing_required_fields():
    result = validate({"version": "pf-js/1.0", "nodes": []})
    assert not result
    assert "entry" in result.errors[0] and "edges" in result.errors[0]


def test_not_an_object():
    assert not validate(["nodes"])


@pytest.mark.parametrize("version", ["1.0", "pf-js/1", "pf-py/1.0", "pf-js/1.0.2", 1.0])
def test_bad_version_rejected(version):
    result = validate(_with(version=version))
    assert any("version" in e for e in result.errors)


def test_unproducible_label_rejected():
    desc = _with(edges=VALID["edges"] + [{"from": "a", "to": "n", "label": "x"}])
    result = validate(desc)
    assert not result
    assert result.errors == [
        "Invalid edge routing: Node 'a' cannot route to 'n' with label 'x'. "
        "Valid actions: default, route"
    ]


def test_duplicate_node_id_rejected():
    desc = _with(nodes=VALID["nodes"] + [{"id": "a", "kind": "static-data"}])
    assert "Duplicate node ID: a" in validate(desc).errors


def test_dangling_edge_rejected():
    desc = _with(edges=VALID["edges"] + [{"from": "n", "to": "ghost"}])
    assert "Edge references missing node: ghost" in validate(desc).errors


def test_entry_must_exist():
    assert "Entry node 'zz' not found in nodes" in validate(_with(entry="zz")).errors


def test_unknown_kind_rejected():
    desc = _with(nodes=VALID["nodes"] + [{"id": "t", "kind": "teleport"}])
    [error] = validate(desc).errors
    assert error.startswith("Unknown node kind: 'teleport'")


def test_custom_kinds_replace_builtins():
    desc = _with(nodes=[{"id": "a", "kind": "mine"}], edges=[])
    assert validate(desc, kinds={"mine"})
    assert not validate(desc)


def test_duplicate_label_from_same_node_rejected():
    desc = _with(edges=VALID["edges"] + [{"from": "r", "to": "n", "label": "yes"}])
    [error] = validate(desc).errors
    assert "Duplicate edge" in error and "'yes'" in error


def test_retry_and_guard_settings_checked():
    nodes = [
        {"id": "a", "kind": "static-data", "retry": {"max": 0, "wait": -1, "backoff": "random"}},
        {"id": "b", "kind": "static-data", "loop_guard": {"max_iterations": 0}},
    ]
    errors = validate(_with(nodes=nodes, edges=[])).errors
    assert len(errors) == 4


def test_all_problems_reported_together():
    desc = _with(version="v1", entry="zz", edges=[{"from": "a", "to": "ghost", "label": "x"}])
    assert len(validate(desc).errors) == 4


def test_producible_labels():
    assert producible_labels(VALID["nodes"][0]) == {"default", "route"}
    assert producible_labels(VALID["nodes"][1]) == {"default", "yes", "no"}
    guarded = {"id": "g", "kind": "static-data", "loop_guard": {"max_iterations": 2}}
    assert producible_labels(guarded) == {"default", "loop_exit"}
    guarded["loop_guard"]["exit"] = "stop"
    assert producible_labels(guarded) == {"default", "stop"}


def test_check_raises_config_error_with_every_problem():
    desc = _with(entry="zz", edges=[{"from": "a", "to": "ghost"}])
    with pytest.raises(ConfigError) as info:
        check(desc)
    assert len(info.value.problems) == 2
    assert str(info.value).startswith("2 problems:")


def _node(**fields):
    return dict({"id": "a", "kind": "static-data"}, **fields)


@pytest.mark.parametrize("desc,fragment", [
    (_with(nodes=[_node(kind=["llm"])], edges=[]), "Unknown node kind"),
    (_with(nodes=[_node()], entry=["a"], edges=[]), "entry must be a node id string"),
    (_with(nodes=[_node(post={"next": ["x"]})], edges=[]), "post.next must be a non-empty string"),
    (_with(nodes=[_node(post={"outputs": {"save": [{"value": "v"}]}})], edges=[]),
     "save #0 needs a non-empty string path"),
    (_with(nodes=[_node(post={"outputs": {"save": ["out"]}})], edges=[]),
     "save #0 needs a non-empty string path"),
    (_with(nodes=[_node(post={"outputs": ["out"]})], edges=[]), "post.outputs must be an object"),
    (_with(nodes=[_node(exec="hi")], edges=[]), "exec must be an object"),
    (_with(nodes=[_node(prep={"inputs": "items"})], edges=[]), "prep.inputs"),
    (_with(nodes=[_node(kind="router", exec={"cases": [{"when": "ctx.ok"}]})], edges=[]),
     "cases #0 needs a non-empty string label"),
    (_with(nodes=[_node(loop_guard={"max_iterations": 2, "exit": 3})], edges=[]),
     "loop_guard.exit"),
    (_with(edges=[{"from": ["a"], "to": "r", "label": "route"}]), "from must be a string"),
    (_with(edges=[{"from": "a", "to": "r", "label": ["route"]}]), "label must be a string"),
])
def test_wrongly_typed_fields_are_reported_not_raised(desc, fragment):
    result = validate(desc)
    assert not result
    assert any(fragment in e for e in result.errors), result.errors
