"""flowspec Validator — structural checks on a graph description.

Runs before any node is instantiated.  Checks:

  • required top-level fields: version, entry, nodes, edges
  • version format ``pf-js/<major>.<minor>``
  • nodes: non-empty list; every node has a non-empty ``id`` and a
    registered ``kind``; ids are unique
  • entry references a declared node
  • every edge's ``from`` / ``to`` references a declared node
  • every edge's label can actually be produced by its ``from`` node
    (``default``, its ``post.next``, its router case labels, or its
    ``loop_guard.exit``, ``"loop_exit"`` by default)
  • no two edges leave the same node under the same label
  • retry / loop_guard settings are in range
  • fields read later have the right type: ids, kinds, entry, edge
    endpoints and labels, ``post.next`` and router case labels are strings;
    ``prep`` / ``exec`` / ``post`` / ``post.outputs`` are objects; every
    ``save`` entry is an object with a non-empty ``path``

All problems are collected, so one run reports every defect.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from flowspec.errors import ConfigError
from flowspec.logging import get_logger
from flowspec.node import BACKOFF_EXPONENTIAL, BACKOFF_FIXED, DEFAULT_ACTION, LOOP_EXIT_ACTION

_log = get_logger("validator")

VERSION_RE = re.compile(r"^pf-js/\d+\.\d+$")
REQUIRED_FIELDS = ("version", "entry", "nodes", "edges")
ROUTER_KINDS = {"router"}


@dataclass
class ValidationResult:
    """Outcome of :func:`validate`; truthy when the description is valid."""

    success: bool
    errors: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.success


def producible_labels(node: dict[str, Any], router_kinds: Iterable[str] = ROUTER_KINDS) -> set[str]:
    """Every label the node declared by *node* can return from ``post``."""
    labels = {DEFAULT_ACTION}
    post = node.get("post") or {}
    if isinstance(post, dict) and _is_name(post.get("next")):
        labels.add(post["next"])
    exec_ = node.get("exec") or {}
    if node.get("kind") in router_kinds and isinstance(exec_, dict):
        cases = exec_.get("cases") or []
        for case in cases if isinstance(cases, list) else []:
            if isinstance(case, dict) and _is_name(case.get("label")):
                labels.add(case["label"])
    guard = node.get("loop_guard")
    if isinstance(guard, dict):
        exit_ = guard.get("exit") or LOOP_EXIT_ACTION
        if _is_name(exit_):
            labels.add(exit_)
    return labels


def _is_name(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


def _check_node_shape(node_id: str, node: dict[str, Any], router: bool) -> list[str]:
    """Type checks on the parts of a node that are read at compile or run time."""
    errors: list[str] = []
    for section in ("prep", "exec", "post"):
        value = node.get(section)
        if value is not None and not isinstance(value, dict):
            errors.append(f"Node '{node_id}': {section} must be an object")

    prep = node.get("prep") if isinstance(node.get("prep"), dict) else {}
    if prep.get("path") is not None and not _is_name(prep["path"]):
        errors.append(f"Node '{node_id}': prep.path must be a non-empty string")
    inputs = prep.get("inputs")
    if inputs is not None:
        if not isinstance(inputs, list) or not all(
            isinstance(i, dict) and _is_name(i.get("path")) for i in inputs
        ):
            errors.append(f"Node '{node_id}': prep.inputs must be a list of {{path}} objects")

    post = node.get("post") if isinstance(node.get("post"), dict) else {}
    if post.get("next") is not None and not _is_name(post["next"]):
        errors.append(f"Node '{node_id}': post.next must be a non-empty string, got {post['next']!r}")
    outputs = post.get("outputs")
    if outputs is not None:
        if not isinstance(outputs, dict):
            errors.append(f"Node '{node_id}': post.outputs must be an object")
        else:
            saves = outputs.get("save")
            if saves is not None and not isinstance(saves, list):
                errors.append(f"Node '{node_id}': post.outputs.save must be a list")
            for index, save in enumerate(saves if isinstance(saves, list) else []):
                if not isinstance(save, dict) or not _is_name(save.get("path")):
                    errors.append(
                        f"Node '{node_id}': post.outputs.save #{index} needs a non-empty string path"
                    )

    exec_ = node.get("exec") if isinstance(node.get("exec"), dict) else {}
    if router and exec_.get("cases") is not None:
        cases = exec_["cases"]
        if not isinstance(cases, list):
            errors.append(f"Node '{node_id}': exec.cases must be a list")
            cases = []
        for index, case in enumerate(cases):
            if not isinstance(case, dict) or not _is_name(case.get("label")):
                errors.append(f"Node '{node_id}': exec.cases #{index} needs a non-empty string label")
    return errors


def _check_node_settings(node_id: str, node: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    retry = node.get("retry")
    if retry is not None:
        if not isinstance(retry, dict):
            errors.append(f"Node '{node_id}': retry must be an object")
        else:
            max_ = retry.get("max", 1)
            wait = retry.get("wait", 0)
            if not isinstance(max_, int) or isinstance(max_, bool) or max_ < 1:
                errors.append(f"Node '{node_id}': retry.max must be an integer >= 1, got {max_!r}")
            if not isinstance(wait, (int, float)) or isinstance(wait, bool) or wait < 0:
                errors.append(f"Node '{node_id}': retry.wait must be a number >= 0, got {wait!r}")
            backoff = retry.get("backoff", BACKOFF_FIXED)
            if backoff not in (BACKOFF_FIXED, BACKOFF_EXPONENTIAL):
                errors.append(
                    f"Node '{node_id}': retry.backoff must be "
                    f"'{BACKOFF_FIXED}' or '{BACKOFF_EXPONENTIAL}', got {backoff!r}"
                )
    guard = node.get("loop_guard")
    if guard is not None:
        limit = guard.get("max_iterations") if isinstance(guard, dict) else None
        if not isinstance(limit, int) or isinstance(limit, bool) or limit < 1:
            errors.append(f"Node '{node_id}': loop_guard.max_iterations must be an integer >= 1")
        if isinstance(guard, dict) and guard.get("exit") is not None and not _is_name(guard["exit"]):
            errors.append(f"Node '{node_id}': loop_guard.exit must be a non-empty string")
    return errors


def validate(
    description: Any,
    kinds: Iterable[str] | None = None,
    router_kinds: Iterable[str] = ROUTER_KINDS,
) -> ValidationResult:
    """Check *description* and return every structural problem found.

    Parameters
    ----------
    kinds :
        Registered node kinds.  Defaults to the built-in kinds.
    router_kinds :
        Kinds whose ``exec.cases`` labels count as producible labels.
    """
    if kinds is None:
        from flowspec.kinds import BUILTIN_KINDS
        kinds = BUILTIN_KINDS
    kinds = set(kinds)
    router_kinds = set(router_kinds)

    if not isinstance(description, dict):
        return ValidationResult(False, ["Graph description must be an object"])

    missing = [f for f in REQUIRED_FIELDS if not description.get(f) and description.get(f) != []]
    if missing:
        return ValidationResult(
            False, [f"Invalid config: missing required fields ({', '.join(missing)})"]
        )

    errors: list[str] = []
    version = description["version"]
    if not isinstance(version, str) or not VERSION_RE.match(version):
        errors.append(f"Invalid version format: {version!r}. Expected format: pf-js/1.0")

    nodes = description["nodes"]
    edges = description["edges"]
    if not isinstance(nodes, list) or not nodes:
        errors.append("Config must have at least one node")
        nodes = []
    if not isinstance(edges, list):
        errors.append("Config must have edges array")
        edges = []
    globals_ = description.get("globals", {})
    if globals_ is not None and not isinstance(globals_, dict):
        errors.append("globals must be an object")

    declared: dict[str, dict] = {}
    for index, node in enumerate(nodes):
        if not isinstance(node, dict):
            errors.append(f"Node #{index} must be an object")
            continue
        node_id = node.get("id")
        if not isinstance(node_id, str) or not node_id:
            errors.append(f"Node #{index} has no id")
            continue
        if node_id in declared:
            errors.append(f"Duplicate node ID: {node_id}")
            continue
        declared[node_id] = node
        kind = node.get("kind")
        if not isinstance(kind, str) or kind not in kinds:
            errors.append(
                f"Unknown node kind: {kind!r} (node '{node_id}'). "
                f"Valid kinds: {', '.join(sorted(kinds))}"
            )
        errors.extend(_check_node_settings(node_id, node))
        router = isinstance(kind, str) and kind in router_kinds
        errors.extend(_check_node_shape(node_id, node, router))

    entry = description["entry"]
    if not isinstance(entry, str):
        errors.append(f"entry must be a node id string, got {entry!r}")
    elif nodes and entry not in declared:
        errors.append(f"Entry node '{entry}' not found in nodes")

    wired: dict[tuple[str, str], str] = {}
    for index, edge in enumerate(edges):
        if not isinstance(edge, dict):
            errors.append(f"Edge #{index} must be an object")
            continue
        absent = [f for f in ("from", "to") if f not in edge]
        if absent:
            errors.append(f"Edge #{index}: missing required edge field(s): {', '.join(absent)}")
            continue
        src, dst = edge["from"], edge["to"]
        label = edge.get("label") or DEFAULT_ACTION
        mistyped = [f for f, v in (("from", src), ("to", dst), ("label", label)) if not isinstance(v, str)]
        if mistyped:
            errors.append(f"Edge #{index}: {', '.join(mistyped)} must be a string")
            continue
        if src not in declared:
            errors.append(f"Edge references missing node: {src}")
        if dst not in declared:
            errors.append(f"Edge references missing node: {dst}")
        if src not in declared:
            continue
        if (src, label) in wired:
            errors.append(
                f"Duplicate edge: node '{src}' already routes label '{label}' "
                f"to '{wired[(src, label)]}'"
            )
        wired.setdefault((src, label), dst)
        valid = producible_labels(declared[src], router_kinds)
        if label not in valid:
            errors.append(
                f"Invalid edge routing: Node '{src}' cannot route to '{dst}' with label "
                f"'{label}'. Valid actions: {', '.join(sorted(valid))}"
            )

    if errors:
        _log.debug("Validation found %d problem(s)", len(errors))
    return ValidationResult(not errors, errors)


def check(description: Any, kinds: Iterable[str] | None = None,
          router_kinds: Iterable[str] = ROUTER_KINDS) -> None:
    """Raise :class:`ConfigError` listing every problem if *description* is invalid."""
    result = validate(description, kinds, router_kinds)
    if not result:
        raise ConfigError(result.errors)
