"""flowspec visualisation — Mermaid flowchart text for flows and descriptions."""

from __future__ import annotations

import re
from typing import Any

from flowspec.node import DEFAULT_ACTION, Node

_UNSAFE_ID = re.compile(r"[^A-Za-z0-9_]")


def _mermaid_id(name: str) -> str:
    return _UNSAFE_ID.sub("_", name) or "node"


class FlowVisualizer:
    """Generate Mermaid flowchart diagrams from a flowspec Flow."""

    NODE_COLORS = {
        "Node": "#e1f5fe",
        "BatchNode": "#e8f5e9",
        "AsyncNode": "#f3e5f5",
        "AsyncParallelBatchNode": "#ede7f6",
        "RouterNode": "#fff8e1",
        "Flow": "#fff3e0",
    }

    def _color(self, node: Node) -> str:
        for cls in type(node).__mro__:
            if cls.__name__ in self.NODE_COLORS:
                return self.NODE_COLORS[cls.__name__]
        return "#f0f0f0"

    def build_mermaid(self, flow: Any) -> str:
        """Return a Mermaid ``flowchart TD`` string for *flow*.

        Nodes are identified by object, so cycles are drawn once.
        """
        start = getattr(flow, "start", None)
        if start is None:
            return 'flowchart TD\n    Error["No start node found"]'

        ids: dict[int, str] = {}
        node_defs: list[str] = []
        edges: list[str] = []
        pending: list[Node] = []

        def _id_for(node: Node) -> str:
            if id(node) not in ids:
                base = _mermaid_id(node.name)
                taken = set(ids.values())
                candidate, n = base, 1
                while candidate in taken:
                    n += 1
                    candidate = f"{base}_{n}"
                ids[id(node)] = candidate
                pending.append(node)
            return ids[id(node)]

        _id_for(start)
        while pending:
            node = pending.pop(0)
            node_id = ids[id(node)]
            label = f"{node.name}\\n{getattr(node, 'kind', '') or type(node).__name__}"
            node_defs.append(f'{node_id}["{label}"]')
            node_defs.append(f"style {node_id} fill:{self._color(node)}")
            for action, successor in node.successors.items():
                succ_id = _id_for(successor)
                if action == DEFAULT_ACTION:
                    edges.append(f"{node_id} --> {succ_id}")
                else:
                    edges.append(f"{node_id} -->|{action}| {succ_id}")

        lines = ["flowchart TD"]
        lines.extend(f"    {d}" for d in node_defs)
        lines.extend(f"    {e}" for e in edges)
        return "\n".join(lines)


def describe_mermaid(description: dict[str, Any]) -> str:
    """Mermaid text straight from a graph description (no compilation needed)."""
    lines = ["flowchart TD"]
    for spec in description.get("nodes") or []:
        node_id = _mermaid_id(str(spec.get("id", "")))
        shape = ('{{"%s"}}' if spec.get("kind") == "router" else '["%s"]') % (
            f"{spec.get('id')}\\n{spec.get('kind')}"
        )
        lines.append(f"    {node_id}{shape}")
    for edge in description.get("edges") or []:
        src, dst = _mermaid_id(str(edge.get("from"))), _mermaid_id(str(edge.get("to")))
        label = edge.get("label") or DEFAULT_ACTION
        if label == DEFAULT_ACTION:
            lines.append(f"    {src} --> {dst}")
        else:
            lines.append(f"    {src} -->|{label}| {dst}")
    return "\n".join(lines)


def visualize_flow(flow: Any) -> str:
    """Generate a Mermaid diagram string for a flowspec Flow."""
    return FlowVisualizer().build_mermaid(flow)
