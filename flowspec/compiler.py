"""flowspec Compiler — graph description in, ready-to-run Flow out.

Usage
-----
    from flowspec import Compiler

    compiler = Compiler(env={"llm": my_llm, "http": my_http})
    compiled = compiler.compile(description)
    compiled.run(shared)            # or: await compiled.run_async(shared)

Steps
-----
  1. Validate the description (:mod:`flowspec.validator`); any structural
     defect raises ConfigError and nothing is instantiated.
  2. For every NodeSpec, look up ``kind`` in the registry and call
     ``factory(spec, compiler)`` → Node.
  3. For every EdgeSpec, ``nodes[from].then(label or "default", nodes[to])``.
  4. Pick the flow variant from the node types present: any cooperative
     node → AsyncFlow, otherwise Flow.  With an async ``env["llm"]``,
     llm-call and batch nodes compile to their cooperative counterparts,
     so the graph runs in an AsyncFlow.  Start node = ``entry``, flow params
     = ``globals``.

Extending
---------
    compiler.register("shout", lambda spec, c: ShoutNode(spec, c))
    compiler.register("vote", VoteRouter, router=True)   # case labels are producible

Collaborators are looked up lazily: a graph with llm-call nodes compiles
without ``env["llm"]`` and fails with MissingCollaboratorError only when
such a node first runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from flowspec.collaborators import RequestsHTTPClient, is_async_llm
from flowspec.config import get_settings
from flowspec.diagnostics import Diagnostics
from flowspec.errors import ConfigError, MissingCollaboratorError
from flowspec.flow import AsyncFlow, Flow
from flowspec.kinds import ASYNC_LLM_VARIANTS, BUILTIN_KINDS
from flowspec.logging import get_logger
from flowspec.node import DEFAULT_ACTION, AsyncNode, Node
from flowspec.template import Evaluator
from flowspec.validator import ROUTER_KINDS, ValidationResult, validate

_log = get_logger("compiler")

NodeFactory = Callable[[dict, "Compiler"], Node]


@dataclass
class CompiledGraph:
    """Result of :meth:`Compiler.compile`."""

    flow: Flow
    nodes: dict[str, Node]
    description: dict[str, Any]
    diagnostics: Diagnostics

    @property
    def is_async(self) -> bool:
        return isinstance(self.flow, AsyncFlow)

    def run(self, shared: Any) -> str | None:
        """Run to completion from synchronous code.  Returns the last label."""
        return self.flow.run(shared)

    async def run_async(self, shared: Any) -> str | None:
        """Run from inside an event loop (lets several flows interleave)."""
        if isinstance(self.flow, AsyncFlow):
            return await self.flow.run_async(shared)
        return self.flow.run(shared)

    @property
    def edge_count(self) -> int:
        return sum(len(node.successors) for node in self.nodes.values())


class Compiler:
    """Compiles graph descriptions against an environment of collaborators.

    Parameters
    ----------
    env :
        ``{"llm": ..., "http": ..., "globals": {...}}`` — all optional.
        ``env["globals"]`` supplies defaults (e.g. ``model``) under the
        description's own ``globals``.
    registry :
        kind → factory mapping.  Defaults to a copy of the built-in kinds.
    diagnostics :
        Channel for non-fatal anomalies; shared by every compiled node.
    default_http :
        When True and ``env["http"]`` is absent, http-call nodes use a
        :class:`RequestsHTTPClient`.
    """

    def __init__(
        self,
        env: dict[str, Any] | None = None,
        *,
        registry: dict[str, NodeFactory] | None = None,
        diagnostics: Diagnostics | None = None,
        default_http: bool = False,
    ):
        self.env: dict[str, Any] = dict(env or {})
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.evaluator = Evaluator(self.diagnostics)
        self.registry: dict[str, NodeFactory] = dict(BUILTIN_KINDS if registry is None else registry)
        self.router_kinds: set[str] = set(ROUTER_KINDS)
        self.default_http = default_http
        self._default_http_client: RequestsHTTPClient | None = None

    # ── registry ──────────────────────────────────────────────────────────────

    def register(self, kind: str, factory: NodeFactory, *, router: bool = False) -> "Compiler":
        """Add (or replace) a node kind.  Returns self for chaining.

        ``router=True`` makes the kind's ``exec.cases[].label`` values count as
        labels it can produce, for edge validation.
        """
        if not kind or not isinstance(kind, str):
            raise ValueError("kind must be a non-empty string")
        if kind in self.registry:
            _log.info("Replacing factory for node kind '%s'", kind)
        self.registry[kind] = factory
        if router:
            self.router_kinds.add(kind)
        return self

    def registered_kinds(self) -> list[str]:
        return sorted(self.registry)

    # ── collaborators ─────────────────────────────────────────────────────────

    def llm(self, node_id: str = "") -> Any:
        llm = self.env.get("llm")
        if llm is None:
            raise MissingCollaboratorError("llm", node_id)
        return llm

    def http(self, node_id: str = "") -> Any:
        http = self.env.get("http")
        if http is not None:
            return http
        if self.default_http:
            if self._default_http_client is None:
                self._default_http_client = RequestsHTTPClient()
            return self._default_http_client
        raise MissingCollaboratorError("http", node_id)

    def resolve_model(self, declared: str | None, params: dict[str, Any]) -> str:
        """Node's own model, else the graph's ``globals.model``, else env, else settings."""
        return (
            declared
            or params.get("model")
            or (self.env.get("globals") or {}).get("model")
            or get_settings().default_model
        )

    # ── compilation ───────────────────────────────────────────────────────────

    def validate(self, description: Any) -> ValidationResult:
        return validate(description, self.registry, self.router_kinds)

    def compile(self, description: dict[str, Any]) -> CompiledGraph:
        """Validate *description* and build its Flow.  Raises ConfigError."""
        result = self.validate(description)
        if not result:
            _log.error("Graph description rejected: %s", "; ".join(result.errors))
            raise ConfigError(result.errors)

        async_llm = is_async_llm(self.env.get("llm"))
        nodes: dict[str, Node] = {}
        for spec in description["nodes"]:
            factory = self.registry.get(spec["kind"])
            if factory is None:
                raise ConfigError(f"Unknown node kind: {spec['kind']}")
            if async_llm:
                factory = ASYNC_LLM_VARIANTS.get(factory, factory)
            node = factory(spec, self)
            if not isinstance(node, Node):
                raise ConfigError(
                    f"Factory for kind '{spec['kind']}' returned {type(node).__name__}, not a Node"
                )
            nodes[spec["id"]] = node

        for edge in description["edges"]:
            src, dst = nodes.get(edge["from"]), nodes.get(edge["to"])
            if src is None or dst is None:
                raise ConfigError(f"Edge references missing node: {edge['from']} -> {edge['to']}")
            src.then(edge.get("label") or DEFAULT_ACTION, dst)

        start = nodes.get(description["entry"])
        if start is None:
            raise ConfigError(f"Entry node not found: {description['entry']}")

        has_async = any(isinstance(n, AsyncNode) for n in nodes.values())
        flow_cls = AsyncFlow if has_async else Flow
        flow = flow_cls(
            start=start,
            flow_name=description.get("name") or description["entry"],
            diagnostics=self.diagnostics,
        )
        flow.set_params({**(self.env.get("globals") or {}), **(description.get("globals") or {})})

        _log.info(
            "Compiled graph  entry=%s  nodes=%d  edges=%d  flow=%s",
            description["entry"], len(nodes), len(description["edges"]), flow_cls.__name__,
        )
        return CompiledGraph(flow=flow, nodes=nodes, description=description,
                             diagnostics=self.diagnostics)
