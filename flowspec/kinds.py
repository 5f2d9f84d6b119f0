"""flowspec node kinds — one runtime Node class per declarable ``kind``.

Each class is built from a NodeSpec (the dict declared in a graph
description) plus the :class:`~flowspec.compiler.Compiler` that owns the
collaborators and the template evaluator:

    node = LLMCallNode(spec, compiler)

The Compiler's registry maps kind names to these constructors (or to any
other ``factory(spec, compiler) -> Node``).

    kind                  base                     exec
    ────────────────────  ───────────────────────  ─────────────────────────────
    llm-call              Node                     LLM collaborator → {text, meta}
    http-call             Node                     HTTP collaborator → {status, data, headers}
    router                Node                     identity; post picks the first true case
    static-data           Node                     the declared ``exec`` payload
    batch                 BatchNode                per element, sequentially
    cooperative           AsyncNode                like llm-call, cooperatively
    cooperative-parallel  AsyncParallelBatchNode   per element, all at once

When the LLM collaborator is async, the compiler builds llm-call and batch
nodes from their cooperative counterparts (:data:`ASYNC_LLM_VARIANTS`).

Common ``post`` behaviour: store this node's exec result under
``_last_result``, write every ``post.outputs.save`` entry, return
``post.next`` (or ``None`` → ``"default"``).  Routers instead return the
label of their first matching case.

``loop_guard.max_iterations`` is enforced by the node: once it has run that
many times against one shared context, further visits skip the lifecycle
and return ``loop_guard.exit`` (default ``"loop_exit"``; left unwired it ends
the flow, even when the node has a ``default`` edge back into the cycle).
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

from flowspec.collaborators import call_llm, call_llm_async
from flowspec.diagnostics import LOOP_GUARD
from flowspec.logging import get_logger
from flowspec.node import (
    LOOP_EXIT_ACTION,
    AsyncBatchNode,
    AsyncNode,
    AsyncParallelBatchNode,
    BatchNode,
    Node,
)
from flowspec.store import LAST_RESULT_KEY, Store, get_path, set_path

if TYPE_CHECKING:
    from flowspec.compiler import Compiler

_log = get_logger("kinds")

VISITS_KEY = "_visits"
DEFAULT_INPUT_PATH = "items"


class SpecNode:
    """Mixin shared by every compiled node: templates, saves, loop guard."""

    kind = ""

    def __init__(self, spec: dict[str, Any], compiler: "Compiler"):
        retry = spec.get("retry") or {}
        super().__init__(
            max_retries=retry.get("max", 1),
            retry_delay=retry.get("wait", 0),
            retry_backoff=retry.get("backoff"),
            name=spec["id"],
            diagnostics=compiler.diagnostics,
        )
        self.spec = spec
        self.node_id = spec["id"]
        self.compiler = compiler
        self.evaluator = compiler.evaluator
        self.exec_spec: dict[str, Any] = spec.get("exec") or {}
        self.prep_spec: dict[str, Any] = spec.get("prep") or {}
        self.post_spec: dict[str, Any] = spec.get("post") or {}
        guard = spec.get("loop_guard") or {}
        self.max_iterations: int | None = guard.get("max_iterations")
        self.guard_exit: str = guard.get("exit") or LOOP_EXIT_ACTION

    # ── templates ─────────────────────────────────────────────────────────────

    def context(self, shared: Any, result: Any = None, **extra: Any) -> dict[str, Any]:
        ctx = {"ctx": shared, "result": result, "params": self.params}
        ctx.update(extra)
        return ctx

    def prior_context(self, shared: Any, **extra: Any) -> dict[str, Any]:
        """Template context for prep: ``result`` is the previous node's result."""
        return self.context(shared, shared.get(LAST_RESULT_KEY), **extra)

    def render(self, template: Any, context: dict[str, Any]) -> Any:
        return self.evaluator.interpolate(template, context, node=self.node_id)

    def model(self) -> str:
        return self.compiler.resolve_model(self.exec_spec.get("model"), self.params)

    # ── post ──────────────────────────────────────────────────────────────────

    def save_outputs(self, shared: Any, exec_result: Any) -> None:
        saves = (self.post_spec.get("outputs") or {}).get("save") or []
        context = self.context(shared, exec_result, exec=exec_result)
        for save in saves:
            template = save.get("value", save.get("valueTemplate"))
            value = self.evaluator.render_value(template, context, node=self.node_id)
            set_path(shared, save["path"], value)

    def finish(self, shared: Any, exec_result: Any) -> str | None:
        shared[LAST_RESULT_KEY] = exec_result
        self.save_outputs(shared, exec_result)
        self.record_visit(shared)
        return self.post_spec.get("next") or None

    # ── loop guard ────────────────────────────────────────────────────────────

    def visits(self, shared: Any) -> int:
        return (shared.get(VISITS_KEY) or {}).get(self.node_id, 0)

    def record_visit(self, shared: Any) -> None:
        if self.max_iterations is None:
            return
        counts = dict(shared.get(VISITS_KEY) or {})
        counts[self.node_id] = counts.get(self.node_id, 0) + 1
        shared[VISITS_KEY] = counts

    def guard_tripped(self, shared: Any) -> bool:
        if self.max_iterations is None or self.visits(shared) < self.max_iterations:
            return False
        self.diagnostics.emit(
            LOOP_GUARD,
            f"Node '{self.node_id}' reached loop_guard.max_iterations="
            f"{self.max_iterations}; returning {self.guard_exit!r}",
            node=self.node_id,
            max_iterations=self.max_iterations,
        )
        return True

    def _run(self, shared: Any) -> str | None:
        if not isinstance(self, AsyncNode) and self.guard_tripped(shared):
            return self.guard_exit
        return super()._run(shared)

    async def _run_async(self, shared: Any) -> str | None:
        if self.guard_tripped(shared):
            return self.guard_exit
        return await super()._run_async(shared)


# ── llm-call ──────────────────────────────────────────────────────────────────

class LLMCallNode(SpecNode, Node):
    kind = "llm-call"

    def prep(self, shared):
        llm = self.compiler.llm(self.node_id)
        prompt = self.render(self.exec_spec.get("prompt", ""), self.prior_context(shared))
        return {"prompt": prompt, "model": self.model(), "llm": llm}

    def exec(self, prep_result):
        return call_llm(prep_result["llm"], prep_result["prompt"], prep_result["model"])

    def post(self, shared, prep_result, exec_result):
        return self.finish(shared, exec_result)


# ── http-call ─────────────────────────────────────────────────────────────────

class HTTPCallNode(SpecNode, Node):
    kind = "http-call"

    def prep(self, shared):
        http = self.compiler.http(self.node_id)
        context = self.prior_context(shared)
        render_value = self.evaluator.render_value
        return {
            "http": http,
            "url": self.render(self.exec_spec.get("url", ""), context),
            "method": str(self.exec_spec.get("method", "GET")).upper(),
            "headers": render_value(self.exec_spec.get("headers") or {}, context, self.node_id),
            "body": render_value(self.exec_spec.get("body") or {}, context, self.node_id),
        }

    def exec(self, prep_result):
        _log.info("Node '%s' %s %s", self.node_id, prep_result["method"], prep_result["url"])
        return prep_result["http"].fetch(
            prep_result["url"],
            method=prep_result["method"],
            headers=prep_result["headers"],
            body=prep_result["body"] if prep_result["method"] != "GET" else None,
        )

    def post(self, shared, prep_result, exec_result):
        return self.finish(shared, exec_result)


# ── router ────────────────────────────────────────────────────────────────────

class RouterNode(SpecNode, Node):
    """Evaluates ``exec.cases`` in declared order; first true case wins.

    A case without ``when`` (or with ``when: "true"``) is a catch-all.
    No match returns ``None``.
    """

    kind = "router"

    def prep(self, shared):
        return dict(shared.as_dict() if isinstance(shared, Store) else shared)

    def exec(self, prep_result):
        return prep_result

    def post(self, shared, prep_result, exec_result):
        self.record_visit(shared)
        context = self.prior_context(shared)
        for case in self.exec_spec.get("cases") or []:
            when = case.get("when")
            if when is None or self.evaluator.condition(when, context, node=self.node_id):
                _log.debug("Router '%s' → %s", self.node_id, case.get("label"))
                return case.get("label")
        _log.debug("Router '%s': no case matched", self.node_id)
        return None


# ── static-data ───────────────────────────────────────────────────────────────

class StaticDataNode(SpecNode, Node):
    kind = "static-data"

    def prep(self, shared):
        return None

    def exec(self, prep_result):
        return copy.deepcopy(self.exec_spec)

    def post(self, shared, prep_result, exec_result):
        return self.finish(shared, exec_result)


# ── batch / cooperative-parallel ──────────────────────────────────────────────

class _ItemsMixin:
    """prep for batch kinds: one work order per element of the input list.

    With ``exec.prompt`` each element becomes an LLM call whose template sees
    the element as ``item``; without it the element passes through unchanged.
    """

    def input_path(self) -> str:
        inputs = self.prep_spec.get("inputs") or []
        if inputs and isinstance(inputs[0], dict) and inputs[0].get("path"):
            return inputs[0]["path"]
        return self.prep_spec.get("path") or DEFAULT_INPUT_PATH

    def work_orders(self, shared: Any) -> list[dict[str, Any]]:
        items = get_path(shared, self.input_path())
        if items is None:
            items = []
        elif isinstance(items, dict):
            items = list(items.values())
        elif not isinstance(items, list):
            items = list(items) if isinstance(items, tuple) else [items]
        prompt = self.exec_spec.get("prompt")
        if prompt is None:
            return [{"item": item} for item in items]
        llm = self.compiler.llm(self.node_id)
        model = self.model()
        return [
            {
                "item": item,
                "llm": llm,
                "model": model,
                "prompt": self.render(prompt, self.prior_context(shared, item=item)),
            }
            for item in items
        ]


class BatchMapNode(_ItemsMixin, SpecNode, BatchNode):
    kind = "batch"

    def prep(self, shared):
        return self.work_orders(shared)

    def exec(self, order):
        if "prompt" not in order:
            return order["item"]
        return call_llm(order["llm"], order["prompt"], order["model"])

    def post(self, shared, prep_result, exec_result):
        return self.finish(shared, exec_result)


class CooperativeBatchNode(_ItemsMixin, SpecNode, AsyncBatchNode):
    """``batch`` compiled against an async LLM: one element at a time, awaited."""

    kind = "batch"

    async def prep_async(self, shared):
        return self.work_orders(shared)

    async def exec_async(self, order):
        if "prompt" not in order:
            return order["item"]
        return await call_llm_async(order["llm"], order["prompt"], order["model"])

    async def post_async(self, shared, prep_result, exec_result):
        return self.finish(shared, exec_result)


class CooperativeParallelNode(_ItemsMixin, SpecNode, AsyncParallelBatchNode):
    kind = "cooperative-parallel"

    async def prep_async(self, shared):
        return self.work_orders(shared)

    async def exec_async(self, order):
        if "prompt" not in order:
            return order["item"]
        return await call_llm_async(order["llm"], order["prompt"], order["model"])

    async def post_async(self, shared, prep_result, exec_result):
        return self.finish(shared, exec_result)


# ── cooperative ───────────────────────────────────────────────────────────────

class CooperativeLLMNode(SpecNode, AsyncNode):
    kind = "cooperative"

    async def prep_async(self, shared):
        llm = self.compiler.llm(self.node_id)
        prompt = self.render(self.exec_spec.get("prompt", ""), self.prior_context(shared))
        return {"prompt": prompt, "model": self.model(), "llm": llm}

    async def exec_async(self, prep_result):
        return await call_llm_async(prep_result["llm"], prep_result["prompt"], prep_result["model"])

    async def post_async(self, shared, prep_result, exec_result):
        return self.finish(shared, exec_result)


BUILTIN_KINDS: dict[str, type] = {
    "llm-call": LLMCallNode,
    "http-call": HTTPCallNode,
    "router": RouterNode,
    "static-data": StaticDataNode,
    "batch": BatchMapNode,
    "cooperative": CooperativeLLMNode,
    "cooperative-parallel": CooperativeParallelNode,
}

# Short names used by pf-js/1.0 descriptions.
KIND_ALIASES: dict[str, str] = {
    "llm": "llm-call",
    "http": "http-call",
    "data": "static-data",
    "async": "cooperative",
    "parallel": "cooperative-parallel",
}

BUILTIN_KINDS.update({alias: BUILTIN_KINDS[target] for alias, target in KIND_ALIASES.items()})

# Kinds that call the LLM synchronously, and what they compile to when the
# LLM collaborator is async.
ASYNC_LLM_VARIANTS: dict[type, type] = {
    LLMCallNode: CooperativeLLMNode,
    BatchMapNode: CooperativeBatchNode,
}
