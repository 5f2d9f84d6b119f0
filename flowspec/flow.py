"""flowspec Flow — walks a graph of Nodes against a shared context.

Design
------
Flow takes a start Node and runs the graph by:
  1. Running the current node's prep → exec → post lifecycle → label
  2. Looking up node.next_node(label) (``None`` means ``"default"``)
  3. Repeating until there is no successor (normal termination)

The flow's own result is the last label produced.  A Flow is itself a Node,
so flows nest as successors inside larger graphs.

There is no visited-node tracking: cycles are legal and ending them is the
graph author's job.  ``max_steps`` is an opt-in safety limit (off by default).

Nodes are never copied during traversal.  The run's parameters live in a
context-local value that every node reads through ``node.params``.

Hooks (observability)
---------------------
    flow.on("node_start",  lambda name, shared: ...)
    flow.on("node_end",    lambda name, action, elapsed, shared: ...)
    flow.on("node_error",  lambda name, exc, shared: ...)
    flow.on("flow_end",    lambda steps, shared: ...)

Variants
--------
BatchFlow               prep() returns a list of param dicts; the sub-graph
                        runs once per dict, sequentially
AsyncFlow               cooperative traversal; runs sync and async nodes
AsyncBatchFlow          cooperative, one sub-run after another
AsyncParallelBatchFlow  cooperative, all sub-runs at once
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

from flowspec.diagnostics import FLOW_ENDS, Diagnostics
from flowspec.logging import get_logger
from flowspec.node import AsyncNode, Node, _run_params

_log = get_logger("flow")

# Hook event names
_VALID_HOOKS = {"node_start", "node_end", "node_error", "flow_end"}


class Flow(Node):
    """Execute a directed graph of Nodes against a shared context.

    Parameters
    ----------
    start :
        The first Node to run.
    max_steps :
        If set, raise RuntimeError once this many nodes have run in a single
        traversal.  ``None`` (default) means no limit.
    flow_name :
        Human-readable label used in log messages.

    Example
    -------
    >>> shared = {"user_input": "hello"}
    >>> flow = Flow(start=my_node, flow_name="demo")
    >>> flow.on("node_end", lambda name, action, elapsed, s: print(f"{name} → {action}"))
    >>> flow.run(shared)
    """

    def __init__(
        self,
        start: Node | None = None,
        max_steps: int | None = None,
        flow_name: str | None = None,
        diagnostics: Diagnostics | None = None,
    ):
        super().__init__(name=flow_name, diagnostics=diagnostics)
        self.start = start
        self.max_steps = max_steps
        if flow_name is None and start is not None:
            self.name = f"{self.__class__.__name__}({start.name})"
        self._hooks: dict[str, list[Callable]] = {k: [] for k in _VALID_HOOKS}

    def start_at(self, node: Node) -> Node:
        """Set the start node and return it."""
        self.start = node
        return node

    # ── Hook registration ─────────────────────────────────────────────────────

    def on(self, event: str, callback: Callable) -> "Flow":
        """Register *callback* for *event*.  Returns self for chaining."""
        if event not in _VALID_HOOKS:
            raise ValueError(f"Unknown hook event '{event}'. Valid: {_VALID_HOOKS}")
        self._hooks[event].append(callback)
        return self

    def _fire(self, event: str, *args) -> None:
        for cb in self._hooks[event]:
            try:
                cb(*args)
            except Exception as e:
                _log.warning("Hook '%s' raised: %s", event, e)

    # ── Traversal ─────────────────────────────────────────────────────────────

    def get_next_node(self, curr: Node, action: str | None) -> Node | None:
        nxt = curr.next_node(action)
        if nxt is None and curr.successors:
            self.diagnostics.emit(
                FLOW_ENDS,
                f"Flow ends: '{action}' not found in {list(curr.successors)}",
                node=curr.name,
                action=action,
            )
        return nxt

    def _check_steps(self, step: int) -> None:
        if self.max_steps is not None and step >= self.max_steps:
            raise RuntimeError(
                f"Flow exceeded max_steps={self.max_steps}. "
                "Check for infinite loops or increase max_steps."
            )

    def _orch(self, shared: Any, params: dict | None = None) -> str | None:
        if self.start is None:
            raise RuntimeError(f"Flow '{self.name}' has no start node")
        token = _run_params.set(dict(params if params is not None else self.params))
        try:
            current: Node | None = self.start
            action: str | None = None
            step = 0
            while current is not None:
                self._check_steps(step)
                self._fire("node_start", current.name, shared)
                node_t0 = time.time()
                try:
                    action = current._run(shared)
                except Exception as exc:
                    self._fire("node_error", current.name, exc, shared)
                    _log.error("Flow '%s' aborted at node '%s': %s", self.name, current.name, exc)
                    raise
                self._fire("node_end", current.name, action, time.time() - node_t0, shared)
                step += 1
                current = self.get_next_node(current, action)
            self._fire("flow_end", step, shared)
            return action
        finally:
            _run_params.reset(token)

    def _run(self, shared: Any) -> str | None:
        prep_result = self.prep(shared)
        orch_result = self._orch(shared)
        return self.post(shared, prep_result, orch_result)

    def post(self, shared: Any, prep_result: Any, exec_result: Any) -> str | None:
        return exec_result

    def run(self, shared: Any) -> str | None:
        """Run the flow until it terminates.  Returns the last label.

        *shared* is a Store or any mutable mapping; it is mutated in place.
        """
        t0 = time.time()
        _log.info("Flow '%s' starting  start=%s", self.name, self.start.name if self.start else "none")
        action = self._run(shared)
        _log.info("Flow '%s' complete  result=%s  total=%.2fs", self.name, action, time.time() - t0)
        return action


class BatchFlow(Flow):
    """Run the whole sub-graph once per param dict returned by prep()."""

    def _run(self, shared: Any) -> str | None:
        batches = self.prep(shared) or []
        for batch_params in batches:
            self._orch(shared, {**self.params, **batch_params})
        return self.post(shared, batches, None)


class AsyncFlow(Flow, AsyncNode):
    """Cooperative flow: awaits AsyncNodes, runs plain Nodes inline."""

    async def prep_async(self, shared: Any) -> Any:
        return None

    async def post_async(self, shared: Any, prep_result: Any, exec_result: Any) -> str | None:
        return exec_result

    async def _orch_async(self, shared: Any, params: dict | None = None) -> str | None:
        if self.start is None:
            raise RuntimeError(f"Flow '{self.name}' has no start node")
        token = _run_params.set(dict(params if params is not None else self.params))
        try:
            current: Node | None = self.start
            action: str | None = None
            step = 0
            while current is not None:
                self._check_steps(step)
                self._fire("node_start", current.name, shared)
                node_t0 = time.time()
                try:
                    if isinstance(current, AsyncNode):
                        action = await current._run_async(shared)
                    else:
                        action = current._run(shared)
                except Exception as exc:
                    self._fire("node_error", current.name, exc, shared)
                    _log.error("Flow '%s' aborted at node '%s': %s", self.name, current.name, exc)
                    raise
                self._fire("node_end", current.name, action, time.time() - node_t0, shared)
                step += 1
                current = self.get_next_node(current, action)
            self._fire("flow_end", step, shared)
            return action
        finally:
            _run_params.reset(token)

    async def _run_async(self, shared: Any) -> str | None:
        prep_result = await self.prep_async(shared)
        orch_result = await self._orch_async(shared)
        return await self.post_async(shared, prep_result, orch_result)

    async def run_async(self, shared: Any) -> str | None:
        t0 = time.time()
        _log.info("Flow '%s' starting  start=%s", self.name, self.start.name if self.start else "none")
        action = await self._run_async(shared)
        _log.info("Flow '%s' complete  result=%s  total=%.2fs", self.name, action, time.time() - t0)
        return action

    def _run(self, shared: Any) -> str | None:
        raise RuntimeError("Use run_async.")

    def run(self, shared: Any) -> str | None:
        """Blocking convenience wrapper: ``asyncio.run(self.run_async(shared))``."""
        return asyncio.run(self.run_async(shared))


class AsyncBatchFlow(AsyncFlow):
    """Cooperative batch flow: sub-runs happen one after another."""

    async def _run_async(self, shared: Any) -> str | None:
        batches = await self.prep_async(shared) or []
        for batch_params in batches:
            await self._orch_async(shared, {**self.params, **batch_params})
        return await self.post_async(shared, batches, None)


class AsyncParallelBatchFlow(AsyncFlow):
    """Cooperative batch flow: all sub-runs are started together."""

    async def _run_async(self, shared: Any) -> str | None:
        batches = await self.prep_async(shared) or []
        await asyncio.gather(
            *(self._orch_async(shared, {**self.params, **bp}) for bp in batches)
        )
        return await self.post_async(shared, batches, None)
