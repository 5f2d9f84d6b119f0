"""flowspec Node — the prep | exec | post unit of every graph step.

Design
------
Every Node is a three-phase processing unit:

    prep(shared)              → read what this node needs from the shared context
    exec(prep_result)         → do the work (no shared-context side effects)
    post(shared, prep, exec)  → write results back, return the next label

``post`` may return ``None``; the enclosing Flow then follows the
``"default"`` edge.

Edge wiring:
    node.then("label", next_node)   — named edge
    node.then("*", fallback_node)   — wildcard: matches any unhandled label

Retry
-----
Set max_retries > 1 to retry exec() on exception.  The node is NOT re-run
from prep() — only exec() is retried.  Between attempts the node waits
``retry_delay`` seconds (``retry_backoff="exponential"`` doubles the wait on
each further attempt).  After the last failed attempt ``exec_fallback`` runs
once; by default it re-raises.

Variants
--------
BatchNode               exec() applied to each element of prep()'s list, in order
AsyncNode               cooperative lifecycle: prep_async / exec_async / post_async
AsyncBatchNode          cooperative, elements one at a time
AsyncParallelBatchNode  cooperative, all elements at once via asyncio.gather;
                        results still come back in input order

Per-run parameters
------------------
``node.params`` is resolved from the enclosing flow run (a context-local
value), so the same node object can take part in concurrent runs with
different parameters without being copied.
"""

from __future__ import annotations

import asyncio
import contextvars
import time
from typing import Any

from flowspec.diagnostics import SUCCESSOR_OVERWRITE, SUCCESSORS_IGNORED, Diagnostics
from flowspec.logging import get_logger

_log = get_logger("node")

DEFAULT_ACTION = "default"
WILDCARD_ACTION = "*"
# returned by a compiled node whose loop guard has tripped
LOOP_EXIT_ACTION = "loop_exit"

BACKOFF_FIXED = "fixed"
BACKOFF_EXPONENTIAL = "exponential"

# Parameters of the flow run currently executing in this context.
_run_params: contextvars.ContextVar[dict | None] = contextvars.ContextVar(
    "flowspec_run_params", default=None
)


class Node:
    """Base class for all synchronous flowspec nodes.

    Subclass and override any of prep(), exec(), post().

    Attributes
    ----------
    max_retries :
        How many times to attempt exec() before falling back.  Default 1.
    retry_delay :
        Seconds to wait between attempts.  Default 0.
    retry_backoff :
        ``"fixed"`` (default) or ``"exponential"``.
    """

    max_retries: int = 1
    retry_delay: float = 0.0
    retry_backoff: str = BACKOFF_FIXED

    def __init__(
        self,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        *,
        retry_backoff: str | None = None,
        name: str | None = None,
        diagnostics: Diagnostics | None = None,
    ):
        if max_retries is not None:
            self.max_retries = max_retries
        if retry_delay is not None:
            self.retry_delay = retry_delay
        if retry_backoff is not None:
            self.retry_backoff = retry_backoff
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.retry_delay < 0:
            raise ValueError(f"retry_delay must be >= 0, got {self.retry_delay}")
        if self.retry_backoff not in (BACKOFF_FIXED, BACKOFF_EXPONENTIAL):
            raise ValueError(f"Unknown retry_backoff '{self.retry_backoff}'")

        # label → Node mapping; populated by .then()
        self._successors: dict[str, "Node"] = {}
        self._params: dict[str, Any] = {}
        self.name = name or self.__class__.__name__
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.cur_retry = 0

    # ── Params ────────────────────────────────────────────────────────────────

    @property
    def params(self) -> dict[str, Any]:
        run = _run_params.get()
        return run if run is not None else self._params

    def set_params(self, params: dict[str, Any]) -> None:
        self._params = dict(params or {})

    # ── Wiring API ────────────────────────────────────────────────────────────

    @property
    def successors(self) -> dict[str, "Node"]:
        return dict(self._successors)

    def then(self, action: str, node: "Node") -> "Node":
        """Wire this node to *node* when *action* is returned by post().

        Use "*" as action to match any action not covered by a named edge.

        Returns self so calls can be chained:
            a.then("ok", b).then("error", c)
        """
        if not isinstance(action, str):
            raise TypeError(f"Action must be a string, got {type(action).__name__}")
        if action in self._successors:
            self.diagnostics.emit(
                SUCCESSOR_OVERWRITE,
                f"Node '{self.name}': overwriting existing edge for action '{action}'",
                node=self.name,
                action=action,
            )
        self._successors[action] = node
        return self

    def next_node(self, action: str | None) -> "Node | None":
        """Return the successor for *action*, or None if the flow terminates."""
        node = self._successors.get(action or DEFAULT_ACTION)
        if node is None and WILDCARD_ACTION in self._successors:
            node = self._successors[WILDCARD_ACTION]
            _log.debug("Node '%s': action '%s' matched wildcard edge", self.name, action)
        return node

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def prep(self, shared: Any) -> Any:
        """Read inputs from the shared context.  Override as needed."""
        return None

    def exec(self, prep_result: Any) -> Any:
        """Do the actual work.  Must not write to the shared context."""
        return None

    def exec_fallback(self, prep_result: Any, exc: Exception) -> Any:
        """Called once after the final failed attempt.  Default: re-raise."""
        raise exc

    def post(self, shared: Any, prep_result: Any, exec_result: Any) -> str | None:
        """Write results to the shared context and return the next label."""
        return None

    # ── Internal runner (called by Flow) ─────────────────────────────────────

    def _retry_wait(self, attempt: int) -> float:
        if self.retry_backoff == BACKOFF_EXPONENTIAL:
            return self.retry_delay * (2 ** (attempt - 1))
        return self.retry_delay

    def _exec(self, prep_result: Any) -> Any:
        for attempt in range(1, self.max_retries + 1):
            self.cur_retry = attempt - 1
            try:
                return self.exec(prep_result)
            except Exception as exc:
                if attempt == self.max_retries:
                    _log.error(
                        "Node '%s' exec failed after %d attempt(s): %s",
                        self.name, self.max_retries, exc,
                    )
                    return self.exec_fallback(prep_result, exc)
                wait = self._retry_wait(attempt)
                _log.warning(
                    "Node '%s' exec attempt %d/%d failed: %s — retrying in %.1fs",
                    self.name, attempt, self.max_retries, exc, wait,
                )
                if wait > 0:
                    time.sleep(wait)

    def _run(self, shared: Any) -> str | None:
        """Execute prep → exec (with retries) → post.  Return the label."""
        t0 = time.time()
        _log.info("→ Node '%s' starting", self.name)
        prep_result = self.prep(shared)
        exec_result = self._exec(prep_result)
        action = self.post(shared, prep_result, exec_result)
        _log.info(
            "← Node '%s' done  action='%s'  %.2fs", self.name, action, time.time() - t0
        )
        return action

    def run(self, shared: Any) -> str | None:
        """Run this node alone, ignoring successors.  Use a Flow to follow edges."""
        if self._successors:
            self.diagnostics.emit(
                SUCCESSORS_IGNORED,
                f"Node '{self.name}' won't run successors. Use Flow.",
                node=self.name,
            )
        return self._run(shared)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


class BatchNode(Node):
    """prep() returns a list; exec() runs once per element, sequentially.

    Each element gets the full retry policy before the batch fails.
    """

    def _exec(self, items: Any) -> list:
        return [super(BatchNode, self)._exec(item) for item in (items or [])]


class AsyncNode(Node):
    """Cooperative node: each lifecycle stage may suspend.

    Subclass and override prep_async(), exec_async(), post_async().
    Run inside an AsyncFlow, or standalone via ``await node.run_async(shared)``.

    Example
    -------
    class FetchNode(AsyncNode):
        async def prep_async(self, shared):
            return shared["url"]

        async def exec_async(self, url):
            return await fetch(url)
    """

    async def prep_async(self, shared: Any) -> Any:
        return None

    async def exec_async(self, prep_result: Any) -> Any:
        return None

    async def exec_fallback_async(self, prep_result: Any, exc: Exception) -> Any:
        raise exc

    async def post_async(self, shared: Any, prep_result: Any, exec_result: Any) -> str | None:
        return None

    async def _exec(self, prep_result: Any) -> Any:
        for attempt in range(1, self.max_retries + 1):
            self.cur_retry = attempt - 1
            try:
                return await self.exec_async(prep_result)
            except Exception as exc:
                if attempt == self.max_retries:
                    _log.error(
                        "Node '%s' exec failed after %d attempt(s): %s",
                        self.name, self.max_retries, exc,
                    )
                    return await self.exec_fallback_async(prep_result, exc)
                wait = self._retry_wait(attempt)
                _log.warning(
                    "Node '%s' exec attempt %d/%d failed: %s — retrying in %.1fs",
                    self.name, attempt, self.max_retries, exc, wait,
                )
                if wait > 0:
                    await asyncio.sleep(wait)

    async def _run_async(self, shared: Any) -> str | None:
        t0 = time.time()
        _log.info("→ Node '%s' starting", self.name)
        prep_result = await self.prep_async(shared)
        exec_result = await self._exec(prep_result)
        action = await self.post_async(shared, prep_result, exec_result)
        _log.info(
            "← Node '%s' done  action='%s'  %.2fs", self.name, action, time.time() - t0
        )
        return action

    async def run_async(self, shared: Any) -> str | None:
        if self._successors:
            self.diagnostics.emit(
                SUCCESSORS_IGNORED,
                f"Node '{self.name}' won't run successors. Use AsyncFlow.",
                node=self.name,
            )
        return await self._run_async(shared)

    def _run(self, shared: Any) -> str | None:
        raise RuntimeError("Use run_async.")


class AsyncBatchNode(AsyncNode):
    """Cooperative batch: elements are executed one at a time, in order."""

    async def _exec(self, items: Any) -> list:
        results = []
        for item in items or []:
            results.append(await super(AsyncBatchNode, self)._exec(item))
        return results


class AsyncParallelBatchNode(AsyncNode):
    """Cooperative batch: all elements start together; results keep input order.

    exec_async() only ever sees one element, never the shared context; write
    aggregated state once, in post_async().
    """

    async def _exec(self, items: Any) -> list:
        return list(
            await asyncio.gather(
                *(super(AsyncParallelBatchNode, self)._exec(item) for item in (items or []))
            )
        )
