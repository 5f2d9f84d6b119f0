"""flowspec collaborators — the LLM and HTTP boundaries.

The engine never talks to a model or the network itself.  Compiled
``llm-call`` / ``cooperative`` nodes use whatever object is passed as
``env["llm"]``; ``http-call`` nodes use ``env["http"]``.

LLM collaborator
----------------
Any object with ``call(prompt=..., model=...)``.  It may be sync or async
and may return:
  • ``{"text": ..., "meta": {...}}``
  • a plain string (wrapped as ``{"text": s, "meta": {}}``)
  • a response object with ``content`` / ``success`` attributes

HTTP collaborator
-----------------
Any object with ``fetch(url, method=, headers=, body=)`` returning
``{"status", "data", "headers"}``.  :class:`RequestsHTTPClient` is a ready
implementation built on ``requests``.
"""

from __future__ import annotations

import inspect
from typing import Any, Protocol, runtime_checkable

import requests

from flowspec.config import get_settings
from flowspec.errors import ExecutionError
from flowspec.logging import get_logger

_log = get_logger("collaborators")


@runtime_checkable
class LLMClient(Protocol):
    def call(self, *, prompt: str, model: str) -> Any: ...


@runtime_checkable
class HTTPClient(Protocol):
    def fetch(self, url: str, *, method: str = "GET", headers: dict | None = None,
              body: Any = None) -> dict: ...


def normalize_llm_reply(reply: Any) -> dict[str, Any]:
    """Coerce whatever an LLM collaborator returned into ``{"text", "meta"}``."""
    if isinstance(reply, dict):
        if "text" not in reply:
            raise ExecutionError(f"LLM collaborator reply has no 'text': {list(reply)}")
        return {"text": reply["text"], "meta": reply.get("meta") or {}}
    if isinstance(reply, str):
        return {"text": reply, "meta": {}}
    if reply is not None and hasattr(reply, "content"):
        if getattr(reply, "success", True) is False:
            history = getattr(reply, "error_history", None) or []
            last = history[-1]["error"] if history else "unknown error"
            raise ExecutionError(f"LLM call failed: {last}")
        meta = {k: getattr(reply, k) for k in ("provider", "model", "attempts") if hasattr(reply, k)}
        return {"text": reply.content, "meta": meta}
    raise ExecutionError(f"LLM collaborator returned nothing usable: {reply!r}")


def call_llm(llm: Any, prompt: str, model: str) -> dict[str, Any]:
    """Synchronous call; rejects async collaborators."""
    reply = llm.call(prompt=prompt, model=model)
    if inspect.isawaitable(reply):
        if hasattr(reply, "close"):
            reply.close()
        raise ExecutionError(
            "LLM collaborator is async; use a cooperative node kind to call it"
        )
    return normalize_llm_reply(reply)


def is_async_llm(llm: Any) -> bool:
    """True when *llm*'s ``call`` is a coroutine function."""
    return inspect.iscoroutinefunction(getattr(llm, "call", None))


async def call_llm_async(llm: Any, prompt: str, model: str) -> dict[str, Any]:
    """Cooperative call; awaits the reply when the collaborator is async."""
    reply = llm.call(prompt=prompt, model=model)
    if inspect.isawaitable(reply):
        reply = await reply
    return normalize_llm_reply(reply)


class RequestsHTTPClient:
    """HTTP collaborator backed by a ``requests.Session``.

    Parameters
    ----------
    timeout :
        Seconds per request.  Defaults to ``FLOWSPEC_HTTP_TIMEOUT``.
    session :
        Optional pre-configured session (auth, proxies, retries).
    """

    def __init__(self, timeout: float | None = None, session: requests.Session | None = None):
        self.timeout = timeout if timeout is not None else get_settings().http_timeout
        self.session = session or requests.Session()

    def fetch(self, url: str, *, method: str = "GET", headers: dict | None = None,
              body: Any = None) -> dict:
        method = (method or "GET").upper()
        payload = body if method != "GET" else None
        _log.debug("http %s %s", method, url)
        try:
            resp = self.session.request(
                method, url, headers=headers or {}, json=payload, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise ExecutionError(f"HTTP {method} {url} failed: {exc}") from exc
        try:
            data = resp.json()
        except ValueError:
            data = {}
        return {"status": resp.status_code, "data": data, "headers": dict(resp.headers)}
