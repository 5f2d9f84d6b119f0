"""flowspec MetaCreator — build a graph from a natural-language request.

The request is sent to an LLM collaborator together with an example of the
graph-description format.  The reply is untrusted: the first well-formed
JSON object in it is extracted and passed through Validator → Compiler.
Nothing runs unless both succeed.

    creator = MetaCreator(llm)
    outcome = creator.create("Summarise ctx.text in one sentence")
    if outcome.success:
        outcome.compiled.run(shared)
    else:
        print(outcome.error)

``create`` never raises for bad model output; ``create_and_run`` raises
:class:`~flowspec.errors.GenerationError` because the caller asked for a run.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from flowspec.collaborators import call_llm, call_llm_async
from flowspec.compiler import CompiledGraph, Compiler
from flowspec.errors import ConfigError, ExecutionError, GenerationError
from flowspec.logging import get_logger

_log = get_logger("meta")

EXAMPLE_DESCRIPTION: dict[str, Any] = {
    "version": "pf-js/1.0",
    "entry": "input",
    "globals": {"model": "gpt-4o-mini"},
    "nodes": [
        {"id": "input", "kind": "static-data", "post": {"next": "summarize"}},
        {
            "id": "summarize",
            "kind": "llm-call",
            "exec": {"prompt": "Summarize: {{ctx.text}}"},
            "post": {
                "outputs": {"save": [{"path": "summary", "value": "{{result.text}}"}]},
                "next": "output",
            },
        },
        {"id": "output", "kind": "static-data"},
    ],
    "edges": [
        {"from": "input", "to": "summarize", "label": "summarize"},
        {"from": "summarize", "to": "output", "label": "output"},
    ],
}

PROMPT_TEMPLATE = """Create a flowspec graph description (JSON) for: "{request}"

Use this EXACT structure:
{example}

Rules:
- "version" must be "pf-js/1.0".
- Allowed node kinds: {kinds}.
- Every edge label must be the "post.next" of its "from" node, one of its
  router case labels, or "default".
- Routers declare "exec": {{"cases": [{{"label": ..., "when": "<condition>"}}]}}.
{hints}
Return ONLY the JSON object, no other text."""


@dataclass
class GenerationResult:
    success: bool
    description: dict[str, Any] | None = None
    compiled: CompiledGraph | None = None
    error: str | None = None
    problems: list[str] = field(default_factory=list)
    reply: str = ""


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Return the first well-formed JSON object embedded in *text*, or None."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except ValueError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


class MetaCreator:
    """Generate, validate and compile graphs from free-text requests.

    Parameters
    ----------
    llm :
        LLM collaborator used both to write the graph and, by default, by
        the generated graph's llm nodes.
    compiler :
        Compiler used for the generated description.  Defaults to
        ``Compiler(env={"llm": llm})``.
    model :
        Model for the generation call.  Defaults to the compiler's default.
    """

    def __init__(self, llm: Any, *, compiler: Compiler | None = None, model: str | None = None):
        self.llm = llm
        self.compiler = compiler or Compiler(env={"llm": llm})
        self.model = model

    def build_prompt(self, request: str, hints: str = "") -> str:
        return PROMPT_TEMPLATE.format(
            request=request,
            example=json.dumps(EXAMPLE_DESCRIPTION, indent=2),
            kinds=", ".join(self.compiler.registered_kinds()),
            hints=f"- {hints}\n" if hints else "",
        )

    def _model(self, options: dict[str, Any]) -> str:
        return self.compiler.resolve_model(options.get("model") or self.model, {})

    def create(self, request: str, **options: Any) -> GenerationResult:
        """Ask the LLM for a graph and compile it.  Never raises for bad output."""
        prompt = self.build_prompt(request, options.get("hints", ""))
        try:
            reply = call_llm(self.llm, prompt, self._model(options))
        except (ExecutionError, ConnectionError, TimeoutError) as exc:
            _log.error("Generation call failed: %s", exc)
            return GenerationResult(success=False, error=f"LLM call failed: {exc}")
        return self._accept(reply["text"])

    async def create_async(self, request: str, **options: Any) -> GenerationResult:
        prompt = self.build_prompt(request, options.get("hints", ""))
        try:
            reply = await call_llm_async(self.llm, prompt, self._model(options))
        except (ExecutionError, ConnectionError, TimeoutError) as exc:
            _log.error("Generation call failed: %s", exc)
            return GenerationResult(success=False, error=f"LLM call failed: {exc}")
        return self._accept(reply["text"])

    def _accept(self, text: str) -> GenerationResult:
        description = extract_json_object(text or "")
        if description is None:
            _log.warning("No JSON object found in generator reply (%d chars)", len(text or ""))
            return GenerationResult(success=False, error="No valid JSON found in LLM response",
                                    reply=text)
        try:
            compiled = self.compiler.compile(description)
        except ConfigError as exc:
            return GenerationResult(success=False, description=description, error=str(exc),
                                    problems=exc.problems, reply=text)
        _log.info("Generated graph accepted  entry=%s  nodes=%d",
                  description["entry"], len(compiled.nodes))
        return GenerationResult(success=True, description=description, compiled=compiled,
                                reply=text)

    def create_and_run(self, request: str, shared: Any = None,
                       **options: Any) -> tuple[str | None, Any]:
        """Create a graph and run it.  Returns ``(last_label, shared)``."""
        outcome = self.create(request, **options)
        if not outcome.success:
            raise GenerationError(f"Failed to create graph: {outcome.error}")
        shared = {} if shared is None else shared
        return outcome.compiled.run(shared), shared

    async def create_and_run_async(self, request: str, shared: Any = None,
                                   **options: Any) -> tuple[str | None, Any]:
        outcome = await self.create_async(request, **options)
        if not outcome.success:
            raise GenerationError(f"Failed to create graph: {outcome.error}")
        shared = {} if shared is None else shared
        return await outcome.compiled.run_async(shared), shared
