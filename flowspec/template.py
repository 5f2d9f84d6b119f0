"""flowspec templates — ``{{ ... }}`` substitution and routing conditions.

A template is any string with zero or more ``{{ expr }}`` placeholders.
Each placeholder is evaluated against a small context:

    ctx     the shared context
    result  the previous node's result (inside ``post``: this node's exec result)
    exec    alias of ``result`` for a node's own exec result
    item    the current element inside a batch node
    params  the enclosing flow run's parameters

``expr`` is an expression in the restricted grammar of :mod:`flowspec.expr`:
a dotted path such as ``ctx.user.name`` (any missing segment gives
``undefined``), a comparison, or a helper call such as ``json(ctx.items)``.
Names other than the five above are an error.

Failures never abort a run: the placeholder is left in the output verbatim
and an ``evaluation_failed`` diagnostic is emitted.  Conditions that fail
evaluate to ``False`` (``condition_failed``).
"""

from __future__ import annotations

import re
from typing import Any, Mapping

from flowspec.diagnostics import CONDITION_FAILED, EVALUATION_FAILED, Diagnostics
from flowspec.errors import EvaluationError
from flowspec.expr import UNDEFINED, evaluate, stringify, truthy
from flowspec.logging import get_logger

_log = get_logger("template")

PLACEHOLDER_RE = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")


class Evaluator:
    """Evaluates placeholders and conditions; reports failures to *diagnostics*."""

    def __init__(self, diagnostics: Diagnostics | None = None):
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()

    @staticmethod
    def names(context: Mapping[str, Any]) -> dict[str, Any]:
        ctx = context.get("ctx")
        result = context.get("result")
        return {
            "ctx": ctx if ctx is not None else {},
            "result": result,
            "exec": context.get("exec", result),
            "item": context.get("item", UNDEFINED),
            "params": context.get("params") or {},
        }

    def evaluate(self, expr: str, context: Mapping[str, Any]) -> Any:
        """Evaluate one placeholder body.  Raises :class:`EvaluationError`."""
        return evaluate(expr.strip(), self.names(context))

    def interpolate(self, template: Any, context: Mapping[str, Any], node: str = "") -> Any:
        """Replace every placeholder in *template* with its stringified value.

        Non-string templates are returned unchanged.
        """
        if not isinstance(template, str):
            return template

        def _sub(match: re.Match) -> str:
            try:
                return stringify(self.evaluate(match.group(1), context))
            except EvaluationError as e:
                self.diagnostics.emit(
                    EVALUATION_FAILED,
                    f"Template interpolation failed for {match.group(0)!r}: {e.reason}",
                    node=node,
                    expr=match.group(1),
                )
                return match.group(0)

        return PLACEHOLDER_RE.sub(_sub, template)

    def render_value(self, template: Any, context: Mapping[str, Any], node: str = "") -> Any:
        """Like :meth:`interpolate`, but keeps the raw value of a lone placeholder.

        ``"{{ result }}"`` yields the result object itself (a list stays a
        list); ``"Hi {{ ctx.name }}"`` yields a string.  Dicts and lists are
        rendered element by element.
        """
        if isinstance(template, dict):
            return {k: self.render_value(v, context, node) for k, v in template.items()}
        if isinstance(template, list):
            return [self.render_value(v, context, node) for v in template]
        if not isinstance(template, str):
            return template
        match = PLACEHOLDER_RE.fullmatch(template.strip())
        if match is None:
            return self.interpolate(template, context, node)
        try:
            value = self.evaluate(match.group(1), context)
        except EvaluationError as e:
            self.diagnostics.emit(
                EVALUATION_FAILED,
                f"Template interpolation failed for {template!r}: {e.reason}",
                node=node,
                expr=match.group(1),
            )
            return template
        return None if value is UNDEFINED else value

    def condition(self, expr: Any, context: Mapping[str, Any], node: str = "") -> bool:
        """Evaluate a routing condition; any failure counts as ``False``."""
        if isinstance(expr, bool):
            return expr
        try:
            value = truthy(self.evaluate(str(expr), context))
            _log.debug("Condition %r → %s", expr, value)
            return value
        except EvaluationError as e:
            self.diagnostics.emit(
                CONDITION_FAILED,
                f"Condition evaluation failed: {expr!r}: {e.reason}",
                node=node,
                expr=str(expr),
            )
            return False
