"""Exception hierarchy shared by the engine, compiler and generator boundary."""

from __future__ import annotations


class FlowspecError(Exception):
    """Base class for every error raised by flowspec itself."""


class ConfigError(FlowspecError):
    """A graph description is structurally invalid and cannot be compiled.

    ``problems`` holds every defect found, one human-readable line each.
    """

    def __init__(self, problems: str | list[str]):
        if isinstance(problems, str):
            problems = [problems]
        self.problems: list[str] = list(problems)
        if len(self.problems) == 1:
            message = self.problems[0]
        else:
            message = f"{len(self.problems)} problems: " + "; ".join(self.problems)
        super().__init__(message)


class EvaluationError(FlowspecError):
    """A template placeholder or routing condition could not be evaluated.

    Never escapes the evaluator's public helpers; they degrade to the literal
    placeholder text (templates) or ``False`` (conditions).
    """

    def __init__(self, expr: str, reason: str):
        self.expr = expr
        self.reason = reason
        super().__init__(f"cannot evaluate {expr!r}: {reason}")


class ExecutionError(FlowspecError):
    """A collaborator call made by a built-in node kind failed."""


class MissingCollaboratorError(FlowspecError):
    """A node kind needs a collaborator (LLM or HTTP client) that was not supplied."""

    def __init__(self, collaborator: str, node_id: str = ""):
        self.collaborator = collaborator
        self.node_id = node_id
        where = f" (node '{node_id}')" if node_id else ""
        super().__init__(
            f"{collaborator} collaborator not configured{where}; "
            f"pass env={{'{collaborator}': ...}} to the Compiler"
        )


class GenerationError(FlowspecError):
    """The generator boundary could not produce a runnable graph."""
