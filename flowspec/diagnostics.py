"""flowspec Diagnostics — structured channel for non-fatal anomalies.

Things that are suspicious but not errors (an edge label rewired, a flow
ending at a node that has other successors, a template placeholder that
could not be evaluated) are recorded here instead of being printed.

Every record is also logged under ``flowspec.diagnostics`` at WARNING, so
nothing is lost when no one subscribes.

    diag = Diagnostics()
    diag.subscribe(lambda d: print(d.code, d.message))
    compiled = Compiler(env, diagnostics=diag).compile(description)
    compiled.flow.run(shared)
    for d in diag.by_code("evaluation_failed"):
        ...
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

from flowspec.logging import get_logger

_log = get_logger("diagnostics")

SUCCESSOR_OVERWRITE = "successor_overwrite"
SUCCESSORS_IGNORED = "successors_ignored"
FLOW_ENDS = "flow_ends"
EVALUATION_FAILED = "evaluation_failed"
CONDITION_FAILED = "condition_failed"
LOOP_GUARD = "loop_guard"

DEFAULT_MAX_RECORDS = 1000


@dataclass(frozen=True)
class Diagnostic:
    code: str
    message: str
    node: str = ""
    data: dict[str, Any] = field(default_factory=dict)


class Diagnostics:
    """Collects :class:`Diagnostic` records and fans them out to subscribers.

    Only the newest *max_records* records are kept (``None`` keeps all), so a
    long-lived Compiler sharing one channel across many runs stays bounded.
    Subscribers see every record.
    """

    def __init__(self, max_records: int | None = DEFAULT_MAX_RECORDS):
        self._records: deque[Diagnostic] = deque(maxlen=max_records)
        self._subscribers: list[Callable[[Diagnostic], None]] = []

    def emit(self, code: str, message: str, node: str = "", **data: Any) -> Diagnostic:
        record = Diagnostic(code=code, message=message, node=node, data=data)
        self._records.append(record)
        _log.warning("[%s] %s", code, message)
        for cb in self._subscribers:
            try:
                cb(record)
            except Exception as e:
                _log.warning("Diagnostics subscriber raised: %s", e)
        return record

    def subscribe(self, callback: Callable[[Diagnostic], None]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable) -> None:
        self._subscribers = [s for s in self._subscribers if s is not callback]

    def by_code(self, code: str) -> list[Diagnostic]:
        return [r for r in self._records if r.code == code]

    def clear(self) -> None:
        self._records.clear()

    @property
    def records(self) -> list[Diagnostic]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self):
        return iter(list(self._records))

    def __repr__(self) -> str:
        return f"Diagnostics(records={len(self._records)})"
