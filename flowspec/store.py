"""flowspec Store — the shared context passed through a flow run.

Design
------
Store wraps a plain dict but adds:
  • schema     — declares required keys and their types at construction time
  • observers  — callbacks fired on every write  (for logging / tracing)
  • dotted paths — ``get_path("a.b.c")`` / ``set_path("a.b.c", v)``

Store stays dict-like, so ``store["key"] = value`` and ``store["key"]`` work,
and every engine entry point also accepts a plain ``dict``.  The engine
never creates or destroys the shared context: the caller owns it.

The only conventional slot is ``_last_result`` (:data:`LAST_RESULT_KEY`),
which compiled nodes use to hand their execute result to the next node's
templates as ``result``.
"""

from __future__ import annotations

from typing import Any, Callable, Iterator, Mapping, MutableMapping

from flowspec.logging import get_logger

_log = get_logger("store")

LAST_RESULT_KEY = "_last_result"

_MISSING = object()


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """Resolve a dotted *path* by sequential key lookup.

    Mapping keys, list indices (``"items.0"``) and plain attributes are
    tried in that order.  Any missing segment returns *default*.
    """
    current = data
    for key in path.split("."):
        current = _step(current, key)
        if current is _MISSING:
            return default
    return current


def _step(current: Any, key: str) -> Any:
    if current is None:
        return _MISSING
    if isinstance(current, (Mapping, Store)):
        return current[key] if key in current else _MISSING
    if isinstance(current, (list, tuple)):
        try:
            return current[int(key)]
        except (ValueError, IndexError):
            return _MISSING
    if not key.startswith("_") and hasattr(current, key):
        return getattr(current, key)
    return _MISSING


def set_path(data: MutableMapping | "Store", path: str, value: Any) -> None:
    """Write *value* at dotted *path*, creating intermediate dicts as needed.

    A non-dict value sitting on an intermediate segment is replaced by a dict.
    """
    keys = path.split(".")
    if len(keys) == 1:
        data[keys[0]] = value
        return
    head = data.get(keys[0])
    if not isinstance(head, dict):
        head = {}
    current = head
    for key in keys[1:-1]:
        nxt = current.get(key)
        if not isinstance(nxt, dict):
            nxt = {}
            current[key] = nxt
        current = nxt
    current[keys[-1]] = value
    # reassign the top-level key so Store observers see the write
    data[keys[0]] = head


class Store:
    """Shared state container for one flowspec run.

    Parameters
    ----------
    data :
        Initial key-value pairs.
    schema :
        Optional dict mapping key → type (or tuple of types).
        Keys listed here are *required* — `validate()` raises if any are
        missing.  Values are type-checked on every write when schema is set.
    name :
        Human-readable label shown in log messages.

    Examples
    --------
    >>> store = Store(data={"topic": "tides"}, schema={"topic": str}, name="research")
    >>> store.set_path("draft.title", "On Tides")
    >>> store.get_path("draft.title")
    'On Tides'
    """

    def __init__(
        self,
        data: dict[str, Any] | None = None,
        schema: dict[str, type | tuple] | None = None,
        name: str = "store",
    ):
        self._data: dict[str, Any] = dict(data or {})
        self._schema: dict[str, type | tuple] = schema or {}
        self._name = name
        self._observers: list[Callable[[str, Any, Any], None]] = []

    # ── dict-like access ──────────────────────────────────────────────────────

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if key in self._schema:
            expected = self._schema[key]
            if not isinstance(value, expected):
                raise TypeError(
                    f"Store[{self._name}]: key '{key}' expects "
                    f"{expected}, got {type(value).__name__}"
                )
        old = self._data.get(key)
        self._data[key] = value
        for obs in self._observers:
            try:
                obs(key, old, value)
            except Exception as e:
                _log.warning("Store observer error: %s", e)

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def setdefault(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            self[key] = default
        return self._data[key]

    def update(self, mapping: dict[str, Any]) -> None:
        for k, v in mapping.items():
            self[k] = v

    def keys(self):
        return self._data.keys()

    def items(self):
        return self._data.items()

    def values(self):
        return self._data.values()

    def __repr__(self) -> str:
        return f"Store(name={self._name!r}, keys={list(self._data.keys())})"

    # ── dotted paths ──────────────────────────────────────────────────────────

    def get_path(self, path: str, default: Any = None) -> Any:
        return get_path(self._data, path, default)

    def set_path(self, path: str, value: Any) -> None:
        set_path(self, path, value)

    @property
    def last_result(self) -> Any:
        """The previous compiled node's execute result, if any."""
        return self._data.get(LAST_RESULT_KEY)

    # ── schema validation ─────────────────────────────────────────────────────

    def validate(self) -> None:
        """Raise ValueError if any schema-required key is missing."""
        missing = [k for k in self._schema if k not in self._data]
        if missing:
            raise ValueError(
                f"Store[{self._name}]: required key(s) missing: {missing}"
            )

    # ── observers (for logging / tracing) ─────────────────────────────────────

    def add_observer(self, callback: Callable[[str, Any, Any], None]) -> None:
        """Register callback(key, old_value, new_value) fired on every write."""
        self._observers.append(callback)

    def remove_observer(self, callback: Callable) -> None:
        self._observers = [o for o in self._observers if o is not callback]

    def as_dict(self) -> dict[str, Any]:
        """Return the underlying dict (no copy — modifications are reflected)."""
        return self._data
