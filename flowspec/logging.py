"""flowspec logging — thin wrapper around dd-logging for consistent log format.

Usage
-----
In every flowspec module:
    from flowspec.logging import get_logger
    _log = get_logger("compiler")   # → flowspec.compiler logger

To initialise file logging at application start-up:
    from flowspec.logging import setup_logging
    setup_logging("my_run", log_level="debug")
    # → logs/my_run-<YYYYMMDD-HHMMSS>.log under flowspec.*

Log hierarchy
-------------
    flowspec              ← root (FileHandler attached by setup_logging)
    ├── flowspec.node
    ├── flowspec.flow
    ├── flowspec.compiler
    ├── flowspec.kinds
    ├── flowspec.template
    ├── flowspec.validator
    └── flowspec.meta
"""

from __future__ import annotations

import logging
from pathlib import Path

from dd_logging import (
    disable_logging as _disable,
    get_logger as _get,
    setup_logging as _setup,
)

_ROOT = "flowspec"


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the flowspec namespace.

    Parameters
    ----------
    name :
        Dotted sub-path, e.g. ``"node"`` → ``flowspec.node``.
    """
    return _get(name, _ROOT)


def setup_logging(
    run_name: str = "flowspec",
    *,
    log_level: str = "info",
    log_dir: str | Path | None = None,
    console: bool = False,
) -> Path:
    """Attach a timestamped FileHandler to the flowspec root logger.

    Parameters
    ----------
    run_name :
        Short label used in the log filename, e.g. ``"run"`` or ``"validate"``.
    log_level :
        ``"debug"`` | ``"info"`` | ``"warning"`` | ``"error"``.
    log_dir :
        Directory for log files.  Defaults to ``./logs`` relative to CWD.
    console :
        Also attach a StreamHandler (used by ``flowspec run --verbose``).

    Returns
    -------
    Path
        Absolute path of the created log file.
    """
    return _setup(
        run_name,
        root_name=_ROOT,
        log_level=log_level,
        log_dir=log_dir or (Path.cwd() / "logs"),
        console=console,
    )


def disable_logging() -> None:
    """Remove all handlers from the flowspec root logger (silent mode)."""
    _disable(_ROOT)
