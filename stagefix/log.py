"""
Logging setup for the CLI.

Library modules log under `stagefix.*` and never configure handlers.
The CLI calls setup_logging() once; records are rendered by rich on
stderr so they never mix with --json output on stdout.

Env vars:
  - STAGEFIX_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR (overrides -v)
"""

from __future__ import annotations

import logging
import os
from typing import Mapping

from rich.console import Console
from rich.logging import RichHandler


LOGGER_NAME = "stagefix"


def setup_logging(
    verbose: int = 0,
    console: Console | None = None,
    environ: Mapping[str, str] | None = None,
) -> logging.Logger:
    """
    Configure the `stagefix` logger. Safe to call more than once.

    verbose: 0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    env = os.environ if environ is None else environ
    level_name = env.get("STAGEFIX_LOG_LEVEL", "").upper()
    if level_name in ("DEBUG", "INFO", "WARNING", "ERROR"):
        level = getattr(logging, level_name)
    else:
        level = logging.DEBUG if verbose >= 2 else logging.INFO if verbose == 1 else logging.WARNING

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Replace only our own handler; leave anything the host application set.
    for handler in list(logger.handlers):
        if getattr(handler, "_stagefix", False):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=verbose >= 2,
        show_path=verbose >= 2,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    handler._stagefix = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.propagate = False
    return logger
