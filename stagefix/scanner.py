"""
Scanner — evaluate every fix's scan predicate against the workspace.

Never raises for a misbehaving scan: the exception becomes a Problem whose
`error` holds the ScanFault text, so one broken predicate cannot hide the
rest of the report. Filtering by stage is the caller's job.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from stagefix.config import StackConfig
from stagefix.errors import ScanFault
from stagefix.fixes.base import Fix, FixContext, Problem, ProblemSet, empty_problem_set


log = logging.getLogger(__name__)


def scan(
    fixes: Iterable[Fix], config: StackConfig, workspace: Path, context: FixContext,
) -> ProblemSet:
    """
    Return {stage: [Problem, ...]} for every fix whose scan reports presence.

    All four stages are always present as keys, in pipeline order; each list
    keeps fix registration order. `context` is handed to every scan.
    """
    problems = empty_problem_set()

    for fix in fixes:
        problem = _scan_one(fix, config, workspace, context)
        if problem is not None:
            problems[fix.stage].append(problem)

    log.debug(
        "scan complete: %s",
        ", ".join(f"{stage}={len(items)}" for stage, items in problems.items()),
    )
    return problems


def _scan_one(
    fix: Fix, config: StackConfig, workspace: Path, context: FixContext,
) -> Problem | None:
    try:
        finding = fix.detect(config, workspace, context)
    except Exception as e:
        fault = ScanFault(fix.id, e)
        log.warning("%s", fault)
        return Problem(fix=fix, error=str(fault))

    if not finding:
        return None
    return Problem(fix=fix, detail=finding.detail)
