"""
Core data model for stagefix fixes.

Fix          — the descriptor every provider contributes.
FixContext   — what scan() and correct() may use beyond config and workspace.
ScanFinding  — structured diagnostic a scan may return instead of a bool.
Problem      — a fix whose scan reported the issue present.

This file is the single source of truth for the stage order and the
severity vocabulary.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Literal, Optional, Union

if TYPE_CHECKING:
    from stagefix.config import StackConfig
    from stagefix.remote import CommandRunner
    from stagefix.signals import Signals


# ── Stages & severities ───────────────────────────────────────────────────────

Stage = Literal["dev", "secrets", "staging", "prod"]
Severity = Literal["critical", "warning", "info"]

# Fixed pipeline order. Later stages may depend on artifacts produced
# while resolving earlier ones (deploy keys come out of secrets).
STAGES: tuple[Stage, ...] = ("dev", "secrets", "staging", "prod")
REMOTE_STAGES: frozenset[str] = frozenset(("staging", "prod"))


# ── Data model ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ScanFinding:
    """What a scan found. `detail` is shown next to the fix description."""

    present: bool
    detail: str = ""

    def __bool__(self) -> bool:
        return self.present


@dataclass(frozen=True)
class FixContext:
    """Process inputs a fix may consult: secrets and home from `signals`,
    subprocesses through `runner`."""

    signals: "Signals"
    runner: "CommandRunner"


ScanFn = Callable[["StackConfig", Path, FixContext], Union[bool, ScanFinding]]
CorrectFn = Callable[["StackConfig", Path, FixContext], bool]


@dataclass(frozen=True)
class Fix:
    # Identity
    id: str                         # "missing-stack-config"
    stage: Stage
    severity: Severity
    description: str                # "stack.toml configuration file not found"

    # Behaviour
    scan: ScanFn                    # side-effect free, idempotent
    correct: Optional[CorrectFn] = None     # None → manual-only
    manual_instructions: str = ""           # shown when correct is absent or unusable

    # Metadata
    provider: str = ""
    target: bool = False            # scan inspects the stage's host; only meaningful on it

    @property
    def auto_fixable(self) -> bool:
        return self.correct is not None

    def detect(self, config: "StackConfig", workspace: Path, context: FixContext) -> ScanFinding:
        """Run scan() and normalise its result into a ScanFinding."""
        raw = self.scan(config, workspace, context)
        if isinstance(raw, ScanFinding):
            return raw
        return ScanFinding(present=bool(raw))


@dataclass(frozen=True)
class Problem:
    """A fix whose scan reported the issue present (or whose scan raised)."""

    fix: Fix
    detail: str = ""
    error: Optional[str] = None

    @property
    def id(self) -> str:
        return self.fix.id

    @property
    def stage(self) -> Stage:
        return self.fix.stage

    @property
    def severity(self) -> Severity:
        return self.fix.severity

    @property
    def is_critical(self) -> bool:
        return self.fix.severity == "critical"


ProblemSet = dict[Stage, list[Problem]]


def empty_problem_set() -> ProblemSet:
    return {stage: [] for stage in STAGES}
