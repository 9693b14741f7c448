"""
Result aggregation.

FixOutcome        — what happened to one fix (fixed / manual / failed).
StageReport       — how a stage was reached and who handled it.
RemediationResult — the run-level verdict, stage-ordered.

aggregate() is the only place that decides pass/fail:
  failed  iff  any outcome failed
           or  a stage (or one provider's share of it) ended Unreachable
               while holding a critical fix.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Literal, Optional

from stagefix.fixes.base import STAGES, Problem, Severity, Stage


Status = Literal["fixed", "manual", "failed"]
STATUSES: tuple[Status, ...] = ("fixed", "manual", "failed")


# ── Data model ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FixOutcome:
    id: str
    stage: Stage
    status: Status
    severity: Severity = "info"
    description: str = ""
    error: Optional[str] = None
    manual_instructions: Optional[str] = None
    provider: str = ""

    @classmethod
    def from_problem(
        cls,
        problem: Problem,
        status: Status,
        error: str | None = None,
        manual_instructions: str | None = None,
    ) -> "FixOutcome":
        return cls(
            id=problem.id,
            stage=problem.stage,
            status=status,
            severity=problem.severity,
            description=problem.fix.description,
            error=error,
            manual_instructions=manual_instructions,
            provider=problem.fix.provider,
        )


@dataclass(frozen=True)
class StageSummary:
    fixed: int = 0
    manual: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.fixed + self.manual + self.failed


@dataclass
class StageReport:
    """How one stage, or one provider's share of it, was processed.

    `reachability` is "local", "ssh", "workflow", "api" or "unreachable".
    `warnings` carries gaps left by an earlier stage that this one depends on.
    """

    stage: Stage
    reachability: str
    reason: str = ""
    hint: str = ""
    handled_by: str = ""            # "", "remote:<host>", "workflow:<run url>"
    provider: str = ""
    notes: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def unreachable(self) -> bool:
        return self.reachability == "unreachable"


@dataclass
class RemediationResult:
    fixed: int = 0
    manual: int = 0
    failed: int = 0
    by_stage: dict[Stage, StageSummary] = field(default_factory=dict)
    outcomes: list[FixOutcome] = field(default_factory=list)
    stages: list[StageReport] = field(default_factory=list)
    unreachable_critical: list[str] = field(default_factory=list)
    passed: bool = True

    def outcomes_for(self, stage: Stage) -> list[FixOutcome]:
        return [o for o in self.outcomes if o.stage == stage]

    def report_for(self, stage: Stage) -> StageReport | None:
        for report in self.stages:
            if report.stage == stage:
                return report
        return None

    def reports_for(self, stage: Stage) -> list[StageReport]:
        """Every report for `stage`: one per provider route, in file order."""
        return [r for r in self.stages if r.stage == stage]

    # ── Serialisation ─────────────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "fixed": self.fixed,
            "manual": self.manual,
            "failed": self.failed,
            "by_stage": {stage: asdict(s) for stage, s in self.by_stage.items()},
            "outcomes": [asdict(o) for o in self.outcomes],
            "stages": [asdict(r) for r in self.stages],
            "unreachable_critical": list(self.unreachable_critical),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RemediationResult":
        """
        Rebuild a result from to_dict() output (e.g. a delegated remote run).

        Unknown keys are ignored. Raises KeyError / TypeError / ValueError on
        malformed outcome entries.
        """
        outcomes = [
            FixOutcome(
                id=str(o["id"]),
                stage=o["stage"],
                status=o["status"],
                severity=o.get("severity", "info"),
                description=o.get("description", ""),
                error=o.get("error"),
                manual_instructions=o.get("manual_instructions"),
                provider=o.get("provider", ""),
            )
            for o in data.get("outcomes", [])
        ]
        for outcome in outcomes:
            if outcome.status not in STATUSES or outcome.stage not in STAGES:
                raise ValueError(f"malformed outcome: {outcome}")
        stages = [
            StageReport(
                stage=r["stage"],
                reachability=r["reachability"],
                reason=r.get("reason", ""),
                hint=r.get("hint", ""),
                handled_by=r.get("handled_by", ""),
                provider=r.get("provider", ""),
                notes=list(r.get("notes", [])),
                warnings=list(r.get("warnings", [])),
            )
            for r in data.get("stages", [])
        ]
        return aggregate(outcomes, stages)


# ── Public API ────────────────────────────────────────────────────────────────

def aggregate(
    outcomes: Iterable[FixOutcome],
    stage_reports: Iterable[StageReport] = (),
) -> RemediationResult:
    """Fold per-fix outcomes and stage reports into a RemediationResult."""
    outcome_list = list(outcomes)
    reports = sorted(stage_reports, key=lambda r: STAGES.index(r.stage))

    by_stage: dict[Stage, StageSummary] = {}
    for stage in STAGES:
        in_stage = [o for o in outcome_list if o.stage == stage]
        if not in_stage:
            continue
        by_stage[stage] = StageSummary(
            fixed=sum(1 for o in in_stage if o.status == "fixed"),
            manual=sum(1 for o in in_stage if o.status == "manual"),
            failed=sum(1 for o in in_stage if o.status == "failed"),
        )

    unreachable = [r for r in reports if r.unreachable]
    unreachable_critical = [
        o.id for o in outcome_list
        if o.severity == "critical" and any(_covers(r, o) for r in unreachable)
    ]

    failed = sum(1 for o in outcome_list if o.status == "failed")

    return RemediationResult(
        fixed=sum(1 for o in outcome_list if o.status == "fixed"),
        manual=sum(1 for o in outcome_list if o.status == "manual"),
        failed=failed,
        by_stage=by_stage,
        outcomes=outcome_list,
        stages=reports,
        unreachable_critical=unreachable_critical,
        passed=failed == 0 and not unreachable_critical,
    )


def _covers(report: StageReport, outcome: FixOutcome) -> bool:
    # An untagged report or outcome spans the whole stage.
    if report.stage != outcome.stage:
        return False
    return not report.provider or not outcome.provider or report.provider == outcome.provider
