"""
Stage engine — the three exposed operations.

    engine = StageEngine(Path("."), gather_signals())
    engine.scan_stage("dev")
    engine.fix_stage("secrets")
    engine.deploy_stage("staging")

Each returns a StageRun. `handled` is True when the stage's work was routed
to another executor (SSH host, CI workflow) or could not be routed at all;
False when it ran in this process. A stage whose environments belong to
several providers carries one StageReport per provider route.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from stagefix import scanner
from stagefix.config import EnvironmentConfig, StackConfig, load_config
from stagefix.errors import UnreachableStage
from stagefix.fixes.base import REMOTE_STAGES, STAGES, Fix, FixContext, Problem, ProblemSet, Stage
from stagefix.providers import PROVIDERS, Route, all_fixes, routes_for_stage
from stagefix.providers.base import Provider
from stagefix.remediator import Remediator
from stagefix.remote import CommandRunner
from stagefix.resolver import Reachability, Unreachable
from stagefix.results import FixOutcome, RemediationResult, StageReport, aggregate
from stagefix.signals import Signals


log = logging.getLogger(__name__)


# ── Data model ────────────────────────────────────────────────────────────────

@dataclass
class StageRun:
    stage: Stage
    handled: bool
    problems: list[Problem] = field(default_factory=list)
    result: Optional[RemediationResult] = None
    reports: list[StageReport] = field(default_factory=list)

    @property
    def report(self) -> Optional[StageReport]:
        """The first route's report (the only one unless owners are mixed)."""
        return self.reports[0] if self.reports else None

    @property
    def ok(self) -> bool:
        if self.result is not None:
            return self.result.passed
        return not any(p.is_critical for p in self.problems)


def _report_for(stage: Stage, reach: Reachability, provider: Provider) -> StageReport:
    if isinstance(reach, Unreachable):
        return StageReport(stage, "unreachable", reason=reach.reason, hint=reach.hint, provider=provider.id)
    return StageReport(stage, reach.via, provider=provider.id)


def _is_handled(reports: list[StageReport]) -> bool:
    return any(r.reachability in ("ssh", "workflow", "unreachable") for r in reports)


# ── Engine ────────────────────────────────────────────────────────────────────

class StageEngine:
    """
    Binds a workspace and a Signals value to the scan / fix / deploy flow.

    Extra keyword arguments are passed to every Remediator it builds
    (runner, ci_factory, session_factory, sleep, clock). The runner is
    shared with scans and corrections.
    """

    def __init__(
        self,
        root: Path,
        signals: Signals,
        config: StackConfig | None = None,
        providers: tuple[Provider, ...] = PROVIDERS,
        **remediator_options,
    ) -> None:
        self.root = root
        self.signals = signals
        self._config = config
        self.providers = providers
        self.runner: CommandRunner = remediator_options.pop("runner", None) or CommandRunner()
        self._options = remediator_options

    @property
    def config(self) -> StackConfig:
        # Loaded lazily and reloaded after fixes, which may create stack.toml.
        if self._config is None:
            self._config = load_config(self.root)
        return self._config

    @property
    def context(self) -> FixContext:
        return FixContext(self.signals, self.runner)

    def reload(self) -> None:
        self._config = None

    def remediator(self) -> Remediator:
        return Remediator(self.config, self.signals, self.root, runner=self.runner, **self._options)

    def routes(self, stage: Stage) -> list[Route]:
        return routes_for_stage(stage, self.config)

    # ── Scan ──────────────────────────────────────────────────────────────────

    def fixes_for(self, stages: Iterable[Stage]) -> list[Fix]:
        """
        Registered fixes for `stages`.

        Host checks for staging/prod only run on the host itself; from an
        operator machine they are left to the delegated run.
        """
        wanted = set(stages)
        return [
            fix for fix in all_fixes(self.providers)
            if fix.stage in wanted and (self.signals.on_target or not fix.target)
        ]

    def scan(self, stages: Iterable[Stage] = STAGES) -> ProblemSet:
        return scanner.scan(self.fixes_for(stages), self.config, self.root, self.context)

    def resolve(self, stage: Stage) -> list[tuple[Provider, Reachability]]:
        """Reachability of every route for `stage`, in file order."""
        return [
            (provider, provider.resolve(stage, self.config, self.signals))
            for provider, _ in self.routes(stage)
        ]

    def scan_stage(self, stage: Stage) -> StageRun:
        """Scan one stage. Never modifies anything."""
        problems = self.scan([stage])[stage]
        reports = [_report_for(stage, reach, provider) for provider, reach in self.resolve(stage)]
        if stage in REMOTE_STAGES and not self.signals.on_target:
            for report in reports:
                if report.reachability != "local":
                    report.notes.append("host checks run on the target during `stagefix fix`")
        return StageRun(stage, handled=_is_handled(reports), problems=problems, reports=reports)

    def scan_all(self, stages: Iterable[Stage] = STAGES) -> list[StageRun]:
        return [self.scan_stage(stage) for stage in STAGES if stage in set(stages)]

    # ── Fix ───────────────────────────────────────────────────────────────────

    def fix_stage(self, stage: Stage) -> StageRun:
        return self.fix_all([stage])[0]

    def fix_all(self, stages: Iterable[Stage] = STAGES) -> list[StageRun]:
        """
        Scan then remediate `stages` in pipeline order.

        Reachability is resolved stage by stage during remediation, so a
        deploy key written by the secrets stage makes staging reachable over
        SSH in the same run.
        """
        wanted = [stage for stage in STAGES if stage in set(stages)]
        problems, result = self._fix(wanted)

        runs: list[StageRun] = []
        for stage in wanted:
            reports = result.reports_for(stage)
            runs.append(StageRun(
                stage,
                handled=_is_handled(reports),
                problems=problems[stage],
                result=aggregate(result.outcomes_for(stage), reports),
                reports=reports,
            ))
        return runs

    def fix(self, stages: Iterable[Stage] = STAGES) -> RemediationResult:
        """Whole-run variant of fix_all: one aggregated result with cross-stage warnings."""
        return self._fix([stage for stage in STAGES if stage in set(stages)])[1]

    def _fix(self, wanted: list[Stage]) -> tuple[ProblemSet, RemediationResult]:
        problems = self.scan(wanted)
        result = self.remediator().remediate(problems, wanted)
        self.reload()
        return problems, result

    # ── Deploy ────────────────────────────────────────────────────────────────

    def deploy_stage(self, stage: Stage) -> StageRun:
        """
        Deploy one stage, route by route.

        local     refuse while critical problems remain, else run each
                  environment's deploy_command
        ssh       bootstrap, then `stagefix deploy` on the host
        workflow  dispatch the workflow with command=deploy and poll
        """
        routes = self.routes(stage)
        outcomes: list[FixOutcome] = []
        reports: list[StageReport] = []
        problems: Optional[list[Problem]] = None

        for provider, envs in routes:
            reach = provider.resolve(stage, self.config, self.signals)
            try:
                reachable = reach.require(stage)
            except UnreachableStage as e:
                log.warning("%s", e)
                route_outcomes = [FixOutcome(
                    id=f"deploy:{stage}" if len(routes) == 1 else f"deploy:{stage}:{provider.id}",
                    stage=stage,
                    status="manual",
                    severity="critical",
                    description=f"deploy {stage}",
                    error=str(e),
                    manual_instructions=e.hint or None,
                )]
                report = StageReport(stage, "unreachable", reason=e.reason, hint=e.hint)
            else:
                remediator = self.remediator()
                if reachable.via == "ssh":
                    route_outcomes, report = remediator.via_ssh(stage, [], provider, command="deploy")
                elif reachable.via == "workflow":
                    route_outcomes, report = remediator.via_workflow(stage, [], provider, command="deploy")
                else:
                    if problems is None:
                        problems = self.scan([stage])[stage]
                    route_outcomes, report = self._deploy_local(stage, envs, problems, reachable.via)

            report.provider = provider.id
            outcomes += [dataclasses.replace(o, provider=provider.id) for o in route_outcomes]
            reports.append(report)

        return StageRun(
            stage,
            handled=_is_handled(reports),
            problems=problems or [],
            result=aggregate(outcomes, reports),
            reports=reports,
        )

    def _deploy_local(
        self,
        stage: Stage,
        envs: list[EnvironmentConfig],
        problems: list[Problem],
        via: str,
    ) -> tuple[list[FixOutcome], StageReport]:
        report = StageReport(stage, via)
        blockers = [p for p in problems if p.is_critical]

        if blockers:
            ids = ", ".join(p.id for p in blockers)
            outcome = FixOutcome(
                id=f"deploy:{stage}",
                stage=stage,
                status="manual",
                severity="critical",
                description=f"deploy {stage}",
                error=f"blocked by critical issues: {ids}",
                manual_instructions=f"Run: stagefix fix --stage {stage}",
            )
            report.notes.append("deploy refused while critical issues remain")
            return [outcome], report

        outcomes: list[FixOutcome] = []
        for env in envs:
            outcome_id = f"deploy:{env.name}"
            if not env.deploy_command:
                outcomes.append(FixOutcome(
                    id=outcome_id, stage=stage, status="manual", severity="warning",
                    description=f"deploy {env.name}",
                    manual_instructions=f"Set deploy_command in the [{env.name}] table of stack.toml",
                ))
                continue
            log.info("deploying %s: %s", env.name, env.deploy_command)
            result = self.runner.run(env.deploy_command, timeout=30 * 60, cwd=self.root)
            if result.ok:
                outcomes.append(FixOutcome(
                    id=outcome_id, stage=stage, status="fixed", severity="critical",
                    description=f"deploy {env.name}",
                ))
            else:
                outcomes.append(FixOutcome(
                    id=outcome_id, stage=stage, status="failed", severity="critical",
                    description=f"deploy {env.name}",
                    error=f"deploy_command exited {result.returncode}: {result.stderr.strip()[-300:]}",
                ))

        if not envs:
            report.notes.append(f"no {stage} environments configured; nothing to deploy")
        return outcomes, report
