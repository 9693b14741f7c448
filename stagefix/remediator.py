"""
Remediator — walk the stages in pipeline order and apply corrections.

Per stage, and within it per provider route (one per owner of the
stage's environments, in file order):
  1. resolve reachability (fresh; the secrets stage may have just written
     the deploy key a later stage needs)
  2. Unreachable → every problem recorded manual, with reason and hint
  3. local / api → correct() each problem in registration order
  4. ssh         → bootstrap the host, then ONE delegated
                   `stagefix fix --stage S --on-target --json` run over the
                   same multiplexed session; its outcomes are merged
  5. workflow    → dispatch the CI workflow and poll until done or timed out

Every failure is captured at the smallest scope (one fix, one stage) and
recorded as an outcome. Nothing here raises for a remediation failure.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import time
from pathlib import Path
from typing import Callable, Iterable

from stagefix import __version__
from stagefix.bootstrap import bootstrap
from stagefix.ci import CIClient, wait_for_run
from stagefix.config import EnvironmentConfig, StackConfig
from stagefix.errors import CorrectionFailure, PollTimeout, StagefixError, WorkflowError
from stagefix.fixes.base import REMOTE_STAGES, STAGES, FixContext, Problem, ProblemSet, Stage
from stagefix.providers import routes_for_stage
from stagefix.providers.base import Provider
from stagefix.remote import (
    REMOTE_TIMEOUT,
    CommandRunner,
    SSHSession,
    remote_stagefix_command,
)
from stagefix.resolver import Reachability, Unreachable
from stagefix.results import FixOutcome, RemediationResult, StageReport, aggregate
from stagefix.signals import Signals


log = logging.getLogger(__name__)

CIFactory = Callable[[StackConfig, Signals], CIClient]
SessionFactory = Callable[[EnvironmentConfig, Path, CommandRunner], SSHSession]


def default_ci_factory(config: StackConfig, signals: Signals) -> CIClient:
    if not config.github_repo:
        raise WorkflowError(
            "github_repo is not set, cannot trigger CI",
            "Set github_repo = \"owner/name\" in stack.toml",
        )
    if not signals.ci_token:
        raise WorkflowError("no CI token", "Export STAGEFIX_CI_TOKEN")
    return CIClient(config.github_repo, signals.ci_token)


class Remediator:
    """
    Applies corrections for a ProblemSet.

    Collaborators are injected so tests can replace process execution,
    SSH sessions and the CI client:

        Remediator(config, signals, workspace, runner=FakeRunner())
    """

    def __init__(
        self,
        config: StackConfig,
        signals: Signals,
        workspace: Path,
        runner: CommandRunner | None = None,
        ci_factory: CIFactory = default_ci_factory,
        session_factory: SessionFactory = SSHSession,
        version: str = __version__,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.signals = signals
        self.workspace = workspace
        self.runner = runner or CommandRunner()
        self.ci_factory = ci_factory
        self.session_factory = session_factory
        self.version = version
        self._sleep = sleep
        self._clock = clock

    # ── Public API ────────────────────────────────────────────────────────────

    @property
    def context(self) -> FixContext:
        return FixContext(self.signals, self.runner)

    def remediate(
        self,
        problems: ProblemSet,
        stages: Iterable[Stage] = STAGES,
    ) -> RemediationResult:
        """Remediate `stages` (always processed in pipeline order)."""
        wanted = set(stages)
        outcomes: list[FixOutcome] = []
        reports: list[StageReport] = []

        for stage in STAGES:
            if stage not in wanted:
                continue
            stage_outcomes, stage_reports = self.remediate_stage(stage, problems.get(stage, []))
            warnings = self._upstream_warnings(stage, outcomes, reports)
            for report in stage_reports:
                report.warnings.extend(warnings)
            outcomes.extend(stage_outcomes)
            reports.extend(stage_reports)

        return aggregate(outcomes, reports)

    def remediate_stage(
        self, stage: Stage, problems: list[Problem],
    ) -> tuple[list[FixOutcome], list[StageReport]]:
        """
        Remediate one stage, one provider route at a time, in file order.

        A problem belongs to the route of the provider that contributed it,
        else to the first route. Every route yields its own StageReport.
        """
        routes = routes_for_stage(stage, self.config)
        route_ids = {provider.id for provider, _ in routes}
        outcomes: list[FixOutcome] = []
        reports: list[StageReport] = []

        for index, (provider, _) in enumerate(routes):
            share = [
                p for p in problems
                if p.fix.provider == provider.id or (index == 0 and p.fix.provider not in route_ids)
            ]
            reach = provider.resolve(stage, self.config, self.signals)
            log.info("%s [%s]: %s", stage, provider.id, _describe(reach))

            route_outcomes, report = self._dispatch(stage, share, provider, reach)
            report.provider = provider.id
            outcomes += [dataclasses.replace(o, provider=provider.id) for o in route_outcomes]
            reports.append(report)

        return outcomes, reports

    def _dispatch(
        self, stage: Stage, problems: list[Problem], provider: Provider, reach: Reachability,
    ) -> tuple[list[FixOutcome], StageReport]:
        if isinstance(reach, Unreachable):
            return self._unreachable(stage, problems, reach)
        if reach.via == "ssh":
            return self.via_ssh(stage, problems, provider)
        if reach.via == "workflow":
            return self.via_workflow(stage, problems, provider)
        return self._local(stage, problems, reach.via)

    # ── Unreachable ───────────────────────────────────────────────────────────

    def _unreachable(
        self, stage: Stage, problems: list[Problem], reach: Unreachable,
    ) -> tuple[list[FixOutcome], StageReport]:
        outcomes = [
            FixOutcome.from_problem(
                p,
                "manual",
                error=f"Cannot reach {stage}: {reach.reason}",
                manual_instructions=_join(reach.hint, p.fix.manual_instructions),
            )
            for p in problems
        ]
        report = StageReport(stage, "unreachable", reason=reach.reason, hint=reach.hint)
        return outcomes, report

    # ── Local ─────────────────────────────────────────────────────────────────

    def _local(
        self, stage: Stage, problems: list[Problem], via: str,
    ) -> tuple[list[FixOutcome], StageReport]:
        outcomes = [self._correct(p) for p in problems]
        return outcomes, StageReport(stage, via)

    def _correct(self, problem: Problem) -> FixOutcome:
        fix = problem.fix
        if fix.correct is None:
            return FixOutcome.from_problem(
                problem, "manual", manual_instructions=fix.manual_instructions or None,
            )

        try:
            ok = fix.correct(self.config, self.workspace, self.context)
        except StagefixError as e:
            log.warning("%s: %s", fix.id, e)
            return FixOutcome.from_problem(
                problem, "failed", error=str(e), manual_instructions=e.hint or fix.manual_instructions or None,
            )
        except Exception as e:
            failure = CorrectionFailure(f"{type(e).__name__}: {e}")
            log.warning("%s: %s", fix.id, failure)
            return FixOutcome.from_problem(
                problem, "failed", error=str(failure), manual_instructions=fix.manual_instructions or None,
            )

        if not ok:
            return FixOutcome.from_problem(
                problem,
                "failed",
                error="corrective action reported failure",
                manual_instructions=fix.manual_instructions or None,
            )
        log.info("fixed %s", fix.id)
        return FixOutcome.from_problem(problem, "fixed")

    # ── SSH ───────────────────────────────────────────────────────────────────

    def via_ssh(
        self, stage: Stage, problems: list[Problem], provider: Provider, command: str = "fix",
    ) -> tuple[list[FixOutcome], StageReport]:
        envs = provider.environments(stage, self.config)
        key = self.signals.deploy_key(stage)
        report = StageReport(stage, "ssh")
        outcomes: list[FixOutcome] = []

        for env in envs:
            if not env.host:
                outcomes += _blanket(
                    stage, problems, "failed", f"remote:{env.name}",
                    error=f"environment '{env.name}' has no host configured",
                    manual=f"Set host in the [{env.name}] table of stack.toml",
                )
                continue
            report.handled_by = f"remote:{env.ssh_user}@{env.host}"
            with self.session_factory(env, key, self.runner) as session:
                outcomes += self._delegate(stage, env, session, problems, report, command)

        return outcomes, report

    def _delegate(
        self,
        stage: Stage,
        env: EnvironmentConfig,
        session: SSHSession,
        problems: list[Problem],
        report: StageReport,
        command: str,
    ) -> list[FixOutcome]:
        project = self.config.project_name(self.workspace)
        prepared = bootstrap(stage, env, session, project, self.version, self.config.github_repo)
        if not prepared:
            report.notes.append(f"bootstrap failed at step '{prepared.failed_step}'")
            return _blanket(
                stage, problems, "failed", f"bootstrap:{env.name}",
                error=prepared.error,
                manual=prepared.hint,
            )

        remote_command = remote_stagefix_command(project, command, stage)
        result = session.run(remote_command, timeout=REMOTE_TIMEOUT)
        log.info("%s: remote %s exited %d", session.target, command, result.returncode)

        remote = _parse_remote_result(result.stdout)
        if remote is not None:
            return [o for o in remote.outcomes if o.stage == stage]

        # No parseable report: fall back to the exit code for this stage's problems.
        if result.ok:
            return _blanket(stage, problems, "fixed", f"remote:{env.name}")
        return _blanket(
            stage, problems, "failed", f"remote:{env.name}",
            error=f"remote {command} exited {result.returncode}: {result.stderr.strip()[-300:]}",
            manual=f"Inspect on the host: ssh {session.target} 'cd ~/.stagefix/{project} && stagefix scan --stage {stage} --on-target'",
        )

    # ── Workflow ──────────────────────────────────────────────────────────────

    def via_workflow(
        self, stage: Stage, problems: list[Problem], provider: Provider, command: str = "fix",
    ) -> tuple[list[FixOutcome], StageReport]:
        report = StageReport(stage, "workflow")
        synthetic = f"workflow:{stage}"
        workflow_id = provider.workflow_for(stage, self.config)

        try:
            client = self.ci_factory(self.config, self.signals)
            with client:
                run_id = client.trigger(
                    workflow_id, {"stage": stage, "command": command}, ref=self.config.ci_ref,
                )
                status = wait_for_run(
                    client,
                    run_id,
                    interval=self.config.poll_interval,
                    timeout=self.config.poll_timeout,
                    sleep=self._sleep,
                    clock=self._clock,
                )
        except PollTimeout as e:
            report.handled_by = f"workflow:{e.url}" if e.url else "workflow"
            return _blanket(
                stage, problems, "manual", synthetic,
                error=str(e),
                manual=f"Check the run: {e.url}" if e.url else "Check the CI run in your repository's Actions tab",
            ), report
        except WorkflowError as e:
            return _blanket(stage, problems, "failed", synthetic, error=str(e), manual=e.hint), report

        report.handled_by = f"workflow:{status.url}"
        if status.succeeded:
            return _blanket(stage, problems, "fixed", synthetic), report
        return _blanket(
            stage, problems, "failed", synthetic,
            error=f"workflow run {status.run_id} concluded {status.conclusion}",
            manual=f"See {status.url}" if status.url else "",
        ), report

    # ── Cross-stage warnings ──────────────────────────────────────────────────

    def _upstream_warnings(
        self, stage: Stage, outcomes: list[FixOutcome], reports: list[StageReport],
    ) -> list[str]:
        """Surface an incomplete secrets stage on the stages that depend on it."""
        if stage not in REMOTE_STAGES:
            return []
        gaps = [
            o.id for o in outcomes
            if o.stage == "secrets" and o.severity == "critical" and o.status != "fixed"
        ]
        secrets = [r for r in reports if r.stage == "secrets"]
        if any(r.unreachable for r in secrets):
            reason = next(r.reason for r in secrets if r.unreachable)
            return [f"secrets stage unreachable ({reason}); {stage} may lack deploy keys"]
        if gaps:
            return [f"secrets stage left critical issues open: {', '.join(gaps)}"]
        return []


def remediate(
    problem_set: ProblemSet,
    config: StackConfig,
    signals: Signals,
    workspace: Path,
    stages: Iterable[Stage] = STAGES,
    **kwargs,
) -> RemediationResult:
    """Convenience wrapper: Remediator(config, signals, workspace, **kwargs).remediate(...)."""
    return Remediator(config, signals, workspace, **kwargs).remediate(problem_set, stages)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _blanket(
    stage: Stage,
    problems: list[Problem],
    status: str,
    synthetic_id: str,
    error: str | None = None,
    manual: str = "",
) -> list[FixOutcome]:
    """One status for every problem in a stage handled elsewhere (or one synthetic outcome)."""
    if problems:
        return [
            FixOutcome.from_problem(
                p, status, error=error,
                manual_instructions=_join(manual, p.fix.manual_instructions) if status != "fixed" else None,
            )
            for p in problems
        ]
    return [
        FixOutcome(
            id=synthetic_id,
            stage=stage,
            status=status,
            severity="critical" if status != "fixed" else "info",
            description=f"{stage} remediation handled by {synthetic_id.split(':')[0]}",
            error=error,
            manual_instructions=manual or None,
        )
    ]


def _parse_remote_result(stdout: str) -> RemediationResult | None:
    """The delegated run's --json report, or None if stdout is not one."""
    text = stdout.strip()
    if not text:
        return None
    # Anything printed before the JSON document (pip noise, banners) is ignored.
    start = text.find("{")
    if start < 0:
        return None
    try:
        data = json.loads(text[start:])
        return RemediationResult.from_dict(data)
    except (ValueError, KeyError, TypeError) as e:
        log.debug("unparseable remote result: %s", e)
        return None


def _join(*parts: str) -> str | None:
    joined = "\n".join(p for p in parts if p)
    return joined or None


def _describe(reach: Reachability) -> str:
    if isinstance(reach, Unreachable):
        return f"unreachable ({reach.reason})"
    return f"reachable via {reach.via}"

