"""
stagefix — entry point.

CLI flags, stage selection, engine dispatch, report / JSON output and the
exit code contract:

  0  success
  1  remediation or deploy failed, or stack.toml is malformed
  2  --fail-on-critical and critical problems remain
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from stagefix import __version__
from stagefix.engine import StageEngine, StageRun
from stagefix.errors import ConfigError
from stagefix.fixes.base import STAGES, Stage
from stagefix.log import setup_logging
from stagefix.results import RemediationResult, aggregate
from stagefix.signals import gather_signals
from stagefix.ui.theme import COLOR_DIM, STAGEFIX_THEME


# ── Console (shared across the tool) ─────────────────────────────────────────

console = Console(theme=STAGEFIX_THEME)


# ── Shared options ────────────────────────────────────────────────────────────

def _stage_options(fn):
    """Stage selection, execution mode, workspace and output flags."""
    options = [
        click.option("--dev", is_flag=True, default=False, help="Select the dev stage."),
        click.option("--secrets", is_flag=True, default=False, help="Select the secrets stage."),
        click.option("--staging", is_flag=True, default=False, help="Select the staging stage."),
        click.option("--prod", is_flag=True, default=False, help="Select the prod stage."),
        click.option(
            "--stage",
            "stage_names",
            type=click.Choice(STAGES),
            multiple=True,
            help="Select a stage by name (repeatable).",
        ),
        click.option(
            "--on-target",
            is_flag=True,
            default=False,
            help="This process runs on the stage's own host; never hop over SSH.",
        ),
        click.option(
            "--root",
            type=click.Path(file_okay=False, path_type=Path),
            default=Path("."),
            show_default=True,
            help="Project directory containing stack.toml.",
        ),
        click.option("--json", "as_json", is_flag=True, default=False, help="Output results as JSON."),
        click.option("-v", "--verbose", count=True, help="Log progress (-v) or debug detail (-vv) to stderr."),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def _selected_stages(flags: dict[str, bool], stage_names: tuple[str, ...]) -> list[Stage]:
    """Chosen stages in pipeline order; none chosen means all."""
    chosen = {stage for stage, on in flags.items() if on} | set(stage_names)
    return [stage for stage in STAGES if not chosen or stage in chosen]


def _flags(dev: bool, secrets: bool, staging: bool, prod: bool) -> dict[str, bool]:
    return {"dev": dev, "secrets": secrets, "staging": staging, "prod": prod}


def _engine(root: Path, on_target: bool, verbose: int) -> StageEngine:
    setup_logging(verbose)
    signals = gather_signals(mode="on_target" if on_target else None)
    engine = StageEngine(root, signals)
    try:
        engine.config
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        if e.hint:
            console.print(f"  [{COLOR_DIM}]{e.hint}[/{COLOR_DIM}]")
        raise SystemExit(1)
    return engine


# ── CLI ───────────────────────────────────────────────────────────────────────

@click.group(name="stagefix", context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "-V", "--version", prog_name="stagefix", message="%(prog)s %(version)s")
def cli() -> None:
    """Staged scan/fix remediation for multi-environment delivery.

    Stages run in a fixed order: dev → secrets → staging → prod.
    Each stage is fixed where it is reachable: locally, over SSH with
    ~/.ssh/<stage>_deploy_key, or through a CI workflow.

    \b
    Environment variables:
      STAGEFIX_CI_TOKEN     Token used to dispatch CI workflows (or GITHUB_TOKEN).
      VAULT_PASSWORD        Ansible vault password (or ANSIBLE_VAULT_PASSWORD_FILE).
      STAGEFIX_ON_SERVER    "true" when running on a stage's host.
      STAGEFIX_LOG_LEVEL    Override the log level.
    """


@cli.command()
@_stage_options
@click.option(
    "--fail-on-critical",
    is_flag=True,
    default=False,
    help="Exit with code 2 if any critical problems are found.",
)
def scan(
    dev: bool,
    secrets: bool,
    staging: bool,
    prod: bool,
    stage_names: tuple[str, ...],
    on_target: bool,
    root: Path,
    as_json: bool,
    verbose: int,
    fail_on_critical: bool,
) -> None:
    """Report problems per stage. Changes nothing."""
    engine = _engine(root, on_target, verbose)
    runs = engine.scan_all(_selected_stages(_flags(dev, secrets, staging, prod), stage_names))

    if as_json:
        _output_scan_json(runs)
    else:
        from stagefix.ui.report import print_scan_report
        print_scan_report(runs, console)

    # ── Exit code contract ────────────────────────────────────────────────────
    if fail_on_critical and any(p.is_critical for run in runs for p in run.problems):
        raise SystemExit(2)


@cli.command()
@_stage_options
def fix(
    dev: bool,
    secrets: bool,
    staging: bool,
    prod: bool,
    stage_names: tuple[str, ...],
    on_target: bool,
    root: Path,
    as_json: bool,
    verbose: int,
) -> None:
    """Scan, then apply corrections stage by stage."""
    engine = _engine(root, on_target, verbose)
    result = engine.fix(_selected_stages(_flags(dev, secrets, staging, prod), stage_names))
    _finish(result, as_json, title="Fix")


@cli.command()
@_stage_options
def deploy(
    dev: bool,
    secrets: bool,
    staging: bool,
    prod: bool,
    stage_names: tuple[str, ...],
    on_target: bool,
    root: Path,
    as_json: bool,
    verbose: int,
) -> None:
    """Deploy the selected stages (refused while critical problems remain)."""
    engine = _engine(root, on_target, verbose)
    stages = _selected_stages(_flags(dev, secrets, staging, prod), stage_names)
    if not (dev or secrets or staging or prod or stage_names):
        # Deploying everything at once is never implied.
        console.print("[red]Error:[/red] choose a stage: --dev, --staging, --prod or --stage NAME")
        raise SystemExit(1)

    outcomes = []
    reports = []
    for stage in stages:
        run = engine.deploy_stage(stage)
        if run.result is not None:
            outcomes += run.result.outcomes
            reports += run.result.stages

    _finish(aggregate(outcomes, reports), as_json, title="Deploy")


# ── Output ────────────────────────────────────────────────────────────────────

def _finish(result: RemediationResult, as_json: bool, title: str) -> None:
    if as_json:
        payload = {"version": __version__, **result.to_dict()}
        click.echo(json.dumps(payload, indent=2))
    else:
        from stagefix.ui.report import print_results
        print_results(result, console, title=title)

    if not result.passed:
        raise SystemExit(1)


def _output_scan_json(runs: list[StageRun]) -> None:
    """Serialize scan results per stage to JSON on stdout."""
    stages: dict[str, dict] = {}
    counts: dict[str, int] = {}
    for run in runs:
        report = run.report
        problems = []
        for p in run.problems:
            counts[p.severity] = counts.get(p.severity, 0) + 1
            problems.append({
                "id": p.id,
                "severity": p.severity,
                "description": p.fix.description,
                "detail": p.detail,
                "error": p.error,
                "auto_fixable": p.fix.auto_fixable,
                "manual_instructions": p.fix.manual_instructions,
                "provider": p.fix.provider,
            })
        stages[run.stage] = {
            "handled": run.handled,
            "reachability": report.reachability if report else None,
            "reason": report.reason if report else "",
            "hint": report.hint if report else "",
            "notes": list(report.notes) if report else [],
            "routes": [
                {
                    "provider": r.provider,
                    "reachability": r.reachability,
                    "reason": r.reason,
                    "hint": r.hint,
                }
                for r in run.reports
            ],
            "problems": problems,
        }

    payload = {
        "version": __version__,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "counts": counts,
        "stages": stages,
    }
    click.echo(json.dumps(payload, indent=2))


def main(argv: Optional[list[str]] = None) -> None:
    cli.main(args=argv, prog_name="stagefix")


if __name__ == "__main__":
    main()
