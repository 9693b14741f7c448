"""
Report renderer.

Scan output:
  1. Summary panel — problem counts by severity + verdict
  2. Stage panels  — one Rich Panel per stage, in pipeline order

Fix / deploy output:
  1. Stage panels   — outcome per fix, with reachability, upstream
                     warnings (prominent) and notes
  2. Results panel  — fixed / manual / failed counts + pass/fail verdict

Problems: 2–3 lines
  • Line 1: severity icon + fix id + description
  • Line 2: detail or scan error     (what was found)
  • Line 3: manual instructions       (muted, what to do)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from rich.console import Console, Group
from rich.padding import Padding
from rich.panel import Panel
from rich.text import Text

from stagefix.fixes.base import STAGES, Problem
from stagefix.results import FixOutcome, RemediationResult, StageReport
from stagefix.ui.theme import (
    COLOR_COMMAND,
    COLOR_CRITICAL,
    COLOR_DIM,
    COLOR_PASS,
    COLOR_WARNING,
    ICON_WARNING,
    OUTCOME_ICONS,
    OUTCOME_STYLES,
    REACHABILITY_LABELS,
    SEVERITY_ICONS,
    SEVERITY_STYLES,
    STAGE_ICONS,
    STYLE_WARNING,
)

if TYPE_CHECKING:
    from stagefix.engine import StageRun


# Indentation for detail / instruction lines
_INDENT = 6


# ── Public API ────────────────────────────────────────────────────────────────

def print_scan_report(runs: list["StageRun"], console: Console) -> None:
    """Render a scan: summary first, then one panel per stage."""
    if not runs:
        console.print("[dim]  No stages selected.[/dim]")
        return

    console.print()
    console.print(build_scan_summary_panel(runs))
    for run in runs:
        console.print(build_stage_scan_panel(run.stage, run.problems, run.reports))
    console.print()


def print_results(result: RemediationResult, console: Console, title: str = "Fix") -> None:
    """Render remediation outcomes stage by stage, then the overall verdict."""
    console.print()
    for stage in STAGES:
        reports = result.reports_for(stage)
        if reports:
            console.print(build_stage_result_panel(reports, result.outcomes_for(stage)))
    console.print(build_results_panel(result, title=title))
    console.print()


# ── Scan panels ───────────────────────────────────────────────────────────────

def build_scan_summary_panel(runs: list["StageRun"]) -> Panel:
    problems = [p for run in runs for p in run.problems]
    counts = {sev: sum(1 for p in problems if p.severity == sev) for sev in SEVERITY_ICONS}

    line = Text("   ")
    for sev, label, style in (
        ("critical", "Critical", "bold bright_red"),
        ("warning", "Warnings", "bold yellow"),
        ("info", "Info", "cyan"),
    ):
        n = counts[sev]
        line.append(SEVERITY_ICONS[sev] + " ", style="bold")
        line.append(f"{n}  {label}", style=style if n else COLOR_DIM)
        line.append("    ")

    verdict = Text()
    if not problems:
        verdict.append("\n   ✨  No problems found in the selected stages.", style=COLOR_PASS)
    elif counts["critical"]:
        verdict.append(
            f"\n   {counts['critical']} critical issue{'s' if counts['critical'] != 1 else ''} "
            "block promotion. Run  ",
            style=COLOR_DIM,
        )
        verdict.append("stagefix fix", style=f"bold {COLOR_COMMAND}")
        verdict.append("  to remediate.", style=COLOR_DIM)
    else:
        verdict.append("\n   No blockers. Non-critical items can be fixed with  ", style=COLOR_DIM)
        verdict.append("stagefix fix", style=f"bold {COLOR_COMMAND}")

    border = "bright_red" if counts["critical"] else "yellow" if counts["warning"] else "bright_green"
    return Panel(Group(line, verdict), title="[bold]Summary[/bold]", border_style=border, padding=(1, 2))


def build_stage_scan_panel(
    stage: str,
    problems: list[Problem],
    reports: Sequence[StageReport] = (),
) -> Panel:
    parts: list = []

    if not problems:
        parts.append(Text(f"  {SEVERITY_ICONS.get('info', '')} nothing to fix", style=COLOR_DIM))

    for problem in problems:
        style = SEVERITY_STYLES.get(problem.severity)
        line = Text()
        line.append(f"  {SEVERITY_ICONS.get(problem.severity, '?')}  ", style=str(style))
        line.append(problem.id, style="bold")
        line.append(f"   {problem.fix.description}", style=str(style))
        parts.append(line)

        if problem.error:
            parts.append(Padding(Text(problem.error, style=COLOR_CRITICAL), (0, 2, 0, _INDENT)))
        elif problem.detail:
            parts.append(Padding(Text(problem.detail, style=COLOR_DIM), (0, 2, 0, _INDENT)))

        if problem.fix.auto_fixable:
            parts.append(Padding(Text("· auto-fixable", style="dim cyan"), (0, 2, 0, _INDENT)))
        elif problem.fix.manual_instructions:
            parts.append(Padding(
                Text(f"· {problem.fix.manual_instructions}", style=COLOR_DIM), (0, 2, 0, _INDENT),
            ))

    parts += _report_lines(reports)

    has_critical = any(p.is_critical for p in problems)
    has_warning = any(p.severity == "warning" for p in problems)
    border = "bright_red" if has_critical else "yellow" if has_warning else "dim"

    return Panel(
        Group(*parts),
        title=_stage_title(stage, reports),
        title_align="left",
        border_style=border,
        padding=(0, 1),
    )


# ── Result panels ─────────────────────────────────────────────────────────────

def build_stage_result_panel(reports: Sequence[StageReport], outcomes: list[FixOutcome]) -> Panel:
    """One stage's outcomes. `reports` holds one entry per provider route."""
    parts: list = []

    if not outcomes:
        parts.append(Text("  nothing to do", style=COLOR_DIM))

    for outcome in outcomes:
        style = OUTCOME_STYLES.get(outcome.status)
        line = Text()
        line.append(f"  {OUTCOME_ICONS.get(outcome.status, '?')}  ", style=str(style))
        line.append(outcome.id, style="bold")
        line.append(f"   {outcome.status}", style=str(style))
        if outcome.description:
            line.append(f"   {outcome.description}", style=COLOR_DIM)
        parts.append(line)

        if outcome.error:
            parts.append(Padding(Text(outcome.error, style=COLOR_CRITICAL), (0, 2, 0, _INDENT)))
        if outcome.manual_instructions and outcome.status != "fixed":
            parts.append(Padding(
                Text(outcome.manual_instructions, style=COLOR_DIM), (0, 2, 0, _INDENT),
            ))

    parts += _report_lines(reports)

    if any(o.status == "failed" for o in outcomes):
        border = "bright_red"
    elif any(r.unreachable or r.warnings for r in reports) or any(o.status == "manual" for o in outcomes):
        border = "yellow"
    elif outcomes:
        border = "bright_green"
    else:
        border = "dim"

    return Panel(
        Group(*parts),
        title=_stage_title(reports[0].stage, reports),
        title_align="left",
        border_style=border,
        padding=(0, 1),
    )


def build_results_panel(result: RemediationResult, title: str = "Fix") -> Panel:
    """Counts line plus verdict, stage breakdown in pipeline order."""
    body = Text()
    body.append(f"\n  {OUTCOME_ICONS['fixed']}  {result.fixed} fixed", style=f"bold {COLOR_PASS}")
    body.append(f"   ·   {OUTCOME_ICONS['manual']} {result.manual} manual", style=COLOR_WARNING if result.manual else COLOR_DIM)
    body.append(f"   ·   {OUTCOME_ICONS['failed']} {result.failed} failed", style=COLOR_CRITICAL if result.failed else COLOR_DIM)
    body.append("\n")

    for stage in STAGES:
        summary = result.by_stage.get(stage)
        if summary is None:
            continue
        body.append(
            f"\n  {STAGE_ICONS.get(stage, '')} {stage:<8} "
            f"{summary.fixed} fixed  {summary.manual} manual  {summary.failed} failed",
            style=COLOR_DIM,
        )

    if result.unreachable_critical:
        body.append(
            f"\n\n  Critical fixes on unreachable stages: {', '.join(result.unreachable_critical)}",
            style=COLOR_CRITICAL,
        )

    if result.passed:
        body.append("\n\n  Run  ", style=COLOR_DIM)
        body.append("stagefix scan", style=f"bold {COLOR_COMMAND}")
        body.append("  again to confirm changes took effect.\n", style=COLOR_DIM)
    else:
        body.append("\n\n  Some stages still need attention (see above).\n", style=COLOR_DIM)

    border = "bright_green" if result.passed else "bright_red"
    verdict = "passed" if result.passed else "failed"
    return Panel(
        body,
        title=f"[bold]{title} complete — {verdict}[/bold]",
        title_align="left",
        border_style=border,
    )


# ── Helpers ───────────────────────────────────────────────────────────────────

def _stage_title(stage: str, reports: Sequence[StageReport]) -> str:
    title = f"[bold]{STAGE_ICONS.get(stage, '')} {stage}[/bold]"
    if reports:
        labels = [REACHABILITY_LABELS.get(r.reachability, r.reachability) for r in reports]
        if len(reports) > 1:
            labels = [f"{r.provider}: {label}" for r, label in zip(reports, labels)]
        title += f"  [dim]·  {'  ·  '.join(labels)}[/dim]"
    if any(r.warnings for r in reports):
        title += f"  [{COLOR_WARNING} bold]{ICON_WARNING} upstream gap[/]"
    return title


def _report_lines(reports: Sequence[StageReport]) -> list:
    lines: list = []
    seen: set[str] = set()
    for report in reports:
        for warning in report.warnings:
            # Every route of a stage carries the same upstream warnings.
            if warning not in seen:
                seen.add(warning)
                lines.append(Text(f"  {ICON_WARNING} {warning}", style=STYLE_WARNING))

    for report in reports:
        prefix = f"[{report.provider}] " if len(reports) > 1 and report.provider else ""
        if report.unreachable:
            lines.append(Text(""))
            lines.append(Text(f"  {prefix}Cannot reach: {report.reason}", style=COLOR_WARNING))
            if report.hint:
                lines.append(Padding(Text(report.hint, style=COLOR_COMMAND), (0, 2, 0, 4)))
        if report.handled_by:
            lines.append(Text(f"  {prefix}handled by {report.handled_by}", style=COLOR_DIM))
        for note in report.notes:
            lines.append(Text(f"  {prefix}note: {note}", style=COLOR_DIM))
    return lines
