"""
Tests for ui/report.py.

Covers:
  - Scan panels:    summary verdicts, per-problem lines, unreachable hints
  - Result panels:  outcome lines, stage breakdown, pass/fail title
  - Upstream warnings rendered ahead of route details, flagged in the title
"""

from stagefix.engine import StageRun
from stagefix.fixes.base import Fix, Problem
from stagefix.results import FixOutcome, StageReport, aggregate
from stagefix.ui.report import (
    build_results_panel,
    build_scan_summary_panel,
    build_stage_result_panel,
    build_stage_scan_panel,
    print_results,
    print_scan_report,
    _report_lines,
    _stage_title,
)
from stagefix.ui.theme import STYLE_WARNING

from conftest import capture_console


# ── Helpers ──────────────────────────────────────────────────────────────────

def _problem(id="gitignore-env-files", severity="warning", **kwargs) -> Problem:
    fix = Fix(
        id=id,
        stage=kwargs.pop("stage", "dev"),
        severity=severity,
        description=kwargs.pop("description", "something is off"),
        scan=lambda c, w, x: True,
        correct=kwargs.pop("correct", None),
        manual_instructions=kwargs.pop("manual", ""),
    )
    return Problem(fix, **kwargs)


def _render(*renderables) -> str:
    con, buf = capture_console()
    for r in renderables:
        con.print(r)
    return buf.getvalue()


# ── Summary panel ────────────────────────────────────────────────────────────

class TestScanSummary:
    def test_clean_scan(self):
        out = _render(build_scan_summary_panel([StageRun("dev", handled=False)]))
        assert "No problems found" in out

    def test_critical_verdict_counts(self):
        runs = [StageRun("dev", False, problems=[_problem("a", "critical"), _problem("b", "critical")])]
        out = _render(build_scan_summary_panel(runs))
        assert "2 critical issues block promotion" in out
        assert "stagefix fix" in out

    def test_single_critical_is_singular(self):
        runs = [StageRun("dev", False, problems=[_problem("a", "critical")])]
        assert "1 critical issue block" in _render(build_scan_summary_panel(runs))

    def test_warnings_only(self):
        runs = [StageRun("dev", False, problems=[_problem()])]
        assert "No blockers" in _render(build_scan_summary_panel(runs))


# ── Stage scan panel ─────────────────────────────────────────────────────────

class TestStageScanPanel:
    def test_problem_line_and_detail(self):
        problem = _problem("example-values-in-config", "critical", detail="line 3, 9")
        out = _render(build_stage_scan_panel("dev", [problem], [StageReport("dev", "local")]))
        assert "example-values-in-config" in out
        assert "line 3, 9" in out
        assert "dev" in out

    def test_auto_fixable_marker(self):
        problem = _problem(correct=lambda c, w, x: True)
        assert "auto-fixable" in _render(build_stage_scan_panel("dev", [problem]))

    def test_manual_instructions_shown(self):
        problem = _problem(manual="mkdir -p group_vars/all")
        assert "mkdir -p group_vars/all" in _render(build_stage_scan_panel("dev", [problem]))

    def test_scan_error_shown(self):
        problem = _problem(error="scan for x raised OSError: denied")
        assert "OSError: denied" in _render(build_stage_scan_panel("dev", [problem]))

    def test_unreachable_reason_and_hint(self):
        report = StageReport("staging", "unreachable", reason="no SSH key and no CI token",
                             hint="Run: stagefix fix --secrets")
        out = _render(build_stage_scan_panel("staging", [], [report]))
        assert "Cannot reach: no SSH key and no CI token" in out
        assert "stagefix fix --secrets" in out
        assert "unreachable" in out

    def test_empty_stage(self):
        assert "nothing to fix" in _render(build_stage_scan_panel("prod", []))


# ── Result panels ────────────────────────────────────────────────────────────

class TestResultPanels:
    def test_outcome_lines(self):
        outcomes = [
            FixOutcome("a", "dev", "fixed"),
            FixOutcome("b", "dev", "failed", error="disk full", manual_instructions="free space"),
        ]
        out = _render(build_stage_result_panel([StageReport("dev", "local")], outcomes))
        assert "disk full" in out
        assert "free space" in out
        assert "fixed" in out

    def test_handled_by_and_notes(self):
        report = StageReport("staging", "ssh", handled_by="remote:deploy@s.example.com",
                             notes=["bootstrap failed at step 'runtime'"])
        out = _render(build_stage_result_panel([report], []))
        assert "handled by remote:deploy@s.example.com" in out
        assert "note: bootstrap failed at step 'runtime'" in out
        assert "over SSH" in out

    def test_passed_title(self):
        result = aggregate([FixOutcome("a", "dev", "fixed")])
        out = _render(build_results_panel(result, title="Fix"))
        assert "Fix complete — passed" in out
        assert "1 fixed" in out

    def test_failed_title_lists_unreachable_criticals(self):
        result = aggregate(
            [FixOutcome("docker", "staging", "manual", "critical")],
            [StageReport("staging", "unreachable")],
        )
        out = _render(build_results_panel(result, title="Deploy"))
        assert "Deploy complete — failed" in out
        assert "Critical fixes on unreachable stages: docker" in out

    def test_stage_breakdown(self):
        result = aggregate([FixOutcome("a", "dev", "fixed"), FixOutcome("b", "prod", "manual")])
        out = _render(build_results_panel(result))
        assert "dev" in out and "prod" in out
        assert "secrets" not in out


# ── Upstream warnings ────────────────────────────────────────────────────────

GAP = "secrets stage unreachable (no vault password); staging may lack deploy keys"


class TestUpstreamWarnings:
    def test_warning_is_not_a_dim_note(self):
        report = StageReport("staging", "ssh", warnings=[GAP])
        out = _render(build_stage_result_panel([report], []))
        assert f"⚠️  {GAP}" in out
        assert f"note: {GAP}" not in out

    def test_warning_line_uses_warning_style(self):
        lines = _report_lines([StageReport("staging", "ssh", warnings=[GAP])])
        assert lines[0].plain == f"  ⚠️  {GAP}"
        assert lines[0].style == STYLE_WARNING

    def test_warning_comes_before_route_details(self):
        report = StageReport("staging", "unreachable", reason="no SSH key and no CI token", warnings=[GAP])
        out = _render(build_stage_scan_panel("staging", [], [report]))
        assert out.index(GAP) < out.index("Cannot reach")

    def test_title_flags_upstream_gap(self):
        assert "upstream gap" in _stage_title("staging", [StageReport("staging", "ssh", warnings=[GAP])])
        assert "upstream gap" not in _stage_title("staging", [StageReport("staging", "ssh")])

    def test_result_panel_border_is_yellow(self):
        panel = build_stage_result_panel([StageReport("staging", "ssh", warnings=[GAP])], [])
        assert panel.border_style == "yellow"

    def test_shared_warning_shown_once_across_routes(self):
        reports = [
            StageReport("staging", "unreachable", reason="no CI token", provider="aws", warnings=[GAP]),
            StageReport("staging", "ssh", provider="stack", warnings=[GAP]),
        ]
        out = _render(build_stage_result_panel(reports, []))
        assert out.count(GAP) == 1


# ── Mixed routes ─────────────────────────────────────────────────────────────

class TestMixedRoutes:
    def test_each_route_labelled_by_provider(self):
        reports = [
            StageReport("staging", "unreachable", reason="no CI token", provider="aws"),
            StageReport("staging", "ssh", provider="stack", handled_by="remote:deploy@b"),
        ]
        out = _render(build_stage_result_panel(reports, []))
        assert "[aws] Cannot reach: no CI token" in out
        assert "[stack] handled by remote:deploy@b" in out
        title = _stage_title("staging", reports)
        assert "aws:" in title and "stack:" in title

    def test_print_results_one_panel_per_stage(self):
        con, buf = capture_console()
        result = aggregate(
            [FixOutcome("remote:staging2", "staging", "fixed", provider="stack")],
            [StageReport("staging", "unreachable", provider="aws"), StageReport("staging", "ssh", provider="stack")],
        )
        print_results(result, con)
        assert buf.getvalue().count("remote:staging2") == 1


# ── Full reports ─────────────────────────────────────────────────────────────

class TestPrint:
    def test_print_scan_report_in_stage_order(self):
        con, buf = capture_console()
        runs = [
            StageRun("dev", False, problems=[_problem("first")], reports=[StageReport("dev", "local")]),
            StageRun("prod", True, reports=[StageReport("prod", "unreachable", reason="no environments configured")]),
        ]
        print_scan_report(runs, con)
        out = buf.getvalue()
        assert out.index("Summary") < out.index("first") < out.index("no environments configured")

    def test_print_scan_report_without_stages(self):
        con, buf = capture_console()
        print_scan_report([], con)
        assert "No stages selected" in buf.getvalue()

    def test_print_results(self):
        con, buf = capture_console()
        result = aggregate([FixOutcome("group-vars-missing", "secrets", "fixed")],
                           [StageReport("secrets", "local")])
        print_results(result, con, title="Fix")
        out = buf.getvalue()
        assert out.index("group-vars-missing") < out.index("Fix complete")
