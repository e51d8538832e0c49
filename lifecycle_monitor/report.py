"""
Report aggregation, gap analysis and report writing.

Gap analysis is a registry of rules. Each rule looks at a finished report and
returns zero or more improvement suggestions; new rules are added with the
``@gap_rule`` decorator without touching the aggregator.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from lifecycle_monitor.criteria import CRITERIA
from lifecycle_monitor.models import (
    FAIL,
    PASS,
    SKIP,
    WARN,
    BatchResult,
    ComplianceReport,
    ComplianceSummary,
    GapAnalysisEntry,
    WidgetComplianceResult,
)


GapRule = Callable[[ComplianceReport], List[GapAnalysisEntry]]
GAP_RULES: List[GapRule] = []

COVERAGE_SKIP_RATE = 0.5
COVERAGE_HIGH_SKIP_RATE = 0.8
CONTAMINATION_MIN_TYPES = 3
STREAMING_ADOPTION_RATE = 0.3


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def now_iso() -> str:
    return datetime.now().isoformat()


def write_text(path: Path, content: str) -> None:
    path.write_text(content, encoding="utf-8")


def write_json(path: Path, data: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def format_rate(rate: Optional[float]) -> str:
    if rate is None:
        return "N/A"
    return f"{round(rate * 100)}%"


def join_list(items: List[str]) -> str:
    if not items:
        return "-"
    return "\n".join([f"- {item}" for item in items])


def simple_table(rows: List[Dict[str, Any]], columns: List[str]) -> str:
    if not rows:
        return "(none)"
    header = "| " + " | ".join(columns) + " |\n"
    divider = "|" + "|".join([" --- " for _ in columns]) + "|\n"
    body = ""
    for row in rows:
        body += "| " + " | ".join(str(row.get(col, "")) for col in columns) + " |\n"
    return header + divider + body


def results_for(widgets: List[WidgetComplianceResult], criterion: str):
    return [w.criteria[criterion] for w in widgets if criterion in w.criteria]


def status_counts(widgets: List[WidgetComplianceResult], criterion: str) -> Dict[str, int]:
    counts = {PASS: 0, FAIL: 0, WARN: 0, SKIP: 0}
    for result in results_for(widgets, criterion):
        counts[result.status] = counts.get(result.status, 0) + 1
    return counts


def criterion_pass_rates(widgets: List[WidgetComplianceResult]) -> Dict[str, Optional[float]]:
    """Pass rate per criterion over testable (non-skip) results; None when none are testable."""
    rates: Dict[str, Optional[float]] = {}
    for criterion in CRITERIA:
        testable = [r for r in results_for(widgets, criterion) if r.status != SKIP]
        if not testable:
            rates[criterion] = None
            continue
        rates[criterion] = sum(1 for r in testable if r.status == PASS) / len(testable)
    return rates


def summarize(widgets: List[WidgetComplianceResult]) -> ComplianceSummary:
    statuses = [w.overall_status for w in widgets]
    return ComplianceSummary(
        total_widgets=len(widgets),
        pass_count=statuses.count(PASS),
        fail_count=statuses.count(FAIL),
        warn_count=statuses.count(WARN),
        skip_count=statuses.count(SKIP),
        criterion_pass_rates=criterion_pass_rates(widgets),
    )


def gap_rule(fn: GapRule) -> GapRule:
    GAP_RULES.append(fn)
    return fn


def run_gap_analysis(report: ComplianceReport, rules: Optional[List[GapRule]] = None) -> List[GapAnalysisEntry]:
    entries: List[GapAnalysisEntry] = []
    for rule in GAP_RULES if rules is None else rules:
        try:
            entries.extend(rule(report))
        except Exception as exc:
            report.notes.append(f"Gap rule {rule.__name__} failed: {exc}")
    return entries


def build_report(
    batches: List[BatchResult],
    total_widgets: int,
    notes: Optional[List[str]] = None,
    rules: Optional[List[GapRule]] = None,
) -> ComplianceReport:
    widgets = [w for batch in batches for w in batch.widgets]
    report = ComplianceReport(
        timestamp=now_iso(),
        total_widgets=total_widgets,
        batches=batches,
        summary=summarize(widgets),
        notes=list(notes or []),
    )
    report.gap_analysis = run_gap_analysis(report, rules)
    return report


@gap_rule
def coverage_gaps(report: ComplianceReport) -> List[GapAnalysisEntry]:
    widgets = report.all_widgets()
    entries = []
    for criterion in CRITERIA:
        results = results_for(widgets, criterion)
        if not results:
            continue
        skip_rate = sum(1 for r in results if r.status == SKIP) / len(results)
        if skip_rate <= COVERAGE_SKIP_RATE:
            continue
        if criterion == "e":
            improvement = (
                "Consider triggering a manual refresh via button click to test incremental refresh, "
                "rather than waiting for auto-refresh timer"
            )
        else:
            improvement = (
                "Review test timing: the polling window may be too short to capture the "
                f"loading→content transition for criterion {criterion}"
            )
        entries.append(GapAnalysisEntry(
            area=f"Criterion {criterion} coverage",
            observation=f"{round(skip_rate * 100)}% of widgets skipped criterion {criterion}",
            suggested_improvement=improvement,
            priority="high" if skip_rate > COVERAGE_HIGH_SKIP_RATE else "medium",
        ))
    return entries


@gap_rule
def demo_contamination(report: ComplianceReport) -> List[GapAnalysisEntry]:
    failed_types = list(dict.fromkeys(
        w.widget_type for w in report.all_widgets()
        if "a" in w.criteria and w.criteria["a"].status == FAIL
    ))
    if len(failed_types) < CONTAMINATION_MIN_TYPES:
        return []
    shown = ", ".join(failed_types[:5]) + ("..." if len(failed_types) > 5 else "")
    return [GapAnalysisEntry(
        area="Demo badge contamination",
        observation=f"{len(failed_types)} widget types show demo badges during skeleton: {shown}",
        suggested_improvement=(
            "Investigate whether these widgets report demo data during initial load. "
            "The demo indicator logic may need a loading-phase exemption."
        ),
        priority="high",
    )]


@gap_rule
def warm_cache_misses(report: ComplianceReport) -> List[GapAnalysisEntry]:
    misses = [
        w for w in report.all_widgets()
        if "g" in w.criteria and w.criteria["g"].status == FAIL
    ]
    if not misses:
        return []
    return [GapAnalysisEntry(
        area="Cache miss on warm return",
        observation=f"{len(misses)} widgets showed skeleton on warm return instead of cached data",
        suggested_improvement=(
            "Check whether these widgets read from the persistent cache. They may clear it on "
            "unmount or use non-cacheable data sources."
        ),
        priority="high",
    )]


@gap_rule
def streaming_adoption(report: ComplianceReport) -> List[GapAnalysisEntry]:
    rate = report.summary.criterion_pass_rates.get("c")
    if rate is None or rate >= STREAMING_ADOPTION_RATE:
        return []
    return [GapAnalysisEntry(
        area="SSE streaming adoption",
        observation=f"Only {format_rate(rate)} of widgets use SSE streaming; most use REST only",
        suggested_improvement=(
            "Consider splitting criterion c into REST and SSE compliance paths. "
            "REST widgets should still validate incremental loading."
        ),
        priority="low",
    )]


@gap_rule
def future_criteria(report: ComplianceReport) -> List[GapAnalysisEntry]:
    return [GapAnalysisEntry(
        area="Future criteria candidates",
        observation=f"The current {len(CRITERIA)} criteria cover core loading behavior but may miss edge cases",
        suggested_improvement=(
            "Consider adding: (i) error-state compliance, widgets showing errors should not show demo badges; "
            "(j) responsive sizing, widgets should not overflow their container during loading; "
            "(k) accessibility, skeleton states should have appropriate ARIA attributes."
        ),
        priority="low",
    )]


def render_markdown(report: ComplianceReport) -> str:
    widgets = report.all_widgets()
    summary = report.summary

    rate_rows = []
    for criterion, description in CRITERIA.items():
        counts = status_counts(widgets, criterion)
        rate_rows.append({
            "Criterion": criterion,
            "Description": description,
            "Pass Rate": format_rate(summary.criterion_pass_rates.get(criterion)),
            "Pass": counts[PASS],
            "Fail": counts[FAIL],
            "Warn": counts[WARN],
            "Skip": counts[SKIP],
        })

    md = [
        "# Widget Loading Compliance Report",
        "",
        f"Generated: {report.timestamp}",
        f"Total widgets tested: {report.total_widgets}",
        "",
        "## Criterion Pass Rates",
        "",
        simple_table(
            rate_rows,
            ["Criterion", "Description", "Pass Rate", "Pass", "Fail", "Warn", "Skip"],
        ).rstrip("\n"),
    ]

    failure_rows = []
    for widget in widgets:
        if widget.overall_status != FAIL:
            continue
        failed = widget.failed_criteria()
        failure_rows.append({
            "Widget Type": widget.widget_type,
            "Failed Criteria": ", ".join(r.criterion for r in failed),
            "Details": "; ".join(f"{r.criterion}: {r.details}" for r in failed),
        })
    if failure_rows:
        md += [
            "",
            "## Failures",
            "",
            simple_table(failure_rows, ["Widget Type", "Failed Criteria", "Details"]).rstrip("\n"),
        ]

    md += [
        "",
        "## Summary",
        "",
        f"- **Pass**: {summary.pass_count}",
        f"- **Fail**: {summary.fail_count}",
        f"- **Warn**: {summary.warn_count}",
        f"- **Skip**: {summary.skip_count}",
    ]

    if report.gap_analysis:
        md += [
            "",
            "## Gap Analysis & Improvement Opportunities",
            "",
            "The following gaps were identified during this compliance run. "
            "Use these to improve both the test suite and the UI:",
            "",
        ]
        for gap in report.gap_analysis:
            md += [
                f"### [{gap.priority.upper()}] {gap.area}",
                "",
                f"**Observation:** {gap.observation}",
                "",
                f"**Suggested improvement:** {gap.suggested_improvement}",
                "",
            ]

    if report.notes:
        md += ["", "## Run Notes", "", join_list(report.notes)]

    return "\n".join(md).rstrip("\n") + "\n"


def write_report(report: ComplianceReport, out_dir: Path) -> Tuple[Path, Path]:
    out_dir = Path(out_dir)
    ensure_dir(out_dir)
    json_path = out_dir / "compliance-report.json"
    md_path = out_dir / "compliance-summary.md"
    write_json(json_path, report.to_dict())
    write_text(md_path, render_markdown(report))
    return json_path, md_path


def print_summary(report: ComplianceReport) -> None:
    summary = report.summary
    print(
        f"[Compliance] Pass: {summary.pass_count}, Fail: {summary.fail_count}, "
        f"Warn: {summary.warn_count}, Skip: {summary.skip_count}"
    )
    for criterion, rate in summary.criterion_pass_rates.items():
        print(f"[Compliance] Criterion {criterion}: {format_rate(rate)} pass rate")
    if report.gap_analysis:
        print(f"[Compliance] Gap analysis: {len(report.gap_analysis)} improvement opportunities identified")
        for gap in report.gap_analysis:
            print(f"  [{gap.priority.upper()}] {gap.area}: {gap.observation}")


def check_thresholds(report: ComplianceReport, thresholds: Dict[str, Any]) -> List[str]:
    """Report-level assertions. Criteria without testable results are not asserted."""
    rates = report.summary.criterion_pass_rates
    failures = []
    for criterion, expected in (thresholds.get("exact") or {}).items():
        rate = rates.get(criterion)
        if rate is not None and rate != expected:
            failures.append(
                f"Criterion {criterion} pass rate {format_rate(rate)} should be {format_rate(expected)}"
            )
    for criterion, minimum in (thresholds.get("minimum") or {}).items():
        rate = rates.get(criterion)
        if rate is not None and rate < minimum:
            failures.append(
                f"Criterion {criterion} pass rate {format_rate(rate)} should be >= {format_rate(minimum)}"
            )
    max_fail = thresholds.get("max_fail_count")
    if max_fail is not None and report.summary.fail_count > max_fail:
        failures.append(
            f"{report.summary.fail_count} widget compliance failures exceeds tolerance of {max_fail}"
        )
    return failures


def assert_thresholds(report: ComplianceReport, thresholds: Dict[str, Any]) -> None:
    failures = check_thresholds(report, thresholds)
    if failures:
        raise AssertionError("\n".join(failures))
