import json

import pytest

from lifecycle_monitor.config import DEFAULT_THRESHOLDS
from lifecycle_monitor.models import (
    FAIL,
    PASS,
    SKIP,
    WARN,
    BatchResult,
    CriterionResult,
    WidgetComplianceResult,
)
from lifecycle_monitor.report import (
    assert_thresholds,
    build_report,
    check_thresholds,
    criterion_pass_rates,
    render_markdown,
    run_gap_analysis,
    write_report,
)


def make_widget(widget_id, widget_type="pods", **statuses):
    criteria = {k: CriterionResult(k, v, f"{k} {v}") for k, v in statuses.items()}
    return WidgetComplianceResult(widget_type=widget_type, widget_id=widget_id, criteria=criteria)


def all_pass(widget_id, widget_type="pods"):
    return make_widget(widget_id, widget_type, **{c: PASS for c in "abcdefgh"})


def report_of(widgets, notes=None, rules=None):
    return build_report([BatchResult(0, widgets)], len(widgets), notes, rules)


def test_pass_rate_excludes_skips():
    widgets = [make_widget(f"w{i}", a=s) for i, s in enumerate([PASS, PASS, PASS, FAIL] + [SKIP] * 6)]

    rates = criterion_pass_rates(widgets)

    assert rates["a"] == 0.75


def test_pass_rate_counts_warn_as_not_passing():
    widgets = [make_widget("w1", c=PASS), make_widget("w2", c=WARN)]

    assert criterion_pass_rates(widgets)["c"] == 0.5


def test_pass_rate_is_none_when_nothing_testable():
    rates = criterion_pass_rates([make_widget("w1", a=SKIP)])

    assert rates["a"] is None
    assert rates["h"] is None


def test_summary_counts_overall_statuses():
    report = report_of([
        all_pass("w1"),
        make_widget("w2", a=FAIL),
        make_widget("w3", c=WARN),
        make_widget("w4", e=SKIP),
    ])

    summary = report.summary
    assert (summary.pass_count, summary.fail_count, summary.warn_count, summary.skip_count) == (1, 1, 1, 1)
    assert summary.total_widgets == 4


def areas(report):
    return [g.area for g in report.gap_analysis]


def test_coverage_gap_priorities():
    widgets = [make_widget(f"w{i}", e=SKIP, b=SKIP if i < 6 else PASS) for i in range(10)]

    report = report_of(widgets)

    gaps = {g.area: g for g in report.gap_analysis}
    assert gaps["Criterion e coverage"].priority == "high"
    assert "manual refresh" in gaps["Criterion e coverage"].suggested_improvement
    assert gaps["Criterion b coverage"].priority == "medium"
    assert gaps["Criterion b coverage"].observation == "60% of widgets skipped criterion b"


def test_contamination_needs_three_widget_types():
    two_types = [make_widget("w1", "pods", a=FAIL), make_widget("w2", "pods", a=FAIL), make_widget("w3", "gpu", a=FAIL)]
    three_types = two_types + [make_widget("w4", "events", a=FAIL)]

    assert "Demo badge contamination" not in areas(report_of(two_types))
    gap = next(g for g in report_of(three_types).gap_analysis if g.area == "Demo badge contamination")
    assert gap.priority == "high"
    assert gap.observation.startswith("3 widget types")


def test_any_warm_failure_is_a_caching_gap():
    report = report_of([all_pass("w1"), make_widget("w2", g=FAIL)])

    gap = next(g for g in report.gap_analysis if g.area == "Cache miss on warm return")
    assert gap.observation.startswith("1 widgets")


def test_low_streaming_adoption():
    widgets = [make_widget("w1", c=PASS)] + [make_widget(f"w{i}", c=WARN) for i in range(2, 6)]

    gap = next(g for g in report_of(widgets).gap_analysis if g.area == "SSE streaming adoption")

    assert gap.priority == "low"
    assert "20%" in gap.observation


def test_future_criteria_always_listed():
    assert areas(report_of([all_pass("w1")])) == ["Future criteria candidates"]


def test_failing_rule_is_noted_not_raised():
    def broken(report):
        raise KeyError("missing")

    report = report_of([all_pass("w1")], rules=[broken])

    assert report.gap_analysis == []
    assert report.notes == ["Gap rule broken failed: 'missing'"]


def test_custom_rule_list():
    report = report_of([all_pass("w1")], rules=[])

    assert run_gap_analysis(report, []) == []
    assert report.gap_analysis == []


def test_markdown_sections():
    report = report_of(
        [all_pass("w1"), make_widget("w2", "gpu", a=FAIL, d=FAIL, c=PASS)],
        notes=["Cold batch 3 failed at sample: boom"],
    )

    md = render_markdown(report)

    assert md.startswith("# Widget Loading Compliance Report\n")
    assert "## Criterion Pass Rates" in md
    assert "| a | Skeleton without demo badge during loading | 50% | 1 | 1 | 0 | 0 |" in md
    assert "| gpu | a, d | a: a fail; d: d fail |" in md
    assert "- **Fail**: 1" in md
    assert "### [LOW] Future criteria candidates" in md
    assert "- Cold batch 3 failed at sample: boom" in md


def test_markdown_shows_na_for_untestable():
    md = render_markdown(report_of([make_widget("w1", a=SKIP)]))

    assert "| a | Skeleton without demo badge during loading | N/A | 0 | 0 | 0 | 1 |" in md


def test_write_report(tmp_path):
    report = report_of([all_pass("w1")])

    json_path, md_path = write_report(report, tmp_path / "out")

    assert json_path.name == "compliance-report.json"
    assert md_path.name == "compliance-summary.md"
    data = json.loads(json_path.read_text(encoding="utf-8"))
    assert data["summary"]["passCount"] == 1
    assert data["batches"][0]["widgets"][0]["widgetId"] == "w1"
    assert data["gapAnalysis"][0]["suggestedImprovement"]


def test_thresholds_pass_for_clean_run():
    report = report_of([all_pass(f"w{i}") for i in range(5)])

    assert check_thresholds(report, DEFAULT_THRESHOLDS) == []
    assert_thresholds(report, DEFAULT_THRESHOLDS)


def test_thresholds_report_each_breach():
    widgets = [all_pass(f"w{i}") for i in range(6)] + [
        make_widget("x1", a=FAIL),
        make_widget("x2", d=FAIL),
        make_widget("x3", f=FAIL),
    ]
    report = report_of(widgets)

    failures = check_thresholds(report, DEFAULT_THRESHOLDS)

    assert failures == [
        "Criterion a pass rate 86% should be 100%",
        "Criterion d pass rate 86% should be >= 95%",
        "Criterion f pass rate 86% should be >= 95%",
        "3 widget compliance failures exceeds tolerance of 2",
    ]
    with pytest.raises(AssertionError):
        assert_thresholds(report, DEFAULT_THRESHOLDS)


def test_untestable_criteria_are_not_asserted():
    report = report_of([make_widget("w1", a=SKIP, c=SKIP, d=SKIP, f=SKIP)])

    assert check_thresholds(report, DEFAULT_THRESHOLDS) == []
