"""
Records shared by the sampler, evaluators, orchestrator and report layers.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from lifecycle_monitor.config import MIN_CONTENT_TEXT_LENGTH


PASS = "pass"
FAIL = "fail"
WARN = "warn"
SKIP = "skip"
STATUSES = (PASS, FAIL, WARN, SKIP)


@dataclass(frozen=True)
class Snapshot:
    timestamp: float
    loading_flag: Optional[str]
    effective_loading_flag: Optional[str]
    has_demo_indicator: bool
    has_cache_contamination_marker: bool
    has_skeleton_overlay: bool
    has_spinning_refresh_indicator: bool
    text_content_length: int
    has_visual_content: bool

    @property
    def is_loading(self) -> bool:
        return self.loading_flag == "true"

    @property
    def is_effectively_loading(self) -> bool:
        return self.effective_loading_flag == "true"

    @property
    def has_content(self) -> bool:
        return self.text_content_length > MIN_CONTENT_TEXT_LENGTH or self.has_visual_content

    @property
    def shows_loaded_content(self) -> bool:
        return self.loading_flag == "false" and self.has_content

    @property
    def is_loaded(self) -> bool:
        # terminal: not loading, no skeleton overlay, real content on screen
        return not self.is_loading and not self.has_skeleton_overlay and self.has_content


History = List[Snapshot]


@dataclass
class CriterionResult:
    criterion: str
    status: str
    details: str

    def to_dict(self) -> Dict[str, str]:
        return {"criterion": self.criterion, "status": self.status, "details": self.details}


def derive_overall_status(criteria: Dict[str, CriterionResult]) -> str:
    statuses = [r.status for r in criteria.values()]
    if FAIL in statuses:
        return FAIL
    if WARN in statuses:
        return WARN
    if all(s == SKIP for s in statuses):
        return SKIP
    return PASS


@dataclass
class WidgetComplianceResult:
    widget_type: str
    widget_id: str
    criteria: Dict[str, CriterionResult] = field(default_factory=dict)
    timed_out: bool = False

    @property
    def overall_status(self) -> str:
        return derive_overall_status(self.criteria)

    def merge(self, results: Dict[str, CriterionResult]) -> None:
        self.criteria.update(results)

    def failed_criteria(self) -> List[CriterionResult]:
        return [r for r in self.criteria.values() if r.status == FAIL]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "widgetType": self.widget_type,
            "widgetId": self.widget_id,
            "criteria": {k: v.to_dict() for k, v in self.criteria.items()},
            "overallStatus": self.overall_status,
            "timedOut": self.timed_out,
        }


@dataclass
class BatchResult:
    batch_index: int
    widgets: List[WidgetComplianceResult] = field(default_factory=list)
    regime_outcomes: Dict[str, str] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)

    def find(self, widget_id: str) -> Optional[WidgetComplianceResult]:
        for widget in self.widgets:
            if widget.widget_id == widget_id:
                return widget
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batchIndex": self.batch_index,
            "widgets": [w.to_dict() for w in self.widgets],
            "regimeOutcomes": dict(self.regime_outcomes),
            "notes": list(self.notes),
        }


@dataclass
class GapAnalysisEntry:
    area: str
    observation: str
    suggested_improvement: str
    priority: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "area": self.area,
            "observation": self.observation,
            "suggestedImprovement": self.suggested_improvement,
            "priority": self.priority,
        }


@dataclass
class ComplianceSummary:
    total_widgets: int
    pass_count: int
    fail_count: int
    warn_count: int
    skip_count: int
    criterion_pass_rates: Dict[str, Optional[float]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalWidgets": self.total_widgets,
            "passCount": self.pass_count,
            "failCount": self.fail_count,
            "warnCount": self.warn_count,
            "skipCount": self.skip_count,
            "criterionPassRates": dict(self.criterion_pass_rates),
        }


@dataclass
class ComplianceReport:
    timestamp: str
    total_widgets: int
    batches: List[BatchResult]
    summary: ComplianceSummary
    gap_analysis: List[GapAnalysisEntry] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)

    def all_widgets(self) -> List[WidgetComplianceResult]:
        return [w for batch in self.batches for w in batch.widgets]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "totalWidgets": self.total_widgets,
            "batches": [b.to_dict() for b in self.batches],
            "summary": self.summary.to_dict(),
            "gapAnalysis": [g.to_dict() for g in self.gap_analysis],
            "notes": list(self.notes),
        }


@dataclass
class ManifestItem:
    widget_id: str
    widget_type: str
    data_source: Optional[str] = None


@dataclass
class ManifestData:
    total_widgets: int
    batch: int
    batch_size: int
    selected: List[ManifestItem] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ManifestData":
        selected = []
        for item in payload.get("selected") or []:
            if not isinstance(item, dict):
                continue
            widget_id = item.get("cardId") or item.get("widgetId")
            if not widget_id:
                continue
            selected.append(ManifestItem(
                widget_id=str(widget_id),
                widget_type=str(item.get("cardType") or item.get("widgetType") or widget_id),
                data_source=item.get("dataSource"),
            ))
        total = payload.get("totalCards", payload.get("totalWidgets", 0))
        return cls(
            total_widgets=int(total or 0),
            batch=int(payload.get("batch", 0) or 0),
            batch_size=int(payload.get("batchSize", 0) or 0),
            selected=selected,
        )


@dataclass
class NavMetric:
    from_route: str
    to_route: str
    target_name: str
    scenario: str
    click_to_url_change_ms: float
    url_change_to_first_widget_ms: float
    url_change_to_all_widgets_ms: float
    total_ms: float
    widgets_found: int
    widgets_loaded: int
    widgets_timed_out: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_route,
            "to": self.to_route,
            "targetName": self.target_name,
            "scenario": self.scenario,
            "clickToUrlChangeMs": self.click_to_url_change_ms,
            "urlChangeToFirstWidgetMs": self.url_change_to_first_widget_ms,
            "urlChangeToAllWidgetsMs": self.url_change_to_all_widgets_ms,
            "totalMs": self.total_ms,
            "widgetsFound": self.widgets_found,
            "widgetsLoaded": self.widgets_loaded,
            "widgetsTimedOut": self.widgets_timed_out,
        }


@dataclass
class NavReport:
    timestamp: str
    metrics: List[NavMetric] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)

    def for_scenario(self, scenario: str) -> List[NavMetric]:
        return [m for m in self.metrics if m.scenario == scenario]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "metrics": [m.to_dict() for m in self.metrics],
            "notes": list(self.notes),
        }
