"""
Navigation timing harness.

Measures sidebar navigations in three phases: click to URL change (router
transition), URL change to first loaded widget, and URL change to all widgets
loaded. Widget loading is observed with the same sampler the compliance run
uses, in discover-everything mode.
"""

import math
import statistics
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from lifecycle_monitor.config import (
    NAV_WIDGET_TIMEOUT_MS,
    RAPID_CLICK_GAP_MS,
    SLOW_NAVIGATION_MS,
    URL_CHANGE_TIMEOUT_MS,
    WARM_NAV_THRESHOLD_MS,
    MonitorConfig,
)
from lifecycle_monitor.models import NavMetric, NavReport
from lifecycle_monitor.probe import PageChannel
from lifecycle_monitor.report import ensure_dir, now_iso, simple_table, write_json, write_text
from lifecycle_monitor.sampler import GenuinelyEmpty, Sampler, SamplerResolution
from lifecycle_monitor.session import PageNavDriver, open_session, seed_storage


SCENARIOS = ["cold-nav", "warm-nav", "from-main", "from-clusters", "rapid-nav", "back-nav"]
PERCENTILES = [50, 90, 95, 99]

WARMUP_ROUTES = ["/deploy", "/ai-ml", "/compliance", "/ci-cd", "/arcade"]
FROM_MAIN_TARGETS = [
    "clusters", "compute", "security", "pods", "deployments", "events", "workloads",
    "helm", "compliance", "cost", "ai-ml", "deploy", "ai-agents",
]
FROM_CLUSTERS_TARGETS = [
    "compute", "security", "pods", "deployments", "events", "workloads",
    "helm", "compliance", "cost", "ai-ml", "deploy", "ai-agents", "arcade",
]
RAPID_TARGETS = [
    "clusters", "pods", "deployments", "security", "ai-ml",
    "events", "helm", "compliance", "deploy", "workloads",
]
BACK_NAV_DEPTH = 10
HOME_SETTLE_MS = 500
COLD_HOME_SETTLE_MS = 1_000
BACK_NAV_WIDGET_TIMEOUT_MS = 5_000


def percentile(values: List[float], p: float) -> float:
    """Nearest-rank percentile; -1 for an empty sample."""
    if not values:
        return -1
    ordered = sorted(values)
    idx = math.ceil(p * len(ordered) / 100) - 1
    return ordered[max(0, idx)]


def with_widgets(metrics: List[NavMetric]) -> List[NavMetric]:
    return [m for m in metrics if m.widgets_found > 0 and m.total_ms > 0]


def summarize_scenario(metrics: List[NavMetric]) -> str:
    if not metrics:
        return "no data"
    valid = [m for m in metrics if m.widgets_found > 0]

    def avg(values: List[float]) -> int:
        return round(statistics.mean(values)) if values else -1

    timed_out = sum(m.widgets_timed_out for m in metrics)
    return (
        f"navs={len(metrics)} with-widgets={len(valid)} "
        f"avg-total={avg([m.total_ms for m in valid])}ms "
        f"click→url={avg([m.click_to_url_change_ms for m in valid])}ms "
        f"url→first={avg([m.url_change_to_first_widget_ms for m in valid])}ms "
        f"url→all={avg([m.url_change_to_all_widgets_ms for m in valid])}ms "
        f"timeouts={timed_out}"
    )


def latency_percentiles(metrics: List[NavMetric]) -> Dict[str, float]:
    totals = [m.total_ms for m in with_widgets(metrics)]
    if not totals:
        return {}
    result = {f"p{p}": percentile(totals, p) for p in PERCENTILES}
    result["n"] = len(totals)
    return result


def scenario_percentiles(metrics: List[NavMetric]) -> Dict[str, Dict[str, float]]:
    table = {}
    for scenario in SCENARIOS:
        stats = latency_percentiles([m for m in metrics if m.scenario == scenario])
        if stats:
            table[scenario] = stats
    return table


def bottleneck(metric: NavMetric) -> str:
    if metric.click_to_url_change_ms > metric.url_change_to_all_widgets_ms:
        return "router transition"
    remaining = metric.url_change_to_all_widgets_ms - metric.url_change_to_first_widget_ms
    if metric.url_change_to_first_widget_ms > remaining:
        return "first widget render"
    return "widget data loading"


def slow_navigations(
    metrics: List[NavMetric],
    threshold_ms: float = SLOW_NAVIGATION_MS,
) -> List[Tuple[NavMetric, str]]:
    return [
        (m, bottleneck(m))
        for m in metrics
        if m.total_ms > threshold_ms and m.widgets_found > 0
    ]


def warm_nav_average(metrics: List[NavMetric]) -> Optional[int]:
    warm = with_widgets([m for m in metrics if m.scenario == "warm-nav"])
    if not warm:
        return None
    return round(statistics.mean([m.total_ms for m in warm]))


def check_nav_threshold(report: NavReport, threshold_ms: float = WARM_NAV_THRESHOLD_MS) -> None:
    avg = warm_nav_average(report.metrics)
    if avg is None:
        return
    print(f"[NAV] warm-nav avg total: {avg}ms (threshold: {threshold_ms}ms)")
    if avg >= threshold_ms:
        raise AssertionError(f"warm-nav avg total {avg}ms exceeds {threshold_ms}ms threshold")


def render_nav_markdown(report: NavReport) -> str:
    lines = [
        "# Dashboard Navigation Performance",
        "",
        f"Generated: {report.timestamp}",
        f"Total navigations: {len(report.metrics)}",
        "",
        "## Summary by Scenario",
        "",
    ]
    for scenario in SCENARIOS:
        lines.append(f"- **{scenario}**: {summarize_scenario(report.for_scenario(scenario))}")

    rows = [
        {
            "Scenario": m.scenario,
            "Dashboard": m.target_name,
            "Total(ms)": m.total_ms,
            "Click→URL(ms)": m.click_to_url_change_ms,
            "URL→First(ms)": m.url_change_to_first_widget_ms,
            "URL→All(ms)": m.url_change_to_all_widgets_ms,
            "Widgets": f"{m.widgets_found}/{m.widgets_loaded}",
        }
        for m in report.metrics
    ]
    lines += [
        "",
        "## Per-Navigation Breakdown",
        "",
        simple_table(
            rows,
            ["Scenario", "Dashboard", "Total(ms)", "Click→URL(ms)", "URL→First(ms)", "URL→All(ms)", "Widgets"],
        ).rstrip("\n"),
    ]

    slow = slow_navigations(report.metrics)
    if slow:
        lines += ["", f"## Slow Navigations (> {SLOW_NAVIGATION_MS // 1000}s)", ""]
        for m, cause in slow:
            lines.append(f"- **{m.target_name}** ({m.scenario}): {m.total_ms}ms, bottleneck: {cause}")

    overall = latency_percentiles(report.metrics)
    if overall:
        lines += ["", "## Overall Latency Percentiles", ""]
        for p in PERCENTILES:
            lines.append(f"- **p{p}**: {overall[f'p{p}']}ms")

    per_scenario = scenario_percentiles(report.metrics)
    if per_scenario:
        lines += [
            "",
            "## Per-Scenario Percentiles",
            "",
            simple_table(
                [
                    {"Scenario": s, "N": v["n"], "p50(ms)": v["p50"], "p95(ms)": v["p95"], "p99(ms)": v["p99"]}
                    for s, v in per_scenario.items()
                ],
                ["Scenario", "N", "p50(ms)", "p95(ms)", "p99(ms)"],
            ).rstrip("\n"),
        ]

    if report.notes:
        lines += ["", "## Run Notes", ""] + [f"- {note}" for note in report.notes]

    return "\n".join(lines) + "\n"


def write_nav_report(report: NavReport, out_dir: Path) -> Tuple[Path, Path]:
    out_dir = Path(out_dir)
    ensure_dir(out_dir)
    json_path = out_dir / "nav-report.json"
    md_path = out_dir / "nav-summary.md"
    write_json(json_path, report.to_dict())
    write_text(md_path, render_nav_markdown(report))
    return json_path, md_path


class NavigationTimingHarness:
    def __init__(
        self,
        driver,
        sampler: Sampler,
        dashboards: List[Dict[str, str]],
        clock: Callable[[], float] = time.monotonic,
        widget_timeout_ms: int = NAV_WIDGET_TIMEOUT_MS,
    ):
        self.driver = driver
        self.sampler = sampler
        self.dashboards = dashboards
        self.clock = clock
        self.widget_timeout_ms = widget_timeout_ms
        self.metrics: List[NavMetric] = []
        self.limits: List[str] = []

    def _now_ms(self) -> float:
        return self.clock() * 1000.0

    def dashboard(self, dashboard_id: str) -> Optional[Dict[str, str]]:
        for item in self.dashboards:
            if item["id"] == dashboard_id:
                return item
        return None

    def targets(self, ids: List[str]) -> List[Dict[str, str]]:
        return [d for d in self.dashboards if d["id"] in ids]

    async def measure(self, from_route: str, target: Dict[str, str], scenario: str) -> Optional[NavMetric]:
        route = target["route"]
        if not await self.driver.ensure_link(route):
            print(f"  SKIP {target['name']}: sidebar link not found after recovery")
            return None

        click_at = self._now_ms()
        await self.driver.click_link(route)

        if route == from_route:
            url_changed_at = click_at
        else:
            if not await self.driver.wait_for_route(route, URL_CHANGE_TIMEOUT_MS):
                print(f"  TIMEOUT {target['name']}: URL did not change to {route} within {URL_CHANGE_TIMEOUT_MS // 1000}s")
            url_changed_at = self._now_ms()
        click_to_url = round(url_changed_at - click_at)

        resolution = await self.sampler.sample(hard_timeout_ms=self.widget_timeout_ms)
        return self.build_metric(from_route, target, scenario, click_to_url, resolution)

    def build_metric(
        self,
        from_route: str,
        target: Dict[str, str],
        scenario: str,
        click_to_url: int,
        resolution: SamplerResolution,
    ) -> NavMetric:
        if isinstance(resolution, GenuinelyEmpty):
            first_ms, all_ms = -1, -1
        else:
            first = resolution.first_loaded_ms
            first_ms = round(first) if first is not None else -1
            all_ms = round(resolution.elapsed_ms)
        return NavMetric(
            from_route=from_route,
            to_route=target["route"],
            target_name=target["name"],
            scenario=scenario,
            click_to_url_change_ms=click_to_url,
            url_change_to_first_widget_ms=first_ms,
            url_change_to_all_widgets_ms=all_ms,
            total_ms=click_to_url + all_ms if all_ms >= 0 else click_to_url,
            widgets_found=resolution.widgets_found,
            widgets_loaded=resolution.widgets_loaded,
            widgets_timed_out=len(resolution.timed_out_ids),
        )

    def record(self, metric: NavMetric) -> None:
        self.metrics.append(metric)
        print(
            f"  {metric.scenario} → {metric.target_name}: total={metric.total_ms}ms "
            f"click→url={metric.click_to_url_change_ms}ms "
            f"url→first={metric.url_change_to_first_widget_ms}ms "
            f"url→all={metric.url_change_to_all_widgets_ms}ms "
            f"widgets={metric.widgets_found}/{metric.widgets_loaded}"
        )

    async def prewarm_all(self) -> None:
        await self.driver.goto("/")
        await self.driver.prewarm([d["route"] for d in self.dashboards])

    async def sweep(self, scenario: str) -> None:
        current = "/"
        for target in self.dashboards:
            if target["route"] == "/":
                continue
            metric = await self.measure(current, target, scenario)
            if metric:
                self.record(metric)
                current = target["route"]

    async def run_cold_nav(self) -> None:
        await self.driver.goto("/", settle_ms=COLD_HOME_SETTLE_MS)
        await self.sweep("cold-nav")

    async def run_warm_nav(self) -> None:
        await self.prewarm_all()
        await self.driver.goto("/", settle_ms=HOME_SETTLE_MS)
        await self.sweep("warm-nav")

    async def run_from_hub(self, hub_id: str, scenario: str, target_ids: List[str]) -> None:
        hub = self.dashboard(hub_id)
        if hub is None:
            self.limits.append(f"{scenario}: hub dashboard '{hub_id}' is not configured")
            return
        await self.prewarm_all()
        for target in self.targets(target_ids):
            try:
                await self.driver.goto(hub["route"], settle_ms=HOME_SETTLE_MS)
                metric = await self.measure(hub["route"], target, scenario)
                if metric:
                    self.record(metric)
            except Exception as exc:
                message = f"{scenario} → {target['name']}: SKIPPED ({str(exc)[:80]})"
                print(f"  {message}")
                self.limits.append(message)

    async def run_rapid_nav(self) -> None:
        await self.prewarm_all()
        await self.driver.goto("/", settle_ms=HOME_SETTLE_MS)

        targets = self.targets(RAPID_TARGETS)
        current = "/"
        for i, target in enumerate(targets):
            route = target["route"]
            if not await self.driver.link_visible(route):
                continue

            click_at = self._now_ms()
            await self.driver.click_link(route)
            await self.driver.pause(RAPID_CLICK_GAP_MS)
            landed = self.driver.current_path()

            if i == len(targets) - 1:
                # only the final click is expected to render
                metric = await self.measure(current, target, "rapid-nav")
                if metric:
                    metric.click_to_url_change_ms = round(self._now_ms() - click_at - RAPID_CLICK_GAP_MS)
                    self.record(metric)
            else:
                elapsed = round(self._now_ms() - click_at)
                self.metrics.append(NavMetric(
                    from_route=current,
                    to_route=route,
                    target_name=target["name"],
                    scenario="rapid-nav",
                    click_to_url_change_ms=elapsed if landed == route else -1,
                    url_change_to_first_widget_ms=-1,
                    url_change_to_all_widgets_ms=-1,
                    total_ms=elapsed,
                    widgets_found=-1,
                    widgets_loaded=-1,
                    widgets_timed_out=0,
                ))
            current = route

    async def run_back_nav(self, depth: int = BACK_NAV_DEPTH) -> None:
        forward = self.dashboards[:depth]
        for target in forward:
            await self.driver.goto(target["route"], settle_ms=HOME_SETTLE_MS)
        print(f"[NAV] Navigated forward through {len(forward)} dashboards, now going back")

        for i in range(len(forward) - 2, -1, -1):
            back_at = self._now_ms()
            await self.driver.go_back()
            back_ms = round(self._now_ms() - back_at)

            resolution = await self.sampler.sample(hard_timeout_ms=BACK_NAV_WIDGET_TIMEOUT_MS)
            self.record(self.build_metric(forward[i + 1]["route"], forward[i], "back-nav", back_ms, resolution))

    async def run_scenario(self, scenario: str) -> None:
        if scenario == "cold-nav":
            await self.run_cold_nav()
        elif scenario == "warm-nav":
            await self.run_warm_nav()
        elif scenario == "from-main":
            await self.run_from_hub("main", scenario, FROM_MAIN_TARGETS)
        elif scenario == "from-clusters":
            await self.run_from_hub("clusters", scenario, FROM_CLUSTERS_TARGETS)
        elif scenario == "rapid-nav":
            await self.run_rapid_nav()
        elif scenario == "back-nav":
            await self.run_back_nav()
        else:
            raise ValueError(f"Unknown scenario: {scenario}")

    async def run(self, scenarios: Optional[List[str]] = None) -> NavReport:
        for scenario in scenarios or SCENARIOS:
            try:
                await self.run_scenario(scenario)
            except Exception as exc:
                self.limits.append(f"{scenario} failed: {exc}")
            print(f"[NAV] {scenario}: {summarize_scenario([m for m in self.metrics if m.scenario == scenario])}")
        return NavReport(timestamp=now_iso(), metrics=list(self.metrics), notes=list(self.limits))


async def run_navigation(config: MonitorConfig, scenarios: Optional[List[str]] = None) -> NavReport:
    async with open_session(config) as session:
        await seed_storage(session.page, config.cache)
        driver = PageNavDriver(session.page, config)
        sampler = Sampler(
            PageChannel(session.page, config.markers),
            poll_interval_ms=config.poll_interval_ms,
            hard_timeout_ms=config.nav_timeout_ms,
            max_widgets=config.max_widgets,
        )
        harness = NavigationTimingHarness(
            driver,
            sampler,
            config.dashboards,
            widget_timeout_ms=config.nav_timeout_ms,
        )

        print("[NAV] Warmup: priming module cache")
        await driver.goto("/")
        known = {d["route"] for d in config.dashboards}
        await driver.prewarm([route for route in WARMUP_ROUTES if route in known])

        report = await harness.run(scenarios)
        report.notes.extend(session.notes[:20])

    json_path, md_path = write_nav_report(report, config.output_dir)
    print(f"[NAV] Report: {json_path}")
    print(f"[NAV] Summary: {md_path}")
    return report
