"""
Cold/warm batch orchestration.

The widget population is split into fixed-size batches. Every batch is first
sampled with caches cleared (cold regime, criteria a–f), then, after leaving
the app, revisited in the same order without clearing (warm regime, criteria
g–h). Batches run strictly one after another because cache clearing and
navigation mutate the whole browser environment.
"""

import math
from typing import Dict, List, Optional

from lifecycle_monitor.config import MonitorConfig
from lifecycle_monitor.criteria import check_criterion_f, evaluate_cold, evaluate_warm
from lifecycle_monitor.models import (
    FAIL,
    BatchResult,
    ComplianceReport,
    ManifestData,
    WidgetComplianceResult,
)
from lifecycle_monitor.probe import PageChannel
from lifecycle_monitor.report import assert_thresholds, build_report, print_summary, write_report
from lifecycle_monitor.sampler import Sampler
from lifecycle_monitor.session import PageComplianceDriver, open_session, seed_storage
from lifecycle_monitor.streams import StreamRequestLog


WARMUP_SETTLE_MS = 3_000


def partition(total: int, batch_size: int) -> List[int]:
    """Sizes of the batches covering ``total`` widgets."""
    if batch_size < 1:
        raise ValueError(f"batch size must be positive, got {batch_size}")
    if total <= 0:
        return []
    count = math.ceil(total / batch_size)
    return [min(batch_size, total - i * batch_size) for i in range(count)]


class BatchOrchestrator:
    def __init__(
        self,
        driver,
        sampler: Sampler,
        config: MonitorConfig,
        stream_log: Optional[StreamRequestLog] = None,
    ):
        self.driver = driver
        self.sampler = sampler
        self.config = config
        self.stream_log = stream_log or StreamRequestLog()
        self.batches: List[BatchResult] = []
        self.total_widgets = 0
        self.limits: List[str] = []

    async def run(self) -> List[BatchResult]:
        print("[Compliance] Phase 1: Warmup")
        try:
            manifest = await self.driver.navigate_to_batch(0, self.config.warmup_timeout_ms)
        except Exception as exc:
            self.limits.append(f"Warmup navigation failed: {exc}")
            return self.batches

        self.total_widgets = manifest.total_widgets
        sizes = partition(self.total_widgets, self.config.batch_size)
        print(f"[Compliance] Total widgets: {self.total_widgets}, batches: {len(sizes)}")
        await self.driver.settle(WARMUP_SETTLE_MS)

        print("[Compliance] Phase 2: Cold load")
        for index in range(len(sizes)):
            batch = await self.run_cold_batch(index, len(sizes))
            self.batches.append(batch)

        print("[Compliance] Phase 3: Navigate away")
        try:
            await self.driver.leave()
        except Exception as exc:
            self.limits.append(f"Leaving the app failed: {exc}")

        print("[Compliance] Phase 4: Warm return")
        for batch in self.batches:
            await self.run_warm_batch(batch, len(sizes))

        return self.batches

    async def run_cold_batch(self, index: int, total_batches: int) -> BatchResult:
        batch = BatchResult(batch_index=index)
        stage = "clear_cache"
        try:
            await self.driver.clear_caches()
            self.stream_log.clear()

            stage = "navigate"
            manifest = await self.driver.navigate_to_batch(index)
            if not manifest.selected:
                batch.notes.append("Manifest selected no widgets")
                return batch

            stage = "sample"
            resolution = await self.sampler.sample(
                [item.widget_id for item in manifest.selected],
                follow_loaded=True,
                hard_timeout_ms=self.config.batch_timeout_ms,
            )
            batch.regime_outcomes["cold"] = resolution.kind

            stage = "probe_storage"
            storage = check_criterion_f(await self.driver.probe_storage())

            stage = "evaluate"
            for item in manifest.selected:
                criteria = evaluate_cold(
                    resolution.history_for(item.widget_id),
                    self.stream_log.requests_for(item.data_source),
                    storage,
                )
                batch.widgets.append(WidgetComplianceResult(
                    widget_type=item.widget_type,
                    widget_id=item.widget_id,
                    criteria=criteria,
                    timed_out=resolution.is_timed_out(item.widget_id),
                ))
        except Exception as exc:
            self._record(batch, f"Cold batch {index + 1} failed at {stage}: {exc}")

        failures = sum(1 for w in batch.widgets if w.overall_status == FAIL)
        print(
            f"[Compliance] Batch {index + 1}/{total_batches} cold: "
            f"{len(batch.widgets)} widgets, {failures} failures"
        )
        return batch

    async def run_warm_batch(self, batch: BatchResult, total_batches: int) -> None:
        stage = "navigate"
        selected = 0
        try:
            manifest = await self.driver.navigate_to_batch(batch.batch_index)
            selected = len(manifest.selected)
            if not manifest.selected:
                return

            stage = "sample"
            resolution = await self.sampler.sample(
                [item.widget_id for item in manifest.selected],
                hold_ms=self.config.warm_wait_ms,
            )
            batch.regime_outcomes["warm"] = resolution.kind

            stage = "evaluate"
            self.merge_warm(batch, manifest, {
                item.widget_id: evaluate_warm(
                    resolution.history_for(item.widget_id),
                    self.config.warm_grace_snapshots,
                    self.config.poll_interval_ms,
                )
                for item in manifest.selected
            })
        except Exception as exc:
            self._record(batch, f"Warm batch {batch.batch_index + 1} failed at {stage}: {exc}")

        warm_failures = sum(
            1 for w in batch.widgets
            if any(w.criteria.get(c) and w.criteria[c].status == FAIL for c in ("g", "h"))
        )
        print(
            f"[Compliance] Batch {batch.batch_index + 1}/{total_batches} warm: "
            f"{selected} widgets, {warm_failures} warm failures"
        )

    def merge_warm(self, batch: BatchResult, manifest: ManifestData, warm: Dict[str, Dict]) -> None:
        for item in manifest.selected:
            widget = batch.find(item.widget_id)
            if widget is None:
                # cold pass never recorded this widget
                widget = WidgetComplianceResult(widget_type=item.widget_type, widget_id=item.widget_id)
                batch.widgets.append(widget)
            widget.merge(warm[item.widget_id])

    def _record(self, batch: BatchResult, message: str) -> None:
        batch.notes.append(message)
        self.limits.append(message)


async def run_compliance(config: MonitorConfig) -> ComplianceReport:
    async with open_session(config) as session:
        await seed_storage(session.page, config.cache)
        stream_log = StreamRequestLog()
        stream_log.attach(session.page)
        channel = PageChannel(session.page, config.markers)
        sampler = Sampler(
            channel,
            poll_interval_ms=config.poll_interval_ms,
            hard_timeout_ms=config.batch_timeout_ms,
            max_widgets=config.max_widgets,
        )
        orchestrator = BatchOrchestrator(
            PageComplianceDriver(session.page, config),
            sampler,
            config,
            stream_log,
        )
        batches = await orchestrator.run()

        notes = list(orchestrator.limits)
        if channel.errors:
            notes.append(f"{len(channel.errors)} sampler ticks lost to page errors (first: {channel.errors[0]})")
        notes.extend(session.notes[:20])

    print("[Compliance] Phase 5: Generating report")
    report = build_report(batches, orchestrator.total_widgets, notes)
    json_path, md_path = write_report(report, config.output_dir)
    print_summary(report)
    print(f"[Compliance] Report: {json_path}")
    print(f"[Compliance] Summary: {md_path}")
    return report


def verify(report: ComplianceReport, config: MonitorConfig) -> None:
    assert_thresholds(report, config.thresholds)
