"""
Cooperative polling loop that turns per-tick widget reads into histories.

One channel request per tick discovers the visible widgets and reads every
widget that still needs sampling. The loop resolves in exactly one of three
ways: ``Completed`` (every tracked widget reached a loaded snapshot and the
population was stable), ``GenuinelyEmpty`` (no ids were expected, nothing
appeared within the empty window and the empty page stayed stable), or ``TimedOut`` (hard timeout, with
partial histories). None of them raise.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, ClassVar, Dict, Iterable, List, Optional

from lifecycle_monitor.config import (
    BATCH_LOAD_TIMEOUT_MS,
    EMPTY_RESOLUTION_MS,
    MAX_TRACKED_WIDGETS,
    POLL_INTERVAL_MS,
    STABILITY_WINDOW_MS,
)
from lifecycle_monitor.models import History
from lifecycle_monitor.probe import TickRequest, TickResponse, parse_snapshot


@dataclass
class SamplerResolution:
    histories: Dict[str, History]
    widget_types: Dict[str, str]
    loaded_at_ms: Dict[str, Optional[float]]
    first_loaded_ms: Optional[float]
    elapsed_ms: float
    stable_since_ms: float
    ticks: int
    missed_ticks: int
    malformed_snapshots: int
    timed_out_ids: List[str] = field(default_factory=list)

    kind: ClassVar[str] = "resolution"

    def history_for(self, widget_id: str) -> History:
        return self.histories.get(widget_id, [])

    @property
    def widgets_found(self) -> int:
        return len(self.histories)

    @property
    def widgets_loaded(self) -> int:
        return sum(1 for v in self.loaded_at_ms.values() if v is not None)

    def is_timed_out(self, widget_id: str) -> bool:
        return widget_id in self.timed_out_ids


class Completed(SamplerResolution):
    kind = "completed"


class GenuinelyEmpty(SamplerResolution):
    kind = "empty"


class TimedOut(SamplerResolution):
    kind = "timed_out"


class SamplerState:
    """Polling state owned by a single sampler run."""

    def __init__(self, expected_ids: Iterable[str]):
        self.expected_ids: List[str] = list(dict.fromkeys(expected_ids))
        self.histories: Dict[str, History] = {}
        self.widget_types: Dict[str, str] = {}
        self.loaded_at: Dict[str, Optional[float]] = {}
        self.first_loaded_ms: Optional[float] = None
        self.last_count = -1
        self.stable_since = 0.0
        self.ticks = 0
        self.missed_ticks = 0
        self.malformed_snapshots = 0
        self.closed = False

    def track(self, widget_id: str, widget_type: Optional[str]) -> None:
        if widget_id not in self.histories:
            self.histories[widget_id] = []
            self.loaded_at[widget_id] = None
        if widget_type and widget_id not in self.widget_types:
            self.widget_types[widget_id] = widget_type

    def observe(self, response: TickResponse, now: float) -> None:
        self.ticks += 1
        for raw in response.widgets:
            if not isinstance(raw, dict) or not raw.get("id"):
                self.malformed_snapshots += 1
                continue
            widget_id = str(raw["id"])
            self.track(widget_id, raw.get("type"))
            try:
                snap = parse_snapshot(raw, now)
            except ValueError:
                # unreadable this tick; retried on the next one
                self.malformed_snapshots += 1
                continue
            self.histories[widget_id].append(snap)
            if snap.is_loaded and self.loaded_at[widget_id] is None:
                self.loaded_at[widget_id] = now
                if self.first_loaded_ms is None:
                    self.first_loaded_ms = now
        self.update_population(response.count, now)

    def update_population(self, count: int, now: float) -> None:
        if count != self.last_count:
            self.stable_since = now
            self.last_count = count

    def is_stable(self, now: float, window_ms: float) -> bool:
        return self.last_count >= 0 and now - self.stable_since > window_ms

    def is_loaded(self, widget_id: str) -> bool:
        return self.loaded_at.get(widget_id) is not None

    def frozen_ids(self) -> List[str]:
        return [wid for wid in self.histories if self.is_loaded(wid)]

    def pending_ids(self) -> List[str]:
        ids = list(self.histories) + [wid for wid in self.expected_ids if wid not in self.histories]
        return [wid for wid in ids if not self.is_loaded(wid)]

    def all_loaded(self) -> bool:
        return bool(self.histories) and not self.pending_ids()

    @property
    def ever_discovered(self) -> bool:
        return bool(self.histories)

    def resolve(self, cls, elapsed_ms: float, timed_out: bool = False) -> SamplerResolution:
        result = cls(
            histories={wid: list(h) for wid, h in self.histories.items()},
            widget_types=dict(self.widget_types),
            loaded_at_ms=dict(self.loaded_at),
            first_loaded_ms=self.first_loaded_ms,
            elapsed_ms=elapsed_ms,
            stable_since_ms=self.stable_since,
            ticks=self.ticks,
            missed_ticks=self.missed_ticks,
            malformed_snapshots=self.malformed_snapshots,
            timed_out_ids=self.pending_ids() if timed_out else [],
        )
        self.close()
        return result

    def close(self) -> None:
        self.histories = {}
        self.loaded_at = {}
        self.widget_types = {}
        self.closed = True


class Sampler:
    def __init__(
        self,
        channel,
        poll_interval_ms: int = POLL_INTERVAL_MS,
        hard_timeout_ms: int = BATCH_LOAD_TIMEOUT_MS,
        stability_window_ms: int = STABILITY_WINDOW_MS,
        empty_resolution_ms: int = EMPTY_RESOLUTION_MS,
        max_widgets: int = MAX_TRACKED_WIDGETS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.channel = channel
        self.poll_interval_ms = poll_interval_ms
        self.hard_timeout_ms = hard_timeout_ms
        self.stability_window_ms = stability_window_ms
        self.empty_resolution_ms = empty_resolution_ms
        self.max_widgets = max_widgets
        self.clock = clock
        self.sleep = sleep

    async def sample(
        self,
        widget_ids: Optional[Iterable[str]] = None,
        follow_loaded: bool = False,
        hold_ms: Optional[float] = None,
        hard_timeout_ms: Optional[float] = None,
    ) -> SamplerResolution:
        """
        Poll until resolution.

        ``widget_ids`` restricts discovery to those ids and requires each of
        them to load before ``Completed``; without it every visible widget is
        discovered. ``follow_loaded`` keeps sampling widgets after their first
        loaded snapshot. ``hold_ms`` samples for a fixed window instead of
        resolving early, then classifies what was seen.
        """
        state = SamplerState(widget_ids or [])
        timeout_ms = self.hard_timeout_ms if hard_timeout_ms is None else hard_timeout_ms
        start = self.clock()

        while True:
            now = round((self.clock() - start) * 1000.0, 3)
            await self._tick(state, now, follow_loaded or hold_ms is not None)

            if hold_ms is not None:
                if now >= hold_ms:
                    return self._classify(state, now)
            else:
                stable = state.is_stable(now, self.stability_window_ms)
                if stable and state.all_loaded():
                    return state.resolve(Completed, now)
                if (
                    stable
                    and not state.expected_ids
                    and not state.ever_discovered
                    and state.last_count == 0
                    and now > self.empty_resolution_ms
                ):
                    return state.resolve(GenuinelyEmpty, now)
                if now > timeout_ms:
                    return state.resolve(TimedOut, now, timed_out=True)

            await self.sleep(self.poll_interval_ms / 1000.0)

    async def _tick(self, state: SamplerState, now: float, follow_loaded: bool) -> None:
        request = TickRequest(
            expected_ids=state.expected_ids,
            skip_ids=[] if follow_loaded else state.frozen_ids(),
            max_widgets=self.max_widgets,
        )
        response = await self.channel.request(request)
        if response is None:
            state.missed_ticks += 1
            return
        state.observe(response, now)

    def _classify(self, state: SamplerState, now: float) -> SamplerResolution:
        # expected ids that never rendered are pending, not empty
        if not state.expected_ids and not state.ever_discovered:
            return state.resolve(GenuinelyEmpty, now)
        if state.all_loaded():
            return state.resolve(Completed, now)
        return state.resolve(TimedOut, now, timed_out=True)

