"""
Snapshot reader: in-page scripts that read widget markers, and the channel
that carries one discover-and-read request per sampler tick.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError, Page

from lifecycle_monitor.config import CachePolicy, SurfaceMarkers
from lifecycle_monitor.models import Snapshot


# Discovery and reading happen in the same evaluate call so a re-render
# cannot drop a widget between the two steps.
TICK_SCRIPT = """(req) => {
    const m = req.markers;
    const expected = req.expectedIds && req.expectedIds.length ? new Set(req.expectedIds) : null;
    const skip = new Set(req.skipIds || []);
    const selector = expected ? `[${m.idAttr}]` : `[${m.typeAttr}]`;
    const found = [];
    const seen = new Set();
    const els = document.querySelectorAll(selector);
    for (let i = 0; i < els.length && found.length < req.maxWidgets; i++) {
        const el = els[i];
        const id = el.getAttribute(m.idAttr) || `widget-${i}`;
        if (expected && !expected.has(id)) continue;
        if (seen.has(id)) continue;
        seen.add(id);
        found.push([id, el]);
    }
    const widgets = [];
    for (const [id, el] of found) {
        if (skip.has(id)) continue;
        const className = typeof el.className === 'string' ? el.className : (el.getAttribute('class') || '');
        widgets.push({
            id: id,
            type: el.getAttribute(m.typeAttr),
            loading: el.getAttribute(m.loadingAttr),
            effectiveLoading: el.getAttribute(m.effectiveLoadingAttr),
            demo: !!el.querySelector(m.demo),
            contamination: className.split(/\\s+/).includes(m.contaminationClass),
            skeleton: !!el.querySelector(m.skeleton),
            spinning: !!el.querySelector(m.spinner),
            textLength: (el.textContent || '').trim().length,
            visual: !!el.querySelector(m.visual),
        });
    }
    return { count: found.length, widgets: widgets };
}"""

STORAGE_PROBE_SCRIPT = """(policy) => {
    let localStorageCount = 0;
    const cacheKeys = [];
    const seeded = new Set(Object.keys(policy.seed || {}));
    for (let i = 0; i < localStorage.length; i++) {
        const key = localStorage.key(i);
        if (!key || seeded.has(key)) continue;
        const matches = policy.probeContains.some(p => key.includes(p))
            || policy.probePrefixes.some(p => key.startsWith(p));
        if (matches) {
            localStorageCount++;
            cacheKeys.push(key);
        }
    }
    const done = (idbCount) => ({ localStorageCount, idbCount, cacheKeys });
    return new Promise((resolve) => {
        try {
            const req = indexedDB.open(policy.probeDatabase);
            req.onerror = () => resolve(done(0));
            req.onsuccess = () => {
                try {
                    const db = req.result;
                    const stores = Array.from(db.objectStoreNames);
                    if (stores.length === 0) {
                        db.close();
                        resolve(done(0));
                        return;
                    }
                    const tx = db.transaction(stores, 'readonly');
                    let total = 0;
                    let pending = stores.length;
                    const finish = () => {
                        pending--;
                        if (pending === 0) {
                            db.close();
                            resolve(done(total));
                        }
                    };
                    for (const store of stores) {
                        const countReq = tx.objectStore(store).count();
                        countReq.onsuccess = () => { total += countReq.result; finish(); };
                        countReq.onerror = finish;
                    }
                } catch (e) {
                    resolve(done(0));
                }
            };
        } catch (e) {
            resolve(done(0));
        }
    });
}"""


@dataclass
class TickRequest:
    expected_ids: List[str] = field(default_factory=list)
    skip_ids: List[str] = field(default_factory=list)
    max_widgets: int = 30

    def to_payload(self, markers: SurfaceMarkers) -> Dict[str, Any]:
        return {
            "expectedIds": list(self.expected_ids),
            "skipIds": list(self.skip_ids),
            "maxWidgets": self.max_widgets,
            "markers": markers.to_payload(),
        }


@dataclass
class TickResponse:
    count: int
    widgets: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> "TickResponse":
        if not isinstance(payload, dict):
            raise ValueError(f"Malformed tick response: {payload!r}")
        widgets = payload.get("widgets") or []
        try:
            count = int(payload.get("count", len(widgets)))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Malformed widget count: {payload.get('count')!r}") from exc
        return cls(count=count, widgets=list(widgets))


@dataclass
class StorageProbeResult:
    local_storage_count: int = 0
    indexed_db_count: int = 0
    cache_keys: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def total(self) -> int:
        return self.local_storage_count + self.indexed_db_count


def parse_snapshot(raw: Dict[str, Any], timestamp: float) -> Snapshot:
    """Build a Snapshot from one widget entry of a tick response."""
    try:
        return Snapshot(
            timestamp=float(timestamp),
            loading_flag=_attr(raw["loading"]),
            effective_loading_flag=_attr(raw["effectiveLoading"]),
            has_demo_indicator=bool(raw["demo"]),
            has_cache_contamination_marker=bool(raw["contamination"]),
            has_skeleton_overlay=bool(raw["skeleton"]),
            has_spinning_refresh_indicator=bool(raw["spinning"]),
            text_content_length=int(raw["textLength"]),
            has_visual_content=bool(raw["visual"]),
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Malformed snapshot payload: {exc}") from exc


def _attr(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


class PageChannel:
    """Request/response channel to the page under observation."""

    def __init__(self, page: Page, markers: Optional[SurfaceMarkers] = None):
        self.page = page
        self.markers = markers or SurfaceMarkers()
        self.errors: List[str] = []

    async def request(self, request: TickRequest) -> Optional[TickResponse]:
        try:
            payload = await self.page.evaluate(TICK_SCRIPT, request.to_payload(self.markers))
        except PlaywrightError as exc:
            # page navigated or the context was torn down mid-render
            self.errors.append(str(exc).splitlines()[0] if str(exc) else type(exc).__name__)
            return None
        try:
            return TickResponse.from_payload(payload)
        except ValueError as exc:
            self.errors.append(str(exc))
            return None


async def probe_storage(page: Page, policy: CachePolicy) -> StorageProbeResult:
    try:
        info = await page.evaluate(STORAGE_PROBE_SCRIPT, policy.to_payload())
    except PlaywrightError as exc:
        return StorageProbeResult(error=str(exc))
    if not isinstance(info, dict):
        return StorageProbeResult(error=f"unexpected probe result {info!r}")
    return StorageProbeResult(
        local_storage_count=int(info.get("localStorageCount") or 0),
        indexed_db_count=int(info.get("idbCount") or 0),
        cache_keys=[str(k) for k in info.get("cacheKeys") or []],
    )
