"""
Browser session setup and the Playwright-backed drivers used by the
orchestrator and the navigation harness.
"""

import json
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional
from urllib.parse import urlparse

from playwright.async_api import Browser, BrowserContext, Error as PlaywrightError, Page, async_playwright

from lifecycle_monitor.config import (
    APP_LOAD_TIMEOUT_MS,
    DEFAULT_USER_AGENT,
    DEFAULT_VIEWPORT,
    LEAVE_SETTLE_MS,
    MANIFEST_GLOBAL,
    CachePolicy,
    MonitorConfig,
)
from lifecycle_monitor.models import ManifestData
from lifecycle_monitor.probe import StorageProbeResult, probe_storage


SEED_SCRIPT = """(() => {
    const policy = %s;
    for (const [k, v] of Object.entries(policy.seed)) {
        localStorage.setItem(k, v);
    }
})();"""

CLEAR_CACHE_SCRIPT = """async (policy) => {
    for (let i = localStorage.length - 1; i >= 0; i--) {
        const key = localStorage.key(i);
        if (!key) continue;
        if (policy.clearContains.some(p => key.includes(p)) || policy.clearPrefixes.some(p => key.startsWith(p))) {
            localStorage.removeItem(key);
        }
    }
    for (const [k, v] of Object.entries(policy.seed)) {
        localStorage.setItem(k, v);
    }
    const deleted = [];
    for (const name of policy.clearDatabases) {
        await new Promise((resolve) => {
            try {
                const req = indexedDB.deleteDatabase(name);
                req.onsuccess = () => { deleted.push(name); resolve(); };
                req.onerror = () => resolve();
                req.onblocked = () => resolve();
            } catch (e) {
                resolve();
            }
        });
    }
    return deleted;
}"""


@dataclass
class Session:
    browser: Browser
    context: BrowserContext
    page: Page
    notes: List[str] = field(default_factory=list)


@asynccontextmanager
async def open_session(config: MonitorConfig) -> AsyncIterator[Session]:
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=config.headless)
        context = await browser.new_context(
            base_url=config.base_url,
            viewport=DEFAULT_VIEWPORT,
            device_scale_factor=1,
            user_agent=DEFAULT_USER_AGENT,
        )
        page = await context.new_page()
        session = Session(browser=browser, context=context, page=page)

        def on_console(msg):
            if msg.type == "error":
                session.notes.append(f"Browser error: {msg.text[:200]}")

        def on_page_error(err):
            session.notes.append(f"Browser exception: {str(err)[:200]}")

        page.on("console", on_console)
        page.on("pageerror", on_page_error)
        try:
            yield session
        finally:
            await context.close()
            await browser.close()


async def seed_storage(page: Page, policy: CachePolicy) -> None:
    """Apply the live cold-mode storage seed before any page script runs.

    The init script fires on every navigation, warm returns included, so it
    only writes the seed. Cache clearing is left to ``clear_caches``.
    """
    await page.add_init_script(script=SEED_SCRIPT % json.dumps({"seed": policy.storage_seed}))


async def clear_caches(page: Page, policy: CachePolicy) -> List[str]:
    return await page.evaluate(CLEAR_CACHE_SCRIPT, policy.to_payload())


async def leave_app(page: Page, route: str = "/") -> None:
    await page.goto(route, wait_until="domcontentloaded")
    await page.wait_for_timeout(LEAVE_SETTLE_MS)


class PageComplianceDriver:
    def __init__(self, page: Page, config: MonitorConfig):
        self.page = page
        self.config = config

    async def clear_caches(self) -> List[str]:
        return await clear_caches(self.page, self.config.cache)

    async def navigate_to_batch(self, batch_index: int, timeout_ms: Optional[int] = None) -> ManifestData:
        timeout = timeout_ms or self.config.batch_timeout_ms
        await self.page.goto(
            self.config.manifest_path(batch_index),
            wait_until="domcontentloaded",
            timeout=timeout,
        )
        handle = await self.page.wait_for_function(
            f"() => window.{MANIFEST_GLOBAL}",
            timeout=timeout,
        )
        payload = await handle.json_value()
        return ManifestData.from_payload(payload if isinstance(payload, dict) else {})

    async def leave(self) -> None:
        await leave_app(self.page)

    async def probe_storage(self) -> StorageProbeResult:
        return await probe_storage(self.page, self.config.cache)

    async def settle(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)


class PageNavDriver:
    def __init__(self, page: Page, config: MonitorConfig):
        self.page = page
        self.config = config
        self.markers = config.markers

    def link_selector(self, route: str) -> str:
        return self.markers.nav_link_selector.format(route=route)

    def current_path(self) -> str:
        return urlparse(self.page.url).path or "/"

    async def goto(self, route: str, settle_ms: int = 0) -> None:
        await self.page.goto(route, wait_until="domcontentloaded")
        try:
            await self.page.wait_for_selector(self.markers.app_ready_selector, timeout=APP_LOAD_TIMEOUT_MS)
            await self.page.wait_for_selector(f"[{self.markers.widget_type_attr}]", timeout=10_000)
        except PlaywrightError:
            # some routes legitimately render no widgets
            pass
        if settle_ms:
            await self.page.wait_for_timeout(settle_ms)

    async def prewarm(self, routes: List[str]) -> None:
        for route in routes:
            try:
                await self.page.goto(route, wait_until="domcontentloaded")
                await self.page.wait_for_selector(f"[{self.markers.widget_type_attr}]", timeout=8_000)
            except PlaywrightError:
                continue

    async def _reveal(self, route: str) -> bool:
        link = self.page.locator(self.link_selector(route)).first
        await link.wait_for(state="attached", timeout=3_000)
        await link.scroll_into_view_if_needed()
        await link.wait_for(state="visible", timeout=2_000)
        return True

    async def ensure_link(self, route: str) -> bool:
        try:
            return await self._reveal(route)
        except PlaywrightError:
            pass
        # a previous navigation may have crashed the page; reload once
        try:
            await self.page.reload(wait_until="domcontentloaded")
            await self.page.wait_for_selector(self.markers.app_ready_selector, timeout=10_000)
            return await self._reveal(route)
        except PlaywrightError:
            return False

    async def click_link(self, route: str) -> None:
        await self.page.locator(self.link_selector(route)).first.click()

    async def link_visible(self, route: str, timeout_ms: int = 2_000) -> bool:
        try:
            await self.page.locator(self.link_selector(route)).first.wait_for(state="visible", timeout=timeout_ms)
            return True
        except PlaywrightError:
            return False

    async def wait_for_route(self, route: str, timeout_ms: int) -> bool:
        try:
            if route == "/":
                await self.page.wait_for_url(lambda url: urlparse(url).path == "/", timeout=timeout_ms)
            else:
                await self.page.wait_for_url(f"**{route}", timeout=timeout_ms)
            return True
        except PlaywrightError:
            return False

    async def go_back(self, timeout_ms: int = 10_000) -> None:
        await self.page.go_back(wait_until="domcontentloaded", timeout=timeout_ms)

    async def pause(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)
