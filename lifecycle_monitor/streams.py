import re
from dataclasses import dataclass
from typing import List, Optional

from playwright.async_api import Page, Request

from lifecycle_monitor.config import STREAM_URL_PATTERN


@dataclass
class StreamEntry:
    url: str
    method: str
    source: str


class StreamRequestLog:
    """Passively records streaming requests the page issues."""

    def __init__(self, pattern: str = STREAM_URL_PATTERN):
        self.pattern = re.compile(pattern)
        self.entries: List[StreamEntry] = []

    def attach(self, page: Page) -> None:
        def on_request(request: Request):
            self.record(request.url, request.method)

        page.on("request", on_request)

    def record(self, url: str, method: str = "GET") -> Optional[StreamEntry]:
        match = self.pattern.search(url)
        if not match:
            return None
        source = match.group(1) if match.groups() else ""
        entry = StreamEntry(url=url, method=method, source=source)
        self.entries.append(entry)
        return entry

    def clear(self) -> None:
        self.entries = []

    def urls(self) -> List[str]:
        return [e.url for e in self.entries]

    def requests_for(self, data_source: Optional[str] = None) -> List[str]:
        # without a declared source the whole batch log stands in for the widget
        if not data_source:
            return self.urls()
        return [e.url for e in self.entries if e.source == data_source]
