from types import SimpleNamespace

from lifecycle_monitor.streams import StreamRequestLog


class FakePage:
    def __init__(self):
        self.handlers = {}

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event, payload):
        for handler in self.handlers.get(event, []):
            handler(payload)


def test_records_only_stream_requests():
    log = StreamRequestLog()

    entry = log.record("http://localhost:8080/api/mcp/pods/stream?cluster=all")
    skipped = log.record("http://localhost:8080/api/mcp/pods")

    assert entry.source == "pods"
    assert skipped is None
    assert log.urls() == ["http://localhost:8080/api/mcp/pods/stream?cluster=all"]


def test_requests_for_data_source():
    log = StreamRequestLog()
    log.record("/api/mcp/pods/stream")
    log.record("/api/mcp/gpu/stream")

    assert log.requests_for("gpu") == ["/api/mcp/gpu/stream"]
    assert log.requests_for("events") == []
    assert log.requests_for(None) == ["/api/mcp/pods/stream", "/api/mcp/gpu/stream"]


def test_clear_between_batches():
    log = StreamRequestLog()
    log.record("/api/mcp/pods/stream")

    log.clear()

    assert log.urls() == []


def test_attach_listens_to_page_requests():
    page = FakePage()
    log = StreamRequestLog()
    log.attach(page)

    page.emit("request", SimpleNamespace(url="http://x/api/mcp/nodes/stream", method="GET"))
    page.emit("request", SimpleNamespace(url="http://x/assets/app.js", method="GET"))

    assert [e.source for e in log.entries] == ["nodes"]
