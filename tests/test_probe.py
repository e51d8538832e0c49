import pytest
from playwright.async_api import Error as PlaywrightError

from lifecycle_monitor.config import CachePolicy, SurfaceMarkers
from lifecycle_monitor.probe import (
    PageChannel,
    TickRequest,
    TickResponse,
    parse_snapshot,
    probe_storage,
)

from fakes import loading


class ScriptedPage:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def evaluate(self, script, arg=None):
        self.calls.append(arg)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def test_parse_snapshot():
    snap = parse_snapshot(loading("w1", demo=True, text=4), 150)

    assert snap.timestamp == 150
    assert snap.loading_flag == "true"
    assert snap.is_effectively_loading
    assert snap.has_demo_indicator
    assert snap.has_skeleton_overlay
    assert snap.text_content_length == 4


def test_parse_snapshot_rejects_malformed():
    with pytest.raises(ValueError):
        parse_snapshot({"id": "w1", "loading": "true"}, 0)
    with pytest.raises(ValueError):
        parse_snapshot({**loading("w1"), "textLength": None}, 0)


def test_request_payload_carries_markers():
    request = TickRequest(expected_ids=["w1"], skip_ids=["w2"], max_widgets=10)

    payload = request.to_payload(SurfaceMarkers())

    assert payload["expectedIds"] == ["w1"]
    assert payload["skipIds"] == ["w2"]
    assert payload["maxWidgets"] == 10
    assert payload["markers"]["idAttr"] == "data-card-id"
    assert payload["markers"]["contaminationClass"] == "border-yellow-500"


def test_tick_response_from_payload():
    response = TickResponse.from_payload({"count": 3, "widgets": [loading("w1")]})

    assert response.count == 3
    assert len(response.widgets) == 1
    with pytest.raises(ValueError):
        TickResponse.from_payload(None)
    with pytest.raises(ValueError):
        TickResponse.from_payload({"count": "many"})


@pytest.mark.asyncio
async def test_channel_round_trip():
    page = ScriptedPage({"count": 1, "widgets": [loading("w1")]})
    channel = PageChannel(page)

    response = await channel.request(TickRequest())

    assert response.count == 1
    assert page.calls[0]["markers"]["typeAttr"] == "data-card-type"


@pytest.mark.asyncio
async def test_channel_turns_page_errors_into_lost_ticks():
    page = ScriptedPage(
        PlaywrightError("Execution context was destroyed, most likely because of a navigation"),
        "not a dict",
    )
    channel = PageChannel(page)

    assert await channel.request(TickRequest()) is None
    assert await channel.request(TickRequest()) is None
    assert len(channel.errors) == 2
    assert channel.errors[0].startswith("Execution context was destroyed")


@pytest.mark.asyncio
async def test_probe_storage_counts():
    page = ScriptedPage({"localStorageCount": 2, "idbCount": 5, "cacheKeys": ["cache:pods"]})

    result = await probe_storage(page, CachePolicy())

    assert result.total == 7
    assert result.cache_keys == ["cache:pods"]
    assert page.calls[0]["probeDatabase"] == "kc_cache"


@pytest.mark.asyncio
async def test_probe_storage_failure_counts_as_zero():
    page = ScriptedPage(PlaywrightError("SecurityError: access denied"))

    result = await probe_storage(page, CachePolicy())

    assert result.total == 0
    assert "SecurityError" in result.error
