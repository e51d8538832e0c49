import pytest

from lifecycle_monitor.criteria import check_criterion_a, check_criterion_d
from lifecycle_monitor.models import FAIL, PASS
from lifecycle_monitor.sampler import Completed, GenuinelyEmpty, Sampler, SamplerState, TimedOut

from fakes import FakeChannel, loaded, loading


def make_sampler(channel, clock, **kwargs) -> Sampler:
    kwargs.setdefault("poll_interval_ms", 50)
    kwargs.setdefault("hard_timeout_ms", 20_000)
    return Sampler(channel, clock=clock, sleep=clock.sleep, **kwargs)


@pytest.mark.asyncio
async def test_completes_after_skeleton_then_content(clock):
    channel = FakeChannel([[loading("w1")]] * 3 + [[loaded("w1")]])
    sampler = make_sampler(channel, clock)

    resolution = await sampler.sample()

    assert isinstance(resolution, Completed)
    history = resolution.history_for("w1")
    # frozen after the first loaded snapshot
    assert [s.is_loaded for s in history] == [False, False, False, True]
    assert resolution.first_loaded_ms == pytest.approx(150)
    assert resolution.loaded_at_ms["w1"] == pytest.approx(150)
    assert check_criterion_a(history).status == PASS
    assert check_criterion_d(history).status == PASS


@pytest.mark.asyncio
async def test_never_completes_before_stability_window(clock):
    frames = [[loaded("w1")]] * 5 + [[loaded("w1"), loaded("w2")]]
    sampler = make_sampler(FakeChannel(frames), clock)

    resolution = await sampler.sample()

    assert isinstance(resolution, Completed)
    assert resolution.stable_since_ms == pytest.approx(250)
    assert resolution.elapsed_ms > resolution.stable_since_ms + 500
    assert resolution.elapsed_ms < resolution.stable_since_ms + 600
    assert set(resolution.histories) == {"w1", "w2"}


@pytest.mark.asyncio
async def test_loaded_widgets_are_skipped_on_later_ticks(clock):
    channel = FakeChannel([[loading("w1"), loaded("w2")], [loaded("w1"), loaded("w2")]])
    sampler = make_sampler(channel, clock)

    await sampler.sample()

    assert channel.requests[0].skip_ids == []
    assert channel.requests[1].skip_ids == ["w2"]
    assert sorted(channel.requests[-1].skip_ids) == ["w1", "w2"]


@pytest.mark.asyncio
async def test_follow_loaded_keeps_reading(clock):
    channel = FakeChannel([[loaded("w1")]])
    sampler = make_sampler(channel, clock)

    resolution = await sampler.sample(follow_loaded=True)

    assert all(r.skip_ids == [] for r in channel.requests)
    assert len(resolution.history_for("w1")) == resolution.ticks


@pytest.mark.asyncio
async def test_genuinely_empty_after_eight_seconds(clock):
    sampler = make_sampler(FakeChannel([[]]), clock)

    resolution = await sampler.sample()

    assert isinstance(resolution, GenuinelyEmpty)
    assert resolution.kind == "empty"
    assert resolution.elapsed_ms > 8_000
    assert resolution.histories == {}


@pytest.mark.asyncio
async def test_times_out_with_partial_history(clock):
    sampler = make_sampler(FakeChannel([[loading("w1"), loaded("w2")]]), clock, hard_timeout_ms=1_000)

    resolution = await sampler.sample()

    assert isinstance(resolution, TimedOut)
    assert resolution.timed_out_ids == ["w1"]
    assert resolution.is_timed_out("w1")
    assert not resolution.is_timed_out("w2")
    assert resolution.widgets_found == 2
    assert resolution.widgets_loaded == 1
    assert 1_000 < resolution.elapsed_ms < 1_100
    assert check_criterion_d(resolution.history_for("w1")).status == FAIL


@pytest.mark.asyncio
async def test_expected_ids_must_all_load(clock):
    # w2 is expected but never renders
    sampler = make_sampler(FakeChannel([[loaded("w1")]]), clock, hard_timeout_ms=2_000)

    resolution = await sampler.sample(["w1", "w2"])

    assert isinstance(resolution, TimedOut)
    assert resolution.timed_out_ids == ["w2"]
    assert resolution.history_for("w2") == []


@pytest.mark.asyncio
async def test_expected_ids_wait_past_empty_window(clock):
    # slow cold chunk: the expected widget mounts after nine seconds
    frames = [[]] * 180 + [[loading("w1")]] * 3 + [[loaded("w1")]]
    sampler = make_sampler(FakeChannel(frames), clock)

    resolution = await sampler.sample(["w1"], follow_loaded=True)

    assert isinstance(resolution, Completed)
    assert resolution.loaded_at_ms["w1"] == pytest.approx(9_150)
    assert len(resolution.history_for("w1")) > 4
    assert check_criterion_a(resolution.history_for("w1")).status == PASS


@pytest.mark.asyncio
async def test_expected_ids_never_rendered_time_out(clock):
    sampler = make_sampler(FakeChannel([[]]), clock)

    resolution = await sampler.sample(["w1"])

    assert isinstance(resolution, TimedOut)
    assert resolution.elapsed_ms > 20_000
    assert resolution.timed_out_ids == ["w1"]


@pytest.mark.asyncio
async def test_hold_with_expected_ids_never_rendered(clock):
    sampler = make_sampler(FakeChannel([[]]), clock)

    resolution = await sampler.sample(["w1"], hold_ms=3_000)

    assert isinstance(resolution, TimedOut)
    assert resolution.timed_out_ids == ["w1"]


@pytest.mark.asyncio
async def test_lost_ticks_are_retried(clock):
    channel = FakeChannel([None, None, [loaded("w1")]])
    sampler = make_sampler(channel, clock)

    resolution = await sampler.sample()

    assert isinstance(resolution, Completed)
    assert resolution.missed_ticks == 2
    assert resolution.history_for("w1")[0].timestamp == pytest.approx(100)


@pytest.mark.asyncio
async def test_malformed_entries_are_counted_not_raised(clock):
    channel = FakeChannel([[{"id": "w1"}, "junk", loaded("w2")], [loaded("w1"), loaded("w2")]])
    sampler = make_sampler(channel, clock)

    resolution = await sampler.sample()

    assert isinstance(resolution, Completed)
    assert resolution.malformed_snapshots == 2
    assert resolution.history_for("w1")[0].timestamp == pytest.approx(50)


@pytest.mark.asyncio
async def test_hold_samples_for_fixed_window(clock):
    sampler = make_sampler(FakeChannel([[loaded("w1")]]), clock)

    resolution = await sampler.sample(["w1"], hold_ms=3_000)

    assert isinstance(resolution, Completed)
    assert resolution.elapsed_ms == pytest.approx(3_000)
    assert len(resolution.history_for("w1")) == 61


@pytest.mark.asyncio
async def test_hold_classifies_unfinished_as_timed_out(clock):
    sampler = make_sampler(FakeChannel([[loading("w1")]]), clock)

    resolution = await sampler.sample(["w1"], hold_ms=500)

    assert isinstance(resolution, TimedOut)
    assert resolution.timed_out_ids == ["w1"]


@pytest.mark.asyncio
async def test_discovery_is_capped(clock):
    frame = [loaded(f"w{i}") for i in range(40)]
    sampler = make_sampler(FakeChannel([frame]), clock, max_widgets=30)

    resolution = await sampler.sample()

    assert resolution.widgets_found == 30


def test_state_is_closed_on_resolution():
    state = SamplerState([])
    state.track("w1", "pods")

    result = state.resolve(TimedOut, 10.0, timed_out=True)

    assert state.closed
    assert state.histories == {}
    assert result.histories == {"w1": []}
    assert result.timed_out_ids == ["w1"]
