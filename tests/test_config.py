import json

import pytest

from lifecycle_monitor.config import (
    DEFAULT_DASHBOARDS,
    DEFAULT_STORAGE_SEED,
    DEFAULT_THRESHOLDS,
    MonitorConfig,
    parse_dashboards,
    parse_scenarios,
    parse_storage_seed,
)


def test_manifest_path_numbers_batches_from_one():
    config = MonitorConfig(base_url="http://localhost:8080/", batch_size=24)

    assert config.base_url == "http://localhost:8080"
    assert config.manifest_path(0) == "/__compliance/all-cards?batch=1&size=24"
    assert config.manifest_path(2) == "/__compliance/all-cards?batch=3&size=24"


def test_warm_grace_is_snapshots_times_poll_interval():
    config = MonitorConfig(base_url="http://x", poll_interval_ms=50, warm_grace_snapshots=10)

    assert config.warm_grace_ms == 500


def test_thresholds_are_not_shared_between_configs():
    first = MonitorConfig(base_url="http://x")
    first.thresholds["minimum"]["c"] = 0.5
    first.thresholds["exact"].pop("a")

    second = MonitorConfig(base_url="http://x")

    assert second.thresholds["minimum"]["c"] == 0.95
    assert second.thresholds["exact"] == {"a": 1.0}
    assert DEFAULT_THRESHOLDS["minimum"]["c"] == 0.95


@pytest.mark.parametrize("field", ["batch_size", "poll_interval_ms"])
def test_rejects_non_positive_sizes(field):
    with pytest.raises(ValueError):
        MonitorConfig(base_url="http://x", **{field: 0})


def test_parse_dashboards_defaults_and_file(tmp_path):
    assert parse_dashboards(None) == DEFAULT_DASHBOARDS

    path = tmp_path / "dashboards.json"
    path.write_text(json.dumps([
        {"id": "main", "name": "Dashboard", "route": "/"},
        {"route": "/pods"},
        {"name": "no route"},
    ]), encoding="utf-8")

    dashboards = parse_dashboards(str(path))

    assert dashboards == [
        {"id": "main", "name": "Dashboard", "route": "/"},
        {"id": "pods", "name": "/pods", "route": "/pods"},
    ]


def test_parse_dashboards_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        parse_dashboards(str(tmp_path / "nope.json"))


def test_parse_storage_seed_stringifies_values(tmp_path):
    assert parse_storage_seed(None) == DEFAULT_STORAGE_SEED

    path = tmp_path / "seed.json"
    path.write_text(json.dumps({"token": "abc", "kc-user-cache": {"id": "1"}}), encoding="utf-8")

    seed = parse_storage_seed(str(path))

    assert seed == {"token": "abc", "kc-user-cache": '{"id": "1"}'}


def test_parse_storage_seed_requires_object(tmp_path):
    path = tmp_path / "seed.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ValueError):
        parse_storage_seed(str(path))


def test_parse_scenarios():
    available = ["cold-nav", "warm-nav"]

    assert parse_scenarios(None, available) == available
    assert parse_scenarios(" warm-nav ,", available) == ["warm-nav"]
    with pytest.raises(ValueError):
        parse_scenarios("cold-nav,sideways-nav", available)
