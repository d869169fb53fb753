import csv
import json
from datetime import datetime, timezone

import pytest

from log_replay.models import MetricsGroup, ReplayReport, RequestOutcome
from log_replay.statistics import (
    aggregate_outcomes, compute_percentiles, save_raw_outcomes, save_report,
)


def outcome(status=200, fmt="car", hit=False, ttfb=10.0, err=None):
    return RequestOutcome(ttfb=ttfb, status=status, cache_hit=hit, format=fmt, request_err=err)


def test_percentiles_linear_interpolation():
    p = compute_percentiles([10, 20, 30, 40, 100])

    assert p["p50"] == pytest.approx(30.0)
    assert p["p90"] == pytest.approx(76.0)
    assert p["p95"] == pytest.approx(88.0)
    assert p["p99"] == pytest.approx(97.6)


def test_percentiles_unsorted_input():
    assert compute_percentiles([100, 10, 40, 30, 20]) == compute_percentiles([10, 20, 30, 40, 100])


def test_percentiles_single_value():
    p = compute_percentiles([42.0])

    assert set(p.values()) == {42.0}


def test_percentiles_empty():
    assert compute_percentiles([]) == {"p50": None, "p90": None, "p95": None, "p99": None}


def test_grouping_counts_and_order():
    outcomes = (
        [outcome(fmt="car", hit=True)] * 2
        + [outcome(fmt="raw", hit=False)] * 3
        + [outcome(fmt="car", hit=False)] * 2
        + [outcome(fmt="raw", hit=True)] * 1
    )
    groups = aggregate_outcomes(outcomes)

    keys = [(g.status, g.format, g.cache_hit, g.count) for g in groups]
    # descending by count, ties keep first-seen order
    assert keys == [
        (200, "raw", False, 3),
        (200, "car", True, 2),
        (200, "car", False, 2),
        (200, "raw", True, 1),
    ]


def test_successful_only_filters_non_200():
    outcomes = [outcome(), outcome(status=404), outcome(status=0, ttfb=None, err="ClientConnectorError: x")]

    groups = aggregate_outcomes(outcomes, successful_only=True)
    assert [(g.status, g.count) for g in groups] == [(200, 1)]

    groups = aggregate_outcomes(outcomes, successful_only=False)
    assert sorted(g.status for g in groups) == [0, 200, 404]


def test_group_without_ttfb_has_empty_percentiles():
    outcomes = [outcome(status=0, ttfb=None, err="TimeoutError: request aborted after 60s")] * 2
    groups = aggregate_outcomes(outcomes, successful_only=False)

    assert len(groups) == 1
    assert groups[0].count == 2
    assert all(v is None for v in groups[0].percentiles.values())


def test_group_percentiles_ignore_missing_ttfb():
    outcomes = [outcome(ttfb=v) for v in (10, 20, 30, 40, 100)] + [outcome(ttfb=None)]
    groups = aggregate_outcomes(outcomes)

    assert groups[0].count == 6
    assert groups[0].percentiles["p50"] == pytest.approx(30.0)


def test_aggregate_empty():
    assert aggregate_outcomes([]) == []


def test_save_report(tmp_path):
    report = ReplayReport(
        target_host="203.0.113.7",
        http_version=2,
        date=datetime(2024, 3, 8, tzinfo=timezone.utc),
        num_logs=3,
        metrics=[MetricsGroup(status=200, format="car", cache_hit=True,
                              percentiles={"p50": 1.0, "p90": 2.0, "p95": 3.0, "p99": None}, count=3)],
        num_outcomes=3,
        num_errors=0,
    )
    path = save_report(str(tmp_path / "out"), report)

    with open(path) as f:
        data = json.load(f)
    assert data["target_host"] == "203.0.113.7"
    assert data["http_version"] == 2
    assert data["num_logs"] == 3
    assert data["metrics"] == [{
        "status": 200, "format": "car", "cache_hit": True,
        "ttfb_ms": {"p50": 1.0, "p90": 2.0, "p95": 3.0, "p99": None},
        "count": 3,
    }]


def test_save_raw_outcomes(tmp_path):
    outcomes = [outcome(ttfb=12.5, hit=True), outcome(status=0, ttfb=None, err="OSError: boom")]
    path = save_raw_outcomes(str(tmp_path), "run", outcomes)

    with open(path, newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0] == ["status", "format", "cache_hit", "ttfb_ms", "request_err"]
    assert rows[1] == ["200", "car", "1", "12.5000", ""]
    assert rows[2] == ["0", "car", "0", "", "OSError: boom"]
