"""
Statistics computation and result saving functions.
"""

import csv
import json
import os
import time
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .models import MetricsGroup, ReplayReport, RequestOutcome

PERCENTILES = (50, 90, 95, 99)


def compute_percentiles(values: Sequence[float],
                        percentiles: Sequence[float] = PERCENTILES) -> Dict[str, Optional[float]]:
    """
    Compute percentiles (p in 0-100) with linear interpolation between the
    closest ranks: index = p/100 * (n - 1) into the sorted values.
    Returns None for every percentile when values is empty.
    """
    keys = [f"p{p:g}" for p in percentiles]
    if len(values) == 0:
        return {k: None for k in keys}
    results = np.percentile(np.asarray(values, dtype=float), list(percentiles), method="linear")
    return {k: float(v) for k, v in zip(keys, results)}


def aggregate_outcomes(outcomes: Sequence[RequestOutcome],
                       successful_only: bool = True) -> List[MetricsGroup]:
    """
    Group outcomes by (status, format, cache_hit) and compute TTFB percentiles
    per group. Groups are sorted by count, descending; ties keep the order in
    which the groups were first seen.
    """
    if successful_only:
        outcomes = [o for o in outcomes if o.status == 200]

    groups: Dict[Tuple[int, str, bool], List[RequestOutcome]] = {}
    for o in outcomes:
        groups.setdefault((o.status, o.format, o.cache_hit), []).append(o)

    metrics = []
    for (status, fmt, cache_hit), members in groups.items():
        ttfbs = [o.ttfb for o in members if o.ttfb is not None]
        metrics.append(MetricsGroup(
            status=status,
            format=fmt,
            cache_hit=cache_hit,
            percentiles=compute_percentiles(ttfbs),
            count=len(members),
        ))
    metrics.sort(key=lambda m: m.count, reverse=True)
    return metrics


def save_report(output_dir: str, report: ReplayReport) -> str:
    """Save the replay report as results_<epoch_ms>.json."""
    os.makedirs(output_dir, exist_ok=True)
    filename = f"results_{int(time.time() * 1000)}.json"
    filepath = os.path.join(output_dir, filename)

    with open(filepath, "w", encoding="utf-8") as f:
        json.dump(report.to_dict(), f, indent=2)
        f.write("\n")

    return filepath


def save_raw_outcomes(output_dir: str, name: str, outcomes: Sequence[RequestOutcome]) -> str:
    """Save every outcome (completion order) to <name>_raw.csv."""
    os.makedirs(output_dir, exist_ok=True)
    filepath = os.path.join(output_dir, f"{name}_raw.csv")

    with open(filepath, "w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(["status", "format", "cache_hit", "ttfb_ms", "request_err"])
        for o in outcomes:
            ttfb = f"{o.ttfb:.4f}" if o.ttfb is not None else ""
            w.writerow([o.status, o.format, int(o.cache_hit), ttfb, o.request_err or ""])

    return filepath


def print_summary(report: ReplayReport) -> None:
    """Print the metric groups as a table."""
    print(f"  Target: {report.target_host} (HTTP/{report.http_version})")
    print(f"  Logs replayed: {report.num_logs}, errors: {report.num_errors}")
    if not report.metrics:
        print("  No outcomes to report")
        return
    print(f"  {'Status':<8}{'Format':<10}{'Cache':<7}{'Count':>8}"
          f"{'P50':>10}{'P90':>10}{'P95':>10}{'P99':>10}")
    for m in report.metrics:
        cols = "".join(
            f"{v:>10.1f}" if v is not None else f"{'-':>10}"
            for v in m.percentiles.values()
        )
        cache = "HIT" if m.cache_hit else "MISS"
        print(f"  {m.status:<8}{m.format:<10}{cache:<7}{m.count:>8}{cols}")
