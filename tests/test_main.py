import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from log_replay.config import ReplayOptions, SourceConfig
from log_replay.log_source import read_log_file
from log_replay.main import build_parser, main, options_from_args, run_get_logs, run_replay
from log_replay.models import LogRecord, RequestOutcome, SourceUnavailableError

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def write_log(path, n, spacing_ms=10, url="https://cdn.example.com/ipfs/bafy"):
    with open(path, "w") as f:
        for i in range(n):
            start = T0 + timedelta(milliseconds=i * spacing_ms)
            fmt = "car" if i % 2 == 0 else "raw"
            f.write(json.dumps({"startTime": start.isoformat(), "url": url, "format": fmt}) + "\n")
    return str(path)


def test_run_replay_writes_report(tmp_path):
    log_file = write_log(tmp_path / "logs.ndjson", 5)
    urls = []

    async def dispatch(request):
        urls.append(request.url)
        status = 200 if request.format == "car" else 500
        return RequestOutcome(ttfb=5.0, status=status, cache_hit=True, format=request.format)

    options = ReplayOptions(log_file=log_file, target_host="203.0.113.7",
                            output_dir=str(tmp_path / "out"), schedule_buffer_ms=50)
    path = asyncio.run(run_replay(options, dispatch=dispatch))

    with open(path) as f:
        report = json.load(f)
    assert report["target_host"] == "203.0.113.7"
    assert report["num_logs"] == 5
    assert report["num_outcomes"] == 5
    assert report["metrics"] == [{
        "status": 200, "format": "car", "cache_hit": True,
        "ttfb_ms": {"p50": 5.0, "p90": 5.0, "p95": 5.0, "p99": 5.0},
        "count": 3,
    }]
    assert all(u.startswith("https://203.0.113.7/") for u in urls)
    assert len(list((tmp_path / "out").glob("results_*_raw.csv"))) == 1


def test_run_replay_infers_target_host(tmp_path):
    log_file = write_log(tmp_path / "logs.ndjson", 2)

    async def dispatch(request):
        return RequestOutcome(ttfb=None, status=0, cache_hit=False, format=request.format,
                              request_err="ClientConnectorError: refused")

    options = ReplayOptions(log_file=log_file, output_dir=str(tmp_path), successful_only=False,
                            schedule_buffer_ms=0)
    path = asyncio.run(run_replay(options, dispatch=dispatch))

    with open(path) as f:
        report = json.load(f)
    assert report["target_host"] == "cdn.example.com"
    assert report["num_errors"] == 2
    assert sum(m["count"] for m in report["metrics"]) == 2


def test_main_empty_batch_is_noop(tmp_path, capsys):
    log_file = tmp_path / "empty.ndjson"
    log_file.write_text("")

    code = asyncio.run(main(["replay", "-f", str(log_file), "--output-dir", str(tmp_path / "out")]))

    assert code == 0
    assert "Nothing to do" in capsys.readouterr().out
    assert not (tmp_path / "out").exists()


def test_main_malformed_file_fails(tmp_path, capsys):
    log_file = tmp_path / "bad.ndjson"
    log_file.write_text("{oops\n")

    code = asyncio.run(main(["replay", "-f", str(log_file)]))

    assert code == 1
    assert f"{log_file}:1:" in capsys.readouterr().err


def test_main_bad_port_fails_with_position(tmp_path, capsys):
    log_file = write_log(tmp_path / "logs.ndjson", 1, url="https://cdn.example.com:99999/ipfs/bafy")

    code = asyncio.run(main(["replay", "-f", log_file, "--ip", "203.0.113.7"]))

    assert code == 1
    assert f"{log_file}:1:" in capsys.readouterr().err


def test_main_missing_file_fails(tmp_path, capsys):
    code = asyncio.run(main(["replay", "-f", str(tmp_path / "nope.ndjson")]))

    assert code == 1
    assert "cannot read log file" in capsys.readouterr().err


def test_replay_options_from_args():
    args = build_parser().parse_args([
        "replay", "-f", "x.ndjson", "--ip", "203.0.113.7", "-d", "5", "-n", "100",
        "--http", "2", "--no-tls", "--include-failures", "--timeout", "30",
    ])
    options = options_from_args(args)

    assert options.log_file == "x.ndjson"
    assert options.target_host == "203.0.113.7"
    assert options.max_duration_minutes == 5
    assert options.max_logs == 100
    assert options.http_version == 2
    assert options.use_tls is False
    assert options.successful_only is False
    assert options.timeout_s == 30


def test_replay_defaults():
    options = options_from_args(build_parser().parse_args(["replay"]))

    assert options.use_tls is True
    assert options.http_version == 1
    assert options.successful_only is True
    assert options.host_header == "l1s.strn.pl"
    assert options.timeout_s == 60


class FakeSource:
    def __init__(self, records=None, error=None):
        self.records = records or []
        self.error = error

    def fetch_logs(self, since_minutes):
        if self.error:
            raise self.error
        return self.records


def test_run_get_logs_writes_file(tmp_path):
    records = [LogRecord(start_time=T0, url="https://a/1", format="car")]
    out = str(tmp_path / "logs" / "logs.ndjson")

    run_get_logs(SourceConfig(), 10, out, source=FakeSource(records))

    assert list(read_log_file(out)) == records


def test_run_get_logs_source_failure_writes_nothing(tmp_path):
    out = tmp_path / "logs.ndjson"
    with pytest.raises(SourceUnavailableError):
        run_get_logs(SourceConfig(), 10, str(out), source=FakeSource(error=SourceUnavailableError("down")))
    assert not out.exists()


@pytest.mark.parametrize("flags", [
    ["-d", "0"],
    ["-d", "-5"],
    ["-d", "nan"],
    ["-n", "0"],
    ["-n", "-1"],
])
def test_replay_rejects_non_positive_limits(flags, capsys):
    with pytest.raises(SystemExit) as exc:
        build_parser().parse_args(["replay", *flags])
    assert exc.value.code == 2
    assert "must be greater than 0" in capsys.readouterr().err


def test_replay_accepts_fractional_duration():
    options = options_from_args(build_parser().parse_args(["replay", "-d", "0.5"]))

    assert options.max_duration_minutes == 0.5
