"""
Tests for per-job run logs
"""
import asyncio
import json

import pytest

from cronclaw.cron.run_log import (
    append_cron_run_log,
    read_cron_run_log_entries,
    resolve_cron_run_log_path,
)
from cronclaw.cron.types import CronRunLogEntry


def entry(ts: int, job_id: str = "abc", status: str = "ok") -> CronRunLogEntry:
    return CronRunLogEntry(ts=ts, job_id=job_id, status=status, run_at_ms=ts, duration_ms=5)


class TestPathResolution:
    def test_inside_runs_dir(self, store_path):
        path = resolve_cron_run_log_path(store_path, "abc")
        assert path == (store_path.parent / "runs" / "abc.jsonl").resolve()

    def test_separators_are_replaced(self, store_path):
        path = resolve_cron_run_log_path(store_path, "../../etc/passwd")
        assert path.parent == (store_path.parent / "runs").resolve()
        assert "/" not in path.name

    @pytest.mark.parametrize("job_id", ["", "   ", ".", ".."])
    def test_rejects_ids_that_escape(self, store_path, job_id):
        with pytest.raises(ValueError):
            resolve_cron_run_log_path(store_path, job_id)


@pytest.mark.asyncio
async def test_read_most_recent_first_with_limit(store_path):
    path = resolve_cron_run_log_path(store_path, "abc")
    for ts in (1, 2, 3):
        await append_cron_run_log(path, entry(ts))

    entries = read_cron_run_log_entries(path, limit=2)
    assert [e.ts for e in entries] == [3, 2]


@pytest.mark.asyncio
async def test_concurrent_appends_keep_submission_order(store_path):
    path = resolve_cron_run_log_path(store_path, "abc")
    await asyncio.gather(*(append_cron_run_log(path, entry(ts)) for ts in range(20)))

    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["ts"] for line in lines] == list(range(20))


@pytest.mark.asyncio
async def test_different_jobs_write_independently(store_path):
    a = resolve_cron_run_log_path(store_path, "a")
    b = resolve_cron_run_log_path(store_path, "b")
    await asyncio.gather(append_cron_run_log(a, entry(1, "a")), append_cron_run_log(b, entry(2, "b")))

    assert [e.job_id for e in read_cron_run_log_entries(a)] == ["a"]
    assert [e.job_id for e in read_cron_run_log_entries(b)] == ["b"]


@pytest.mark.asyncio
async def test_prunes_to_keep_lines(store_path):
    path = resolve_cron_run_log_path(store_path, "abc")
    for ts in range(30):
        await append_cron_run_log(path, entry(ts), max_bytes=300, keep_lines=2)

    lines = path.read_text(encoding="utf-8").splitlines()
    assert 2 <= len(lines) <= 5
    assert path.stat().st_size <= 300 + len(lines[-1]) + 1
    assert json.loads(lines[-1])["ts"] == 29


def test_skips_malformed_lines(store_path):
    path = resolve_cron_run_log_path(store_path, "abc")
    path.parent.mkdir(parents=True)
    lines = [
        json.dumps(entry(1).to_dict()),
        "",
        "{broken",
        json.dumps({"ts": 2, "jobId": "abc", "action": "started"}),
        json.dumps({"ts": 3, "jobId": "", "action": "finished"}),
        '{"ts": 1e400, "jobId": "abc", "action": "finished"}',
        '{"ts": NaN, "jobId": "abc", "action": "finished"}',
        json.dumps({"ts": "4", "jobId": "abc", "action": "finished"}),
        json.dumps({"ts": 5, "jobId": "abc", "action": "finished", "status": "exploded"}),
        json.dumps(entry(6, status="error").to_dict()),
        "   ",
    ]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    entries = read_cron_run_log_entries(path)
    assert [(e.ts, e.status) for e in entries] == [(6, "error"), (1, "ok")]


def test_filters_by_job_id(store_path):
    path = resolve_cron_run_log_path(store_path, "shared")
    path.parent.mkdir(parents=True)
    path.write_text(
        "\n".join(json.dumps(entry(ts, job_id).to_dict()) for ts, job_id in [(1, "x"), (2, "y"), (3, "x")]),
        encoding="utf-8",
    )
    assert [e.ts for e in read_cron_run_log_entries(path, job_id="x")] == [3, 1]


def test_limit_is_clamped(store_path):
    path = resolve_cron_run_log_path(store_path, "abc")
    path.parent.mkdir(parents=True)
    path.write_text("\n".join(json.dumps(entry(ts).to_dict()) for ts in range(10)), encoding="utf-8")

    assert len(read_cron_run_log_entries(path, limit=0)) == 1
    assert len(read_cron_run_log_entries(path, limit=-5)) == 1
    assert len(read_cron_run_log_entries(path, limit=100_000)) == 10


def test_missing_file_reads_empty(store_path):
    assert read_cron_run_log_entries(resolve_cron_run_log_path(store_path, "nothing")) == []
