from __future__ import annotations

import threading
import time
from datetime import datetime, timezone

import pytest

from dowser_engine.errors import ResolutionFailure, VerificationFailed
from dowser_engine.models import RunStub
from dowser_engine.pipeline.worker_pool import BoundedWorkerPool, RunEnricher, enrich_runs
from dowser_engine.resolver import ResolutionResult

STARTED = datetime(2026, 3, 10, 11, 0, tzinfo=timezone.utc)


def _stub(run_id: str, result: str = "SUCCESS") -> RunStub:
    return RunStub(
        id=run_id,
        job="periodic-foo",
        result=result,
        started_at=STARTED,
        duration_s=60.0,
        spyglass_link=f"/view/gs/origin-ci-test/logs/periodic-foo/{run_id}",
    )


class FakeResolver:
    def __init__(self, failures=None):
        self.failures = failures or {}
        self.calls = []
        self._lock = threading.Lock()

    def resolve(self, url: str) -> ResolutionResult:
        with self._lock:
            self.calls.append(url)
        run_id = url.rsplit("/", 1)[-1]
        if run_id in self.failures:
            raise self.failures[run_id]
        return ResolutionResult(run_url=url, archive_url=f"https://storage.example.com/{run_id}.tar", stages=("Verify",))


def test_pool_bounds_concurrency_and_completes_everything() -> None:
    active = 0
    peak = 0
    lock = threading.Lock()

    def work(item: int) -> int:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.01)
        with lock:
            active -= 1
        return item * 2

    pool = BoundedWorkerPool(work, concurrency=3)
    results = pool.run(range(20))
    assert sorted(results) == [i * 2 for i in range(20)]
    assert peak <= 3
    assert pool.enqueued == pool.completed == 20


def test_pool_empty_input() -> None:
    pool = BoundedWorkerPool(lambda item: item, concurrency=2)
    assert pool.run([]) == []
    assert pool.completed == 0


def test_pool_rejects_zero_workers() -> None:
    with pytest.raises(ValueError):
        BoundedWorkerPool(lambda item: item, concurrency=0)


def test_cancel_drops_queued_work_but_not_in_flight() -> None:
    started = threading.Event()
    release = threading.Event()
    seen = []

    def work(item: int) -> int:
        seen.append(item)
        if item == 0:
            started.set()
            release.wait(timeout=5)
        return item

    pool = BoundedWorkerPool(work, concurrency=1)
    out = []
    runner = threading.Thread(target=lambda: out.extend(pool.run(range(10))))
    runner.start()
    assert started.wait(timeout=5)
    pool.cancel()
    release.set()
    runner.join(timeout=5)
    assert not runner.is_alive()
    assert out == [0]
    assert seen == [0]
    assert pool.cancelled


def test_pool_propagates_unexpected_errors() -> None:
    def work(item: int) -> int:
        if item == 3:
            raise KeyError("boom")
        return item

    with pytest.raises(KeyError):
        BoundedWorkerPool(work, concurrency=2).run(range(6))


def test_enricher_builds_absolute_url_and_archive() -> None:
    resolver = FakeResolver()
    record = RunEnricher(resolver, base_url="https://prow.example.com/")(_stub("7"))
    assert record.url == "https://prow.example.com/view/gs/origin-ci-test/logs/periodic-foo/7"
    assert record.archive_url == "https://storage.example.com/7.tar"
    assert record.resolution_error is None


def test_enricher_keeps_pending_runs_without_resolving() -> None:
    resolver = FakeResolver()
    record = RunEnricher(resolver, base_url="https://prow.example.com")(_stub("8", result="PENDING"))
    assert record.archive_url == ""
    assert resolver.calls == []


def test_enrich_runs_isolates_resolution_failures(caplog) -> None:
    resolver = FakeResolver(
        failures={
            "2": VerificationFailed("https://storage.example.com/2.tar", "archive is empty"),
            "3": ResolutionFailure("NoE2EFolder", stage="E2EScan", url="https://prow.example.com/3"),
        }
    )
    enricher = RunEnricher(resolver, base_url="https://prow.example.com")
    records = enrich_runs([_stub(str(i)) for i in range(1, 6)], enricher, concurrency=2)

    by_id = {record.id: record for record in records}
    assert sorted(by_id) == ["1", "2", "3", "4", "5"]
    assert by_id["2"].archive_url == ""
    assert by_id["2"].resolution_error == "VerificationFailed@Verify"
    assert by_id["3"].resolution_error == "NoE2EFolder@E2EScan"
    assert by_id["5"].archive_url == "https://storage.example.com/5.tar"
    assert "run=2" in caplog.text and "stage=Verify" in caplog.text
    assert "job=periodic-foo" in caplog.text


def test_enricher_keeps_history_start_and_takes_metadata_finish() -> None:
    finished = datetime(2026, 3, 10, 11, 45, tzinfo=timezone.utc)

    class MetadataResolver(FakeResolver):
        def resolve(self, url: str) -> ResolutionResult:
            return ResolutionResult(
                run_url=url,
                archive_url="https://storage.example.com/9.tar",
                stages=("GatewayScan", "RunMetadata"),
                started_at=datetime(2026, 3, 10, 11, 0, 5, tzinfo=timezone.utc),
                finished_at=finished,
            )

    record = RunEnricher(MetadataResolver(), base_url="https://prow.example.com")(_stub("9"))
    assert record.started_at == STARTED
    assert record.finished_at == finished
