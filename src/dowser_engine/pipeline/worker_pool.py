"""
Dowser
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Generic, Iterable, List, Sequence, TypeVar
from urllib.parse import urljoin

from dowser_engine.config import BASE_URL, DEFAULT_CONCURRENCY
from dowser_engine.errors import ResolutionFailure
from dowser_engine.models import EnrichedRecord, RunStub
from dowser_engine.resolver import ArtifactResolver

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

PENDING_RESULT = "PENDING"


class BoundedWorkerPool(Generic[T, R]):
    """
    Fixed number of workers over a queue of items.

    ``run`` enqueues everything up front and returns results in completion
    order once the completed count reaches the enqueued count. ``cancel`` is
    soft: queued items that have not started are dropped, calls already in
    flight run to the end.
    """

    def __init__(self, fn: Callable[[T], R], concurrency: int = DEFAULT_CONCURRENCY, *, name: str = "dowser-pool"):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._fn = fn
        self._concurrency = concurrency
        self._name = name
        self._lock = threading.Lock()
        self._futures: List[Future] = []
        self._cancelled = threading.Event()
        self.enqueued = 0
        self.completed = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            futures = list(self._futures)
        dropped = sum(1 for fut in futures if fut.cancel())
        if dropped:
            logger.info("%s: cancelled, dropped %d queued item(s)", self._name, dropped)

    def run(self, items: Iterable[T]) -> List[R]:
        work = list(items)
        results: List[R] = []
        if not work:
            return results
        workers = min(self._concurrency, len(work))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=self._name) as pool:
            with self._lock:
                self._futures = [pool.submit(self._fn, item) for item in work]
                self.enqueued = len(self._futures)
            if self.cancelled:
                self.cancel()
            try:
                for fut in as_completed(self._futures):
                    if fut.cancelled():
                        continue
                    results.append(fut.result())
                    self.completed += 1
            except BaseException:
                self.cancel()
                raise
        return results


class RunEnricher:
    """Turn one RunStub into an EnrichedRecord. Resolution failures never escape."""

    def __init__(self, resolver: ArtifactResolver, *, base_url: str = BASE_URL):
        self._resolver = resolver
        self._base_url = base_url.rstrip("/") + "/"

    def absolute_url(self, stub: RunStub) -> str:
        return urljoin(self._base_url, stub.spyglass_link.lstrip("/"))

    def __call__(self, stub: RunStub) -> EnrichedRecord:
        url = self.absolute_url(stub)
        if stub.result.upper() == PENDING_RESULT:
            logger.info("job %s run %s still pending, archive not resolved", stub.job, stub.id)
            return EnrichedRecord.from_stub(stub, url=url)
        try:
            result = self._resolver.resolve(url)
        except ResolutionFailure as exc:
            logger.warning(
                "archive resolution failed: job=%s run=%s url=%s stage=%s outcome=%s %s",
                stub.job,
                stub.id,
                url,
                exc.stage,
                exc.outcome,
                exc.detail,
            )
            return EnrichedRecord.from_stub(stub, url=url, resolution_error=f"{exc.outcome}@{exc.stage}")
        # history start is authoritative; started.json only fills finished_at
        return EnrichedRecord.from_stub(
            stub,
            url=url,
            archive_url=result.archive_url,
            finished_at=result.finished_at,
        )


def enrich_runs(
    stubs: Sequence[RunStub],
    enricher: Callable[[RunStub], EnrichedRecord],
    concurrency: int = DEFAULT_CONCURRENCY,
) -> List[EnrichedRecord]:
    """Apply ``enricher`` to every stub; output is in completion order."""
    return BoundedWorkerPool(enricher, concurrency, name="dowser-enrich").run(stubs)
