"""
Dowser
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from dowser_engine.config import (
    BASE_URL,
    DEFAULT_BUCKET,
    DEFAULT_CONCURRENCY,
    DEFAULT_RESOLVER_CONFIG,
    MAX_JOB_WALKERS,
    ResolverConfig,
)
from dowser_engine.errors import CycleDetected, FetchError, ParseError
from dowser_engine.history import walk_job_history
from dowser_engine.models import EnrichedRecord
from dowser_engine.pipeline.worker_pool import RunEnricher, enrich_runs
from dowser_engine.record_store import RecordSink, write_records
from dowser_engine.resolver import ArtifactResolver
from dowser_engine.utils.fetch import PageFetcher
from dowser_engine.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass
class JobHarvest:
    job: str
    records: List[EnrichedRecord] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def resolved(self) -> int:
        return sum(1 for record in self.records if record.archive_url)


@dataclass
class HarvestReport:
    jobs: List[JobHarvest]
    written: int = 0
    dry_run: bool = False

    @property
    def records(self) -> List[EnrichedRecord]:
        out: List[EnrichedRecord] = []
        for job in self.jobs:
            out.extend(job.records)
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "written": self.written,
            "jobs": [
                {
                    "job": job.job,
                    "runs": len(job.records),
                    "resolved": job.resolved,
                    "error": job.error,
                }
                for job in self.jobs
            ],
        }


def harvest_job(
    job: str,
    *,
    fetcher: PageFetcher,
    enricher: RunEnricher,
    lookback: timedelta,
    base_url: str = BASE_URL,
    bucket: str = DEFAULT_BUCKET,
    concurrency: int = DEFAULT_CONCURRENCY,
    now: Optional[datetime] = None,
) -> JobHarvest:
    """Walk one job's history and enrich every run. Walk failures empty the job, never raise."""
    try:
        stubs = walk_job_history(fetcher, job, lookback, base_url=base_url, bucket=bucket, now=now)
    except (FetchError, ParseError, CycleDetected) as exc:
        logger.error("history walk failed for job %s: %s", job, exc)
        return JobHarvest(job=job, error=str(exc))
    records = enrich_runs(stubs, enricher, concurrency)
    logger.info(
        "job %s: %d runs, %d with archive",
        job,
        len(records),
        sum(1 for record in records if record.archive_url),
    )
    return JobHarvest(job=job, records=records)


def _collect(job: str, future: Future[JobHarvest]) -> JobHarvest:
    try:
        return future.result()
    except Exception as exc:
        logger.exception("harvest failed for job %s", job)
        return JobHarvest(job=job, error=f"{type(exc).__name__}: {exc}")


def run_harvest(
    jobs: Sequence[str],
    *,
    lookback: timedelta,
    sink: Optional[RecordSink] = None,
    fetcher: Optional[PageFetcher] = None,
    resolver_config: ResolverConfig = DEFAULT_RESOLVER_CONFIG,
    base_url: str = BASE_URL,
    bucket: str = DEFAULT_BUCKET,
    concurrency: int = DEFAULT_CONCURRENCY,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> HarvestReport:
    """
    Harvest several jobs and upsert the results.

    Jobs are walked in parallel, each with its own bounded enrichment pool.
    A job that fails for any reason is reported with its error and contributes
    no records; its siblings are unaffected.
    Writes happen one at a time after every job has finished; a
    PersistenceError from the sink propagates to the caller.
    """
    fetcher = fetcher or PageFetcher()
    enricher = RunEnricher(ArtifactResolver(fetcher, resolver_config), base_url=base_url)
    current = now or utc_now()
    unique_jobs = list(dict.fromkeys(jobs))
    if not unique_jobs:
        return HarvestReport(jobs=[], dry_run=dry_run)

    with ThreadPoolExecutor(max_workers=min(len(unique_jobs), MAX_JOB_WALKERS), thread_name_prefix="dowser-job") as pool:
        futures = [
            pool.submit(
                harvest_job,
                job,
                fetcher=fetcher,
                enricher=enricher,
                lookback=lookback,
                base_url=base_url,
                bucket=bucket,
                concurrency=concurrency,
                now=current,
            )
            for job in unique_jobs
        ]
        results = [_collect(job, fut) for job, fut in zip(unique_jobs, futures)]

    report = HarvestReport(jobs=results, dry_run=dry_run)
    if dry_run or sink is None:
        logger.info("%d records harvested, nothing written", len(report.records))
        return report
    report.written = write_records(sink, report.records)
    logger.info("wrote %d records to %s", report.written, getattr(sink, "location", type(sink).__name__))
    return report
