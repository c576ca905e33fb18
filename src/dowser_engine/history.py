"""
Dowser
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Set
from urllib.parse import urljoin, urlparse

from dowser_engine.config import BASE_URL, DEFAULT_BUCKET
from dowser_engine.errors import CycleDetected, ParseError
from dowser_engine.models import RunStub
from dowser_engine.utils.fetch import Anchor, PageFetcher, extract_anchors
from dowser_engine.utils.time import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

_BUILDS_VAR = "allBuilds"
_OLDER_TEXT = "older runs"
_NANOS_PER_SECOND = 1_000_000_000


@dataclass
class CursorState:
    current_url: str
    cutoff: datetime
    visited: Set[str] = field(default_factory=set)


@dataclass(frozen=True)
class HistoryPage:
    url: str
    entries: List[Mapping[str, Any]]
    older_link: str


def job_history_url(job: str, *, base_url: str = BASE_URL, bucket: str = DEFAULT_BUCKET) -> str:
    """Presubmit jobs live under the PR-logs tree, everything else under logs."""
    tree = "pr-logs/directory" if job.startswith("pull-") else "logs"
    return f"{base_url.rstrip('/')}/job-history/gs/{bucket}/{tree}/{job}"


def _entries_from_script(url: str, body: str) -> List[Mapping[str, Any]]:
    idx = body.find(_BUILDS_VAR)
    if idx < 0:
        return []
    start = body.find("[", idx)
    if start < 0:
        raise ParseError(url, f"{_BUILDS_VAR} has no array value")
    try:
        builds, _ = json.JSONDecoder().raw_decode(body, start)
    except json.JSONDecodeError as exc:
        raise ParseError(url, f"invalid {_BUILDS_VAR} payload: {exc}") from exc
    if not isinstance(builds, list):
        raise ParseError(url, f"{_BUILDS_VAR} is not a list")
    return builds


def _older_from_anchors(anchors: Sequence[Anchor]) -> str:
    for anchor in anchors:
        if _OLDER_TEXT in anchor.text.lower():
            return anchor.href
    return ""


def parse_history_page(url: str, body: str, anchors: Optional[Sequence[Anchor]] = None) -> HistoryPage:
    """
    Parse one job-history page.

    Two shapes are accepted: the Prow HTML page with its embedded
    ``var allBuilds = [...]`` script plus an "Older Runs" anchor, and a JSON
    document ``{"builds": [...], "olderLink": "..."}``.
    """
    stripped = body.lstrip()
    if stripped.startswith("{"):
        try:
            payload = json.loads(stripped)
        except json.JSONDecodeError as exc:
            raise ParseError(url, f"invalid history json: {exc}") from exc
        builds = payload.get("builds") or []
        if not isinstance(builds, list):
            raise ParseError(url, "builds is not a list")
        older = payload.get("olderLink") or ""
        if not isinstance(older, str):
            raise ParseError(url, "olderLink is not a string")
        return HistoryPage(url=url, entries=builds, older_link=older)

    if anchors is None:
        anchors = extract_anchors(body)
    return HistoryPage(url=url, entries=_entries_from_script(url, body), older_link=_older_from_anchors(anchors))


def _job_name(entry: Mapping[str, Any], fallback: str) -> str:
    prowjob = entry.get("ProwJob")
    if isinstance(prowjob, Mapping):
        spec = prowjob.get("spec")
        if isinstance(spec, Mapping) and spec.get("job"):
            return str(spec["job"])
    return str(entry.get("JobName") or fallback)


def stub_from_entry(url: str, entry: Mapping[str, Any], *, job: str) -> RunStub:
    if not isinstance(entry, Mapping):
        raise ParseError(url, f"run entry is not an object: {entry!r}")
    run_id = entry.get("ID")
    if run_id in (None, ""):
        raise ParseError(url, "run entry without ID")
    try:
        started_at = parse_timestamp(str(entry.get("Started") or ""))
    except ValueError as exc:
        raise ParseError(url, f"run {run_id}: {exc}") from exc
    raw_duration = entry.get("Duration") or 0
    try:
        duration_s = float(raw_duration) / _NANOS_PER_SECOND
    except (TypeError, ValueError) as exc:
        raise ParseError(url, f"run {run_id}: invalid Duration {raw_duration!r}") from exc
    descriptor = entry.get("ProwJob")
    return RunStub(
        id=str(run_id),
        job=_job_name(entry, job),
        result=str(entry.get("Result") or ""),
        started_at=started_at,
        duration_s=duration_s,
        spyglass_link=str(entry.get("SpyglassLink") or ""),
        descriptor=dict(descriptor) if isinstance(descriptor, Mapping) else {},
    )


def _next_url(page: HistoryPage) -> Optional[str]:
    href = page.older_link.strip()
    if not href:
        return None
    try:
        resolved = urljoin(page.url, href)
        parsed = urlparse(resolved)
    except ValueError as exc:
        raise ParseError(page.url, f"malformed older link {href!r}: {exc}") from exc
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ParseError(page.url, f"malformed older link {href!r}")
    return resolved


def iter_job_history(
    fetcher: PageFetcher,
    job: str,
    lookback: timedelta,
    *,
    base_url: str = BASE_URL,
    bucket: str = DEFAULT_BUCKET,
    now: Optional[datetime] = None,
    start_url: Optional[str] = None,
) -> Iterator[RunStub]:
    """
    Yield runs of ``job`` started at or after ``now - lookback``, newest first.

    Pages are newest-first, so the first entry older than the cutoff ends the
    walk; no later entry or page is looked at. Each older link is followed at
    most once.
    """
    cursor = CursorState(
        current_url=start_url or job_history_url(job, base_url=base_url, bucket=bucket),
        cutoff=(now or utc_now()) - lookback,
    )
    while True:
        if cursor.current_url in cursor.visited:
            raise CycleDetected(cursor.current_url, len(cursor.visited))
        cursor.visited.add(cursor.current_url)

        listing = fetcher.fetch(cursor.current_url)
        page = parse_history_page(listing.url, listing.body, listing.anchors)
        logger.debug("history page %s: %d entries", listing.url, len(page.entries))
        for entry in page.entries:
            stub = stub_from_entry(listing.url, entry, job=job)
            if stub.started_at < cursor.cutoff:
                return
            yield stub

        next_url = _next_url(page)
        if next_url is None:
            return
        cursor.current_url = next_url


def walk_job_history(
    fetcher: PageFetcher,
    job: str,
    lookback: timedelta,
    *,
    base_url: str = BASE_URL,
    bucket: str = DEFAULT_BUCKET,
    now: Optional[datetime] = None,
) -> List[RunStub]:
    stubs = list(iter_job_history(fetcher, job, lookback, base_url=base_url, bucket=bucket, now=now))
    logger.info("found %d runs for job %s", len(stubs), job)
    return stubs


def history_summary(stubs: Sequence[RunStub]) -> Dict[str, Any]:
    """Counts by result, for ``hist show``."""
    by_result: Dict[str, int] = {}
    for stub in stubs:
        by_result[stub.result or "UNKNOWN"] = by_result.get(stub.result or "UNKNOWN", 0) + 1
    return {"total": len(stubs), "by_result": dict(sorted(by_result.items()))}
