"""
Dowser
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, Iterable, List, Optional

from dowser_engine.models import EnrichedRecord
from dowser_engine.utils.time import utc_now


@dataclass(frozen=True)
class SelectionCriteria:
    """Query-time filter; ``since``/``until`` are durations before now."""

    since: timedelta = timedelta(hours=24)
    until: timedelta = timedelta(0)
    result: Optional[str] = None
    jobs: FrozenSet[str] = field(default_factory=frozenset)
    max_per_day: int = 0

    def __post_init__(self) -> None:
        if self.max_per_day < 0:
            raise ValueError("max_per_day must be >= 0")
        if self.until < timedelta(0) or self.since < timedelta(0):
            raise ValueError("since/until must not be negative")


def _day_of_month(value: datetime) -> int:
    # Day number only; the 5th of January and the 5th of February share a bucket.
    return value.astimezone(timezone.utc).day


def select_records(
    records: Iterable[EnrichedRecord],
    criteria: SelectionCriteria,
    *,
    now: Optional[datetime] = None,
) -> List[EnrichedRecord]:
    current = now or utc_now()
    earliest = current - criteria.since
    latest = current - criteria.until

    groups: Dict[str, Dict[int, List[EnrichedRecord]]] = {}
    for record in records:
        if not earliest <= record.started_at <= latest:
            continue
        if criteria.result is not None and record.result != criteria.result:
            continue
        if criteria.jobs and record.job not in criteria.jobs:
            continue
        days = groups.setdefault(record.job, {})
        bucket = days.setdefault(_day_of_month(record.started_at), [])
        if criteria.max_per_day > 0 and len(bucket) >= criteria.max_per_day:
            continue
        bucket.append(record)

    selected: List[EnrichedRecord] = []
    for days in groups.values():
        for bucket in days.values():
            selected.extend(bucket)
    return selected
