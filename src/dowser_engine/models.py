"""
Dowser
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from dowser_engine.utils.time import format_timestamp, parse_timestamp


@dataclass(frozen=True)
class RunStub:
    """One run entry parsed from a job history page."""

    id: str
    job: str
    result: str
    started_at: datetime
    duration_s: float
    spyglass_link: str
    descriptor: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job": self.job,
            "result": self.result,
            "started": format_timestamp(self.started_at),
            "duration_s": self.duration_s,
            "spyglass_link": self.spyglass_link,
            "descriptor": dict(self.descriptor),
        }


@dataclass(frozen=True)
class EnrichedRecord:
    """A RunStub plus its absolute URL and resolved archive location.

    ``archive_url`` is empty when resolution failed; the record is still
    persisted in that case.
    """

    id: str
    job: str
    result: str
    started_at: datetime
    duration_s: float
    spyglass_link: str
    url: str
    archive_url: str = ""
    resolution_error: Optional[str] = None
    finished_at: Optional[datetime] = None
    descriptor: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_stub(
        cls,
        stub: RunStub,
        *,
        url: str,
        archive_url: str = "",
        resolution_error: Optional[str] = None,
        finished_at: Optional[datetime] = None,
    ) -> "EnrichedRecord":
        return cls(
            id=stub.id,
            job=stub.job,
            result=stub.result,
            started_at=stub.started_at,
            duration_s=stub.duration_s,
            spyglass_link=stub.spyglass_link,
            url=url,
            archive_url=archive_url,
            resolution_error=resolution_error,
            finished_at=finished_at,
            descriptor=stub.descriptor,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job": self.job,
            "result": self.result,
            "started": format_timestamp(self.started_at),
            "finished": format_timestamp(self.finished_at) if self.finished_at else None,
            "duration_s": self.duration_s,
            "spyglass_link": self.spyglass_link,
            "url": self.url,
            "archive_url": self.archive_url,
            "resolution_error": self.resolution_error,
            "descriptor": dict(self.descriptor),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "EnrichedRecord":
        finished = payload.get("finished")
        descriptor = payload.get("descriptor")
        return cls(
            id=str(payload["id"]),
            job=str(payload.get("job") or ""),
            result=str(payload.get("result") or ""),
            started_at=parse_timestamp(str(payload["started"])),
            duration_s=float(payload.get("duration_s") or 0.0),
            spyglass_link=str(payload.get("spyglass_link") or ""),
            url=str(payload.get("url") or ""),
            archive_url=str(payload.get("archive_url") or ""),
            resolution_error=payload.get("resolution_error") or None,
            finished_at=parse_timestamp(finished) if isinstance(finished, str) and finished else None,
            descriptor=descriptor if isinstance(descriptor, dict) else {},
        )
