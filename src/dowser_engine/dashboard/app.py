"""
Dowser
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    from fastapi import FastAPI, HTTPException, Query
    from fastapi.responses import FileResponse, Response
    from pydantic import BaseModel, ConfigDict, Field
except ModuleNotFoundError as exc:  # pragma: no cover - exercised in environments without dashboard extras
    raise RuntimeError("Dashboard dependencies are not installed. Install with: pip install -e '.[dashboard]'") from exc

from dowser_engine.config import DB_PATH
from dowser_engine.errors import PersistenceError
from dowser_engine.models import EnrichedRecord
from dowser_engine.presentation import parse_output_format, render_cluster
from dowser_engine.record_store import SqliteRecordStore, open_record_store
from dowser_engine.selection import SelectionCriteria, select_records
from dowser_engine.utils.time import parse_duration

app = FastAPI(title="Dowser Records API")
logger = logging.getLogger(__name__)
RECORD_STORE_LOCATION = os.environ.get("DOWSER_DB_PATH") or str(DB_PATH)


class _RecordOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    job: str
    result: str
    started: str
    finished: Optional[str] = None
    duration_s: float
    spyglass_link: str
    url: str
    archive_url: str = ""
    resolution_error: Optional[str] = None
    descriptor: Dict[str, Any] = Field(default_factory=dict)


def _version_payload() -> Dict[str, Any]:
    git_sha = (os.environ.get("DOWSER_GIT_SHA") or os.environ.get("GIT_SHA") or "unknown").strip() or "unknown"
    build_ts = (os.environ.get("DOWSER_BUILD_TIMESTAMP") or os.environ.get("BUILD_TIMESTAMP") or "").strip()
    out: Dict[str, Any] = {
        "service": "Dowser",
        "git_sha": git_sha,
        "store": RECORD_STORE_LOCATION,
    }
    if build_ts:
        out["build_timestamp"] = build_ts
    return out


def _criteria(since: str, until: str, result: Optional[str], job: List[str], max_per_day: int) -> SelectionCriteria:
    try:
        return SelectionCriteria(
            since=parse_duration(since),
            until=parse_duration(until),
            result=result or None,
            jobs=frozenset(j for j in job if j),
            max_per_day=max_per_day,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _load_records() -> List[EnrichedRecord]:
    try:
        return open_record_store(RECORD_STORE_LOCATION).load_all()
    except PersistenceError as exc:
        logger.error("record store unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="Record store unavailable") from exc


@app.get("/version")
def version() -> Dict[str, Any]:
    return _version_payload()


@app.get("/healthz")
def healthz() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/records", response_model=List[_RecordOut])
def records(
    since: str = "24h",
    until: str = "0",
    result: Optional[str] = None,
    job: List[str] = Query(default=[]),
    max_per_day: int = 0,
) -> List[Dict[str, Any]]:
    """Selected records as a flat list; query parameters mirror ``db select``."""
    criteria = _criteria(since, until, result, job, max_per_day)
    return [record.to_dict() for record in select_records(_load_records(), criteria)]


@app.get("/cluster/{name}")
def cluster(
    name: str,
    since: str = "24h",
    until: str = "0",
    result: Optional[str] = None,
    job: List[str] = Query(default=[]),
    max_per_day: int = 0,
) -> Response:
    try:
        parse_output_format(f"cluster={name}")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid cluster name") from exc
    criteria = _criteria(since, until, result, job, max_per_day)
    body = render_cluster(name, select_records(_load_records(), criteria))
    return Response(body, media_type="application/yaml")


@app.get("/db")
def database() -> Response:
    """Download the sqlite file for ad-hoc queries."""
    store = open_record_store(RECORD_STORE_LOCATION)
    if not isinstance(store, SqliteRecordStore):
        raise HTTPException(status_code=404, detail="Record store is not a sqlite database")
    path = Path(store.db_path)
    if not path.exists():
        raise HTTPException(status_code=404, detail="Database not found")
    return FileResponse(path, media_type="application/vnd.sqlite3", filename=path.name)
