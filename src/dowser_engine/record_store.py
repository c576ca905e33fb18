"""
Dowser
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Protocol, Tuple, runtime_checkable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from dowser_engine.errors import PersistenceError
from dowser_engine.models import EnrichedRecord
from dowser_engine.utils.time import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


@runtime_checkable
class RecordSink(Protocol):
    """Keyed record storage. ``put`` is an upsert by run id, last write wins."""

    def put(self, record: EnrichedRecord) -> None: ...

    def load_all(self) -> List[EnrichedRecord]: ...


class _BaseRecordStore:
    location: str

    def put(self, record: EnrichedRecord) -> None:
        self.put_many([record])

    def put_many(self, records: Iterable[EnrichedRecord]) -> int:
        raise NotImplementedError

    def load_all(self) -> List[EnrichedRecord]:
        raise NotImplementedError


class SqliteRecordStore(_BaseRecordStore):
    """
    Records in a ``jobs`` table, one row per run id.

    Columns mirror the record so the file stays queryable by hand.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.location = str(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                result TEXT NOT NULL,
                url TEXT NOT NULL,
                archive_url TEXT NOT NULL,
                started TEXT NOT NULL,
                finished TEXT,
                duration REAL NOT NULL,
                spyglass_link TEXT NOT NULL,
                resolution_error TEXT,
                prowjob TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_jobs_name_started ON jobs(name, started DESC);
            """
        )
        return conn

    @staticmethod
    def _row(record: EnrichedRecord) -> Tuple[Any, ...]:
        return (
            record.id,
            record.job,
            record.result,
            record.url,
            record.archive_url,
            format_timestamp(record.started_at),
            format_timestamp(record.finished_at) if record.finished_at else None,
            record.duration_s,
            record.spyglass_link,
            record.resolution_error,
            json.dumps(dict(record.descriptor), sort_keys=True, separators=(",", ":")),
        )

    def put_many(self, records: Iterable[EnrichedRecord]) -> int:
        rows = [self._row(record) for record in records]
        try:
            conn = self._connect()
            try:
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO jobs(
                        id, name, result, url, archive_url, started, finished,
                        duration, spyglass_link, resolution_error, prowjob
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                conn.commit()
            finally:
                conn.close()
        except (OSError, sqlite3.Error) as exc:
            raise PersistenceError(f"write to {self.db_path} failed: {exc}") from exc
        return len(rows)

    def load_all(self) -> List[EnrichedRecord]:
        if not self.db_path.exists():
            return []
        try:
            conn = self._connect()
            try:
                rows = conn.execute(
                    """
                    SELECT id, name, result, url, archive_url, started, finished,
                           duration, spyglass_link, resolution_error, prowjob
                    FROM jobs
                    ORDER BY rowid
                    """
                ).fetchall()
            finally:
                conn.close()
        except (OSError, sqlite3.Error) as exc:
            raise PersistenceError(f"read from {self.db_path} failed: {exc}") from exc
        records: List[EnrichedRecord] = []
        for row in rows:
            try:
                descriptor = json.loads(row[10]) if row[10] else {}
            except json.JSONDecodeError:
                logger.warning("run %s has an unreadable descriptor column", row[0])
                descriptor = {}
            records.append(
                EnrichedRecord(
                    id=row[0],
                    job=row[1],
                    result=row[2],
                    url=row[3],
                    archive_url=row[4],
                    started_at=parse_timestamp(row[5]),
                    finished_at=parse_timestamp(row[6]) if row[6] else None,
                    duration_s=float(row[7]),
                    spyglass_link=row[8],
                    resolution_error=row[9],
                    descriptor=descriptor if isinstance(descriptor, dict) else {},
                )
            )
        return records


def _merge(existing: List[Dict[str, Any]], records: Iterable[EnrichedRecord]) -> List[Dict[str, Any]]:
    """Upsert into a list of record dicts, keeping first-seen positions."""
    merged: Dict[str, Dict[str, Any]] = {}
    for item in existing:
        merged[str(item.get("id"))] = item
    for record in records:
        merged[record.id] = record.to_dict()
    return list(merged.values())


def _decode_array(raw: str, location: str) -> List[Dict[str, Any]]:
    if not raw.strip():
        return []
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PersistenceError(f"{location} is not valid json: {exc}") from exc
    if not isinstance(payload, list) or not all(isinstance(item, dict) for item in payload):
        raise PersistenceError(f"{location} must hold a json array of objects")
    return payload


def _encode_array(items: List[Dict[str, Any]]) -> str:
    return json.dumps(items, indent=2, sort_keys=True) + "\n"


def _to_records(items: List[Dict[str, Any]], location: str) -> List[EnrichedRecord]:
    try:
        return [EnrichedRecord.from_dict(item) for item in items]
    except (KeyError, TypeError, ValueError) as exc:
        raise PersistenceError(f"{location} holds an invalid record: {exc}") from exc


class JsonFileRecordStore(_BaseRecordStore):
    """Flat JSON array on disk, rewritten atomically on every put."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.location = str(self.path)

    def _read(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"read from {self.path} failed: {exc}") from exc
        return _decode_array(raw, self.location)

    def _atomic_write(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(f"write to {self.path} failed: {exc}") from exc

    def put_many(self, records: Iterable[EnrichedRecord]) -> int:
        batch = list(records)
        self._atomic_write(_encode_array(_merge(self._read(), batch)))
        return len(batch)

    def load_all(self) -> List[EnrichedRecord]:
        return _to_records(self._read(), self.location)


def parse_s3_location(location: str) -> Tuple[str, str]:
    if not location.startswith("s3://"):
        raise ValueError(f"not an s3 location: {location}")
    bucket, _, key = location[len("s3://") :].partition("/")
    if not bucket or not key:
        raise ValueError(f"s3 location needs bucket and key: {location}")
    return bucket, key


class S3JsonRecordStore(_BaseRecordStore):
    """Same JSON array layout as JsonFileRecordStore, kept in one S3 object."""

    def __init__(self, bucket: str, key: str, *, client=None):
        self.bucket = bucket
        self.key = key
        self.location = f"s3://{bucket}/{key}"
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def _read(self) -> List[Dict[str, Any]]:
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=self.key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in {"NoSuchKey", "404"}:
                return []
            raise PersistenceError(f"read from {self.location} failed: {code or exc}") from exc
        except BotoCoreError as exc:
            raise PersistenceError(f"read from {self.location} failed: {exc}") from exc
        return _decode_array(resp["Body"].read().decode("utf-8"), self.location)

    def put_many(self, records: Iterable[EnrichedRecord]) -> int:
        batch = list(records)
        body = _encode_array(_merge(self._read(), batch)).encode("utf-8")
        try:
            self.client.put_object(Bucket=self.bucket, Key=self.key, Body=body, ContentType="application/json")
        except (ClientError, BotoCoreError) as exc:
            raise PersistenceError(f"write to {self.location} failed: {exc}") from exc
        return len(batch)

    def load_all(self) -> List[EnrichedRecord]:
        return _to_records(self._read(), self.location)


def open_record_store(location: str | Path, *, s3_client=None) -> _BaseRecordStore:
    """Pick a backend from the location: ``s3://`` URI, ``*.json`` file, else sqlite."""
    raw = str(location)
    if raw.startswith("s3://"):
        bucket, key = parse_s3_location(raw)
        return S3JsonRecordStore(bucket, key, client=s3_client)
    path = Path(raw).expanduser()
    if path.suffix.lower() == ".json":
        return JsonFileRecordStore(path)
    return SqliteRecordStore(path)


def write_records(sink: RecordSink, records: Iterable[EnrichedRecord]) -> int:
    """Sequential upsert of a finished batch into any sink."""
    put_many = getattr(sink, "put_many", None)
    if callable(put_many):
        return put_many(records)
    count = 0
    for record in records:
        sink.put(record)
        count += 1
    return count
