"""
Dowser
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict

DEFAULT_BASE_URL = "https://prow.ci.openshift.org"
DEFAULT_BUCKET = "origin-ci-test"
DEFAULT_JOB = "release-openshift-ocp-installer-e2e-aws-4.6"
DEFAULT_LOOKBACK = "24h"
DEFAULT_CONCURRENCY = 5
MAX_JOB_WALKERS = 8
REQUEST_TIMEOUT_S = 10.0
USER_AGENT = "dowser/0.1 (+history-harvest)"

GATEWAY_MARKER = "gcsweb"
GATEWAY_STORAGE_PREFIX = "https://gcsweb-ci.apps.ci.l2s4.p1.openshiftapps.com/gcs"
STORAGE_PREFIX = "https://storage.googleapis.com"
ARTIFACTS_MARKER = "artifacts/"
E2E_MARKER = "e2e"
EXTRA_FOLDER = "gather-extra"
ARCHIVE_PATH = "metrics/prometheus.tar"

STATE_DIR = Path(os.environ.get("DOWSER_STATE_DIR", str(Path.home() / ".dowser"))).expanduser()
DB_PATH = Path(os.environ.get("DOWSER_DB_PATH", str(STATE_DIR / "dowser.db"))).expanduser()
BASE_URL = (os.environ.get("DOWSER_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")


@dataclass(frozen=True)
class ResolverConfig:
    """Markers and prefixes driving the archive resolution heuristics."""

    gateway_marker: str = GATEWAY_MARKER
    gateway_storage_prefix: str = GATEWAY_STORAGE_PREFIX
    storage_prefix: str = STORAGE_PREFIX
    artifacts_marker: str = ARTIFACTS_MARKER
    e2e_marker: str = E2E_MARKER
    extra_folder: str = EXTRA_FOLDER
    archive_path: str = ARCHIVE_PATH
    verify: bool = True
    fetch_metadata: bool = False

    def with_overrides(self, **overrides: Any) -> "ResolverConfig":
        return replace(self, **overrides)


DEFAULT_RESOLVER_CONFIG = ResolverConfig()


def load_resolver_config(path: Path, *, base: ResolverConfig = DEFAULT_RESOLVER_CONFIG) -> ResolverConfig:
    """Load resolver overrides from a JSON object file.

    Unknown keys and wrongly typed values are rejected so a typo cannot
    silently fall back to the built-in markers.
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:
        raise ValueError(f"Invalid resolver config at {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Invalid resolver config at {path}: expected object")

    known: Dict[str, type] = {f.name: bool if f.type in ("bool", bool) else str for f in fields(ResolverConfig)}
    unknown = sorted(set(payload) - set(known))
    if unknown:
        raise ValueError(f"Invalid resolver config at {path}: unknown keys {', '.join(unknown)}")
    for key, value in payload.items():
        if not isinstance(value, known[key]):
            raise ValueError(f"Invalid resolver config at {path}: {key} must be {known[key].__name__}")
        if known[key] is str and not value.strip():
            raise ValueError(f"Invalid resolver config at {path}: {key} must not be empty")
    return base.with_overrides(**payload)
