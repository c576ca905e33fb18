"""
Dowser
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import yaml

from dowser_engine.models import EnrichedRecord

METRICS_CLUSTER_API_VERSION = "ez-thanos-operator/v1"
METRICS_CLUSTER_KIND = "MetricsCluster"
CLUSTER_CONFIG_KEY = "cluster.yaml"

OUTPUT_LIST = "list"
OUTPUT_CLUSTER = "cluster"

# Kubernetes object names (RFC 1123 subdomain).
_NAME_RE = re.compile(r"^[a-z0-9]([-a-z0-9.]{0,251}[a-z0-9])?$")


@dataclass(frozen=True)
class OutputFormat:
    kind: str
    name: Optional[str] = None


def parse_output_format(value: str) -> OutputFormat:
    """``list`` or ``cluster=<name>``."""
    raw = (value or "").strip()
    if raw == OUTPUT_LIST:
        return OutputFormat(kind=OUTPUT_LIST)
    kind, sep, name = raw.partition("=")
    if kind == OUTPUT_CLUSTER and sep:
        if not _NAME_RE.match(name):
            raise ValueError(f"Invalid cluster name {name!r} (lowercase letters, digits, '-' and '.')")
        return OutputFormat(kind=OUTPUT_CLUSTER, name=name)
    raise ValueError(f"Invalid output format {value!r} (expected 'list' or 'cluster=<name>')")


def records_payload(records: Sequence[EnrichedRecord]) -> list[Dict[str, Any]]:
    return [record.to_dict() for record in records]


def render_list(records: Sequence[EnrichedRecord]) -> str:
    return json.dumps(records_payload(records), indent=2, sort_keys=True)


def metrics_cluster(name: str, records: Sequence[EnrichedRecord]) -> Dict[str, Any]:
    return {
        "apiVersion": METRICS_CLUSTER_API_VERSION,
        "kind": METRICS_CLUSTER_KIND,
        "metadata": {"name": name},
        "spec": {"urls": [record.url for record in records]},
    }


def cluster_config_map(name: str, records: Sequence[EnrichedRecord]) -> Dict[str, Any]:
    """ConfigMap carrying the MetricsCluster document under ``cluster.yaml``."""
    embedded = yaml.safe_dump(metrics_cluster(name, records), sort_keys=False, default_flow_style=False)
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name},
        "data": {CLUSTER_CONFIG_KEY: embedded},
    }


def render_cluster(name: str, records: Sequence[EnrichedRecord]) -> str:
    return yaml.safe_dump(cluster_config_map(name, records), sort_keys=False, default_flow_style=False)


def render(records: Sequence[EnrichedRecord], output: OutputFormat) -> str:
    if output.kind == OUTPUT_CLUSTER and output.name:
        return render_cluster(output.name, records)
    return render_list(records)
