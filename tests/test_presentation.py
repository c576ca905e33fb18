from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
import yaml

from dowser_engine.models import EnrichedRecord
from dowser_engine.presentation import OutputFormat, parse_output_format, render, render_cluster, render_list


def _record(run_id: str) -> EnrichedRecord:
    return EnrichedRecord(
        id=run_id,
        job="periodic-foo",
        result="SUCCESS",
        started_at=datetime(2026, 3, 10, 11, 0, tzinfo=timezone.utc),
        duration_s=10.0,
        spyglass_link=f"/view/{run_id}",
        url=f"https://prow.example.com/view/{run_id}",
        archive_url=f"https://storage.example.com/{run_id}.tar",
    )


def test_parse_output_format() -> None:
    assert parse_output_format("list") == OutputFormat(kind="list")
    assert parse_output_format("cluster=perf-4.6") == OutputFormat(kind="cluster", name="perf-4.6")


@pytest.mark.parametrize("value", ["", "table", "cluster", "cluster=", "cluster=Bad_Name"])
def test_parse_output_format_rejects_unknown(value: str) -> None:
    with pytest.raises(ValueError):
        parse_output_format(value)


def test_render_list_is_json_array_of_records() -> None:
    payload = json.loads(render_list([_record("1"), _record("2")]))
    assert [item["id"] for item in payload] == ["1", "2"]
    assert payload[0]["started"] == "2026-03-10T11:00:00Z"
    assert payload[0]["archive_url"] == "https://storage.example.com/1.tar"


def test_render_cluster_embeds_metrics_cluster_in_config_map() -> None:
    doc = yaml.safe_load(render_cluster("perf", [_record("1"), _record("2")]))
    assert doc["kind"] == "ConfigMap"
    assert doc["apiVersion"] == "v1"
    assert doc["metadata"] == {"name": "perf"}
    cluster = yaml.safe_load(doc["data"]["cluster.yaml"])
    assert cluster["apiVersion"] == "ez-thanos-operator/v1"
    assert cluster["kind"] == "MetricsCluster"
    assert cluster["metadata"]["name"] == "perf"
    assert cluster["spec"]["urls"] == ["https://prow.example.com/view/1", "https://prow.example.com/view/2"]


def test_render_dispatches_on_format() -> None:
    assert json.loads(render([], OutputFormat(kind="list"))) == []
    assert "ConfigMap" in render([], OutputFormat(kind="cluster", name="empty"))
