from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Dict, List

import pytest

from dowser_engine.errors import CycleDetected, ParseError
from dowser_engine.history import job_history_url, parse_history_page, walk_job_history
from dowser_engine.utils.fetch import ListingPage, extract_anchors
from dowser_engine.utils.time import format_timestamp

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
BASE = "https://prow.example.com"


class FakeFetcher:
    def __init__(self, pages: Dict[str, str]):
        self.pages = pages
        self.fetched: List[str] = []

    def fetch(self, url: str) -> ListingPage:
        self.fetched.append(url)
        body = self.pages[url]
        return ListingPage(url=url, anchors=tuple(extract_anchors(body)), body=body)


def _build(run_id: str, hours_ago: float, *, job: str = "periodic-foo", result: str = "SUCCESS") -> dict:
    return {
        "ID": run_id,
        "Started": format_timestamp(NOW - timedelta(hours=hours_ago)),
        "Duration": 3_600_000_000_000,
        "Result": result,
        "SpyglassLink": f"/view/gs/origin-ci-test/logs/{job}/{run_id}",
        "ProwJob": {"spec": {"job": job}},
    }


def _html(builds: list, older: str = "") -> str:
    older_anchor = f'<a href="{older}">&lt;- Older Runs</a>' if older else ""
    return (
        "<html><head><script>\n"
        f"var allBuilds = {json.dumps(builds)};\n"
        "</script></head><body>"
        '<a href="/">Prow</a>'
        f"{older_anchor}"
        "</body></html>"
    )


def test_job_history_url_picks_tree_by_prefix() -> None:
    assert job_history_url("periodic-foo", base_url=BASE) == f"{BASE}/job-history/gs/origin-ci-test/logs/periodic-foo"
    assert (
        job_history_url("pull-ci-repo-master-e2e", base_url=BASE + "/")
        == f"{BASE}/job-history/gs/origin-ci-test/pr-logs/directory/pull-ci-repo-master-e2e"
    )


def test_lookback_cutoff_excludes_older_runs_and_stops_paging() -> None:
    start = job_history_url("periodic-foo", base_url=BASE)
    older = f"{start}?buildId=3"
    fetcher = FakeFetcher(
        {
            start: _html([_build("1", 1), _build("2", 2), _build("3", 30)], older="/job-history/gs/origin-ci-test/logs/periodic-foo?buildId=3"),
            older: _html([_build("4", 40)]),
        }
    )
    stubs = walk_job_history(fetcher, "periodic-foo", timedelta(hours=24), base_url=BASE, now=NOW)
    assert [stub.id for stub in stubs] == ["1", "2"]
    assert all(stub.started_at >= NOW - timedelta(hours=24) for stub in stubs)
    assert fetcher.fetched == [start]


def test_follows_older_link_until_exhausted() -> None:
    start = job_history_url("periodic-foo", base_url=BASE)
    older = f"{start}?buildId=2"
    fetcher = FakeFetcher(
        {
            start: _html([_build("1", 1), _build("2", 2)], older=older),
            older: _html([_build("3", 3)]),
        }
    )
    stubs = walk_job_history(fetcher, "periodic-foo", timedelta(hours=24), base_url=BASE, now=NOW)
    assert [stub.id for stub in stubs] == ["1", "2", "3"]
    assert fetcher.fetched == [start, older]


def test_stub_fields_are_parsed() -> None:
    start = job_history_url("periodic-foo", base_url=BASE)
    fetcher = FakeFetcher({start: _html([_build("42", 1, result="FAILURE")])})
    (stub,) = walk_job_history(fetcher, "periodic-foo", timedelta(hours=24), base_url=BASE, now=NOW)
    assert stub.id == "42"
    assert stub.job == "periodic-foo"
    assert stub.result == "FAILURE"
    assert stub.duration_s == 3600.0
    assert stub.spyglass_link == "/view/gs/origin-ci-test/logs/periodic-foo/42"
    assert stub.descriptor == {"spec": {"job": "periodic-foo"}}


def test_empty_first_page_is_not_an_error() -> None:
    start = job_history_url("periodic-foo", base_url=BASE)
    fetcher = FakeFetcher({start: _html([])})
    assert walk_job_history(fetcher, "periodic-foo", timedelta(hours=24), base_url=BASE, now=NOW) == []


def test_page_without_builds_script_is_empty() -> None:
    start = job_history_url("periodic-foo", base_url=BASE)
    fetcher = FakeFetcher({start: "<html><body>No builds</body></html>"})
    assert walk_job_history(fetcher, "periodic-foo", timedelta(hours=24), base_url=BASE, now=NOW) == []


def test_pagination_cycle_is_rejected() -> None:
    start = job_history_url("periodic-foo", base_url=BASE)
    older = f"{start}?buildId=2"
    fetcher = FakeFetcher(
        {
            start: _html([_build("1", 1)], older=older),
            older: _html([_build("2", 2)], older=start),
        }
    )
    with pytest.raises(CycleDetected) as excinfo:
        walk_job_history(fetcher, "periodic-foo", timedelta(hours=24), base_url=BASE, now=NOW)
    assert excinfo.value.url == start
    assert fetcher.fetched == [start, older]


def test_malformed_older_link_is_parse_error() -> None:
    start = job_history_url("periodic-foo", base_url=BASE)
    fetcher = FakeFetcher({start: _html([_build("1", 1)], older="http://[::1")})
    with pytest.raises(ParseError):
        walk_job_history(fetcher, "periodic-foo", timedelta(hours=24), base_url=BASE, now=NOW)


def test_non_http_older_link_is_parse_error() -> None:
    start = job_history_url("periodic-foo", base_url=BASE)
    fetcher = FakeFetcher({start: _html([_build("1", 1)], older="javascript:void(0)")})
    with pytest.raises(ParseError, match="malformed older link"):
        walk_job_history(fetcher, "periodic-foo", timedelta(hours=24), base_url=BASE, now=NOW)


def test_entry_without_started_is_parse_error() -> None:
    start = job_history_url("periodic-foo", base_url=BASE)
    broken = _build("1", 1)
    broken["Started"] = ""
    fetcher = FakeFetcher({start: _html([broken])})
    with pytest.raises(ParseError, match="run 1"):
        walk_job_history(fetcher, "periodic-foo", timedelta(hours=24), base_url=BASE, now=NOW)


def test_json_history_document() -> None:
    start = job_history_url("periodic-foo", base_url=BASE)
    older = f"{start}?buildId=2"
    fetcher = FakeFetcher(
        {
            start: json.dumps({"builds": [_build("1", 1), _build("2", 2)], "olderLink": older}),
            older: json.dumps({"builds": [_build("3", 25)], "olderLink": ""}),
        }
    )
    stubs = walk_job_history(fetcher, "periodic-foo", timedelta(hours=24), base_url=BASE, now=NOW)
    assert [stub.id for stub in stubs] == ["1", "2"]


def test_job_name_falls_back_to_job_name_field() -> None:
    entry = _build("9", 1)
    entry.pop("ProwJob")
    entry["JobName"] = "periodic-bar"
    page = parse_history_page("https://x/", json.dumps({"builds": [entry]}))
    assert page.entries[0]["JobName"] == "periodic-bar"
    start = job_history_url("periodic-foo", base_url=BASE)
    fetcher = FakeFetcher({start: json.dumps({"builds": [entry]})})
    (stub,) = walk_job_history(fetcher, "periodic-foo", timedelta(hours=24), base_url=BASE, now=NOW)
    assert stub.job == "periodic-bar"
    assert stub.descriptor == {}
