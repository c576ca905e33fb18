from __future__ import annotations

import pytest
import requests

from dowser_engine.errors import FetchError, ParseError
from dowser_engine.utils.fetch import Anchor, PageFetcher, extract_anchors


class _Resp:
    def __init__(self, status_code: int = 200, text: str = "", headers=None):
        self.status_code = status_code
        self.text = text
        self.headers = headers or {}


class _Session:
    def __init__(self, resp=None, exc=None):
        self.resp = resp
        self.exc = exc
        self.calls = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append(("GET", url, timeout))
        if self.exc:
            raise self.exc
        return self.resp

    def head(self, url, headers=None, timeout=None, allow_redirects=False):
        self.calls.append(("HEAD", url, timeout))
        if self.exc:
            raise self.exc
        return self.resp

    def close(self) -> None:
        pass


def test_extract_anchors_keeps_document_order_and_text() -> None:
    html = """
    <html><body>
      <a href="/a/">First <b>dir</b></a>
      <a name="no-href">skip</a>
      <a href="https://example.com/b">b</a>
    </body></html>
    """
    assert extract_anchors(html) == [
        Anchor(href="/a/", text="First dir"),
        Anchor(href="https://example.com/b", text="b"),
    ]


def test_fetch_returns_listing_page_with_fixed_timeout() -> None:
    session = _Session(_Resp(text='<a href="x/">x</a><a href="y/">y</a>'))
    page = PageFetcher(session=session).fetch("https://example.com/dir/")
    assert page.url == "https://example.com/dir/"
    assert page.hrefs == ["x/", "y/"]
    assert session.calls == [("GET", "https://example.com/dir/", 10.0)]


def test_fetch_non_2xx_raises_fetch_error() -> None:
    session = _Session(_Resp(status_code=404, text="missing"))
    with pytest.raises(FetchError) as excinfo:
        PageFetcher(session=session).fetch("https://example.com/missing")
    assert excinfo.value.status_code == 404
    assert excinfo.value.url == "https://example.com/missing"


def test_fetch_transport_error_raises_fetch_error() -> None:
    session = _Session(exc=requests.ConnectionError("refused"))
    with pytest.raises(FetchError, match="ConnectionError"):
        PageFetcher(session=session).fetch("https://example.com/")


def test_fetch_json_parses_and_rejects_malformed() -> None:
    fetcher = PageFetcher(session=_Session(_Resp(text='{"timestamp": 1600000000}')))
    assert fetcher.fetch_json("https://example.com/started.json") == {"timestamp": 1600000000}

    broken = PageFetcher(session=_Session(_Resp(text="<html>")))
    with pytest.raises(ParseError):
        broken.fetch_json("https://example.com/started.json")


def test_head_reports_status_and_length_without_raising() -> None:
    session = _Session(_Resp(status_code=403, headers={"Content-Length": "12"}))
    result = PageFetcher(session=session).head("https://example.com/archive.tar")
    assert result.status_code == 403
    assert result.content_length == "12"
    assert session.calls[0][0] == "HEAD"


def test_head_transport_error_raises_fetch_error() -> None:
    session = _Session(exc=requests.Timeout("slow"))
    with pytest.raises(FetchError):
        PageFetcher(session=session).head("https://example.com/archive.tar")
