"""
Dowser
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import requests
from bs4 import BeautifulSoup

from dowser_engine.config import REQUEST_TIMEOUT_S, USER_AGENT
from dowser_engine.errors import FetchError, ParseError

logger = logging.getLogger(__name__)

_MAX_ERROR_CHARS = 240


@dataclass(frozen=True)
class Anchor:
    href: str
    text: str


@dataclass(frozen=True)
class ListingPage:
    url: str
    anchors: Tuple[Anchor, ...]
    body: str

    @property
    def hrefs(self) -> List[str]:
        return [anchor.href for anchor in self.anchors]


@dataclass(frozen=True)
class HeadResult:
    status_code: int
    content_length: Optional[str]


def _clip(text: str, *, limit: int = _MAX_ERROR_CHARS) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def extract_anchors(html: str) -> List[Anchor]:
    """Return every ``<a href>`` in document order with its visible text."""
    soup = BeautifulSoup(html, "html.parser")
    anchors: List[Anchor] = []
    for tag in soup.find_all("a", href=True):
        anchors.append(Anchor(href=str(tag["href"]), text=tag.get_text(" ", strip=True)))
    return anchors


class PageFetcher:
    """
    Thin requests wrapper for directory listings and small JSON documents.

    Every call uses the same fixed timeout. No retries happen here; a failed
    call raises FetchError/ParseError and the caller decides what to do.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        timeout_s: float = REQUEST_TIMEOUT_S,
        user_agent: str = USER_AGENT,
    ) -> None:
        self._session = session or requests.Session()
        self._timeout_s = timeout_s
        self._headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8",
        }

    def _get(self, url: str) -> requests.Response:
        try:
            resp = self._session.get(url, headers=self._headers, timeout=self._timeout_s)
        except requests.RequestException as exc:
            raise FetchError(url, _clip(f"{type(exc).__name__}: {exc}")) from exc
        if not 200 <= resp.status_code < 300:
            raise FetchError(url, f"http status {resp.status_code}", status_code=resp.status_code)
        return resp

    def fetch_text(self, url: str) -> str:
        return self._get(url).text

    def fetch(self, url: str) -> ListingPage:
        body = self.fetch_text(url)
        try:
            anchors = extract_anchors(body)
        except Exception as exc:
            raise ParseError(url, _clip(f"unparseable markup: {exc}")) from exc
        logger.debug("fetched %s (%d links)", url, len(anchors))
        return ListingPage(url=url, anchors=tuple(anchors), body=body)

    def fetch_json(self, url: str) -> Any:
        body = self.fetch_text(url)
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise ParseError(url, f"invalid json: {exc}") from exc

    def head(self, url: str) -> HeadResult:
        try:
            resp = self._session.head(url, headers=self._headers, timeout=self._timeout_s, allow_redirects=True)
        except requests.RequestException as exc:
            raise FetchError(url, _clip(f"{type(exc).__name__}: {exc}")) from exc
        return HeadResult(status_code=resp.status_code, content_length=resp.headers.get("Content-Length"))

    def close(self) -> None:
        self._session.close()
