"""
Dowser
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

from typing import Optional


class DowserError(RuntimeError):
    """Base class for harvest pipeline failures."""


class FetchError(DowserError):
    """Transport failure or non-2xx response."""

    def __init__(self, url: str, reason: str, *, status_code: Optional[int] = None):
        super().__init__(f"fetch failed for {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status_code = status_code


class ParseError(DowserError):
    """Malformed listing page, history page or JSON document."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"parse failed for {url}: {reason}")
        self.url = url
        self.reason = reason


class CycleDetected(DowserError):
    """History pagination led back to a page that was already visited."""

    def __init__(self, url: str, pages_visited: int):
        super().__init__(f"pagination cycle at {url} after {pages_visited} page(s)")
        self.url = url
        self.pages_visited = pages_visited


class ResolutionFailure(DowserError):
    """Archive resolution dead end for a single run. Never fatal to a batch."""

    def __init__(self, outcome: str, *, stage: str, url: str, detail: str = ""):
        message = f"{outcome} at stage {stage} for {url}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.outcome = outcome
        self.stage = stage
        self.url = url
        self.detail = detail


class VerificationFailed(ResolutionFailure):
    def __init__(self, url: str, detail: str):
        super().__init__("VerificationFailed", stage="Verify", url=url, detail=detail)


class PersistenceError(DowserError):
    """Sink write or read failure. Aborts the whole harvest."""
