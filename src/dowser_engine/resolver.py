"""
Dowser
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import urljoin

from dowser_engine.config import DEFAULT_RESOLVER_CONFIG, ResolverConfig
from dowser_engine.errors import FetchError, ParseError, ResolutionFailure, VerificationFailed
from dowser_engine.utils.fetch import Anchor, PageFetcher
from dowser_engine.utils.time import from_unix_seconds

logger = logging.getLogger(__name__)

DIRECT_CHECK = "DirectCheck"
GATEWAY_SCAN = "GatewayScan"
RUN_METADATA = "RunMetadata"
ARTIFACTS_SCAN = "ArtifactsScan"
E2E_SCAN = "E2EScan"
EXTRA_OVERRIDE_SCAN = "ExtraOverrideScan"
URL_SUBSTITUTION = "URLSubstitution"
VERIFY = "Verify"

NO_GATEWAY_LINK = "NoGatewayLink"
NO_ARTIFACTS_FOLDER = "NoArtifactsFolder"
NO_E2E_FOLDER = "NoE2EFolder"
FETCH_FAILED = "FetchFailed"


# Link predicates. Each takes the ordered anchor list of one listing page and
# returns the first matching href, or None.


def last_path_segment(href: str) -> str:
    """Final path segment; a trailing slash means the second-to-last one."""
    parts = href.split("/")
    segment = parts[-1]
    if not segment and len(parts) > 1:
        segment = parts[-2]
    return segment


def find_gateway_link(anchors: Sequence[Anchor], marker: str) -> Optional[str]:
    for anchor in anchors:
        if marker in anchor.href:
            return anchor.href
    return None


def find_artifacts_link(anchors: Sequence[Anchor], marker: str) -> Optional[str]:
    for anchor in anchors:
        if anchor.href.endswith(marker):
            return anchor.href
    return None


def find_e2e_link(anchors: Sequence[Anchor], marker: str) -> Optional[str]:
    for anchor in anchors:
        if marker in last_path_segment(anchor.href):
            return anchor.href
    return None


def find_extra_link(anchors: Sequence[Anchor], folder: str) -> Optional[str]:
    for anchor in anchors:
        if last_path_segment(anchor.href) == folder:
            return anchor.href
    return None


def join_href(base: str, href: str) -> str:
    try:
        return urljoin(base, href)
    except ValueError as exc:
        raise ParseError(base, f"unusable link {href!r}: {exc}") from exc


def build_archive_url(candidate: str, archive_path: str) -> str:
    if not candidate.endswith("/"):
        candidate = f"{candidate}/"
    return f"{candidate}{archive_path.lstrip('/')}"


def rewrite_to_storage(url: str, config: ResolverConfig) -> str:
    """Point gateway URLs straight at object storage so downloads skip the proxy."""
    return url.replace(config.gateway_storage_prefix, config.storage_prefix)


@dataclass
class ResolutionState:
    run_url: str
    candidate: str
    candidates: List[str] = field(default_factory=list)
    stages: List[str] = field(default_factory=list)
    gateway_url: str = ""
    skip_to_verify: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def advance(self, candidate: str) -> None:
        self.candidate = candidate
        self.candidates.append(candidate)


@dataclass(frozen=True)
class ResolutionResult:
    run_url: str
    archive_url: str
    stages: Tuple[str, ...]
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


Stage = Tuple[str, Callable[[ResolutionState], None]]


class ArtifactResolver:
    """
    Locate a run's monitoring archive by walking its listing pages.

    Stages run in a fixed order; each one either advances the candidate URL or
    raises ResolutionFailure naming the outcome. Fetch and parse errors inside
    a stage surface as the FetchFailed outcome.
    """

    def __init__(self, fetcher: PageFetcher, config: ResolverConfig = DEFAULT_RESOLVER_CONFIG) -> None:
        self._fetcher = fetcher
        self._config = config

    @property
    def config(self) -> ResolverConfig:
        return self._config

    def stages(self) -> List[Stage]:
        stages: List[Stage] = [
            (DIRECT_CHECK, self.direct_check),
            (GATEWAY_SCAN, self.gateway_scan),
        ]
        if self._config.fetch_metadata:
            stages.append((RUN_METADATA, self.run_metadata))
        stages.extend(
            [
                (ARTIFACTS_SCAN, self.artifacts_scan),
                (E2E_SCAN, self.e2e_scan),
                (EXTRA_OVERRIDE_SCAN, self.extra_override_scan),
                (URL_SUBSTITUTION, self.url_substitution),
            ]
        )
        if self._config.verify:
            stages.append((VERIFY, self.verify))
        return stages

    def resolve(self, url: str) -> ResolutionResult:
        state = ResolutionState(run_url=url, candidate=url)
        for name, stage in self.stages():
            if state.skip_to_verify and name != VERIFY:
                continue
            state.stages.append(name)
            try:
                stage(state)
            except (FetchError, ParseError) as exc:
                raise ResolutionFailure(FETCH_FAILED, stage=name, url=url, detail=str(exc)) from exc
        logger.debug("resolved %s -> %s via %s", url, state.candidate, ",".join(state.stages))
        return ResolutionResult(
            run_url=url,
            archive_url=state.candidate,
            stages=tuple(state.stages),
            started_at=state.started_at,
            finished_at=state.finished_at,
        )

    def _anchors(self, url: str) -> Sequence[Anchor]:
        return self._fetcher.fetch(url).anchors

    def direct_check(self, state: ResolutionState) -> None:
        if state.run_url.endswith(self._config.archive_path):
            state.skip_to_verify = True

    def gateway_scan(self, state: ResolutionState) -> None:
        href = find_gateway_link(self._anchors(state.candidate), self._config.gateway_marker)
        if href is None:
            raise ResolutionFailure(NO_GATEWAY_LINK, stage=GATEWAY_SCAN, url=state.run_url)
        state.gateway_url = join_href(state.candidate, href)
        state.advance(state.gateway_url)

    def run_metadata(self, state: ResolutionState) -> None:
        base = state.gateway_url.rstrip("/")
        for name in ("started", "finished"):
            doc_url = f"{base}/{name}.json"
            try:
                payload = self._fetcher.fetch_json(doc_url)
            except (FetchError, ParseError) as exc:
                logger.warning("run metadata unavailable for %s: %s", state.run_url, exc)
                continue
            timestamp = payload.get("timestamp") if isinstance(payload, dict) else None
            if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
                logger.warning("run metadata at %s has no timestamp", doc_url)
                continue
            setattr(state, f"{name}_at", from_unix_seconds(timestamp))

    def artifacts_scan(self, state: ResolutionState) -> None:
        href = find_artifacts_link(self._anchors(state.candidate), self._config.artifacts_marker)
        if href is None:
            raise ResolutionFailure(NO_ARTIFACTS_FOLDER, stage=ARTIFACTS_SCAN, url=state.run_url, detail=state.candidate)
        state.advance(join_href(state.candidate, href))

    def e2e_scan(self, state: ResolutionState) -> None:
        href = find_e2e_link(self._anchors(state.candidate), self._config.e2e_marker)
        if href is None:
            raise ResolutionFailure(NO_E2E_FOLDER, stage=E2E_SCAN, url=state.run_url, detail=state.candidate)
        state.advance(join_href(state.candidate, href))

    def extra_override_scan(self, state: ResolutionState) -> None:
        # gather-extra runs nest the metrics directory one level deeper
        href = find_extra_link(self._anchors(state.candidate), self._config.extra_folder)
        if href is not None:
            state.advance(join_href(state.candidate, href))

    def url_substitution(self, state: ResolutionState) -> None:
        archive_url = build_archive_url(state.candidate, self._config.archive_path)
        state.advance(rewrite_to_storage(archive_url, self._config))

    def verify(self, state: ResolutionState) -> None:
        head = self._fetcher.head(state.candidate)
        if not 200 <= head.status_code < 300:
            raise VerificationFailed(state.candidate, f"http status {head.status_code}")
        if not head.content_length:
            raise VerificationFailed(state.candidate, "no content-length")
        try:
            length = int(head.content_length)
        except ValueError:
            raise VerificationFailed(state.candidate, f"invalid content-length {head.content_length!r}") from None
        if length <= 0:
            raise VerificationFailed(state.candidate, "archive is empty")
