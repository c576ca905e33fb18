"""
Dowser
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import argparse
import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from dowser_engine.config import (
    BASE_URL,
    DB_PATH,
    DEFAULT_BUCKET,
    DEFAULT_CONCURRENCY,
    DEFAULT_JOB,
    DEFAULT_LOOKBACK,
    DEFAULT_RESOLVER_CONFIG,
    ResolverConfig,
    load_resolver_config,
)
from dowser_engine.errors import CycleDetected, FetchError, ParseError, PersistenceError, ResolutionFailure
from dowser_engine.history import history_summary, walk_job_history
from dowser_engine.pipeline.harvest import run_harvest
from dowser_engine.presentation import parse_output_format, render
from dowser_engine.record_store import open_record_store
from dowser_engine.resolver import ArtifactResolver
from dowser_engine.selection import SelectionCriteria, select_records
from dowser_engine.utils.fetch import PageFetcher
from dowser_engine.utils.time import format_timestamp, parse_duration

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    if logging.getLogger().hasHandlers():
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _duration(value: str, flag: str) -> timedelta:
    try:
        return parse_duration(value)
    except ValueError as exc:
        raise SystemExit(f"{flag}: {exc}") from exc


def _jobs(args: argparse.Namespace) -> List[str]:
    return [job.strip() for job in (args.job or [DEFAULT_JOB]) if job.strip()]


def _resolver_config(args: argparse.Namespace) -> ResolverConfig:
    config = DEFAULT_RESOLVER_CONFIG
    if getattr(args, "resolver_config", None):
        try:
            config = load_resolver_config(Path(args.resolver_config))
        except ValueError as exc:
            raise SystemExit(str(exc)) from exc
    overrides: Dict[str, Any] = {}
    if getattr(args, "metadata", False):
        overrides["fetch_metadata"] = True
    if getattr(args, "no_verify", False):
        overrides["verify"] = False
    return config.with_overrides(**overrides) if overrides else config


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _db_create(args: argparse.Namespace) -> int:
    lookback = _duration(args.lookback, "--from")
    if args.concurrency < 1:
        raise SystemExit("--concurrency must be >= 1")
    try:
        sink = None if args.dry_run else open_record_store(args.output_file)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    try:
        report = run_harvest(
            _jobs(args),
            lookback=lookback,
            sink=sink,
            fetcher=PageFetcher(),
            resolver_config=_resolver_config(args),
            base_url=args.base_url,
            bucket=args.bucket,
            concurrency=args.concurrency,
            dry_run=args.dry_run,
        )
    except PersistenceError as exc:
        raise SystemExit(f"harvest aborted: {exc}") from exc
    payload = report.to_dict()
    if args.dry_run:
        payload["records"] = [record.to_dict() for record in report.records]
    _print_json(payload)
    return 0


def _db_select(args: argparse.Namespace) -> int:
    try:
        output = parse_output_format(args.output)
        criteria = SelectionCriteria(
            since=_duration(args.since, "--from"),
            until=_duration(args.until, "--to"),
            result=args.result,
            jobs=frozenset(args.job or []),
            max_per_day=args.max_per_day,
        )
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    try:
        records = open_record_store(args.db_file).load_all()
    except (PersistenceError, ValueError) as exc:
        raise SystemExit(str(exc)) from exc
    selected = select_records(records, criteria)
    logger.info("selected %d of %d records", len(selected), len(records))
    print(render(selected, output))
    return 0


def _hist_show(args: argparse.Namespace) -> int:
    lookback = _duration(args.lookback, "--from")
    fetcher = PageFetcher()
    out: Dict[str, Any] = {}
    for job in _jobs(args):
        try:
            stubs = walk_job_history(fetcher, job, lookback, base_url=args.base_url, bucket=args.bucket)
        except (FetchError, ParseError, CycleDetected) as exc:
            raise SystemExit(f"history walk failed for job {job}: {exc}") from exc
        out[job] = {
            "summary": history_summary(stubs),
            "runs": [stub.to_dict() for stub in stubs],
        }
    _print_json(out)
    return 0


def _resolve(args: argparse.Namespace) -> int:
    resolver = ArtifactResolver(PageFetcher(), _resolver_config(args))
    try:
        result = resolver.resolve(args.url)
    except ResolutionFailure as exc:
        raise SystemExit(f"{exc.outcome} at {exc.stage}: {exc}") from exc
    _print_json(
        {
            "run_url": result.run_url,
            "archive_url": result.archive_url,
            "stages": list(result.stages),
            "started": format_timestamp(result.started_at) if result.started_at else None,
            "finished": format_timestamp(result.finished_at) if result.finished_at else None,
        }
    )
    return 0


def _serve(args: argparse.Namespace) -> int:
    try:
        import uvicorn

        import dowser_engine.dashboard.app as dashboard_app
    except (ImportError, RuntimeError) as exc:
        raise SystemExit("Dashboard deps missing (fastapi, uvicorn). Install with: pip install -e '.[dashboard]'") from exc
    if args.db_file:
        dashboard_app.RECORD_STORE_LOCATION = args.db_file
    logger.info("serving records from %s on %s:%d", dashboard_app.RECORD_STORE_LOCATION, args.host, args.port)
    uvicorn.run(dashboard_app.app, host=args.host, port=args.port, log_level="info")
    return 0


def _add_history_args(cmd: argparse.ArgumentParser) -> None:
    cmd.add_argument("--base-url", default=BASE_URL, help=f"CI dashboard base URL (default: {BASE_URL}).")
    cmd.add_argument("--bucket", default=DEFAULT_BUCKET, help=f"Storage bucket in history URLs (default: {DEFAULT_BUCKET}).")
    cmd.add_argument(
        "--job",
        action="append",
        help=f"Job name; repeat for several jobs (default: {DEFAULT_JOB}).",
    )
    cmd.add_argument(
        "--from",
        dest="lookback",
        default=DEFAULT_LOOKBACK,
        help=f"How far back to walk, e.g. 24h, 90m (default: {DEFAULT_LOOKBACK}).",
    )


def _add_resolver_args(cmd: argparse.ArgumentParser) -> None:
    cmd.add_argument("--resolver-config", help="JSON file overriding resolver markers and prefixes.")
    cmd.add_argument("--metadata", action="store_true", help="Fetch started.json/finished.json for each run.")
    cmd.add_argument("--no-verify", action="store_true", help="Skip the HEAD check on the archive URL.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dowser",
        description="Dowser: harvest CI run history and locate monitoring archives.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    db_cmd = subparsers.add_parser("db", help="Record database commands")
    db_sub = db_cmd.add_subparsers(dest="db_command", required=True)

    create_cmd = db_sub.add_parser("create", help="Harvest job history and upsert enriched records")
    _add_history_args(create_cmd)
    _add_resolver_args(create_cmd)
    create_cmd.add_argument(
        "--output-file",
        "-f",
        default=str(DB_PATH),
        help=f"Record store: *.db (sqlite), *.json or s3://bucket/key.json (default: {DB_PATH}).",
    )
    create_cmd.add_argument("--dry-run", action="store_true", help="Harvest and print, write nothing.")
    create_cmd.add_argument(
        "--concurrency",
        type=int,
        default=DEFAULT_CONCURRENCY,
        help=f"Resolver workers per job (default: {DEFAULT_CONCURRENCY}).",
    )
    create_cmd.set_defaults(func=_db_create)

    select_cmd = db_sub.add_parser("select", help="Filter and sample stored records")
    select_cmd.add_argument("--db-file", "-f", default=str(DB_PATH), help=f"Record store to read (default: {DB_PATH}).")
    select_cmd.add_argument("--from", dest="since", default=DEFAULT_LOOKBACK, help="Window start, as a duration before now.")
    select_cmd.add_argument("--to", dest="until", default="0", help="Window end, as a duration before now (default: 0).")
    select_cmd.add_argument("--result", help="Keep only runs with this exact result, e.g. SUCCESS.")
    select_cmd.add_argument("--job", action="append", help="Keep only this job; repeat for several.")
    select_cmd.add_argument("--max-per-day", type=int, default=0, help="Cap per job and day of month (0: no cap).")
    select_cmd.add_argument("--output", "-o", default="list", help="Output format: list or cluster=<name>.")
    select_cmd.set_defaults(func=_db_select)

    hist_cmd = subparsers.add_parser("hist", help="Job history commands")
    hist_sub = hist_cmd.add_subparsers(dest="hist_command", required=True)
    show_cmd = hist_sub.add_parser("show", help="Print run history without resolving archives")
    _add_history_args(show_cmd)
    show_cmd.set_defaults(func=_hist_show)

    resolve_cmd = subparsers.add_parser("resolve", help="Resolve the archive URL of one run")
    resolve_cmd.add_argument("url", help="Run detail page URL or direct archive URL.")
    _add_resolver_args(resolve_cmd)
    resolve_cmd.set_defaults(func=_resolve)

    serve_cmd = subparsers.add_parser("serve", help="Run the read-only records API")
    serve_cmd.add_argument("--db-file", "-f", help=f"Record store to serve (default: $DOWSER_DB_PATH or {DB_PATH}).")
    serve_cmd.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1).")
    serve_cmd.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000).")
    serve_cmd.set_defaults(func=_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    _setup_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
