"""Command line entry point for regmapper.

Each pipeline stage is available as a sub-command operating on one
regulation id.  For example:

```sh
    python -m regmapper upload --file gdpr.txt
    python -m regmapper parse 1
    python -m regmapper tag 1
    python -m regmapper map-controls 1
    python -m regmapper semantic-map 1
    python -m regmapper results 1 --threshold 0.3
```

or all outstanding stages at once with ``python -m regmapper run 1``.
Every command prints its outcome as JSON and exits non-zero when the
stage failed.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List

from .config import load_settings
from .db import create_db_engine, init_db, make_session_factory, seed_reference_data
from .errors import PipelineError
from .pipeline import MappingPipeline, StageOutcome


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--db-url",
        default=None,
        help="SQLAlchemy database URL (default: from config or sqlite:///regmapper.db)",
    )
    p.add_argument("--config", default=None, help="Path to regmapper.yaml (optional)")
    p.add_argument("--verbose", action="store_true", help="Enable verbose logging")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Regmapper CLI")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("init-db", help="Create tables and seed tags/controls")
    _add_common(p)

    p = sub.add_parser("upload", help="Register a regulation document")
    p.add_argument("--file", required=True, help="Path to the stored document")
    p.add_argument("--name", default=None, help="Display name (defaults to file name)")
    _add_common(p)

    p = sub.add_parser("parse", help="Split a regulation into requirements")
    p.add_argument("regulation_id", type=int)
    p.add_argument("--replace", action="store_true", help="Re-parse, dropping old requirements")
    _add_common(p)

    for cmd, help_text in (
        ("tag", "Tag pending requirements"),
        ("map-controls", "Keyword-map tagged requirements to controls"),
        ("status", "Show the pipeline phase of a regulation"),
        ("delete", "Delete a regulation and its requirements"),
    ):
        p = sub.add_parser(cmd, help=help_text)
        p.add_argument("regulation_id", type=int)
        _add_common(p)

    p = sub.add_parser("semantic-map", help="Rescore keyword mappings with embeddings")
    p.add_argument("regulation_id", type=int)
    p.add_argument("--timeout", type=float, default=None, help="Deadline in seconds")
    _add_common(p)

    p = sub.add_parser("discover", help="Add purely semantic mappings")
    p.add_argument("regulation_id", type=int)
    p.add_argument("--threshold", type=float, default=None)
    p.add_argument("--timeout", type=float, default=None, help="Deadline in seconds")
    _add_common(p)

    p = sub.add_parser("results", help="Show mappings above a similarity threshold")
    p.add_argument("regulation_id", type=int)
    p.add_argument("--threshold", type=float, default=None, help="Minimum score (default 0.2)")
    p.add_argument(
        "--group-tags",
        action="store_true",
        help="One row per mapping with all tags listed",
    )
    _add_common(p)

    p = sub.add_parser("run", help="Run every outstanding stage for a regulation")
    p.add_argument("regulation_id", type=int)
    _add_common(p)

    return parser


async def _dispatch(args: argparse.Namespace, pipeline: MappingPipeline) -> List[StageOutcome]:
    if args.cmd == "upload":
        return [await pipeline.register(args.file, name=args.name)]
    if args.cmd == "parse":
        return [await pipeline.parse(args.regulation_id, replace=args.replace)]
    if args.cmd == "tag":
        return [await pipeline.tag(args.regulation_id)]
    if args.cmd == "map-controls":
        return [await pipeline.map_controls(args.regulation_id)]
    if args.cmd == "semantic-map":
        return [await pipeline.semantic_map(args.regulation_id, timeout=args.timeout)]
    if args.cmd == "discover":
        return [
            await pipeline.discover(
                args.regulation_id, threshold=args.threshold, timeout=args.timeout
            )
        ]
    if args.cmd == "results":
        return [
            await pipeline.results(
                args.regulation_id, args.threshold, grouped=args.group_tags
            )
        ]
    if args.cmd == "delete":
        return [await pipeline.delete(args.regulation_id)]
    if args.cmd == "run":
        return await pipeline.run_all(args.regulation_id)
    raise ValueError(f"Unknown command: {args.cmd}")


async def _run_pipeline(args: argparse.Namespace, pipeline: MappingPipeline) -> List[StageOutcome]:
    try:
        return await _dispatch(args, pipeline)
    finally:
        await pipeline.close()


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s")

    settings = load_settings(args.config)
    if args.db_url:
        settings.database_url = args.db_url

    # Create DB + tables
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    SessionLocal = make_session_factory(engine)
    session = SessionLocal()

    try:
        seeded = seed_reference_data(session, settings.seed_path)
        if args.cmd == "init-db":
            print(json.dumps({"ok": True, "seeded": seeded}))
            return 0

        if args.cmd == "status":
            try:
                phase = MappingPipeline(session, settings=settings).phase(args.regulation_id)
            except PipelineError as e:
                print(json.dumps({"ok": False, **e.to_dict()}))
                return 1
            print(json.dumps({"ok": True, "regulation_id": args.regulation_id, "phase": phase.value}))
            return 0

        pipeline = MappingPipeline(session, settings=settings)
        outcomes = asyncio.run(_run_pipeline(args, pipeline))
    finally:
        session.close()
        engine.dispose()

    payload = [o.to_dict() for o in outcomes]
    print(json.dumps(payload[0] if len(payload) == 1 else payload, indent=2, default=str))
    return 0 if all(o.ok for o in outcomes) else 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
