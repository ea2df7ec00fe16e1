"""
Operations CLI for the drop gateway.

Usage:
    python -m apps.drops.cli reconcile [--cursor C] [--max-pages N] [--page-size N]
    python -m apps.drops.cli evict
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict

from apps.drops.ratelimit import pick_counter_store
from apps.drops.reconciler import Reconciler
from apps.drops.services import build_blob_store
from apps.drops.tasks import evict_expired
from config.db import close_db, init_db
from config.logging_config import setup_logging
from config.settings import RECONCILE_PAGE_SIZE


async def _reconcile(args: argparse.Namespace) -> dict:
    await init_db()
    try:
        reconciler = Reconciler(build_blob_store(), page_size=args.page_size)
        report = await reconciler.sweep(cursor=args.cursor, max_pages=args.max_pages)
    finally:
        await close_db()
    return {**asdict(report), "deleted": report.deleted}


async def _evict(args: argparse.Namespace) -> dict:
    await init_db()
    try:
        blobs = build_blob_store()
        evicted = await evict_expired(blobs.metadata, pick_counter_store())
    finally:
        await close_db()
    return {"evicted": evicted}


def cmd_reconcile(args: argparse.Namespace) -> int:
    result = asyncio.run(_reconcile(args))
    print(json.dumps(result, indent=2))
    if result["cursor"]:
        print(f"Stopped early. Resume with: --cursor {result['cursor']}", file=sys.stderr)
    return 1 if result["failed"] else 0


def cmd_evict(args: argparse.Namespace) -> int:
    print(json.dumps(asyncio.run(_evict(args)), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="drops", description="Drop gateway maintenance")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("reconcile", help="Sweep the object store for expired and legacy bodies")
    p.add_argument("--cursor", default=None, help="Resume from a cursor printed by a previous run")
    p.add_argument("--max-pages", type=int, default=None, help="Stop after N pages")
    p.add_argument("--page-size", type=int, default=RECONCILE_PAGE_SIZE)
    p.set_defaults(func=cmd_reconcile)

    p = sub.add_parser("evict", help="Purge metadata records and rate counters past their TTL")
    p.set_defaults(func=cmd_evict)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
