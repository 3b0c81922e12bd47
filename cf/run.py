"""
Contact Finder - CLI Runner

Usage:
  python -m cf.run \
    --query "музыкальная студия тюмень" \
    --top 10 --pages 3 \
    --config config/example.yaml \
    --out ./out

Dry run (validate only):
  python -m cf.run --query "..." --config config/example.yaml --out ./out --dry-run

Exit codes:
  0 - success
  1 - config error (file missing or invalid YAML/values)
  2 - input error (invalid query/top/pages)
  3 - processing error (browser unavailable, output not writable)
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from contactfinder.config import ConfigError, Settings, load_settings
from contactfinder.db.history_store import HistoryStore
from contactfinder.ops_logger import OpsLogger
from contactfinder.pipeline.browser import BrowserLaunchError, ProfileBusyError
from contactfinder.pipeline.search import SearchPipeline
from contactfinder.schemas import SearchRequest, SearchResponse


def ensure_out_dir(out_dir: Path) -> None:
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        test_file = out_dir / ".write_test"
        test_file.write_text("ok", encoding="utf-8")
        test_file.unlink(missing_ok=True)
    except Exception as e:
        print(f"Output error: cannot write to {out_dir}: {e}", file=sys.stderr)
        sys.exit(3)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cf.run", description="Discover business contacts for a search query")
    parser.add_argument("--query", "-q", required=True, help="Organization search query")
    parser.add_argument("--top", type=int, default=10, help="Ranked links to process, 1-15 (default 10)")
    parser.add_argument("--pages", type=int, default=3, help="SERP pages to crawl, 1-10 (default 3)")
    parser.add_argument("--config", "-c", default=None, help="Path to YAML config file")
    parser.add_argument("--out", "-o", default="./out", help="Output directory (default ./out)")
    parser.add_argument("--dry-run", action="store_true", help="Validate inputs/config and exit")
    parser.add_argument("--db", choices=["sqlite", "none"], default="sqlite", help="History store: sqlite or none (default: sqlite)")
    parser.add_argument("--db-path", default=None, help="Path to history SQLite file (default: from config)")
    parser.add_argument("--concurrency", type=int, default=None, help="Parallel link workers (default from config, 3)")
    parser.add_argument("--ops-log", default=None, help="Path to ops JSONL log file (default: <out>/ops.log when enabled)")
    parser.add_argument("--ops-stdout", action="store_true", help="Also mirror ops JSON to stdout")
    parser.add_argument("--quiet", action="store_true", help="Do not echo pipeline logs to stdout")
    return parser


def write_response(out_dir: Path, response: SearchResponse) -> Path:
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    path = out_dir / f"search_{stamp}.json"
    path.write_text(json.dumps(response.to_wire(), ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    return path


async def run_search(settings: Settings, request: SearchRequest, *, history: HistoryStore | None, ops_logger: OpsLogger | None) -> SearchResponse:
    pipeline = SearchPipeline.from_settings(settings, history=history, ops_logger=ops_logger)
    try:
        return await pipeline.run(request)
    finally:
        await pipeline.close()


def main(argv: list[str] | None = None) -> int:
    if sys.version_info < (3, 11):
        cur = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
        print(f"Python 3.11+ required. Current: {cur}.", file=sys.stderr)
        return 1

    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(Path(args.config) if args.config else None)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1

    try:
        request = SearchRequest(query=args.query, top=args.top, pages=args.pages)
    except ValidationError as e:
        print(f"Input error: {e}", file=sys.stderr)
        return 2

    if args.concurrency is not None:
        if args.concurrency < 1:
            print("Input error: --concurrency must be >= 1", file=sys.stderr)
            return 2
        settings.pipeline.concurrency = args.concurrency
    if args.quiet:
        settings.pipeline.echo_logs = False

    out_dir = Path(args.out)
    ensure_out_dir(out_dir)

    if args.dry_run:
        print("✅ Dry-run validation passed")
        print(f" - Query: {request.query} (top={request.top}, pages={request.pages})")
        print(f" - Config: {args.config or '(defaults + env)'}")
        print(f" - Output dir: {out_dir}")
        print(f" - Concurrency: {settings.pipeline.concurrency}")
        print(f" - AI key set: {'yes' if settings.ai.api_key else 'no'}")
        return 0

    history = None
    if args.db == "sqlite" and settings.history.enabled:
        history = HistoryStore(args.db_path or settings.history.path, max_entries=settings.history.max_entries)

    ops_logger = None
    if args.ops_log or settings.ops.ops_json:
        ops_path = Path(args.ops_log or settings.ops.log_path or (out_dir / "ops.log"))
        ops_logger = OpsLogger(ops_path, also_stdout=bool(args.ops_stdout))

    try:
        response = asyncio.run(run_search(settings, request, history=history, ops_logger=ops_logger))
    except ProfileBusyError as e:
        print(f"Browser error: {e} (close the other browser using this profile)", file=sys.stderr)
        return 3
    except BrowserLaunchError as e:
        print(f"Browser error: {e}", file=sys.stderr)
        return 3

    try:
        path = write_response(out_dir, response)
    except Exception as e:
        print(f"Export error: {e}", file=sys.stderr)
        return 3

    errors = sum(1 for r in response.results if r.error)
    found = sum(1 for r in response.results if not r.error and not r.contacts.is_empty())
    print(f"💾 JSON: {path}")
    if response.history_id is not None:
        print(f"💽 History id: {response.history_id}")
    print("🏁 Done.")
    print(f"   Processed links: {response.total}")
    print(f"   With contacts: {found}")
    print(f"   Errors: {errors}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
