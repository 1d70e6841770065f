from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional

from .buildcache import BuildCache
from .config import Settings, load_config
from .errors import SiteSyncError
from .metrics import MetricsStore, format_summary
from .pipeline import Pipeline

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%H:%M:%S"


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )


def build_parser(default_config: str = "sitesync.toml") -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sitesync",
        description="Sync content from a WordPress-style API and build the static site incrementally.",
    )
    parser.add_argument("--config", default=default_config, help="Path to config file (TOML/YAML/JSON).")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")
    parser.add_argument("--api-url", default=None, help="Content API base URL.")
    parser.add_argument("--output", dest="output_dir", default=None, help="Output directory for the site.")
    parser.add_argument("--chunk-size", type=int, default=None, help="Posts per chunk file.")
    parser.add_argument("--timeout", dest="request_timeout", type=float, default=None, help="Request timeout in seconds.")
    parser.add_argument(
        "--max-changed-routes",
        type=int,
        default=None,
        help="Changed routes above which a full rebuild is forced.",
    )
    parser.add_argument(
        "--render-workers",
        type=int,
        default=None,
        help="Number of worker threads for rendering (0 = auto).",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Fetch content, diff it and store the snapshot.")
    sync.add_argument("--fresh", action="store_true", help="Ignore pagination checkpoints.")

    build = commands.add_parser("build", help="Render changed routes from the stored snapshot.")
    build.add_argument("--full", action="store_true", help="Render every route, ignoring the diff.")

    run = commands.add_parser("run", help="Sync, then build.")
    run.add_argument("--full", action="store_true", help="Render every route, ignoring the diff.")
    run.add_argument("--fresh", action="store_true", help="Ignore pagination checkpoints.")

    cache = commands.add_parser("cache", help="Manage the build cache.")
    cache.add_argument("action", choices=["restore", "save", "clean", "stats"])

    check = commands.add_parser("check", help="Count posts modified since the last check.")
    check.add_argument("--since", default=None, help="ISO 8601 timestamp to check from.")

    commands.add_parser("metrics", help="Show the build metrics summary.")
    return parser


def load_settings(args: argparse.Namespace, env: Optional[dict] = None) -> Settings:
    config = load_config(Path(args.config))
    overrides = {
        "api_url": args.api_url,
        "output_dir": args.output_dir,
        "chunk_size": args.chunk_size,
        "request_timeout": args.request_timeout,
        "max_changed_routes": args.max_changed_routes,
        "render_workers": args.render_workers,
    }
    return Settings.from_sources(config, os.environ if env is None else env, overrides)


def print_lines(title: str, lines: list[str]) -> None:
    print(title)
    for line in lines:
        print(f"  {line}")


def run_cache(settings: Settings, action: str) -> None:
    cache = BuildCache(settings.cache_dir, settings.output_dir, settings.assets_dir)
    if action == "restore":
        print(f"Restored {cache.restore()} files from {settings.cache_dir}")
    elif action == "save":
        print(f"Saved {cache.save()} files to {settings.cache_dir}")
    elif action == "clean":
        if cache.clean():
            print("Cache cleared.")
        else:
            print("No cache to clear.")
    else:
        stats = cache.stats()
        if stats.exists:
            print(f"Files: {stats.file_count}, Size: {stats.size_mb:.2f} MB")
        else:
            print("No cache exists.")


def dispatch(args: argparse.Namespace, settings: Settings, pipeline: Pipeline) -> int:
    if args.command == "sync":
        print_lines("Sync summary:", pipeline.sync(fresh=args.fresh).summary())
    elif args.command == "build":
        built = pipeline.build(full=args.full)
        print_lines("Build summary:", built.summary())
    elif args.command == "run":
        synced, built = pipeline.run(full=args.full, fresh=args.fresh)
        print_lines("Sync summary:", synced.summary())
        print_lines("Build summary:", built.summary())
    elif args.command == "cache":
        run_cache(settings, args.action)
    elif args.command == "check":
        result = pipeline.check(since=args.since)
        print(f"{result.modified} posts modified since {result.since}")
    elif args.command == "metrics":
        for line in format_summary(MetricsStore(settings.state_dir / "build-metrics.json").load()):
            print(line)
    return 0


def main(argv: Optional[list[str]] = None, pipeline_factory=Pipeline) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    start = time.perf_counter()
    try:
        settings = load_settings(args)
        code = dispatch(args, settings, pipeline_factory(settings))
    except SiteSyncError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    elapsed = time.perf_counter() - start
    if args.command in {"sync", "build", "run"}:
        print(f"Completed in {elapsed:.2f}s.")
    return code


if __name__ == "__main__":
    sys.exit(main())
