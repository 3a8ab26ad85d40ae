"""
Batch runner: fetch a URL list at bounded concurrency into a result store.

Usage:
    llmfetch-bench --urls data/urls-10k.txt --db results.db --parallel 100

Re-running with the same list only fetches URLs not yet in the store.
"""

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable

import psutil

from .errors import HostNotAllowedError, LlmfetchError
from .fetch import Fetcher, normalize_url
from .metrics import FetchResult, Outcome, failure_result
from .settings import FetchConfig, load_fetch_config
from .storage import DEFAULT_DB, ResultStore

logger = logging.getLogger(__name__)

FetchFn = Callable[[str], Awaitable[FetchResult]]


@dataclass
class BenchmarkOptions:
    urls_file: str
    db_file: str = DEFAULT_DB
    parallel: int = 100
    limit: int | None = None


@dataclass
class BatchSummary:
    """Counters for one run; lives only as long as the process."""
    total: int = 0
    completed: int = 0
    success: int = 0
    blocked: int = 0
    errors: int = 0
    started: float = field(default_factory=time.perf_counter)

    @property
    def elapsed_s(self) -> float:
        return time.perf_counter() - self.started

    @property
    def rate(self) -> float:
        elapsed = self.elapsed_s
        return self.completed / elapsed if elapsed > 0 else 0.0

    @property
    def eta_s(self) -> float:
        rate = self.rate
        return (self.total - self.completed) / rate if rate > 0 else 0.0

    def record(self, result: FetchResult) -> None:
        self.completed += 1
        if result.outcome is Outcome.SUCCESS:
            self.success += 1
        elif result.outcome is Outcome.BLOCKED:
            self.blocked += 1
        else:
            self.errors += 1


def format_time(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.0f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"


def memory_mb() -> float:
    return psutil.Process().memory_info().rss / (1024 * 1024)


def load_worklist(path: str | Path, store: ResultStore, limit: int | None = None) -> list[str]:
    """
    Read URLs to attempt: blank and '#' lines ignored, URLs already in the
    store skipped, at most `limit` new URLs.
    """
    urls: list[str] = []
    seen: set[str] = set()
    with open(path, encoding="utf-8") as fh:
        for line in fh:
            if limit is not None and len(urls) >= limit:
                break
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            url = normalize_url(line)
            if url in seen or store.exists(url):
                continue
            seen.add(url)
            urls.append(url)
    return urls


def chunked(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


async def _guarded(fetch: FetchFn, url: str) -> FetchResult:
    try:
        return await fetch(url)
    except HostNotAllowedError:
        raise
    except Exception as e:
        logger.error("Fetch of %s raised %s: %s", url, type(e).__name__, e)
        return failure_result(url, 0, Outcome.ERROR, "unknown", 0)


def progress_line(summary: BatchSummary) -> str:
    pct = (summary.completed / summary.total * 100) if summary.total else 100.0
    return (
        f"  Progress: {summary.completed}/{summary.total} ({pct:.1f}%) | "
        f"{summary.rate:.1f} URLs/sec | ETA: {format_time(summary.eta_s)} | "
        f"Mem: {memory_mb():.0f}MB | S:{summary.success} B:{summary.blocked} E:{summary.errors}"
    )


async def run_batch(urls: list[str], store: ResultStore, fetch: FetchFn, parallel: int) -> BatchSummary:
    """
    Process `urls` in chunks of `parallel`.

    All fetches in a chunk run concurrently and the whole chunk drains before
    the next starts, so one slow URL holds up the following chunk.

    A refused host aborts the run before its chunk is stored, so a later run
    from an allowed machine still attempts those URLs.
    """
    summary = BatchSummary(total=len(urls))
    for chunk in chunked(urls, max(1, parallel)):
        results = await asyncio.gather(*(_guarded(fetch, url) for url in chunk), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        store.upsert_many(results)
        for result in results:
            summary.record(result)
        print("\r" + progress_line(summary), end="", flush=True)
    if urls:
        print()
    return summary


def print_summary(summary: BatchSummary) -> None:
    done = summary.completed

    def share(n: int) -> str:
        return f"{(n / done * 100) if done else 0.0:.1f}%"

    print()
    print("Benchmark complete!")
    print(f"  Total: {done}")
    print(f"  Success: {summary.success} ({share(summary.success)})")
    print(f"  Blocked: {summary.blocked} ({share(summary.blocked)})")
    print(f"  Errors: {summary.errors} ({share(summary.errors)})")
    print(f"  Time: {format_time(summary.elapsed_s)}")
    print(f"  Rate: {summary.rate:.1f} URLs/sec")


async def run_benchmark(options: BenchmarkOptions, config: FetchConfig | None = None, fetcher: Fetcher | None = None) -> BatchSummary:
    config = config or FetchConfig(timeout_ms=10_000)
    print("Starting benchmark...")
    print(f"  URLs file: {options.urls_file}")
    print(f"  Results DB: {options.db_file}")
    print(f"  Parallel: {options.parallel}")

    with ResultStore.open(options.db_file) as store:
        urls = load_worklist(options.urls_file, store, options.limit)
        print(f"  URLs to test: {len(urls)}")

        owns_fetcher = fetcher is None
        fetcher = fetcher or Fetcher(config)
        try:
            summary = await run_batch(urls, store, fetcher.fetch, options.parallel)
        finally:
            if owns_fetcher:
                await fetcher.close()

    print_summary(summary)
    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="llmfetch-bench", description="Fetch a URL list into a results database.")
    parser.add_argument("-u", "--urls", help="newline-delimited URL file")
    parser.add_argument("-d", "--db", default=DEFAULT_DB, help="results database (default: %(default)s)")
    parser.add_argument("-p", "--parallel", type=int, default=100, help="concurrent requests per chunk (default: %(default)s)")
    parser.add_argument("-l", "--limit", type=int, default=None, help="max new URLs to attempt")
    parser.add_argument("--timeout", type=int, default=10_000, help="request timeout in ms (default: %(default)s)")
    parser.add_argument("--fast", action="store_true", help="never escalate to script rendering")
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.urls:
        print("Usage: llmfetch-bench --urls <file> [--db <file>] [--parallel <n>] [--limit <n>]", file=sys.stderr)
        return 1
    if args.parallel < 1:
        print("--parallel must be at least 1", file=sys.stderr)
        return 1
    if args.limit is not None and args.limit < 1:
        print("--limit must be at least 1", file=sys.stderr)
        return 1

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    options = BenchmarkOptions(urls_file=args.urls, db_file=args.db, parallel=args.parallel, limit=args.limit)
    try:
        config = load_fetch_config(args.config, timeout_ms=args.timeout, fast_mode=args.fast or None, debug=args.debug or None)
        asyncio.run(run_benchmark(options, config))
    except (LlmfetchError, OSError) as e:
        print(f"Fatal: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
