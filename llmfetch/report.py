"""
Report generator: summary statistics from a results database.

Usage:
    llmfetch-report --db results.db [--json] [--compare baseline.db]
"""

import argparse
import json
import sys

from .errors import StoreError
from .stats import Comparison, Stats, compare, compute_stats, pct
from .storage import DEFAULT_DB, ResultStore

RULE = "═" * 63


def load_stats(path: str) -> Stats:
    with ResultStore.open(path, readonly=True) as store:
        return compute_stats(store.to_frame())


def _share(n: int, whole: int) -> str:
    return f"{n:,} ({pct(n, whole):.1f}%)"


def format_report(stats: Stats) -> str:
    lines = [
        RULE,
        "                    BENCHMARK REPORT",
        RULE,
        "",
        f"Total URLs:        {stats.total:,}",
        f"Success:           {_share(stats.success, stats.total)}",
        f"Blocked:           {_share(stats.blocked, stats.total)}",
        f"Errors:            {_share(stats.errors, stats.total)}",
        "",
        "Tier Distribution:",
        f"  Tier 0:          {_share(stats.tier0, stats.total)}",
        f"  Tier 1:          {_share(stats.tier1, stats.total)}",
        "",
        "Block Reasons:",
    ]
    for reason, count in sorted(stats.block_reasons.items(), key=lambda kv: kv[1], reverse=True):
        lines.append(f"  {reason:<18} {count:,}")
    lines += ["", "Error Reasons:"]
    for reason, count in sorted(stats.error_reasons.items(), key=lambda kv: kv[1], reverse=True):
        lines.append(f"  {reason:<18} {count:,}")
    lines += [
        "",
        "Content Quality (of successes):",
        f"  Has title:       {_share(stats.has_title, stats.success)}",
        f"  >100 words:      {_share(stats.over_100_words, stats.success)}",
        "",
        "Latency:",
        f"  p50:             {stats.latency.p50}ms",
        f"  p95:             {stats.latency.p95}ms",
        f"  p99:             {stats.latency.p99}ms",
        "",
        RULE,
    ]
    return "\n".join(lines)


def _signed(value: float) -> str:
    return f"{'+' if value > 0 else ''}{value:.1f}"


def format_comparison(comparison: Comparison) -> str:
    return "\n".join([
        "",
        "COMPARISON vs BASELINE:",
        f"  Success rate:    {_signed(comparison.success_rate_delta)}%",
        f"  p95 latency:     {_signed(comparison.p95_delta)}ms",
    ])


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="llmfetch-report", description="Summarize a results database.")
    parser.add_argument("-d", "--db", default=DEFAULT_DB, help="results database (default: %(default)s)")
    parser.add_argument("-j", "--json", action="store_true", help="emit JSON instead of a table")
    parser.add_argument("-c", "--compare", default=None, help="baseline results database")
    args = parser.parse_args(argv)

    try:
        stats = load_stats(args.db)
        baseline = load_stats(args.compare) if args.compare else None
    except StoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(stats.to_dict(), indent=2))
    else:
        print(format_report(stats))

    if baseline is not None:
        print(format_comparison(compare(stats, baseline)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
