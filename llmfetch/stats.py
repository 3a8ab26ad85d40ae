"""
Aggregate statistics over a result set.

Everything is recomputed from scratch on each call; nothing is maintained
incrementally. Empty inputs produce zeros, never errors.
"""

import math
from dataclasses import asdict, dataclass, field
from typing import Sequence

import pandas as pd

from .storage import COLUMNS


@dataclass
class LatencyPercentiles:
    p50: int = 0
    p95: int = 0
    p99: int = 0


@dataclass
class Stats:
    total: int = 0
    success: int = 0
    blocked: int = 0
    errors: int = 0
    success_rate: float = 0.0
    blocked_rate: float = 0.0
    error_rate: float = 0.0
    tier0: int = 0
    tier1: int = 0
    block_reasons: dict[str, int] = field(default_factory=dict)
    error_reasons: dict[str, int] = field(default_factory=dict)
    has_title: int = 0
    over_100_words: int = 0
    latency: LatencyPercentiles = field(default_factory=LatencyPercentiles)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "success": self.success,
            "blocked": self.blocked,
            "errors": self.errors,
            "successRate": self.success_rate,
            "blockedRate": self.blocked_rate,
            "errorRate": self.error_rate,
            "tierDistribution": {"tier0": self.tier0, "tier1": self.tier1},
            "blockReasons": dict(self.block_reasons),
            "errorReasons": dict(self.error_reasons),
            "contentQuality": {"hasTitle": self.has_title, "over100Words": self.over_100_words},
            "latency": asdict(self.latency),
        }


@dataclass
class Comparison:
    success_rate_delta: float
    p95_delta: int


def pct(part: int | float, whole: int | float) -> float:
    """Percentage with a zero denominator treated as 0%."""
    return (part / whole) * 100 if whole else 0.0


def percentile(sorted_values: Sequence[int], q: float) -> int:
    """Nearest-rank style: element at floor(n * q), clamped into range."""
    n = len(sorted_values)
    if n == 0:
        return 0
    index = min(max(math.floor(n * q), 0), n - 1)
    return int(sorted_values[index])


def latency_percentiles(latencies: Sequence[int]) -> LatencyPercentiles:
    values = sorted(latencies)
    return LatencyPercentiles(
        p50=percentile(values, 0.5),
        p95=percentile(values, 0.95),
        p99=percentile(values, 0.99),
    )


def _reason_counts(frame: pd.DataFrame) -> dict[str, int]:
    if frame.empty:
        return {}
    counts = frame["block_reason"].fillna("unknown").value_counts()
    return {str(reason): int(count) for reason, count in counts.items()}


def compute_stats(frame: pd.DataFrame) -> Stats:
    if frame is None or frame.empty:
        return Stats()
    frame = frame.reindex(columns=COLUMNS)

    is_success = frame["status"] == "success"
    is_blocked = frame["status"] == "BLOCKED"
    successes = frame[is_success]

    total = len(frame)
    success = int(is_success.sum())
    blocked = int(is_blocked.sum())
    errors = total - success - blocked

    has_title = int((successes["has_title"].fillna(0) == 1).sum())
    over_100_words = int((successes["word_count"].fillna(0) > 100).sum())

    return Stats(
        total=total,
        success=success,
        blocked=blocked,
        errors=errors,
        success_rate=pct(success, total),
        blocked_rate=pct(blocked, total),
        error_rate=pct(errors, total),
        tier0=int((frame["tier"] == 0).sum()),
        tier1=int((frame["tier"] == 1).sum()),
        block_reasons=_reason_counts(frame[is_blocked]),
        error_reasons=_reason_counts(frame[~is_success & ~is_blocked]),
        has_title=has_title,
        over_100_words=over_100_words,
        latency=latency_percentiles(successes["latency_ms"].dropna().astype(int).tolist()),
    )


def compare(current: Stats, baseline: Stats) -> Comparison:
    return Comparison(
        success_rate_delta=current.success_rate - baseline.success_rate,
        p95_delta=current.latency.p95 - baseline.latency.p95,
    )
