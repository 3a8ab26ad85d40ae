import json
from pathlib import Path

from llmfetch import report
from llmfetch.metrics import ExtractResult, Outcome, failure_result, success_result
from llmfetch.stats import Comparison, Stats
from llmfetch.storage import ResultStore


def build_db(path: Path, successes: int, blocked: int, latency_ms: int = 100) -> Path:
    with ResultStore.open(path) as store:
        extracted = ExtractResult(content="x" * 200, title="T", word_count=200)
        for i in range(successes):
            store.upsert(success_result(f"https://ok{i}.example", 0, extracted, latency_ms))
        for i in range(blocked):
            store.upsert(failure_result(f"https://no{i}.example", 0, Outcome.BLOCKED, "forbidden", 10))
    return path


def test_empty_stats_render_without_dividing_by_zero():
    text = report.format_report(Stats())
    assert "Total URLs:        0" in text
    assert "Has title:       0 (0.0%)" in text


def test_report_lists_reasons_by_count():
    stats = Stats(total=3, blocked=3, block_reasons={"waf": 1, "captcha": 2})
    text = report.format_report(stats)
    assert text.index("captcha") < text.index("waf")


def test_comparison_signs():
    text = report.format_comparison(Comparison(success_rate_delta=2.5, p95_delta=-40))
    assert "Success rate:    +2.5%" in text
    assert "p95 latency:     -40.0ms" in text


def test_main_table(tmp_path: Path, capsys):
    db = build_db(tmp_path / "r.db", successes=3, blocked=1)
    assert report.main(["--db", str(db)]) == 0
    out = capsys.readouterr().out
    assert "BENCHMARK REPORT" in out
    assert "Success:           3 (75.0%)" in out
    assert "forbidden" in out


def test_main_json(tmp_path: Path, capsys):
    db = build_db(tmp_path / "r.db", successes=1, blocked=1, latency_ms=250)
    assert report.main(["--db", str(db), "--json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["total"] == 2
    assert data["successRate"] == 50.0
    assert data["blockReasons"] == {"forbidden": 1}
    assert data["latency"]["p50"] == 250


def test_main_empty_store(tmp_path: Path, capsys):
    db = tmp_path / "r.db"
    ResultStore.open(db).close()
    assert report.main(["--db", str(db), "--json"]) == 0
    assert json.loads(capsys.readouterr().out)["total"] == 0


def test_main_compare(tmp_path: Path, capsys):
    current = build_db(tmp_path / "now.db", successes=3, blocked=1, latency_ms=100)
    baseline = build_db(tmp_path / "base.db", successes=1, blocked=1, latency_ms=300)
    assert report.main(["--db", str(current), "--compare", str(baseline)]) == 0
    out = capsys.readouterr().out
    assert "Success rate:    +25.0%" in out
    assert "p95 latency:     -200.0ms" in out


def test_main_missing_db(tmp_path: Path, capsys):
    assert report.main(["--db", str(tmp_path / "missing.db")]) == 1
    assert "Error" in capsys.readouterr().err
