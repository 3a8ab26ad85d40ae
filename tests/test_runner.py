import asyncio
from pathlib import Path

import pytest

from llmfetch import http_client, runner
from llmfetch.errors import HostNotAllowedError
from llmfetch.fetch import Fetcher
from llmfetch.http_client import HttpClient
from llmfetch.metrics import Outcome, failure_result
from llmfetch.runner import BatchSummary, BenchmarkOptions, format_time, load_worklist, run_batch, run_benchmark
from llmfetch.safeguard import HostPolicy
from llmfetch.settings import FetchConfig
from llmfetch.storage import ResultStore

from .conftest import ARTICLE_HTML, FakeClient, FakeRenderer, fake_extract


def write_urls(tmp_path: Path, *lines: str) -> Path:
    path = tmp_path / "urls.txt"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def make_fetcher(client) -> Fetcher:
    return Fetcher(FetchConfig(), client=client, renderer=FakeRenderer(), extractor=fake_extract)


def test_worklist_skips_comments_blanks_and_duplicates(tmp_path: Path):
    urls = write_urls(tmp_path, "# header", "", "a.example", "https://b.example", "   ", "a.example", "#c.example")
    with ResultStore.open(tmp_path / "r.db") as store:
        assert load_worklist(urls, store) == ["https://a.example", "https://b.example"]


def test_worklist_skips_stored_urls_and_applies_limit_after(tmp_path: Path):
    urls = write_urls(tmp_path, "a.example", "b.example", "c.example", "d.example")
    with ResultStore.open(tmp_path / "r.db") as store:
        store.upsert(failure_result("https://a.example", 0, Outcome.ERROR, "timeout", 10))
        assert load_worklist(urls, store, limit=2) == ["https://b.example", "https://c.example"]


@pytest.mark.asyncio
async def test_chunks_are_bounded_and_sequential(tmp_path: Path):
    urls = [f"https://{i}.example" for i in range(7)]
    client = FakeClient(default=(200, ARTICLE_HTML), delay_s=0.01)
    fetcher = make_fetcher(client)
    starts: list[int] = []
    finished = 0

    async def fetch(url):
        nonlocal finished
        starts.append(finished)
        result = await fetcher.fetch(url)
        finished += 1
        return result

    with ResultStore.open(tmp_path / "r.db") as store:
        summary = await run_batch(urls, store, fetch, parallel=3)
        assert store.count() == 7

    assert client.max_in_flight == 3
    # A chunk starts only once every fetch of the previous chunk has finished.
    assert starts == [0, 0, 0, 3, 3, 3, 6]
    assert (summary.completed, summary.success, summary.blocked, summary.errors) == (7, 7, 0, 0)


@pytest.mark.asyncio
async def test_counters_classify_outcomes(tmp_path: Path):
    client = FakeClient({
        "https://ok.example": (200, ARTICLE_HTML),
        "https://blocked.example": (403, ""),
        "https://down.example": asyncio.TimeoutError(),
        "https://empty.example": (200, "<html><body></body></html>"),
    })
    with ResultStore.open(tmp_path / "r.db") as store:
        summary = await run_batch(list(client.responses), store, make_fetcher(client).fetch, parallel=10)

    assert summary.success == 1
    assert summary.blocked == 1
    assert summary.errors == 2


@pytest.mark.asyncio
async def test_one_exploding_fetch_does_not_abort_the_batch(tmp_path: Path):
    async def fetch(url):
        if "bad" in url:
            raise RuntimeError("boom")
        return failure_result(url, 0, Outcome.EMPTY, "no_content", 5)

    with ResultStore.open(tmp_path / "r.db") as store:
        summary = await run_batch(["https://bad.example", "https://good.example"], store, fetch, parallel=2)
        assert store.get("https://bad.example")["block_reason"] == "unknown"

    assert summary.completed == 2
    assert summary.errors == 2


@pytest.mark.asyncio
async def test_rerun_skips_already_stored_urls(tmp_path: Path):
    urls = write_urls(tmp_path, "https://a.example", "https://b.example")
    db = tmp_path / "r.db"
    options = BenchmarkOptions(urls_file=str(urls), db_file=str(db), parallel=10)

    first = FakeClient(default=(200, ARTICLE_HTML))
    await run_benchmark(options, fetcher=make_fetcher(first))
    with ResultStore.open(db) as store:
        before = store.get("https://a.example")

    second = FakeClient(default=(429, ""))
    summary = await run_benchmark(options, fetcher=make_fetcher(second))

    assert second.requested == []
    assert summary.completed == 0
    with ResultStore.open(db) as store:
        assert store.get("https://a.example") == before


@pytest.mark.asyncio
async def test_empty_worklist_still_reports(tmp_path: Path, capsys):
    urls = write_urls(tmp_path, "# nothing here")
    options = BenchmarkOptions(urls_file=str(urls), db_file=str(tmp_path / "r.db"))
    summary = await run_benchmark(options, fetcher=make_fetcher(FakeClient()))

    assert summary.completed == 0
    out = capsys.readouterr().out
    assert "Benchmark complete!" in out
    assert "Rate: 0.0 URLs/sec" in out


def test_summary_rates_guard_zero():
    summary = BatchSummary(total=0)
    assert summary.eta_s == 0.0
    assert summary.rate >= 0.0


def test_format_time():
    assert format_time(42) == "42s"
    assert format_time(90) == "1.5m"
    assert format_time(5400) == "1.5h"


def test_main_requires_urls(capsys):
    assert runner.main([]) == 1
    assert "Usage" in capsys.readouterr().err


def test_main_completes_even_when_every_url_fails(tmp_path: Path, capsys):
    # Nothing listens on the discard port of the loopback interface.
    urls = write_urls(tmp_path, "http://127.0.0.1:9/a", "http://127.0.0.1:9/b")
    db = tmp_path / "r.db"

    argv = ["--urls", str(urls), "--db", str(db), "--parallel", "2", "--timeout", "2000", "--config", str(tmp_path / "none.yaml")]
    assert runner.main(argv) == 0

    with ResultStore.open(db) as store:
        assert store.count() == 2
        assert store.get("http://127.0.0.1:9/a")["status"] == "ERROR"
    assert "Errors: 2 (100.0%)" in capsys.readouterr().out


def test_refused_hosts_abort_the_run_and_stay_pending(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.setattr(http_client, "default_host_policy", lambda: HostPolicy())
    urls = write_urls(tmp_path, "https://a.example", "https://b.example")
    db = tmp_path / "r.db"

    assert runner.main(["--urls", str(urls), "--db", str(db), "--parallel", "2", "--config", str(tmp_path / "none.yaml")]) == 1
    assert "Fatal: BLOCKED: Cannot fetch" in capsys.readouterr().err

    with ResultStore.open(db) as store:
        assert store.count() == 0
        assert load_worklist(urls, store) == ["https://a.example", "https://b.example"]


@pytest.mark.asyncio
async def test_refusal_keeps_earlier_chunks(tmp_path: Path):
    client = HttpClient(policy=HostPolicy(allowed_hosts=frozenset({"a.example"})))
    fetcher = Fetcher(FetchConfig(), client=client, renderer=FakeRenderer(), extractor=fake_extract)

    async def fetch(url):
        if url == "https://a.example":
            return failure_result(url, 0, Outcome.ERROR, "timeout", 5)
        return await fetcher.fetch(url)

    with ResultStore.open(tmp_path / "r.db") as store:
        with pytest.raises(HostNotAllowedError):
            await run_batch(["https://a.example", "https://b.example", "https://c.example"], store, fetch, parallel=1)
        assert store.count() == 1
        assert not store.exists("https://b.example")
    await client.close()


def test_worklist_limit_zero_is_empty(tmp_path: Path):
    urls = write_urls(tmp_path, "a.example", "b.example")
    with ResultStore.open(tmp_path / "r.db") as store:
        assert load_worklist(urls, store, limit=0) == []


def test_main_rejects_non_positive_limit(tmp_path: Path, capsys):
    urls = write_urls(tmp_path, "a.example")
    assert runner.main(["--urls", str(urls), "--db", str(tmp_path / "r.db"), "--limit", "0"]) == 1
    assert "--limit must be at least 1" in capsys.readouterr().err
    assert not (tmp_path / "r.db").exists()
