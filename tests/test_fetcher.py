# tests/test_fetcher.py

from urllib.parse import parse_qs, urlsplit

import aiohttp

from config import Settings
from models.proxy_model import FetchError, FetchResult
from scraper.fetcher import FetchJob, FetchRound, build_backend_url, fetch_all, fetch_subscription, plan_rounds

from conftest import AGENTS, SUB_FLOW

SOURCE = "https://airport-a.example/sub"


def test_build_backend_url_encodes_source():
    url = build_backend_url("https://api.example/sub", "https://x.example/s?token=a&b=c",
                            [("target", "clash"), ("list", "true")])
    parts = urlsplit(url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://api.example/sub"
    assert parse_qs(parts.query) == {
        "target": ["clash"], "list": ["true"], "url": ["https://x.example/s?token=a&b=c"],
    }
    assert build_backend_url("https://api.example/sub?x=1", "u", []) == "https://api.example/sub?x=1&url=u"


def test_plan_rounds_by_mode():
    settings = Settings(backend_urls=("https://b1/sub", "https://b2/sub"))
    sources = ["https://s1", "https://s2"]

    rounds = plan_rounds(settings, sources)
    assert [r.label for r in rounds] == ["https://b1/sub", "https://b2/sub"]
    assert all(len(r.jobs) == 2 for r in rounds)
    assert rounds[0].jobs[1].source_url == "https://s2"
    assert rounds[0].jobs[1].fetch_url.startswith("https://b1/sub?")
    assert rounds[0].user_agent == settings.user_agent

    direct = plan_rounds(settings._replace(fetch_mode="direct"), sources)
    assert [r.label for r in direct] == ["direct"]
    assert [j.fetch_url for j in direct[0].jobs] == sources
    assert direct[0].user_agent == settings.direct_user_agent

    auto = plan_rounds(settings._replace(fetch_mode="auto"), sources)
    assert [r.label for r in auto] == ["https://b1/sub", "https://b2/sub", "direct"]


async def fetch_from(backend, name, source=SOURCE, timeout=5):
    job = FetchJob(source, build_backend_url(str(backend.make_url(f"/{name}/sub")), source, []))
    async with aiohttp.ClientSession() as session:
        return await fetch_subscription(session, job, "Clash.Meta/1.18.0", timeout)


async def test_successful_fetch_captures_usage_header(backend):
    outcome = await fetch_from(backend, "good")
    assert isinstance(outcome, FetchResult)
    assert outcome.raw_text == SUB_FLOW
    assert outcome.usage_header == "upload=100;download=200;total=1000;expire=1999999999"
    assert outcome.source_url == SOURCE
    assert backend.app[AGENTS] == ["Clash.Meta/1.18.0"]


async def test_non_success_status_is_a_fetch_error(backend):
    outcome = await fetch_from(backend, "bad")
    assert isinstance(outcome, FetchError)
    assert "502" in outcome.reason

    missing = await fetch_from(backend, "good", source="https://unknown.example/sub")
    assert isinstance(missing, FetchError)


async def test_unrecognized_body_is_a_fetch_error(backend):
    outcome = await fetch_from(backend, "junk")
    assert isinstance(outcome, FetchError)


async def test_timeout_is_a_fetch_error(backend):
    outcome = await fetch_from(backend, "slow", timeout=0.2)
    assert isinstance(outcome, FetchError)


async def test_fetch_all_waits_for_every_job(backend):
    good = str(backend.make_url("/good/sub"))
    jobs = (
        FetchJob(SOURCE, build_backend_url(good, SOURCE, [])),
        FetchJob("x", "http://127.0.0.1:1/unreachable"),
        FetchJob("y", "not a url"),
        FetchJob("https://airport-b.example/sub", build_backend_url(good, "https://airport-b.example/sub", [])),
    )
    async with aiohttp.ClientSession() as session:
        outcomes = await fetch_all(session, FetchRound("test", jobs, "ua"), 5)

    assert [type(o) for o in outcomes] == [FetchResult, FetchError, FetchError, FetchResult]
    assert [o.source_url for o in outcomes] == [j.source_url for j in jobs]
