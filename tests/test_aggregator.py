# tests/test_aggregator.py

import pytest
import yaml

from parser.normalizer import PLACEHOLDER_NAME
from service.aggregator import AggregationError, SubscriptionAggregator

from conftest import HITS

A = "https://airport-a.example/sub"
B = "https://airport-b.example/sub"
RELAY_1 = "https://airport-relay-1.example/sub"
RELAY_2 = "https://airport-relay-2.example/sub"
EXPIRED = "https://airport-expired.example/sub"


def proxy_names(document):
    return [p["name"] for p in yaml.safe_load(document)["proxies"]]


def group(document, name):
    return next(g["proxies"] for g in yaml.safe_load(document)["proxy-groups"] if g["name"] == name)


async def test_happy_path(make_settings):
    result = await SubscriptionAggregator(make_settings()).build([A])

    assert result.node_count == 2
    assert result.userinfo == "upload=100;download=200;total=1000;expire=1999999999"
    assert proxy_names(result.document) == ["HK-01", "US-01"]
    assert group(result.document, "🇭🇰 Hong Kong") == ["HK-01"]
    assert group(result.document, "🇺🇸 USA") == ["US-01"]
    assert result.document.startswith("# 📊 流量: 0.0GB / 剩0.0GB | 到期: 2033/5/18")


async def test_usage_is_summed_across_subscriptions(make_settings):
    result = await SubscriptionAggregator(make_settings()).build([A, B])
    assert result.userinfo == "upload=150;download=250;total=3000;expire=1899999999"
    assert proxy_names(result.document) == ["HK-01", "US-01", "🇯🇵 Japan Hy2", "TW-02"]


async def test_duplicate_names_are_both_kept(make_settings):
    result = await SubscriptionAggregator(make_settings()).build([RELAY_1, RELAY_2])
    assert proxy_names(result.document) == ["Relay", "Relay_1"]
    assert group(result.document, "🌍 Others") == ["Relay", "Relay_1"]

    bracket = await SubscriptionAggregator(make_settings(duplicate_suffix="bracket")).build([RELAY_1, RELAY_2])
    assert proxy_names(bracket.document) == ["Relay", "Relay [1]"]


async def test_excluded_nodes_are_dropped(make_settings):
    result = await SubscriptionAggregator(make_settings()).build([EXPIRED, RELAY_1])
    assert proxy_names(result.document) == ["Relay"]
    assert "到期-Relay" not in result.document


async def test_stops_at_first_backend_with_nodes(backend, make_settings):
    settings = make_settings(backends=("bad", "junk", "good", "slow"))
    result = await SubscriptionAggregator(settings).build([A, B])

    assert result.node_count == 4
    assert backend.app[HITS] == {"bad": 2, "junk": 2, "good": 2}


async def test_backend_without_nodes_falls_through(backend, make_settings):
    settings = make_settings(backends=("empty", "good"))
    result = await SubscriptionAggregator(settings).build([A])
    assert result.node_count == 2
    assert backend.app[HITS] == {"empty": 1, "good": 1}


async def test_partial_failure_keeps_successful_sources(make_settings):
    result = await SubscriptionAggregator(make_settings()).build([A, "https://unknown.example/sub"])
    assert proxy_names(result.document) == ["HK-01", "US-01"]


async def test_total_failure_raises(backend, make_settings):
    settings = make_settings(backends=("bad", "junk"))
    with pytest.raises(AggregationError):
        await SubscriptionAggregator(settings).build([A, B])
    assert backend.app[HITS] == {"bad": 2, "junk": 2}


async def test_everything_filtered_raises_by_default(make_settings):
    with pytest.raises(AggregationError):
        await SubscriptionAggregator(make_settings()).build([EXPIRED])


async def test_everything_filtered_with_placeholder_policy(make_settings):
    result = await SubscriptionAggregator(make_settings(empty_policy="placeholder")).build([EXPIRED])
    assert result.node_count == 1
    assert proxy_names(result.document) == [PLACEHOLDER_NAME]
    assert group(result.document, "🚀 Auto Speed") == [PLACEHOLDER_NAME]


async def test_direct_mode_fetches_sources_themselves(backend, make_settings):
    sources = [str(backend.make_url("/direct/airport-a")), str(backend.make_url("/direct/airport-b"))]
    settings = make_settings(fetch_mode="direct")
    result = await SubscriptionAggregator(settings).build(sources)

    assert result.node_count == 4
    assert backend.app[HITS] == {"direct": 2}


async def test_auto_mode_falls_back_to_direct(backend, make_settings):
    sources = [str(backend.make_url("/direct/airport-relay-1"))]
    settings = make_settings(backends=("bad",), fetch_mode="auto")
    result = await SubscriptionAggregator(settings).build(sources)

    assert proxy_names(result.document) == ["Relay"]
    assert backend.app[HITS] == {"bad": 1, "direct": 1}
