"""Tests for the Magic Eden activity client."""

import httpx
import pytest

from ens_insights.api.magic_eden_client import MagicEdenClient, parse_activity, parse_iso_timestamp
from ens_insights.api.models import ActivityScope, ActivityType, ZERO_ADDRESS
from ens_insights.services.currency import CurrencyNormalizer

from conftest import ENS_CONTRACT, T0, USDC_CONTRACT

OTHER_CONTRACT = "0x" + "99" * 20


def v4_activity(activity_id="a1", activity_type="TRADE", timestamp="2023-11-14T22:13:20Z",
                contract=ENS_CONTRACT, price=None, **extra):
    payload = {
        "activityId": activity_id,
        "activityType": activity_type,
        "timestamp": timestamp,
        "fromAddress": "0xAAAA000000000000000000000000000000000001",
        "toAddress": "0xBBBB000000000000000000000000000000000002",
        "asset": {"contractAddress": contract, "tokenId": "1234", "name": "test.eth"},
        "transactionInfo": {"transactionId": "0xABCDEF", "logIndex": 5, "batchTransferIndex": 1},
        "fillSource": {"domain": "opensea.io"},
    }
    if price is not None:
        payload["unitPrice"] = price
    payload.update(extra)
    return payload


def eth_unit_price(raw="1500000000000000000", native="1.5", usd="3000"):
    return {
        "amount": {"raw": raw, "native": native, "fiat": {"usd": usd}},
        "currency": {"contract": ZERO_ADDRESS, "symbol": "ETH", "decimals": 18},
    }


def make_client(handler, **kwargs) -> MagicEdenClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MagicEdenClient(
        http_client=http_client,
        base_url="https://api.test/v4",
        ens_contracts=[ENS_CONTRACT],
        retry_base_delay=0,
        retry_max_delay=0,
        page_delay_seconds=0,
        **kwargs,
    )


def test_parse_iso_timestamp():
    assert parse_iso_timestamp("2023-11-14T22:13:20Z") == T0
    assert parse_iso_timestamp("2023-11-14T22:13:20.000Z") == T0
    assert parse_iso_timestamp(None) == 0


def test_parse_trade_activity():
    activity = parse_activity(v4_activity(price=eth_unit_price()), CurrencyNormalizer())

    assert activity.type == ActivityType.SALE
    assert activity.timestamp == T0
    assert activity.from_address == "0xaaaa000000000000000000000000000000000001"
    assert activity.tx_hash == "0xabcdef"
    assert activity.log_index == 5
    assert activity.batch_index == 1
    assert activity.token_id == "1234"
    assert activity.fill_source == "opensea.io"
    assert activity.price.symbol == "ETH"
    assert activity.price.decimal_amount == pytest.approx(1.5)
    assert activity.price.usd_amount == pytest.approx(3000)


def test_parse_stablecoin_price_uses_amount_as_usd():
    price = {
        "amount": {"raw": "100000000", "native": "0.04", "fiat": {"usd": "99.9"}},
        "currency": {"contract": USDC_CONTRACT, "symbol": "USDC", "decimals": 6},
    }
    activity = parse_activity(v4_activity(price=price), CurrencyNormalizer())

    assert activity.price.symbol == "USDC"
    assert activity.price.decimal_amount == pytest.approx(100.0)
    assert activity.price.usd_amount == pytest.approx(100.0)
    assert activity.price.native_eth_equivalent == pytest.approx(0.04)


def test_parse_bid_activity_window():
    payload = v4_activity(
        activity_type="BID_CREATED",
        fromAddress=None,
        bid={
            "maker": "0xCCCC000000000000000000000000000000000003",
            "expiry": {"validFrom": "2023-11-14T22:13:20Z", "validUntil": "2023-11-14T23:13:20Z"},
            "priceV2": eth_unit_price(raw="500000000000000000", native="0.5", usd="1000"),
        },
    )
    activity = parse_activity(payload, CurrencyNormalizer())

    assert activity.type == ActivityType.BID
    assert activity.bid.valid_until == T0 + 3600
    assert activity.bid.maker == "0xcccc000000000000000000000000000000000003"
    assert activity.from_address == activity.bid.maker
    assert activity.price.decimal_amount == pytest.approx(0.5)


def test_parse_zero_decimals_price():
    price = {
        "amount": {"raw": "5", "native": "0.01", "fiat": {"usd": "20"}},
        "currency": {"contract": OTHER_CONTRACT, "symbol": "PTS", "decimals": 0},
    }
    activity = parse_activity(v4_activity(price=price), CurrencyNormalizer())

    assert activity.price.decimals == 0
    assert activity.price.decimal_amount == pytest.approx(5.0)


def test_parse_missing_decimals_defaults_to_18():
    price = eth_unit_price()
    del price["currency"]["decimals"]
    activity = parse_activity(v4_activity(price=price), CurrencyNormalizer())

    assert activity.price.decimals == 18
    assert activity.price.decimal_amount == pytest.approx(1.5)


@pytest.mark.parametrize("activity_type", ["SWEEP", None])
def test_parse_rejects_unknown_activity_type(activity_type):
    with pytest.raises(ValueError):
        parse_activity(v4_activity(activity_type=activity_type), CurrencyNormalizer())


@pytest.mark.asyncio
async def test_fetch_page_builds_token_request():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={
            "activities": [v4_activity(price=eth_unit_price())],
            "pagination": {"cursorTimestamp": "2023-11-14T22:00:00Z"},
        })

    client = make_client(handler)
    page = await client.fetch_page(
        ActivityScope.for_token(ENS_CONTRACT, "1234"), [ActivityType.SALE, ActivityType.MINT], limit=20
    )

    assert not page.incomplete
    assert len(page.activities) == 1
    assert page.continuation == "2023-11-14T22:00:00Z"

    request = seen[0]
    assert request.url.path == "/v4/activity/nft"
    assert request.url.params["assetId"] == f"{ENS_CONTRACT}:1234"
    assert request.url.params["limit"] == "20"
    assert request.url.params.get_list("activityTypes[]") == ["TRADE", "MINT"]
    assert "cursorTimestamp" not in request.url.params


@pytest.mark.asyncio
async def test_fetch_page_passes_cursor():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"activities": []})

    client = make_client(handler)
    await client.fetch_page(ActivityScope.for_collection(ENS_CONTRACT), [ActivityType.BID], cursor="abc")

    assert seen[0].url.params["cursorTimestamp"] == "abc"
    assert seen[0].url.params["collectionId"] == ENS_CONTRACT


@pytest.mark.asyncio
async def test_wallet_pages_are_filtered_to_ens_contracts():
    def handler(request):
        assert request.url.path == "/v4/activity/user"
        assert request.url.params["walletAddress"] == "ethereum:0xabc"
        return httpx.Response(200, json={"activities": [
            v4_activity("a1", contract=ENS_CONTRACT),
            v4_activity("a2", contract=OTHER_CONTRACT),
        ]})

    client = make_client(handler)
    page = await client.fetch_page(ActivityScope.for_wallet("0xABC"), [ActivityType.SALE])

    assert [a.activity_id for a in page.activities] == ["a1"]


@pytest.mark.asyncio
async def test_unknown_activity_types_are_skipped():
    def handler(request):
        return httpx.Response(200, json={"activities": [
            v4_activity("a1"),
            v4_activity("a2", activity_type="SWEEP"),
            v4_activity("a3", activity_type="TRANSFER"),
        ]})

    client = make_client(handler)
    page = await client.fetch_page(ActivityScope.for_token(ENS_CONTRACT, "1234"), [ActivityType.SALE])

    assert [(a.activity_id, a.type) for a in page.activities] == [
        ("a1", ActivityType.SALE),
        ("a3", ActivityType.TRANSFER),
    ]
    assert not page.incomplete


@pytest.mark.asyncio
async def test_first_timeout_halves_page_size_then_succeeds():
    limits = []

    def handler(request):
        limits.append(int(request.url.params["limit"]))
        if len(limits) == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json={"activities": [v4_activity()]})

    client = make_client(handler)
    page = await client.fetch_page(ActivityScope.for_token(ENS_CONTRACT, "1"), [ActivityType.SALE], limit=100)

    assert limits == [100, 50]
    assert not page.incomplete
    assert page.attempts == 2
    assert page.requested_limit == 50


@pytest.mark.asyncio
async def test_non_timeout_failure_keeps_page_size():
    limits = []

    def handler(request):
        limits.append(int(request.url.params["limit"]))
        if len(limits) == 1:
            return httpx.Response(500, json={"error": "boom"})
        return httpx.Response(200, json={"activities": []})

    client = make_client(handler)
    await client.fetch_page(ActivityScope.for_token(ENS_CONTRACT, "1"), [ActivityType.SALE], limit=100)

    assert limits == [100, 100]


@pytest.mark.asyncio
async def test_gateway_timeout_counts_as_timeout():
    limits = []

    def handler(request):
        limits.append(int(request.url.params["limit"]))
        if len(limits) == 1:
            return httpx.Response(504)
        return httpx.Response(200, json={"activities": []})

    client = make_client(handler)
    await client.fetch_page(ActivityScope.for_token(ENS_CONTRACT, "1"), [ActivityType.SALE], limit=40)

    assert limits == [40, 20]


@pytest.mark.asyncio
async def test_exhausted_retries_return_incomplete_page():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    page = await client.fetch_page(ActivityScope.for_token(ENS_CONTRACT, "1"), [ActivityType.SALE])

    assert len(calls) == 4
    assert page.incomplete
    assert page.activities == ()
    assert page.continuation is None


@pytest.mark.asyncio
async def test_invalid_json_is_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(200, content=b"<html>not json</html>")
        return httpx.Response(200, json={"activities": [v4_activity()]})

    client = make_client(handler)
    page = await client.fetch_page(ActivityScope.for_token(ENS_CONTRACT, "1"), [ActivityType.SALE])

    assert len(calls) == 2
    assert len(page.activities) == 1


@pytest.mark.asyncio
async def test_fetch_history_walks_cursor_chain():
    pages = {
        None: {"activities": [v4_activity("a1"), v4_activity("a2")], "pagination": {"cursorTimestamp": "c1"}},
        "c1": {"activities": [v4_activity("a3")]},
    }

    def handler(request):
        return httpx.Response(200, json=pages[request.url.params.get("cursorTimestamp")])

    client = make_client(handler)
    history = await client.fetch_history(ActivityScope.for_token(ENS_CONTRACT, "1"), limit=2, max_pages=5)

    assert [a.activity_id for a in history.activities] == ["a1", "a2", "a3"]
    assert history.pages_fetched == 2
    assert not history.incomplete


@pytest.mark.asyncio
async def test_fetch_history_page_limit_marks_incomplete():
    counter = {"n": 0}

    def handler(request):
        counter["n"] += 1
        n = counter["n"]
        return httpx.Response(200, json={
            "activities": [v4_activity(f"a{n}")],
            "pagination": {"cursorTimestamp": f"c{n}"},
        })

    client = make_client(handler)
    history = await client.fetch_history(ActivityScope.for_token(ENS_CONTRACT, "1"), limit=1, max_pages=3)

    assert history.pages_fetched == 3
    assert len(history.activities) == 3
    assert history.incomplete


@pytest.mark.asyncio
async def test_fetch_history_failed_page_marks_incomplete():
    def handler(request):
        if request.url.params.get("cursorTimestamp") == "c1":
            raise httpx.ConnectError("down", request=request)
        return httpx.Response(200, json={
            "activities": [v4_activity("a1")],
            "pagination": {"cursorTimestamp": "c1"},
        })

    client = make_client(handler)
    history = await client.fetch_history(ActivityScope.for_token(ENS_CONTRACT, "1"), limit=1, max_pages=5)

    assert [a.activity_id for a in history.activities] == ["a1"]
    assert history.incomplete


@pytest.mark.asyncio
async def test_wallet_history_walks_past_filtered_empty_pages():
    pages = {
        None: {"activities": [v4_activity("x1", contract=OTHER_CONTRACT)], "pagination": {"cursorTimestamp": "next"}},
        "next": {"activities": [v4_activity("e1")]},
    }

    def handler(request):
        return httpx.Response(200, json=pages[request.url.params.get("cursorTimestamp")])

    client = make_client(handler)
    history = await client.fetch_history(ActivityScope.for_wallet("0xABC"), limit=1, max_pages=5)

    assert [a.activity_id for a in history.activities] == ["e1"]
    assert history.pages_fetched == 2
    assert not history.incomplete


@pytest.mark.asyncio
async def test_wallet_history_of_only_filtered_pages_hits_page_limit():
    counter = {"n": 0}

    def handler(request):
        counter["n"] += 1
        return httpx.Response(200, json={
            "activities": [v4_activity(f"x{counter['n']}", contract=OTHER_CONTRACT)],
            "pagination": {"cursorTimestamp": f"c{counter['n']}"},
        })

    client = make_client(handler)
    history = await client.fetch_history(ActivityScope.for_wallet("0xABC"), limit=1, max_pages=3)

    assert history.activities == ()
    assert history.pages_fetched == 3
    assert history.incomplete
