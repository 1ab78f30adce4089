"""Tests for reply context assembly and the context service."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from ens_insights.api.models import ActivityHistory, Holdings
from ens_insights.exceptions import ConfigurationError, OperationTimeoutError
from ens_insights.services.context_assembler import (
    ContextAssembler,
    DataCompleteness,
    RegistrationContext,
    RegistrationEvent,
    SaleContext,
    SaleEvent,
)
from ens_insights.services.context_service import ContextService, normalize_ens_name
from ens_insights.services.proxy_resolver import ProxyResolver
from ens_insights.services.token_history import TokenHistoryAnalyzer, TokenInsights
from ens_insights.services.user_activity import UserActivityAnalyzer, UserStats
from ens_insights.utils.cache import ResponseCache

from conftest import ALICE, BOB, CAROL, ENS_CONTRACT, T0, eth_price, make_activity

HOUR = 3600


def sale_event(**overrides):
    fields = dict(
        token_name="test.eth",
        contract=ENS_CONTRACT,
        token_id="1",
        tx_hash="0xcurrent",
        price_eth=1.5,
        price_usd=3000.0,
        timestamp=T0 + 48 * HOUR,
        buyer=BOB,
        seller=ALICE,
    )
    fields.update(overrides)
    return SaleEvent(**fields)


def registration_event(**overrides):
    fields = dict(
        token_name="fresh",
        contract=ENS_CONTRACT,
        token_id="2",
        tx_hash="0xmint",
        price_eth=0.01,
        price_usd=20.0,
        timestamp=T0,
        buyer=BOB,
    )
    fields.update(overrides)
    return RegistrationEvent(**fields)


def all_keys(value):
    if isinstance(value, dict):
        for key, item in value.items():
            yield key
            yield from all_keys(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from all_keys(item)


TOKEN_LOG = (
    make_activity(tx_hash="0x01", timestamp=T0, from_address=CAROL, to_address=ALICE, price=eth_price(1.0)),
)
SELLER_LOG = (
    make_activity(tx_hash="0x01", timestamp=T0, from_address=CAROL, to_address=ALICE, price=eth_price(1.0)),
    make_activity(tx_hash="0x05", timestamp=T0 + HOUR, token_id="5", from_address=ALICE, to_address=CAROL,
                  price=eth_price(2.0)),
)


def history_client(fail_wallet=None):
    """Client mock answering token and wallet scopes from canned logs."""

    async def fetch_history(scope, activity_types=None, **kwargs):
        if scope.wallet is not None:
            if scope.wallet == fail_wallet:
                raise RuntimeError("provider down")
            return ActivityHistory(activities=SELLER_LOG if scope.wallet == ALICE else (), pages_fetched=1)
        return ActivityHistory(activities=TOKEN_LOG, pages_fetched=1)

    client = AsyncMock()
    client.fetch_history.side_effect = fetch_history
    return client


def make_service(client, **kwargs):
    resolver = ProxyResolver(client=client, extra_proxies=[])
    kwargs.setdefault("token_analyzer", TokenHistoryAnalyzer(resolver))
    kwargs.setdefault("user_analyzer", UserActivityAnalyzer(resolver))
    return ContextService(client, **kwargs)


def providers(research="A short dictionary word."):
    holdings = AsyncMock()
    holdings.get_holdings.return_value = Holdings(names=("one.eth", "two.eth"))
    research_provider = AsyncMock()
    research_provider.research_name.return_value = research
    return holdings, research_provider


def test_assembler_sale_context_fields():
    completeness = DataCompleteness(seller_holdings=True)
    context = ContextAssembler().assemble(
        sale_event(),
        TokenInsights(seller_acquisition_tracked=True, seller_pnl=0.5),
        UserStats.empty(BOB, "buyer"),
        None,
        completeness,
        fetched_at=T0,
    )

    assert isinstance(context, SaleContext)
    assert context.seller_stats.address == ALICE
    assert context.seller_stats.role == "seller"
    assert context.token_insights.seller_pnl == 0.5
    assert context.completeness.incomplete_sources() == ["seller_holdings"]


def test_assembler_registration_context_has_no_seller_keys():
    completeness = DataCompleteness(seller_activity=True, name_research=True)
    context = ContextAssembler().assemble(
        registration_event(),
        TokenInsights(seller_acquisition_tracked=True, seller_pnl=1.0, number_of_mints=1),
        UserStats.empty(BOB, "buyer"),
        UserStats.empty(ALICE, "seller"),
        completeness,
        fetched_at=T0,
    )

    assert isinstance(context, RegistrationContext)
    assert context.token_history.number_of_mints == 1
    assert context.completeness.incomplete_sources() == ["name_research"]
    assert not any("seller" in key for key in all_keys(context.model_dump()))


def test_assembler_rejects_unknown_event():
    with pytest.raises(TypeError):
        ContextAssembler().assemble(object(), TokenInsights(), UserStats.empty(BOB, "buyer"),
                                    None, DataCompleteness(), fetched_at=T0)


def test_normalize_ens_name():
    assert normalize_ens_name("Vitalik") == "vitalik.eth"
    assert normalize_ens_name("vitalik.eth") == "vitalik.eth"


@pytest.mark.asyncio
async def test_build_sale_context_from_all_sources():
    holdings, research = providers()
    service = make_service(history_client(), holdings_provider=holdings, name_research_provider=research)

    context = await service.build_context(sale_event())

    assert isinstance(context, SaleContext)
    assert context.completeness.is_complete
    assert context.token_insights.seller_acquisition_tracked
    assert context.token_insights.seller_pnl == pytest.approx(0.5)
    assert context.token_insights.seller_hold_duration_hours == pytest.approx(48.0)
    assert context.seller_stats.sells_count == 1
    assert context.seller_stats.realized_pnl == pytest.approx(1.0)
    assert context.buyer_stats.holdings == ("one.eth", "two.eth")
    assert context.name_research == "A short dictionary word."


@pytest.mark.asyncio
async def test_failing_branch_only_degrades_itself():
    holdings, research = providers()
    service = make_service(history_client(fail_wallet=ALICE), holdings_provider=holdings,
                           name_research_provider=research)

    context = await service.build_context(sale_event())

    assert context.completeness.incomplete_sources() == ["seller_activity"]
    assert context.seller_stats.sells_count == 0
    assert context.seller_stats.holdings == ("one.eth", "two.eth")
    assert context.token_insights.seller_acquisition_tracked
    assert context.name_research is not None


@pytest.mark.asyncio
async def test_failing_analyzer_yields_empty_insights():
    token_analyzer = AsyncMock()
    token_analyzer.analyze.side_effect = ValueError("bad data")
    holdings, research = providers()
    service = make_service(history_client(), token_analyzer=token_analyzer,
                           holdings_provider=holdings, name_research_provider=research)

    context = await service.build_context(sale_event())

    assert context.token_insights == TokenInsights()
    assert context.completeness.incomplete_sources() == ["token_history"]


@pytest.mark.asyncio
async def test_missing_collaborators_are_flagged_incomplete():
    service = make_service(history_client())

    context = await service.build_context(sale_event())

    assert context.name_research is None
    assert set(context.completeness.incomplete_sources()) == {
        "buyer_holdings", "name_research", "seller_holdings",
    }


@pytest.mark.asyncio
async def test_registration_context_skips_seller_branches():
    client = history_client()
    holdings, research = providers()
    service = make_service(client, holdings_provider=holdings, name_research_provider=research)

    context = await service.build_context(registration_event())

    assert isinstance(context, RegistrationContext)
    assert holdings.get_holdings.await_count == 1
    wallets = [call.args[0].wallet for call in client.fetch_history.await_args_list if call.args[0].wallet]
    assert wallets == [BOB]
    assert not any("seller" in key for key in all_keys(context.model_dump()))


@pytest.mark.asyncio
async def test_name_research_is_cached_by_normalized_name():
    holdings, research = providers()
    service = make_service(history_client(), holdings_provider=holdings, name_research_provider=research,
                           cache=ResponseCache())

    await service.build_context(sale_event(token_name="Test"))
    context = await service.build_context(sale_event(token_name="test.eth"))

    assert context.name_research == "A short dictionary word."
    assert research.research_name.await_count == 1


@pytest.mark.asyncio
async def test_empty_research_is_incomplete():
    holdings, research = providers(research="")
    service = make_service(history_client(), holdings_provider=holdings, name_research_provider=research)

    context = await service.build_context(sale_event())

    assert context.name_research is None
    assert context.completeness.incomplete_sources() == ["name_research"]


@pytest.mark.parametrize("event", [
    sale_event(tx_hash=""),
    sale_event(buyer=ALICE, seller=ALICE.upper().replace("0X", "0x")),
    sale_event(seller=""),
    registration_event(buyer=""),
    registration_event(token_id=""),
])
@pytest.mark.asyncio
async def test_invalid_events_are_rejected(event):
    client = history_client()
    service = make_service(client)

    with pytest.raises(ConfigurationError):
        await service.build_context(event)
    client.fetch_history.assert_not_called()


@pytest.mark.asyncio
async def test_generate_reply_times_out():
    async def slow_reply(context):
        await asyncio.sleep(1)
        return "too late"

    generator = AsyncMock()
    generator.generate_reply.side_effect = slow_reply
    service = make_service(history_client(), reply_timeout=0.01)
    context = await service.build_context(sale_event())

    with pytest.raises(OperationTimeoutError):
        await service.generate_reply(generator, context)


@pytest.mark.asyncio
async def test_generate_reply_returns_text():
    generator = AsyncMock()
    generator.generate_reply.return_value = "Nice flip."
    service = make_service(history_client())
    context = await service.build_context(registration_event())

    assert await service.generate_reply(generator, context) == "Nice flip."
    generator.generate_reply.assert_awaited_once_with(context)
