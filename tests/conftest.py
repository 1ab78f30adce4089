"""Shared fixtures and factories for the test suite."""

from typing import List, Optional, Sequence

import pytest

from ens_insights.api.models import Activity, ActivityPage, ActivityType, BidWindow, Price, ZERO_ADDRESS

ENS_CONTRACT = "0x57f1887a8bf19b14fc0df6fd9b2acc9af147ea85"
USDC_CONTRACT = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
PROXY = "0x0000a26b00c1f0df003000390027140000faa719"

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
CAROL = "0x" + "c4" * 20

T0 = 1_700_000_000


def eth_price(amount: float, usd_per_eth: float = 2000.0) -> Price:
    return Price(
        currency_contract=ZERO_ADDRESS,
        symbol="ETH",
        decimals=18,
        raw_amount=str(int(amount * 10 ** 18)),
        decimal_amount=amount,
        usd_amount=amount * usd_per_eth,
        native_eth_equivalent=amount,
    )


def usdc_price(amount: float, native: Optional[float]) -> Price:
    return Price(
        currency_contract=USDC_CONTRACT,
        symbol="USDC",
        decimals=6,
        raw_amount=str(int(amount * 10 ** 6)),
        decimal_amount=amount,
        usd_amount=amount,
        native_eth_equivalent=native,
    )


def make_activity(
    type: ActivityType = ActivityType.SALE,
    timestamp: int = T0,
    tx_hash: str = "0xaaa",
    from_address: str = ALICE,
    to_address: str = BOB,
    price: Optional[Price] = None,
    log_index: int = 0,
    batch_index: int = 0,
    activity_id: Optional[str] = None,
    fill_source: Optional[str] = None,
    token_id: str = "1",
    contract: str = ENS_CONTRACT,
    bid_valid_until: Optional[int] = None,
) -> Activity:
    bid = None
    if bid_valid_until is not None:
        bid = BidWindow(valid_from=timestamp, valid_until=bid_valid_until, maker=from_address)
    return Activity(
        activity_id=activity_id if activity_id is not None else f"{type.value}-{tx_hash}-{log_index}-{timestamp}",
        type=type,
        from_address=from_address,
        to_address=to_address,
        price=price,
        timestamp=timestamp,
        tx_hash=tx_hash,
        log_index=log_index,
        batch_index=batch_index,
        token_id=token_id,
        contract=contract,
        token_name="test.eth",
        fill_source=fill_source,
        bid=bid,
    )


class FakePagedClient:
    """Serves pre-built pages; a ``None`` page simulates a fetch that gave up."""

    def __init__(self, pages: Sequence[Optional[List[Activity]]]):
        self.pages = list(pages)
        self.calls = []

    async def fetch_page(self, scope, activity_types, cursor=None, limit=100) -> ActivityPage:
        index = int(cursor) if cursor else 0
        self.calls.append((scope, cursor, limit))
        if index >= len(self.pages):
            return ActivityPage()
        page = self.pages[index]
        if page is None:
            return ActivityPage(incomplete=True, requested_limit=limit, attempts=4)
        continuation = str(index + 1) if index + 1 < len(self.pages) else None
        return ActivityPage(activities=tuple(page), continuation=continuation, requested_limit=limit)


@pytest.fixture
def fake_client_factory():
    return FakePagedClient
