"""Wallet-level trading statistics."""

from collections import Counter
from typing import List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel

from ..api.models import Activity, ActivityType, Holdings, ResolvedActivity, TRADING_TYPES, ZERO_ADDRESS
from ..utils.logger import setup_logger
from .currency import CurrencyNormalizer
from .proxy_resolver import ProxyResolver

logger = setup_logger(__name__)

SECONDS_PER_MONTH = 30 * 24 * 60 * 60
TOP_MARKETPLACES = 3


class UserStats(BaseModel):
    """Trading statistics for one wallet in the role it plays in the current event."""
    address: str
    role: Literal['buyer', 'seller']

    buys_count: int = 0
    buys_volume: float = 0.0
    buys_volume_usd: float = 0.0

    sells_count: int = 0
    sells_volume: float = 0.0
    sells_volume_usd: float = 0.0

    realized_pnl: float = 0.0
    realized_pnl_usd: float = 0.0

    first_activity_timestamp: Optional[int] = None
    last_activity_timestamp: Optional[int] = None
    transactions_per_month: float = 0.0
    top_marketplaces: Tuple[str, ...] = ()

    holdings: Tuple[str, ...] = ()
    holdings_incomplete: bool = False

    class Config:
        frozen = True

    @classmethod
    def empty(cls, address: str, role: str, holdings: Optional[Holdings] = None) -> 'UserStats':
        return cls(
            address=(address or '').lower(),
            role=role,
            holdings=holdings.names if holdings else (),
            holdings_incomplete=holdings.incomplete if holdings else False,
        )


def transactions_per_month(timestamps: Sequence[int]) -> float:
    """Average monthly transaction rate over the active period."""
    if not timestamps:
        return 0.0
    if len(timestamps) == 1:
        return 1.0
    elapsed = max(timestamps) - min(timestamps)
    if elapsed <= 0:
        return float(len(timestamps))
    return len(timestamps) / (elapsed / SECONDS_PER_MONTH)


class UserActivityAnalyzer:
    """Buy/sell volume, cadence and marketplace preference for a wallet.

    Only sales and mints count as trading. Bids, asks and cancellations are
    left out since automated bidding would drown out real trades; transfers
    are used only to resolve proxy counterparties.
    """

    def __init__(self, resolver: ProxyResolver, currency: Optional[CurrencyNormalizer] = None):
        self.resolver = resolver
        self.currency = currency or CurrencyNormalizer()

    async def analyze(
        self,
        activities: Sequence[Activity],
        address: str,
        role: str,
        holdings: Optional[Holdings] = None,
    ) -> UserStats:
        transfers = [a for a in activities if a.type == ActivityType.TRANSFER]
        trades = [a for a in activities if a.type in TRADING_TYPES]

        resolved = await self.resolver.resolve_all(trades, transfers)
        return self.summarize(resolved, address, role, holdings)

    def summarize(
        self,
        resolved: Sequence[ResolvedActivity],
        address: str,
        role: str,
        holdings: Optional[Holdings] = None,
    ) -> UserStats:
        """Pure aggregation over already-resolved activity."""
        wallet = (address or '').lower()
        history = sorted(
            (r for r in resolved if r.type in TRADING_TYPES),
            key=lambda r: (r.timestamp, r.activity.log_index, r.activity.batch_index),
        )

        buys = [r for r in history if r.resolved_buyer.lower() == wallet]
        sells = [
            r for r in history
            if r.resolved_seller.lower() == wallet and r.resolved_seller != ZERO_ADDRESS
        ]

        buys_volume, buys_volume_usd = self._volume(buys)
        sells_volume, sells_volume_usd = self._volume(sells)

        involved = sorted(buys + sells, key=lambda r: r.timestamp)
        timestamps = [r.timestamp for r in involved]

        marketplaces = Counter(r.fill_source for r in involved if r.fill_source)
        top = tuple(name for name, _ in marketplaces.most_common(TOP_MARKETPLACES))

        stats = UserStats(
            address=wallet,
            role=role,
            buys_count=len(buys),
            buys_volume=buys_volume,
            buys_volume_usd=buys_volume_usd,
            sells_count=len(sells),
            sells_volume=sells_volume,
            sells_volume_usd=sells_volume_usd,
            realized_pnl=sells_volume - buys_volume,
            realized_pnl_usd=sells_volume_usd - buys_volume_usd,
            first_activity_timestamp=timestamps[0] if timestamps else None,
            last_activity_timestamp=timestamps[-1] if timestamps else None,
            transactions_per_month=transactions_per_month(timestamps),
            top_marketplaces=top,
            holdings=holdings.names if holdings else (),
            holdings_incomplete=holdings.incomplete if holdings else False,
        )

        logger.debug(
            f"User stats for {wallet[:10]}... ({role}): {stats.buys_count} buys "
            f"({buys_volume:.4f} ETH), {stats.sells_count} sells ({sells_volume:.4f} ETH)"
        )
        return stats

    def _volume(self, items: List[ResolvedActivity]) -> Tuple[float, float]:
        eth_total = 0.0
        usd_total = 0.0
        for item in items:
            eth = self.currency.eth_equivalent(item.price)
            if eth is not None:
                eth_total += eth
            if item.price is not None:
                usd_total += item.price.usd_amount
        return eth_total, usd_total
