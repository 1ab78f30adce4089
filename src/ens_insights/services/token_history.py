"""Token-level trading history analysis."""

import time
from typing import List, Optional, Sequence

from pydantic import BaseModel

from ..api.models import Activity, ActivityType, ResolvedActivity, TRADING_TYPES, ZERO_ADDRESS
from ..utils.logger import setup_logger
from .currency import CurrencyNormalizer
from .proxy_resolver import ProxyResolver

logger = setup_logger(__name__)

PRICE_DIRECTION_THRESHOLD_PERCENT = 10.0


class TransactionSummary(BaseModel):
    """One historical sale or mint, with resolved parties."""
    type: ActivityType
    tx_hash: str
    timestamp: int
    price_eth: Optional[float] = None
    price_usd: float = 0.0
    currency: Optional[str] = None
    buyer: str
    seller: str

    class Config:
        frozen = True


class TokenMarketHistory(BaseModel):
    """Seller-independent part of a token's trading context."""
    first_tx: Optional[TransactionSummary] = None
    previous_tx: Optional[TransactionSummary] = None
    total_volume: float = 0.0
    total_volume_usd: float = 0.0
    number_of_sales: int = 0
    number_of_mints: int = 0
    average_hold_duration_hours: float = 0.0
    price_direction: str = "unknown"

    class Config:
        frozen = True


class TokenInsights(TokenMarketHistory):
    """Trading context derived from one token's history.

    All ``seller_*`` PnL fields stay None unless the seller's acquisition was
    matched in the history.
    """
    seller_acquisition_tracked: bool = False
    seller_buy_price: Optional[float] = None
    seller_buy_price_usd: Optional[float] = None
    seller_pnl: Optional[float] = None
    seller_pnl_usd: Optional[float] = None
    seller_hold_duration_hours: Optional[float] = None

    def market_history(self) -> TokenMarketHistory:
        """The same insights with every seller field dropped."""
        return TokenMarketHistory(**self.model_dump(include=set(TokenMarketHistory.model_fields)))


def _sort_key(item: ResolvedActivity):
    return (item.timestamp, item.activity.log_index, item.activity.batch_index)


class TokenHistoryAnalyzer:
    """Derives first/previous transaction, volume and seller PnL for a token."""

    def __init__(self, resolver: ProxyResolver, currency: Optional[CurrencyNormalizer] = None):
        self.resolver = resolver
        self.currency = currency or CurrencyNormalizer()

    async def analyze(
        self,
        activities: Sequence[Activity],
        current_tx_hash: str,
        current_seller: Optional[str] = None,
        current_price_eth: Optional[float] = None,
        current_price_usd: Optional[float] = None,
        current_timestamp: Optional[int] = None,
    ) -> TokenInsights:
        """
        Analyze a token's activity log.

        Args:
            activities: Sale, mint and transfer activity for one token
            current_tx_hash: Transaction of the event being enriched, excluded from history
            current_seller: Seller of the current event, for acquisition tracking
            current_price_eth: Current sale price in ETH units
            current_price_usd: Current sale price in USD
            current_timestamp: Timestamp of the current event (defaults to now)

        Returns:
            TokenInsights, empty when there is no prior trading activity
        """
        current_hash = (current_tx_hash or '').lower()
        transfers = [a for a in activities if a.type == ActivityType.TRANSFER]
        trades = [
            a for a in activities
            if a.type in TRADING_TYPES and not (current_hash and a.tx_hash.lower() == current_hash)
        ]

        resolved = await self.resolver.resolve_all(trades, transfers)

        return self.summarize(
            resolved,
            current_seller=current_seller,
            current_price_eth=current_price_eth,
            current_price_usd=current_price_usd,
            now=current_timestamp if current_timestamp is not None else time.time(),
            current_tx_hash=current_tx_hash,
        )

    def summarize(
        self,
        resolved: Sequence[ResolvedActivity],
        current_seller: Optional[str] = None,
        current_price_eth: Optional[float] = None,
        current_price_usd: Optional[float] = None,
        now: float = 0.0,
        current_tx_hash: Optional[str] = None,
    ) -> TokenInsights:
        """Pure aggregation over already-resolved activity."""
        current_hash = (current_tx_hash or '').lower()
        history = sorted(
            (
                r for r in resolved
                if r.type in TRADING_TYPES and (not current_hash or r.tx_hash.lower() != current_hash)
            ),
            key=_sort_key,
        )

        if not history:
            logger.debug("No prior trading activity, returning empty insights")
            return TokenInsights()

        sales = [r for r in history if r.type == ActivityType.SALE]
        mints = [r for r in history if r.type == ActivityType.MINT]

        total_volume = 0.0
        total_volume_usd = 0.0
        for item in history:
            eth = self.currency.eth_equivalent(item.price)
            if eth is not None:
                total_volume += eth
            if item.price is not None:
                total_volume_usd += item.price.usd_amount

        insights = {
            'first_tx': self._summary(history[0]),
            'previous_tx': self._summary(history[-1]),
            'total_volume': total_volume,
            'total_volume_usd': total_volume_usd,
            'number_of_sales': len(sales),
            'number_of_mints': len(mints),
            'average_hold_duration_hours': self._average_gap_hours(sales),
            'price_direction': self._price_direction(sales),
        }
        insights.update(self._seller_acquisition(
            history, current_seller, current_price_eth, current_price_usd, now
        ))

        logger.debug(
            f"Token insights: {len(sales)} sales, {len(mints)} mints, "
            f"{total_volume:.4f} ETH volume, {insights['price_direction']} trend"
        )
        return TokenInsights(**insights)

    def _summary(self, item: ResolvedActivity) -> TransactionSummary:
        return TransactionSummary(
            type=item.type,
            tx_hash=item.tx_hash,
            timestamp=item.timestamp,
            price_eth=self.currency.eth_equivalent(item.price),
            price_usd=item.price.usd_amount if item.price else 0.0,
            currency=item.price.symbol if item.price else None,
            buyer=item.resolved_buyer,
            seller=item.resolved_seller,
        )

    @staticmethod
    def _average_gap_hours(sales: List[ResolvedActivity]) -> float:
        if len(sales) < 2:
            return 0.0
        gaps = [
            (sales[i].timestamp - sales[i - 1].timestamp) / 3600
            for i in range(1, len(sales))
        ]
        return sum(gaps) / len(gaps)

    def _price_direction(self, sales: List[ResolvedActivity]) -> str:
        if not sales:
            return "unknown"
        if len(sales) == 1:
            return "stable"

        first_price = self.currency.eth_equivalent(sales[0].price)
        last_price = self.currency.eth_equivalent(sales[-1].price)
        if not first_price or last_price is None:
            return "unknown"

        change = (last_price - first_price) / first_price * 100
        if change > PRICE_DIRECTION_THRESHOLD_PERCENT:
            return "increasing"
        if change < -PRICE_DIRECTION_THRESHOLD_PERCENT:
            return "decreasing"
        return "stable"

    def _seller_acquisition(
        self,
        history: List[ResolvedActivity],
        current_seller: Optional[str],
        current_price_eth: Optional[float],
        current_price_usd: Optional[float],
        now: float,
    ) -> dict:
        seller = (current_seller or '').lower()
        if not seller or seller == ZERO_ADDRESS:
            return {}

        acquisition = next(
            (r for r in reversed(history) if r.resolved_buyer.lower() == seller),
            None,
        )
        if acquisition is None:
            logger.debug(f"Seller {seller[:10]}... acquisition not found in history")
            return {}

        buy_price = self.currency.eth_equivalent(acquisition.price)
        buy_price_usd = acquisition.price.usd_amount if acquisition.price else None

        pnl = None
        if buy_price is not None and current_price_eth is not None:
            pnl = current_price_eth - buy_price

        pnl_usd = None
        if buy_price_usd is not None and current_price_usd is not None:
            pnl_usd = current_price_usd - buy_price_usd

        return {
            'seller_acquisition_tracked': True,
            'seller_buy_price': buy_price,
            'seller_buy_price_usd': buy_price_usd,
            'seller_pnl': pnl,
            'seller_pnl_usd': pnl_usd,
            'seller_hold_duration_hours': (now - acquisition.timestamp) / 3600,
        }
