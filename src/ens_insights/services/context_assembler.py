"""Composition of enrichment results into one immutable reply context."""

from typing import List, Literal, Optional, Union

from pydantic import BaseModel

from ..utils.logger import setup_logger
from .token_history import TokenInsights, TokenMarketHistory
from .user_activity import UserStats

logger = setup_logger(__name__)


class SaleEvent(BaseModel):
    """A secondary-market sale as recorded by the system of record."""
    kind: Literal['sale'] = 'sale'
    token_name: str
    contract: str
    token_id: str
    tx_hash: str
    price_eth: float
    price_usd: float = 0.0
    currency: str = "ETH"
    timestamp: int
    buyer: str
    seller: str

    class Config:
        frozen = True


class RegistrationEvent(BaseModel):
    """A name registration (mint); it has no seller."""
    kind: Literal['registration'] = 'registration'
    token_name: str
    contract: str
    token_id: str
    tx_hash: str
    price_eth: float
    price_usd: float = 0.0
    currency: str = "ETH"
    timestamp: int
    buyer: str

    class Config:
        frozen = True


MarketEvent = Union[SaleEvent, RegistrationEvent]


class SourceCompleteness(BaseModel):
    """Per-source flags; True means that source returned partial or no data."""
    token_history: bool = False
    buyer_activity: bool = False
    buyer_holdings: bool = False
    name_research: bool = False

    class Config:
        frozen = True

    def incomplete_sources(self) -> List[str]:
        return [name for name, flag in self.model_dump().items() if flag]

    @property
    def is_complete(self) -> bool:
        return not self.incomplete_sources()


class DataCompleteness(SourceCompleteness):
    seller_activity: bool = False
    seller_holdings: bool = False

    def without_seller(self) -> SourceCompleteness:
        return SourceCompleteness(**self.model_dump(include=set(SourceCompleteness.model_fields)))


class SaleContext(BaseModel):
    kind: Literal['sale'] = 'sale'
    event: SaleEvent
    token_insights: TokenInsights
    buyer_stats: UserStats
    seller_stats: UserStats
    completeness: DataCompleteness
    data_fetched_at: int
    name_research: Optional[str] = None

    class Config:
        frozen = True


class RegistrationContext(BaseModel):
    kind: Literal['registration'] = 'registration'
    event: RegistrationEvent
    token_history: TokenMarketHistory
    buyer_stats: UserStats
    completeness: SourceCompleteness
    data_fetched_at: int
    name_research: Optional[str] = None

    class Config:
        frozen = True


ReplyContext = Union[SaleContext, RegistrationContext]


class ContextAssembler:
    """Builds the reply context from already-fetched parts; performs no I/O."""

    def assemble(
        self,
        event: MarketEvent,
        token_insights: TokenInsights,
        buyer_stats: UserStats,
        seller_stats: Optional[UserStats],
        completeness: DataCompleteness,
        fetched_at: int,
        name_research: Optional[str] = None,
    ) -> ReplyContext:
        if isinstance(event, SaleEvent):
            if seller_stats is None:
                seller_stats = UserStats.empty(event.seller, 'seller')
            return SaleContext(
                event=event,
                token_insights=token_insights,
                buyer_stats=buyer_stats,
                seller_stats=seller_stats,
                completeness=completeness,
                data_fetched_at=fetched_at,
                name_research=name_research,
            )

        if isinstance(event, RegistrationEvent):
            if seller_stats is not None:
                logger.debug("Ignoring seller stats for a registration event")
            return RegistrationContext(
                event=event,
                token_history=token_insights.market_history(),
                buyer_stats=buyer_stats,
                completeness=completeness.without_seller(),
                data_fetched_at=fetched_at,
                name_research=name_research,
            )

        raise TypeError(f"Unsupported event type: {type(event).__name__}")
