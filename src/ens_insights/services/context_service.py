"""Builds reply contexts for sale and registration events."""

import asyncio
import time
from typing import Any, Awaitable, Optional, Tuple

from ..api.models import Activity, ActivityScope, HISTORY_TYPES, Holdings
from ..config.settings import settings
from ..exceptions import ConfigurationError
from ..utils.cache import ResponseCache
from ..utils.logger import setup_logger, get_activity_logger
from ..utils.retry import with_timeout
from .collaborators import HoldingsProvider, NameResearchProvider, ReplyGenerator
from .context_assembler import (
    ContextAssembler,
    DataCompleteness,
    MarketEvent,
    RegistrationEvent,
    ReplyContext,
    SaleEvent,
)
from .token_history import TokenHistoryAnalyzer, TokenInsights
from .user_activity import UserActivityAnalyzer, UserStats

logger = setup_logger(__name__)
activity_logger = get_activity_logger(__name__ + '.events')

NAME_RESEARCH_NAMESPACE = "name_research"

ActivityResult = Tuple[Tuple[Activity, ...], bool]


def normalize_ens_name(name: str) -> str:
    name = (name or '').strip().lower()
    return name if name.endswith('.eth') else f"{name}.eth"


class ContextService:
    """Gathers every data source for one event and assembles the reply context.

    Each source is fetched in its own guarded branch: a failing branch is
    logged and replaced by an empty result flagged incomplete, and never
    cancels its siblings.
    """

    def __init__(
        self,
        client,
        token_analyzer: TokenHistoryAnalyzer,
        user_analyzer: UserActivityAnalyzer,
        assembler: Optional[ContextAssembler] = None,
        holdings_provider: Optional[HoldingsProvider] = None,
        name_research_provider: Optional[NameResearchProvider] = None,
        cache: Optional[ResponseCache] = None,
        name_research_timeout: Optional[float] = None,
        reply_timeout: Optional[float] = None,
    ):
        self.client = client
        self.token_analyzer = token_analyzer
        self.user_analyzer = user_analyzer
        self.assembler = assembler or ContextAssembler()
        self.holdings_provider = holdings_provider
        self.name_research_provider = name_research_provider
        self.cache = cache
        self.name_research_timeout = name_research_timeout or settings.name_research_timeout_seconds
        self.reply_timeout = reply_timeout or settings.reply_generation_timeout_seconds

    def validate_event(self, event: MarketEvent) -> None:
        """Reject events that cannot be enriched.

        Raises:
            ConfigurationError: if a mandatory field is missing or the parties are inconsistent
        """
        if not isinstance(event, (SaleEvent, RegistrationEvent)):
            raise TypeError(f"Unsupported event type: {type(event).__name__}")
        if not event.tx_hash:
            raise ConfigurationError("Event is missing its transaction hash")
        if not event.contract or not event.token_id:
            raise ConfigurationError("Event is missing its contract or token id")
        if not event.buyer:
            raise ConfigurationError("Event is missing its buyer address")
        if isinstance(event, SaleEvent):
            if not event.seller:
                raise ConfigurationError("Sale event is missing its seller address")
            if event.buyer.lower() == event.seller.lower():
                raise ConfigurationError(
                    f"Buyer and seller are the same address ({event.buyer}) for tx {event.tx_hash}"
                )

    async def build_context(self, event: MarketEvent) -> ReplyContext:
        """
        Fetch all sources concurrently and assemble the reply context.

        Args:
            event: Sale or registration record from the system of record

        Returns:
            SaleContext or RegistrationContext with per-source completeness flags
        """
        self.validate_event(event)
        started = time.time()
        is_sale = isinstance(event, SaleEvent)
        seller = event.seller if is_sale else None

        logger.info(f"Building context for {event.kind} of {event.token_name}")

        empty_activity: ActivityResult = ((), True)
        empty_holdings = Holdings(incomplete=True)

        (
            token_result,
            buyer_result,
            seller_result,
            buyer_holdings,
            seller_holdings,
            research,
        ) = await asyncio.gather(
            self._guarded(self._fetch_token_activity(event), empty_activity, "Token activity"),
            self._guarded(self._fetch_wallet_activity(event.buyer), empty_activity, "Buyer activity"),
            self._guarded(self._fetch_wallet_activity(seller), empty_activity, "Seller activity")
            if seller else self._none(),
            self._guarded(self._fetch_holdings(event.buyer), empty_holdings, "Buyer holdings"),
            self._guarded(self._fetch_holdings(seller), empty_holdings, "Seller holdings")
            if seller else self._none(),
            self._guarded(self._fetch_name_research(event.token_name), (None, True), "Name research"),
        )

        token_activities, token_incomplete = token_result
        token_insights = await self._guarded(
            self.token_analyzer.analyze(
                token_activities,
                event.tx_hash,
                current_seller=seller,
                current_price_eth=event.price_eth,
                current_price_usd=event.price_usd,
                current_timestamp=event.timestamp,
            ),
            None,
            "Token analysis",
        )
        if token_insights is None:
            token_insights = TokenInsights()
            token_incomplete = True

        buyer_stats, buyer_incomplete = await self._wallet_stats(
            buyer_result, event.buyer, 'buyer', buyer_holdings
        )

        seller_stats = None
        seller_incomplete = False
        if seller:
            seller_stats, seller_incomplete = await self._wallet_stats(
                seller_result, seller, 'seller', seller_holdings
            )

        name_research, research_incomplete = research
        completeness = DataCompleteness(
            token_history=token_incomplete,
            buyer_activity=buyer_incomplete,
            seller_activity=seller_incomplete,
            buyer_holdings=buyer_holdings.incomplete,
            seller_holdings=seller_holdings.incomplete if seller_holdings else False,
            name_research=research_incomplete,
        )

        context = self.assembler.assemble(
            event,
            token_insights,
            buyer_stats,
            seller_stats,
            completeness,
            fetched_at=int(time.time()),
            name_research=name_research,
        )

        activity_logger.log_context_built(
            event.kind, event.token_name, context.completeness.incomplete_sources(), time.time() - started
        )
        return context

    async def generate_reply(self, generator: ReplyGenerator, context: ReplyContext) -> str:
        """Hand the context to the reply generator, bounded by a timeout.

        Raises:
            OperationTimeoutError: if the generator does not answer in time
        """
        return await with_timeout(
            generator.generate_reply(context), self.reply_timeout, "Reply generation"
        )

    async def _wallet_stats(
        self,
        result: ActivityResult,
        address: str,
        role: str,
        holdings: Holdings,
    ) -> Tuple[UserStats, bool]:
        activities, incomplete = result
        stats = await self._guarded(
            self.user_analyzer.analyze(activities, address, role, holdings),
            None,
            f"{role.capitalize()} analysis",
        )
        if stats is None:
            return UserStats.empty(address, role, holdings), True
        return stats, incomplete

    async def _guarded(self, awaitable: Awaitable[Any], fallback: Any, label: str) -> Any:
        try:
            return await awaitable
        except Exception as e:
            logger.error(f"{label} failed: {e}")
            return fallback

    @staticmethod
    async def _none() -> None:
        return None

    async def _fetch_token_activity(self, event: MarketEvent) -> ActivityResult:
        scope = ActivityScope.for_token(event.contract, event.token_id)
        history = await self.client.fetch_history(scope, HISTORY_TYPES)
        return history.activities, history.incomplete

    async def _fetch_wallet_activity(self, address: str) -> ActivityResult:
        scope = ActivityScope.for_wallet(address)
        history = await self.client.fetch_history(scope, HISTORY_TYPES)
        return history.activities, history.incomplete

    async def _fetch_holdings(self, address: str) -> Holdings:
        if self.holdings_provider is None:
            return Holdings(incomplete=True)
        return await self.holdings_provider.get_holdings(address)

    async def _fetch_name_research(self, name: str) -> Tuple[Optional[str], bool]:
        if self.name_research_provider is None:
            return None, True

        normalized = normalize_ens_name(name)
        if self.cache is not None:
            cached = self.cache.get(NAME_RESEARCH_NAMESPACE, normalized)
            if cached is not None:
                logger.info(f"Using cached research for {normalized}")
                return cached, False

        research = await with_timeout(
            self.name_research_provider.research_name(name),
            self.name_research_timeout,
            "Name research",
        )
        if research and self.cache is not None:
            self.cache.set(NAME_RESEARCH_NAMESPACE, normalized, research)
        return research or None, not research
