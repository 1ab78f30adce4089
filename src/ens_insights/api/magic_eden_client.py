"""Magic Eden V4 activity API client."""

import asyncio
import random
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx

from ..config.settings import settings
from ..exceptions import TransientFetchError
from ..services.currency import CurrencyNormalizer
from ..utils.logger import setup_logger, get_activity_logger
from ..utils.retry import RetryState, is_timeout_error
from .models import (
    Activity,
    ActivityHistory,
    ActivityPage,
    ActivityScope,
    ActivityType,
    BidWindow,
    HISTORY_TYPES,
    PROVIDER_FILTER_MAP,
    PROVIDER_TYPE_MAP,
    Price,
    ZERO_ADDRESS,
)

logger = setup_logger(__name__)
activity_logger = get_activity_logger(__name__ + '.pages')


def parse_iso_timestamp(value: Optional[str]) -> int:
    """Convert an ISO 8601 timestamp to unix seconds (0 when missing)."""
    if not value:
        return 0
    return int(datetime.fromisoformat(value.replace('Z', '+00:00')).timestamp())


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_price(unit_price: Optional[Dict[str, Any]], currency: CurrencyNormalizer) -> Optional[Price]:
    """Parse a provider ``unitPrice``/``priceV2`` block."""
    if not unit_price:
        return None

    amount = unit_price.get('amount') or {}
    currency_info = unit_price.get('currency') or {}

    contract = (currency_info.get('contract') or ZERO_ADDRESS).lower()
    decimals = currency_info.get('decimals')
    if decimals is None:
        decimals = 18
    raw = str(amount.get('raw') or '0')
    native = _to_float(amount.get('native'))

    try:
        decimal_amount = int(raw) / (10 ** decimals)
    except ValueError:
        decimal_amount = native or 0.0

    if currency.is_eth_equivalent(contract):
        native = decimal_amount

    if currency.is_stablecoin(contract):
        # 1 unit of a stablecoin is 1 USD
        usd = decimal_amount
    else:
        usd = _to_float((amount.get('fiat') or {}).get('usd')) or 0.0

    return Price(
        currency_contract=contract,
        symbol=currency.symbol_of(contract, currency_info.get('symbol')),
        decimals=decimals,
        raw_amount=raw,
        decimal_amount=decimal_amount,
        usd_amount=usd,
        native_eth_equivalent=native,
    )


def parse_activity(payload: Dict[str, Any], currency: CurrencyNormalizer) -> Activity:
    """Transform one V4 activity record into an :class:`Activity`."""
    raw_type = payload.get('activityType')
    if raw_type not in PROVIDER_TYPE_MAP:
        raise ValueError(f"Unknown activity type {raw_type!r}")
    activity_type = PROVIDER_TYPE_MAP[raw_type]
    asset = payload.get('asset') or {}
    tx_info = payload.get('transactionInfo') or {}
    bid_info = payload.get('bid')

    unit_price = payload.get('unitPrice')
    if unit_price is None and bid_info:
        unit_price = bid_info.get('priceV2')

    bid = None
    if bid_info and bid_info.get('expiry'):
        bid = BidWindow(
            valid_from=parse_iso_timestamp(bid_info['expiry'].get('validFrom')),
            valid_until=parse_iso_timestamp(bid_info['expiry'].get('validUntil')),
            maker=(bid_info.get('maker') or ZERO_ADDRESS).lower(),
        )

    fill_source = (payload.get('fillSource') or {}).get('domain') or (payload.get('order') or {}).get('sourceDomain')

    from_address = payload.get('fromAddress') or (bid.maker if bid else None) or ZERO_ADDRESS

    return Activity(
        activity_id=payload.get('activityId') or '',
        type=activity_type,
        from_address=from_address.lower(),
        to_address=(payload.get('toAddress') or ZERO_ADDRESS).lower(),
        price=parse_price(unit_price, currency),
        timestamp=parse_iso_timestamp(payload.get('timestamp')),
        tx_hash=(tx_info.get('transactionId') or '').lower(),
        log_index=tx_info.get('logIndex') or 0,
        batch_index=tx_info.get('batchTransferIndex') or 0,
        token_id=str(asset.get('tokenId') or ''),
        contract=(asset.get('contractAddress') or '').lower(),
        token_name=asset.get('name'),
        fill_source=fill_source,
        bid=bid,
    )


class MagicEdenClient:
    """Client for the Magic Eden V4 activity endpoints.

    ``fetch_page`` never raises for transport problems: after the retry
    budget is spent it returns an empty page flagged ``incomplete``.
    """

    def __init__(
        self,
        currency: Optional[CurrencyNormalizer] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        ens_contracts: Optional[Sequence[str]] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        retry_max_delay: Optional[float] = None,
        page_delay_seconds: Optional[float] = None,
    ):
        """Initialize the Magic Eden client."""
        self.base_url = (base_url or settings.magic_eden_api_url).rstrip('/')
        self.currency = currency or CurrencyNormalizer()
        self.ens_contracts = [c.lower() for c in (ens_contracts or settings.ens_contracts)]
        self.max_retries = settings.fetch_max_retries if max_retries is None else max_retries
        self.retry_base_delay = settings.retry_base_delay_seconds if retry_base_delay is None else retry_base_delay
        self.retry_max_delay = settings.retry_max_delay_seconds if retry_max_delay is None else retry_max_delay
        self.page_delay_seconds = (
            settings.sync_page_delay_seconds if page_delay_seconds is None else page_delay_seconds
        )
        self._client = http_client
        self._owns_client = http_client is None

    async def initialize(self) -> None:
        """Create the shared HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.http_timeout,
                headers={'Accept': '*/*', 'User-Agent': settings.user_agent},
            )
            logger.info("Magic Eden client initialized")

    async def cleanup(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.info("Magic Eden client cleaned up")

    def _build_request(
        self,
        scope: ActivityScope,
        activity_types: Iterable[ActivityType],
        cursor: Optional[str],
        limit: int,
    ) -> tuple:
        params: List[tuple] = [
            ('sortBy', 'timestamp'),
            ('sortDir', 'desc'),
            ('limit', str(limit)),
        ]
        if scope.is_wallet:
            path = '/activity/user'
            params.insert(0, ('walletAddress', f"ethereum:{scope.wallet}"))
        elif scope.is_collection:
            path = '/activity/nft'
            params.insert(0, ('collectionId', scope.contract))
            params.insert(0, ('chain', 'ethereum'))
        else:
            path = '/activity/nft'
            params.insert(0, ('assetId', f"{scope.contract}:{scope.token_id}"))
            params.insert(0, ('chain', 'ethereum'))

        for activity_type in activity_types:
            params.append(('activityTypes[]', PROVIDER_FILTER_MAP[ActivityType(activity_type)]))

        if cursor:
            params.append(('cursorTimestamp', cursor))

        return f"{self.base_url}{path}", params

    async def _request_page(
        self,
        scope: ActivityScope,
        activity_types: Sequence[ActivityType],
        cursor: Optional[str],
        limit: int,
    ) -> tuple:
        """Perform one HTTP request; raises TransientFetchError on any failure."""
        url, params = self._build_request(scope, activity_types, cursor, limit)
        await self.initialize()

        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise TransientFetchError(f"{type(e).__name__}: {e}", is_timeout=is_timeout_error(e)) from e
        except ValueError as e:
            raise TransientFetchError(f"Invalid JSON from activity API: {e}") from e

        records = data.get('activities') or []
        next_cursor = (data.get('pagination') or {}).get('cursorTimestamp')

        activities = []
        for record in records:
            try:
                activities.append(parse_activity(record, self.currency))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed activity {record.get('activityId', '?')}: {e}")

        if scope.is_wallet:
            # The user endpoint cannot filter by collection
            activities = [a for a in activities if a.contract in self.ens_contracts]

        return tuple(activities), next_cursor

    async def fetch_page(
        self,
        scope: ActivityScope,
        activity_types: Sequence[ActivityType] = HISTORY_TYPES,
        cursor: Optional[str] = None,
        limit: int = 100,
    ) -> ActivityPage:
        """
        Fetch one page of activity, newest first.

        Args:
            scope: Token, collection or wallet to fetch activity for
            activity_types: Server-side activity type filter
            cursor: Continuation cursor from the previous page
            limit: Requested page size

        Returns:
            The page; ``incomplete`` is set when retries were exhausted
        """
        state = RetryState.initial(
            limit,
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )

        while True:
            try:
                activities, next_cursor = await self._request_page(
                    scope, activity_types, cursor, state.current_limit
                )
                page = ActivityPage(
                    activities=activities,
                    continuation=next_cursor,
                    incomplete=False,
                    requested_limit=state.current_limit,
                    attempts=state.attempt + 1,
                )
                activity_logger.log_page_fetched(
                    scope.describe(), len(activities), state.current_limit, page.attempts, False
                )
                return page

            except TransientFetchError as e:
                logger.error(
                    f"Activity API error for {scope.describe()} "
                    f"(attempt {state.attempt + 1}/{self.max_retries + 1}): {e}"
                )
                next_state = state.after_failure(e.is_timeout)

                if next_state.exhausted:
                    logger.error(f"Max retries ({self.max_retries}) exceeded for {scope.describe()}")
                    activity_logger.log_page_fetched(
                        scope.describe(), 0, state.current_limit, next_state.attempt, True
                    )
                    return ActivityPage(
                        incomplete=True,
                        requested_limit=state.current_limit,
                        attempts=next_state.attempt,
                    )

                if next_state.current_limit != state.current_limit:
                    logger.warning(
                        f"Timeout detected, reducing limit from {state.current_limit} "
                        f"to {next_state.current_limit} and retrying..."
                    )
                else:
                    logger.warning(f"Retrying in {next_state.delay:.1f}s...")

                await asyncio.sleep(next_state.delay)
                state = next_state

    async def fetch_history(
        self,
        scope: ActivityScope,
        activity_types: Sequence[ActivityType] = HISTORY_TYPES,
        limit: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> ActivityHistory:
        """
        Walk pages sequentially and collect the full activity history.

        Args:
            scope: Token, collection or wallet to fetch activity for
            activity_types: Server-side activity type filter
            limit: Items per request
            max_pages: Maximum pages to fetch

        Returns:
            All activities fetched; ``incomplete`` is set when the walk stopped
            on the page limit or on a page that gave up
        """
        limit = limit or settings.history_page_size
        if max_pages is None:
            max_pages = settings.user_history_max_pages if scope.is_wallet else settings.token_history_max_pages

        logger.info(f"Fetching activity history for {scope.describe()}")

        collected: List[Activity] = []
        cursor: Optional[str] = None
        pages = 0
        incomplete = False

        while pages < max_pages:
            pages += 1
            page = await self.fetch_page(scope, activity_types, cursor, limit)

            if page.incomplete:
                incomplete = True
                break

            # Wallet pages can be empty after the collection filter and still carry a cursor
            collected.extend(page.activities)
            cursor = page.continuation
            if not cursor:
                break

            await asyncio.sleep(self.page_delay_seconds + random.random() * self.page_delay_seconds * 0.1)
        else:
            if cursor:
                logger.warning(f"Hit max pages limit ({max_pages}) for {scope.describe()}, more data may be available")
                incomplete = True

        logger.info(
            f"Activity history for {scope.describe()}: {len(collected)} activities "
            f"from {pages} page(s){' (incomplete)' if incomplete else ''}"
        )

        return ActivityHistory(activities=tuple(collected), incomplete=incomplete, pages_fetched=pages)
