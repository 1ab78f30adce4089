"""De-proxying of marketplace settlement contracts."""

from typing import Iterable, List, Optional, Sequence

from ..api.models import Activity, ActivityScope, ActivityType, HISTORY_TYPES, ResolvedActivity, ZERO_ADDRESS
from ..config.settings import settings
from ..utils.cache import ResponseCache
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

# Settlement contracts that appear as buyer/seller instead of the real wallets
KNOWN_PROXY_CONTRACTS = frozenset({
    "0x0000a26b00c1f0df003000390027140000faa719",  # OpenSea WETH wrapper
    "0xe6ee2b1eaac6520be709e77780abb50e7fffcccd",
    "0x00ca04c45da318d5b7e7b14d5381ca59f09c73f0",
})

TOKEN_LOG_NAMESPACE = "token_log"


def resolve_addresses(activity: Activity, transfers: Iterable[Activity]) -> ResolvedActivity:
    """
    Resolve the economic counterparties of an activity from transfers of the same
    token in the same transaction.

    The buyer is the recipient of the last transfer and the seller is the sender
    of the first transfer that is not a mint. Falls back to the original
    addresses when no such transfer exists.
    """
    tx_hash = activity.tx_hash.lower()
    contract = activity.contract.lower()
    related = sorted(
        (
            t for t in transfers
            if t.type == ActivityType.TRANSFER
            and t.tx_hash.lower() == tx_hash
            and t.contract.lower() == contract
            and t.token_id == activity.token_id
        ),
        key=lambda t: (t.log_index, t.batch_index),
    )

    if not tx_hash or not related:
        return ResolvedActivity(
            activity=activity,
            resolved_buyer=activity.to_address,
            resolved_seller=activity.from_address,
        )

    buyer = related[-1].to_address
    seller = next(
        (t.from_address for t in related if t.from_address != ZERO_ADDRESS),
        activity.from_address,
    )

    return ResolvedActivity(
        activity=activity,
        resolved_buyer=buyer,
        resolved_seller=seller,
        proxy_resolved=True,
    )


class ProxyResolver:
    """Replaces proxy addresses with the real buyer and seller, fetching transfers only when needed."""

    def __init__(self, client=None, cache: Optional[ResponseCache] = None,
                 extra_proxies: Optional[Sequence[str]] = None):
        self.client = client
        self.cache = cache
        extra = settings.extra_proxy_contracts if extra_proxies is None else extra_proxies
        self.proxy_contracts = KNOWN_PROXY_CONTRACTS | {p.lower() for p in extra}

    def is_proxy(self, address: Optional[str]) -> bool:
        return (address or '').lower() in self.proxy_contracts

    def involves_proxy(self, activity: Activity) -> bool:
        return self.is_proxy(activity.from_address) or self.is_proxy(activity.to_address)

    async def resolve(self, activity: Activity,
                      known_transfers: Optional[Sequence[Activity]] = None) -> ResolvedActivity:
        """
        Resolve one activity.

        Args:
            activity: Sale or mint to resolve
            known_transfers: Transfers already fetched, used before any network call

        Returns:
            A new ResolvedActivity; the input is never modified
        """
        if not self.involves_proxy(activity):
            return resolve_addresses(activity, ())

        if known_transfers:
            resolved = resolve_addresses(activity, known_transfers)
            if resolved.proxy_resolved:
                return resolved

        transfers = await self._token_transfers(activity)
        resolved = resolve_addresses(activity, transfers)
        if not resolved.proxy_resolved:
            logger.warning(f"Could not resolve proxy addresses for tx {activity.tx_hash[:12]}...")
        return resolved

    async def resolve_all(self, activities: Sequence[Activity],
                          known_transfers: Optional[Sequence[Activity]] = None) -> List[ResolvedActivity]:
        """Resolve activities sequentially, sharing the memoised token logs."""
        resolved = []
        for activity in activities:
            resolved.append(await self.resolve(activity, known_transfers))
        return resolved

    async def _token_transfers(self, activity: Activity) -> Sequence[Activity]:
        if self.client is None or not activity.contract or not activity.token_id:
            return ()

        cache_key = (activity.contract, activity.token_id)
        if self.cache is not None:
            cached = self.cache.get(TOKEN_LOG_NAMESPACE, cache_key)
            if cached is not None:
                return cached

        scope = ActivityScope.for_token(activity.contract, activity.token_id)
        history = await self.client.fetch_history(scope, HISTORY_TYPES)
        transfers = tuple(a for a in history.activities if a.type == ActivityType.TRANSFER)

        if self.cache is not None and not history.incomplete:
            self.cache.set(TOKEN_LOG_NAMESPACE, cache_key, transfers)

        return transfers
