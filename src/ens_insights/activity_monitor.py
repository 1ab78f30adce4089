"""Polling monitor that keeps the ENS activity feeds in sync."""

import asyncio
import time
from typing import List, Optional, Sequence, Set

from .api.models import Activity, ActivityScope, ActivityType
from .config.settings import settings
from .services.bookmark_store import BookmarkStore, SyncBookmark
from .services.collaborators import ActivitySink
from .services.incremental_sync import IncrementalSync, StopReason, SyncResult
from .utils.logger import setup_logger

logger = setup_logger(__name__)

MAX_SEEN_KEYS = 10000


class LoggingActivitySink:
    """Default sink that only logs new activity."""

    async def handle_activities(self, activities: Sequence[Activity]) -> None:
        for activity in activities:
            price = f"{activity.price.decimal_amount:.4f} {activity.price.symbol}" if activity.price else "no price"
            logger.info(
                f"New {activity.type.value}: {activity.token_name or activity.token_id[:12]} "
                f"({price}) - TX: {activity.tx_hash or 'n/a'}"
            )


class ActivityMonitor:
    """Polls each ENS collection feed and hands new activity to a sink.

    Bookmarks only ever move forward, to the newest timestamp the provider
    actually returned. A walk that stopped because a page fetch gave up does
    not move its bookmark, so the next poll covers the same range again.
    """

    def __init__(
        self,
        sync: IncrementalSync,
        bookmark_store: BookmarkStore,
        sink: Optional[ActivitySink] = None,
        contracts: Optional[Sequence[str]] = None,
        activity_types: Sequence[ActivityType] = (ActivityType.BID,),
        polling_interval: Optional[float] = None,
        max_lookback_minutes: Optional[int] = None,
        safety_margin_minutes: Optional[int] = None,
    ):
        self.sync = sync
        self.bookmark_store = bookmark_store
        self.sink = sink or LoggingActivitySink()
        self.contracts = [c.lower() for c in (contracts or settings.ens_contracts)]
        self.activity_types = tuple(ActivityType(t) for t in activity_types)
        self.polling_interval = polling_interval or settings.polling_interval_seconds
        self.max_lookback_minutes = (
            settings.sync_max_lookback_minutes if max_lookback_minutes is None else max_lookback_minutes
        )
        self.safety_margin_seconds = (
            safety_margin_minutes or settings.bid_safety_margin_minutes
        ) * 60
        self.running = False

        # Activity keys already handed to the sink
        self.seen_keys: Set[str] = set()

    def feed_key(self, contract: str) -> str:
        return f"{contract}:{'+'.join(t.value for t in self.activity_types)}"

    def effective_boundary(self, stored: Optional[int], now: float) -> Optional[int]:
        """Stored bookmark, raised to the max-lookback floor when one is configured."""
        if not self.max_lookback_minutes:
            return stored
        floor = int(now - self.max_lookback_minutes * 60)
        if stored is None or stored < floor:
            if stored is not None:
                logger.info(f"Bookmark {stored} is older than the lookback cap, using {floor}")
            return floor
        return stored

    async def start(self) -> None:
        """Start the polling loop."""
        logger.info(
            f"Starting activity monitor for {len(self.contracts)} contract(s), "
            f"types: {', '.join(t.value for t in self.activity_types)}"
        )
        self.running = True

        while self.running:
            try:
                await self.poll_once()

                if len(self.seen_keys) > MAX_SEEN_KEYS:
                    logger.info("Clearing seen activity keys cache")
                    self.seen_keys.clear()

                await asyncio.sleep(self.polling_interval)

            except Exception as e:
                logger.error(f"Error in activity monitoring loop: {e}")
                await asyncio.sleep(self.polling_interval * 2)

    async def stop(self) -> None:
        """Stop the polling loop."""
        logger.info("Stopping activity monitor")
        self.running = False

    async def poll_once(self, now: Optional[float] = None) -> List[Activity]:
        """Sync every feed once and return the activities handed to the sink."""
        now = time.time() if now is None else now
        handled: List[Activity] = []
        for contract in self.contracts:
            handled.extend(await self.sync_feed(contract, now))
        return handled

    async def sync_feed(self, contract: str, now: float) -> List[Activity]:
        key = self.feed_key(contract)
        bookmark = await self.bookmark_store.load(key)
        stored = bookmark.boundary_timestamp if bookmark else None
        boundary = self.effective_boundary(stored, now)

        result = await self.sync.sync(
            ActivityScope.for_collection(contract),
            self.activity_types,
            boundary,
            safety_margin_seconds=self.safety_margin_seconds,
            now=now,
        )

        fresh = sorted(
            (a for a in result.items if a.key not in self.seen_keys),
            key=lambda a: (a.timestamp, a.log_index, a.batch_index),
        )
        if fresh:
            await self.sink.handle_activities(fresh)
            self.seen_keys.update(a.key for a in fresh)

        await self._advance_bookmark(key, stored, result)
        return fresh

    async def _advance_bookmark(self, key: str, stored: Optional[int], result: SyncResult) -> None:
        if result.stop_reason == StopReason.FETCH_FAILED:
            logger.warning(f"Not advancing bookmark {key}: sync stopped on a failed fetch")
            return
        if result.newest_timestamp_seen is None:
            return

        new_boundary = result.newest_timestamp_seen
        if stored is not None and new_boundary <= stored:
            return

        await self.bookmark_store.save(SyncBookmark(key=key, boundary_timestamp=new_boundary))
        logger.info(f"Advanced bookmark {key}: {stored} -> {new_boundary}")
