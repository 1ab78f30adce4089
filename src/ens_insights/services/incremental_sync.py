"""Incremental, bookmark-driven synchronisation of the activity feed."""

import asyncio
import time
from enum import Enum
from typing import List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel

from ..api.models import Activity, ActivityScope, ActivityType
from ..config.settings import settings
from ..utils.logger import setup_logger, get_activity_logger

logger = setup_logger(__name__)
activity_logger = get_activity_logger(__name__ + '.events')


class StopReason(str, Enum):
    """Why a sync walk ended."""
    BOUNDARY_REACHED = "boundary_reached"
    PAGE_LIMIT = "page_limit"
    EMPTY_PAGES = "consecutive_empty_pages"
    EXHAUSTED = "no_more_data"
    FETCH_FAILED = "fetch_failed"


class SyncResult(BaseModel):
    """Outcome of one sync walk.

    ``newest_timestamp_seen`` covers every fetched item, qualifying or not, and
    is the only value a caller may persist as the next boundary.
    """
    items: Tuple[Activity, ...] = ()
    newest_timestamp_seen: Optional[int] = None
    pages_fetched: int = 0
    incomplete: bool = False
    stop_reason: StopReason = StopReason.EXHAUSTED

    class Config:
        frozen = True


def qualifies(activity: Activity, boundary_timestamp: Optional[int],
              now: float, safety_margin_seconds: float) -> bool:
    """An item is new when it is after the boundary and, for bids, still actionable."""
    if boundary_timestamp is not None and activity.timestamp <= boundary_timestamp:
        return False
    if activity.type == ActivityType.BID:
        return activity.is_actionable_bid(now, safety_margin_seconds)
    return True


class IncrementalSync:
    """Walks the feed newest-first until it reaches the persisted boundary.

    The consecutive-empty-pages stop is a cost bound: if the provider ever
    returned pages out of timestamp order it could end a walk before the
    boundary, so it is not a completeness guarantee.
    """

    def __init__(
        self,
        client,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        max_consecutive_empty_pages: Optional[int] = None,
        page_delay_seconds: Optional[float] = None,
    ):
        self.client = client
        self.page_size = page_size or settings.sync_page_size
        self.max_pages = settings.sync_max_pages if max_pages is None else max_pages
        self.max_consecutive_empty_pages = (
            settings.sync_max_consecutive_empty_pages
            if max_consecutive_empty_pages is None else max_consecutive_empty_pages
        )
        self.page_delay_seconds = (
            settings.sync_page_delay_seconds if page_delay_seconds is None else page_delay_seconds
        )

    async def sync(
        self,
        scope: ActivityScope,
        activity_types: Sequence[ActivityType],
        boundary_timestamp: Optional[int],
        safety_margin_seconds: Optional[float] = None,
        now: Optional[float] = None,
    ) -> SyncResult:
        """
        Fetch everything newer than the boundary.

        Args:
            scope: Token, collection or wallet scope to walk
            activity_types: Activity types to request
            boundary_timestamp: Items at or before this are already processed
            safety_margin_seconds: Minimum remaining validity for bids
            now: Reference time for bid validity (defaults to wall clock)

        Returns:
            SyncResult with the qualifying items in fetch order
        """
        if safety_margin_seconds is None:
            safety_margin_seconds = settings.bid_safety_margin_minutes * 60
        if now is None:
            now = time.time()

        items: List[Activity] = []
        seen: Set[str] = set()
        newest: Optional[int] = None
        pages = 0
        empty_streak = 0
        cursor: Optional[str] = None
        incomplete = False

        while True:
            if pages >= self.max_pages:
                logger.warning(
                    f"Reached max pages ({self.max_pages}) for {scope.describe()} before the boundary"
                )
                stop_reason = StopReason.PAGE_LIMIT
                incomplete = True
                break

            page = await self.client.fetch_page(scope, activity_types, cursor, self.page_size)
            pages += 1

            if page.incomplete:
                logger.warning(f"Page {pages} for {scope.describe()} gave up after retries")
                stop_reason = StopReason.FETCH_FAILED
                incomplete = True
                break

            if not page.activities:
                stop_reason = StopReason.EXHAUSTED
                break

            page_timestamps = [a.timestamp for a in page.activities]
            page_newest = max(page_timestamps)
            newest = page_newest if newest is None else max(newest, page_newest)

            added = 0
            for activity in page.activities:
                if activity.key in seen:
                    continue
                if qualifies(activity, boundary_timestamp, now, safety_margin_seconds):
                    seen.add(activity.key)
                    items.append(activity)
                    added += 1

            logger.debug(f"Page {pages}: {len(page.activities)} fetched, {added} new")

            empty_streak = 0 if added else empty_streak + 1

            # Pages are not ordered against each other, so check the page's oldest item
            if boundary_timestamp is not None and min(page_timestamps) <= boundary_timestamp:
                stop_reason = StopReason.BOUNDARY_REACHED
                break

            if empty_streak >= self.max_consecutive_empty_pages:
                logger.info(
                    f"{empty_streak} consecutive pages without new items for {scope.describe()}, stopping early"
                )
                stop_reason = StopReason.EMPTY_PAGES
                break

            cursor = page.continuation
            if not cursor:
                stop_reason = StopReason.EXHAUSTED
                break

            await asyncio.sleep(self.page_delay_seconds)

        activity_logger.log_sync_completed(
            scope.describe(), len(items), pages, stop_reason.value, newest, incomplete
        )

        return SyncResult(
            items=tuple(items),
            newest_timestamp_seen=newest,
            pages_fetched=pages,
            incomplete=incomplete,
            stop_reason=stop_reason,
        )
