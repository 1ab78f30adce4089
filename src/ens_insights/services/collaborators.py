"""Interfaces of the external collaborators the enrichment core talks to."""

from typing import Protocol, Sequence

from ..api.models import Activity, Holdings


class HoldingsProvider(Protocol):
    async def get_holdings(self, address: str) -> Holdings:
        """Current ENS names held by a wallet."""
        ...


class NameResearchProvider(Protocol):
    async def research_name(self, name: str) -> str:
        """Free-text background research on an ENS name."""
        ...


class ReplyGenerator(Protocol):
    async def generate_reply(self, context) -> str:
        """Turn an assembled reply context into reply text."""
        ...


class ActivitySink(Protocol):
    async def handle_activities(self, activities: Sequence[Activity]) -> None:
        """Receive newly synced activities, oldest first."""
        ...
