"""Command-line interface for ENS Insights."""

import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Optional, Sequence, Tuple

import click

from .activity_monitor import ActivityMonitor
from .api.models import Activity, ActivityScope, ActivityType, HISTORY_TYPES
from .config.settings import settings
from .config.validator import ConfigurationValidator
from .container import Container
from .exceptions import EnsInsightsError
from .main import EnsInsightsApp
from .services.bookmark_store import InMemoryBookmarkStore, JsonFileBookmarkStore, SyncBookmark
from .utils.logger import setup_logger

logger = setup_logger(__name__)


class EchoActivitySink:
    """Prints synced activity to the terminal."""

    async def handle_activities(self, activities: Sequence[Activity]) -> None:
        for activity in activities:
            when = datetime.fromtimestamp(activity.timestamp, tz=timezone.utc).strftime('%Y-%m-%d %H:%M:%S')
            price = f"{activity.price.decimal_amount:.4f} {activity.price.symbol}" if activity.price else "-"
            click.echo(
                f"{when}  {activity.type.value:<10} {activity.token_name or activity.token_id[:16]:<24} "
                f"{price:>16}  {activity.tx_hash or activity.activity_id}"
            )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """ENS Insights - Sync ENS marketplace activity and analyze trading history."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option("--contract", "contracts", multiple=True, help="Collection contract (defaults to the ENS contracts)")
@click.option("--type", "types", multiple=True, default=("bid",),
              type=click.Choice([t.value for t in ActivityType]), help="Activity type to sync")
@click.option("--boundary", type=int, default=None, help="Boundary timestamp (defaults to the stored bookmark)")
@click.option("--persist", is_flag=True, help="Advance the stored bookmark after the sync")
def sync(contracts: Tuple[str, ...], types: Tuple[str, ...], boundary: Optional[int], persist: bool) -> None:
    """Run one incremental sync and print the new activity."""
    if persist and boundary is not None:
        raise click.UsageError("--boundary cannot be combined with --persist")
    try:
        asyncio.run(_sync(contracts, types, boundary, persist))
    except EnsInsightsError as e:
        click.echo(f"❌ Sync failed: {e}")
        sys.exit(1)


async def _sync(contracts: Tuple[str, ...], types: Tuple[str, ...],
                boundary: Optional[int], persist: bool) -> None:
    container = Container()
    await container.initialize()

    try:
        file_store = JsonFileBookmarkStore(settings.bookmark_file)
        store = file_store if persist else InMemoryBookmarkStore()

        monitor = ActivityMonitor(
            sync=container.get_incremental_sync(),
            bookmark_store=store,
            sink=EchoActivitySink(),
            contracts=list(contracts) or None,
            activity_types=[ActivityType(t) for t in types],
        )

        if not persist:
            for contract in monitor.contracts:
                key = monitor.feed_key(contract)
                seeded = SyncBookmark(key=key, boundary_timestamp=boundary) if boundary is not None \
                    else await file_store.load(key)
                if seeded:
                    await store.save(seeded)

        handled = await monitor.poll_once()
        click.echo(f"\n✅ {len(handled)} new activit{'y' if len(handled) == 1 else 'ies'}")
        if not persist:
            click.echo("ℹ️  Bookmarks not persisted (use --persist)")
    finally:
        await container.cleanup()


@cli.command()
@click.argument("contract")
@click.argument("token_id")
@click.option("--tx-hash", default="", help="Current transaction to exclude from history")
@click.option("--seller", default=None, help="Current seller, for acquisition tracking")
@click.option("--price-eth", type=float, default=None, help="Current sale price in ETH")
@click.option("--price-usd", type=float, default=None, help="Current sale price in USD")
def token_insights(contract: str, token_id: str, tx_hash: str, seller: Optional[str],
                   price_eth: Optional[float], price_usd: Optional[float]) -> None:
    """Analyze one token's trading history and print it as JSON."""
    asyncio.run(_token_insights(contract, token_id, tx_hash, seller, price_eth, price_usd))


async def _token_insights(contract: str, token_id: str, tx_hash: str, seller: Optional[str],
                          price_eth: Optional[float], price_usd: Optional[float]) -> None:
    container = Container()
    await container.initialize()

    try:
        service = container.get_context_service()
        history = await container.get_client().fetch_history(
            ActivityScope.for_token(contract, token_id), HISTORY_TYPES
        )
        insights = await service.token_analyzer.analyze(
            history.activities,
            tx_hash,
            current_seller=seller,
            current_price_eth=price_eth,
            current_price_usd=price_usd,
        )
        click.echo(insights.model_dump_json(indent=2))
        if history.incomplete:
            click.echo("⚠️  Token history is incomplete", err=True)
    finally:
        await container.cleanup()


@cli.command()
@click.argument("address")
@click.option("--role", type=click.Choice(["buyer", "seller"]), default="buyer", help="Role in the current event")
def wallet_stats(address: str, role: str) -> None:
    """Analyze a wallet's ENS trading activity and print it as JSON."""
    asyncio.run(_wallet_stats(address, role))


async def _wallet_stats(address: str, role: str) -> None:
    container = Container()
    await container.initialize()

    try:
        service = container.get_context_service()
        history = await container.get_client().fetch_history(ActivityScope.for_wallet(address), HISTORY_TYPES)
        stats = await service.user_analyzer.analyze(history.activities, address, role)
        click.echo(stats.model_dump_json(indent=2))
        if history.incomplete:
            click.echo("⚠️  Wallet history is incomplete", err=True)
    finally:
        await container.cleanup()


@cli.command()
def validate_config() -> None:
    """Validate the current configuration."""
    validator = ConfigurationValidator()
    try:
        validator.validate_all()
    except EnsInsightsError as e:
        click.echo(f"❌ {e}")
        sys.exit(1)

    for warning in validator.warnings:
        click.echo(f"⚠️  {warning}")
    click.echo("✅ Configuration is valid")


@cli.command()
def monitor() -> None:
    """Start the activity polling daemon."""
    click.echo("🚀 Starting ENS Insights activity monitor...")
    app = EnsInsightsApp()
    try:
        asyncio.run(app.start())
    except KeyboardInterrupt:
        click.echo("\n🛑 Monitoring stopped by user")
    except Exception as e:
        click.echo(f"❌ Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
