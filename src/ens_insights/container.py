"""Dependency injection container for managing application components."""

from typing import Dict, Any, Optional
from dataclasses import dataclass

from .activity_monitor import ActivityMonitor
from .api.magic_eden_client import MagicEdenClient
from .config.settings import settings
from .config.validator import validate_configuration
from .services.bookmark_store import BookmarkStore, JsonFileBookmarkStore
from .services.collaborators import ActivitySink, HoldingsProvider, NameResearchProvider
from .services.context_assembler import ContextAssembler
from .services.context_service import ContextService
from .services.currency import CurrencyNormalizer
from .services.incremental_sync import IncrementalSync
from .services.proxy_resolver import ProxyResolver
from .services.token_history import TokenHistoryAnalyzer
from .services.user_activity import UserActivityAnalyzer
from .utils.cache import ResponseCache
from .utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass
class Container:
    """Dependency injection container.

    Holds exactly one response cache per process; every component that
    memoises external lookups receives it from here.
    """

    def __init__(
        self,
        holdings_provider: Optional[HoldingsProvider] = None,
        name_research_provider: Optional[NameResearchProvider] = None,
        activity_sink: Optional[ActivitySink] = None,
        bookmark_store: Optional[BookmarkStore] = None,
    ):
        """Initialize the container."""
        self._instances: Dict[str, Any] = {}
        self._initialized = False
        self._holdings_provider = holdings_provider
        self._name_research_provider = name_research_provider
        self._activity_sink = activity_sink
        self._bookmark_store = bookmark_store

    async def initialize(self) -> None:
        """Initialize all singleton dependencies."""
        if self._initialized:
            return

        logger.info("Initializing dependency container")

        # Validate configuration first
        try:
            validate_configuration()
            logger.info("Configuration validation passed")
        except Exception as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

        cache = ResponseCache(max_size=settings.cache_max_size, ttl_seconds=settings.cache_ttl_seconds)
        self._instances['cache'] = cache

        currency = CurrencyNormalizer()
        self._instances['currency'] = currency

        client = MagicEdenClient(currency=currency)
        await client.initialize()
        self._instances['client'] = client

        resolver = ProxyResolver(client=client, cache=cache)
        self._instances['resolver'] = resolver

        context_service = ContextService(
            client=client,
            token_analyzer=TokenHistoryAnalyzer(resolver, currency),
            user_analyzer=UserActivityAnalyzer(resolver, currency),
            assembler=ContextAssembler(),
            holdings_provider=self._holdings_provider,
            name_research_provider=self._name_research_provider,
            cache=cache,
        )
        self._instances['context_service'] = context_service

        incremental_sync = IncrementalSync(client)
        self._instances['incremental_sync'] = incremental_sync

        activity_monitor = ActivityMonitor(
            sync=incremental_sync,
            bookmark_store=self._bookmark_store or JsonFileBookmarkStore(settings.bookmark_file),
            sink=self._activity_sink,
        )
        self._instances['activity_monitor'] = activity_monitor

        self._initialized = True
        logger.info("Dependency container initialized")

    async def cleanup(self) -> None:
        """Clean up all dependencies."""
        if not self._initialized:
            return

        logger.info("Cleaning up dependency container")

        activity_monitor = self._instances.get('activity_monitor')
        if activity_monitor:
            await activity_monitor.stop()

        client = self._instances.get('client')
        if client:
            await client.cleanup()

        cache = self._instances.get('cache')
        if cache:
            logger.debug(f"Response cache: {cache.hits} hits, {cache.misses} misses")

        self._instances.clear()
        self._initialized = False
        logger.info("Dependency container cleaned up")

    def get_cache(self) -> ResponseCache:
        return self._get_instance('cache', ResponseCache)

    def get_client(self) -> MagicEdenClient:
        """Get the Magic Eden client instance."""
        return self._get_instance('client', MagicEdenClient)

    def get_resolver(self) -> ProxyResolver:
        return self._get_instance('resolver', ProxyResolver)

    def get_context_service(self) -> ContextService:
        """Get the context service instance."""
        return self._get_instance('context_service', ContextService)

    def get_incremental_sync(self) -> IncrementalSync:
        return self._get_instance('incremental_sync', IncrementalSync)

    def get_activity_monitor(self) -> ActivityMonitor:
        """Get the activity monitor instance."""
        return self._get_instance('activity_monitor', ActivityMonitor)

    def _get_instance(self, name: str, instance_type: type) -> Any:
        """Get an instance from the container."""
        instance = self._instances.get(name)
        if instance is None:
            raise ValueError(f"Instance '{name}' not found in container")
        if not isinstance(instance, instance_type):
            raise ValueError(f"Instance '{name}' is not of type {instance_type}")
        return instance
