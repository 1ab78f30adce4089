"""Configuration settings for ENS Insights."""

from typing import List
from pydantic import Field, validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Magic Eden API Configuration
    magic_eden_api_url: str = Field(
        default="https://api-mainnet.magiceden.dev/v4",
        description="Magic Eden V4 API base URL"
    )
    http_timeout: int = Field(
        default=30,
        description="HTTP request timeout in seconds"
    )
    user_agent: str = Field(
        default="ENS-Insights/1.0",
        description="User-Agent header sent to the marketplace API"
    )
    ens_contracts: List[str] = Field(
        default=[
            "0x57f1887a8bf19b14fc0df6fd9b2acc9af147ea85",  # ENS Base Registrar
            "0xd4416b13d2b3a9abae7acd5d6c2bbdbe25686401",  # ENS Name Wrapper
        ],
        description="ENS contract addresses to track"
    )
    extra_proxy_contracts: List[str] = Field(
        default=[],
        description="Additional marketplace proxy/router contracts to de-proxy"
    )

    # Fetch Retry Configuration
    fetch_max_retries: int = Field(
        default=3,
        description="Retries per page after the first failed attempt"
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        description="Base delay for exponential backoff"
    )
    retry_max_delay_seconds: float = Field(
        default=5.0,
        description="Cap for exponential backoff"
    )

    # Incremental Sync Configuration
    sync_page_size: int = Field(
        default=50,
        description="Requested page size for incremental sync"
    )
    sync_max_pages: int = Field(
        default=20,
        description="Safety limit on pages per sync walk"
    )
    sync_max_consecutive_empty_pages: int = Field(
        default=3,
        description="Stop after this many pages in a row contribute no new items"
    )
    sync_page_delay_seconds: float = Field(
        default=1.0,
        description="Fixed delay between consecutive page fetches"
    )
    sync_max_lookback_minutes: int = Field(
        default=60,
        description="Cap on how far back a sync may reach (0 disables the cap)"
    )
    bid_safety_margin_minutes: int = Field(
        default=15,
        description="Minimum remaining bid validity for a bid to be actionable"
    )
    polling_interval_seconds: int = Field(
        default=60,
        description="Delay between sync polls"
    )
    bookmark_file: str = Field(
        default="data/sync_bookmarks.json",
        description="Where the sync bookmarks are persisted"
    )

    # History Fetch Configuration
    history_page_size: int = Field(
        default=100,
        description="Requested page size for history walks"
    )
    token_history_max_pages: int = Field(
        default=25,
        description="Maximum pages fetched for one token's history"
    )
    user_history_max_pages: int = Field(
        default=25,
        description="Maximum pages fetched for one wallet's history"
    )

    # Cache Configuration
    cache_max_size: int = Field(
        default=1000,
        description="Maximum entries in the shared response cache"
    )
    cache_ttl_seconds: int = Field(
        default=1800,
        description="Time-to-live for cached responses"
    )

    # External Call Timeouts
    name_research_timeout_seconds: int = Field(
        default=480,
        description="Timeout for the name research collaborator"
    )
    reply_generation_timeout_seconds: int = Field(
        default=300,
        description="Timeout for the reply generation consumer"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )

    @validator('ens_contracts', 'extra_proxy_contracts')
    def normalize_addresses(cls, v):
        return [address.lower() for address in v]

    @validator('fetch_max_retries')
    def validate_max_retries(cls, v):
        if v < 0:
            raise ValueError('fetch_max_retries must not be negative')
        return v

    @validator('sync_page_size', 'history_page_size')
    def validate_page_size(cls, v):
        if v <= 0:
            raise ValueError('page size must be greater than 0')
        if v > 100:
            raise ValueError('page size must not exceed 100 (API maximum)')
        return v

    @validator('sync_max_pages', 'token_history_max_pages', 'user_history_max_pages')
    def validate_max_pages(cls, v):
        if v <= 0:
            raise ValueError('max pages must be greater than 0')
        return v

    @validator('bid_safety_margin_minutes')
    def validate_bid_safety_margin(cls, v):
        if v < 15 or v > 30:
            raise ValueError('bid_safety_margin_minutes must be between 15 and 30')
        return v

    @validator('sync_max_lookback_minutes')
    def validate_max_lookback(cls, v):
        if v < 0:
            raise ValueError('sync_max_lookback_minutes must not be negative')
        return v

    @validator('polling_interval_seconds')
    def validate_polling_interval(cls, v):
        if v < 5:
            raise ValueError('polling_interval_seconds must be at least 5 seconds')
        return v

    @validator('log_level')
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of: {", ".join(valid_levels)}')
        return v.upper()

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
