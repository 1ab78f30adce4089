"""Configuration validation utilities."""

import re
from typing import List, Optional

from .settings import Settings, settings as default_settings
from ..exceptions import ConfigurationError
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

ADDRESS_PATTERN = re.compile(r'^0x[0-9a-f]{40}$')


class ConfigurationValidator:
    """Validates application configuration."""

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize the validator."""
        self.settings = settings or default_settings
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_all(self) -> None:
        """Validate all configuration settings."""
        self.errors.clear()
        self.warnings.clear()

        logger.info("Validating application configuration")

        self._validate_api_settings()
        self._validate_contract_settings()
        self._validate_retry_settings()
        self._validate_sync_settings()
        self._validate_cache_settings()
        self._validate_timeout_settings()

        self._report_validation_results()

        if self.errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in self.errors)
            raise ConfigurationError(error_msg)

        logger.info("Configuration validation completed successfully")

    def _validate_api_settings(self) -> None:
        """Validate API-related settings."""
        if not self.settings.magic_eden_api_url:
            self.errors.append("MAGIC_EDEN_API_URL is required")
        elif not self._is_valid_url(self.settings.magic_eden_api_url):
            self.errors.append("MAGIC_EDEN_API_URL format is invalid")

        if self.settings.http_timeout <= 0:
            self.errors.append("HTTP_TIMEOUT must be positive")
        elif self.settings.http_timeout < 10:
            self.warnings.append("HTTP_TIMEOUT is very low, large pages will time out")
        elif self.settings.http_timeout > 300:
            self.warnings.append("HTTP_TIMEOUT is very high, may cause slow error detection")

    def _validate_contract_settings(self) -> None:
        """Validate tracked and proxy contract addresses."""
        if not self.settings.ens_contracts:
            self.errors.append("ENS_CONTRACTS must list at least one contract")

        for address in self.settings.ens_contracts + self.settings.extra_proxy_contracts:
            if not ADDRESS_PATTERN.match(address):
                self.errors.append(f"Invalid contract address: {address}")

    def _validate_retry_settings(self) -> None:
        """Validate fetch retry settings."""
        if self.settings.retry_base_delay_seconds < 0:
            self.errors.append("RETRY_BASE_DELAY_SECONDS must not be negative")
        if self.settings.retry_max_delay_seconds < self.settings.retry_base_delay_seconds:
            self.errors.append("RETRY_MAX_DELAY_SECONDS must not be below RETRY_BASE_DELAY_SECONDS")
        if self.settings.fetch_max_retries > 5:
            self.warnings.append("FETCH_MAX_RETRIES is high, a dead API will stall every walk")

    def _validate_sync_settings(self) -> None:
        """Validate incremental sync settings."""
        if self.settings.sync_page_delay_seconds < 0.5:
            self.warnings.append("SYNC_PAGE_DELAY_SECONDS is very low, may cause API rate limiting")

        if self.settings.sync_max_consecutive_empty_pages <= 0:
            self.errors.append("SYNC_MAX_CONSECUTIVE_EMPTY_PAGES must be positive")
        elif self.settings.sync_max_consecutive_empty_pages >= self.settings.sync_max_pages:
            self.warnings.append("SYNC_MAX_CONSECUTIVE_EMPTY_PAGES is never reached before SYNC_MAX_PAGES")

        if self.settings.sync_max_lookback_minutes == 0:
            self.warnings.append("SYNC_MAX_LOOKBACK_MINUTES is disabled, a stale bookmark may trigger long walks")

    def _validate_cache_settings(self) -> None:
        """Validate cache settings."""
        if self.settings.cache_max_size <= 0:
            self.errors.append("CACHE_MAX_SIZE must be positive")
        if self.settings.cache_ttl_seconds <= 0:
            self.errors.append("CACHE_TTL_SECONDS must be positive")

    def _validate_timeout_settings(self) -> None:
        """Validate external call timeouts."""
        if self.settings.name_research_timeout_seconds <= 0:
            self.errors.append("NAME_RESEARCH_TIMEOUT_SECONDS must be positive")
        if self.settings.reply_generation_timeout_seconds <= 0:
            self.errors.append("REPLY_GENERATION_TIMEOUT_SECONDS must be positive")

    def _is_valid_url(self, url: str) -> bool:
        """Validate URL format."""
        url_pattern = re.compile(
            r'^https?://'  # http:// or https://
            r'(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+[A-Z]{2,6}\.?|'  # domain...
            r'localhost|'  # localhost...
            r'\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})'  # ...or ip
            r'(?::\d+)?'  # optional port
            r'(?:/?|[/?]\S+)$', re.IGNORECASE)
        return url_pattern.match(url) is not None

    def _report_validation_results(self) -> None:
        """Report validation results to logger."""
        if self.errors:
            logger.error(f"Found {len(self.errors)} configuration error(s)")
            for error in self.errors:
                logger.error(f"  Configuration error: {error}")

        if self.warnings:
            logger.warning(f"Found {len(self.warnings)} configuration warning(s)")
            for warning in self.warnings:
                logger.warning(f"  Configuration warning: {warning}")

        if not self.errors and not self.warnings:
            logger.info("All configuration settings are valid")


def validate_configuration(settings: Optional[Settings] = None) -> List[str]:
    """Validate application configuration and raise exception if invalid.

    Returns:
        The list of non-fatal warnings
    """
    validator = ConfigurationValidator(settings)
    validator.validate_all()
    return list(validator.warnings)
