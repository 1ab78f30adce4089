"""Currency contract normalization and ETH-equivalent conversion."""

from typing import Dict, Optional

from ..api.models import Price, ZERO_ADDRESS
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

UNKNOWN_SYMBOL = "UNKNOWN"

# Known contract addresses (lowercase)
CONTRACT_TO_SYMBOL: Dict[str, str] = {
    ZERO_ADDRESS: "ETH",
    "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee": "ETH",  # native ETH placeholder
    "": "ETH",
    "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2": "ETH",  # WETH
    "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48": "USDC",
    "0xdac17f958d2ee523a2206206994597c13d831ec7": "USDT",
    "0x6b175474e89094c44da98b954eedeac495271d0f": "DAI",
}

STABLECOINS = {"USDC", "USDT", "DAI"}


class CurrencyNormalizer:
    """Maps currency contracts to canonical symbols and ETH-equivalent amounts."""

    def symbol_of(self, contract_address: Optional[str], api_symbol: Optional[str] = None) -> str:
        """Canonical symbol for a currency contract.

        Unknown contracts fall back to the provider-supplied symbol, and are
        never silently treated as ETH.
        """
        contract = (contract_address or "").lower()
        known = CONTRACT_TO_SYMBOL.get(contract)
        if known:
            return known

        if api_symbol:
            logger.warning(f"Unknown currency contract {contract_address}, using API symbol {api_symbol}")
            return api_symbol

        logger.warning(f"Unknown currency contract {contract_address} with no API symbol")
        return UNKNOWN_SYMBOL

    def is_eth_equivalent(self, contract_address: Optional[str]) -> bool:
        """True only for native ETH and its wrapper."""
        return CONTRACT_TO_SYMBOL.get((contract_address or "").lower()) == "ETH"

    def is_stablecoin(self, contract_address: Optional[str]) -> bool:
        return CONTRACT_TO_SYMBOL.get((contract_address or "").lower()) in STABLECOINS

    def eth_equivalent(self, price: Optional[Price]) -> Optional[float]:
        """Amount of a price in ETH units, or None if it cannot be converted.

        All volume and PnL sums go through here so that amounts in different
        currencies are never added together directly.
        """
        if price is None:
            return None
        if self.is_eth_equivalent(price.currency_contract):
            return price.decimal_amount
        if price.native_eth_equivalent is not None:
            return price.native_eth_equivalent

        logger.warning(
            f"No ETH equivalent for {price.decimal_amount} {price.symbol} "
            f"({price.currency_contract}), excluding from ETH totals"
        )
        return None
