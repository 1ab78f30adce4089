"""Data models for marketplace activity."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel

from ..exceptions import ConfigurationError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class ActivityType(str, Enum):
    """Normalized activity type."""
    MINT = "mint"
    SALE = "sale"
    TRANSFER = "transfer"
    ASK = "ask"
    BID = "bid"
    ASK_CANCEL = "ask_cancel"
    BID_CANCEL = "bid_cancel"


# Provider activity type -> normalized type
PROVIDER_TYPE_MAP = {
    "TRADE": ActivityType.SALE,
    "MINT": ActivityType.MINT,
    "TRANSFER": ActivityType.TRANSFER,
    "BURN": ActivityType.TRANSFER,
    "ASK_CREATED": ActivityType.ASK,
    "BID_CREATED": ActivityType.BID,
    "ASK_CANCELLED": ActivityType.ASK_CANCEL,
    "BID_CANCELLED": ActivityType.BID_CANCEL,
}

# Normalized type -> provider filter value
PROVIDER_FILTER_MAP = {
    ActivityType.SALE: "TRADE",
    ActivityType.MINT: "MINT",
    ActivityType.TRANSFER: "TRANSFER",
    ActivityType.ASK: "ASK_CREATED",
    ActivityType.BID: "BID_CREATED",
    ActivityType.ASK_CANCEL: "ASK_CANCELLED",
    ActivityType.BID_CANCEL: "BID_CANCELLED",
}

TRADING_TYPES = (ActivityType.SALE, ActivityType.MINT)
HISTORY_TYPES = (ActivityType.SALE, ActivityType.MINT, ActivityType.TRANSFER)


class Price(BaseModel):
    """Price of an activity in its own currency, plus USD and ETH conversions."""
    currency_contract: str = ZERO_ADDRESS
    symbol: str = "ETH"
    decimals: int = 18
    raw_amount: str = "0"
    decimal_amount: float = 0.0
    usd_amount: float = 0.0
    native_eth_equivalent: Optional[float] = None

    class Config:
        frozen = True


class BidWindow(BaseModel):
    """Validity window and parties of an open bid."""
    valid_from: int
    valid_until: int
    maker: str
    taker: str = ZERO_ADDRESS

    class Config:
        frozen = True


class Activity(BaseModel):
    """One marketplace event, immutable once fetched."""
    activity_id: str = ""
    type: ActivityType
    from_address: str = ZERO_ADDRESS
    to_address: str = ZERO_ADDRESS
    price: Optional[Price] = None
    timestamp: int  # unix seconds
    tx_hash: str = ""
    log_index: int = 0
    batch_index: int = 0
    token_id: str = ""
    contract: str = ""
    token_name: Optional[str] = None
    fill_source: Optional[str] = None
    bid: Optional[BidWindow] = None

    class Config:
        frozen = True

    @property
    def key(self) -> str:
        """Stable identity used to de-duplicate activities across pages and polls."""
        if self.activity_id:
            return self.activity_id
        return f"{self.type.value}:{self.tx_hash.lower()}:{self.log_index}:{self.batch_index}:{self.token_id}"

    def is_actionable_bid(self, now: float, safety_margin_seconds: float) -> bool:
        """A bid is actionable only while it stays valid beyond the safety margin."""
        if self.bid is None:
            return False
        return self.bid.valid_until > now + safety_margin_seconds


class ResolvedActivity(BaseModel):
    """An activity with its true economic counterparties."""
    activity: Activity
    resolved_buyer: str
    resolved_seller: str
    proxy_resolved: bool = False

    class Config:
        frozen = True

    @property
    def type(self) -> ActivityType:
        return self.activity.type

    @property
    def timestamp(self) -> int:
        return self.activity.timestamp

    @property
    def tx_hash(self) -> str:
        return self.activity.tx_hash

    @property
    def price(self) -> Optional[Price]:
        return self.activity.price

    @property
    def fill_source(self) -> Optional[str]:
        return self.activity.fill_source


class ActivityPage(BaseModel):
    """One page of the activity feed.

    ``incomplete`` distinguishes "the fetch gave up" from "the provider has
    no more data"; both can come back with no activities.
    """
    activities: Tuple[Activity, ...] = ()
    continuation: Optional[str] = None
    incomplete: bool = False
    requested_limit: int = 0
    attempts: int = 1

    class Config:
        frozen = True


class ActivityHistory(BaseModel):
    """Activities collected from a multi-page walk."""
    activities: Tuple[Activity, ...] = ()
    incomplete: bool = False
    pages_fetched: int = 0

    class Config:
        frozen = True


class Holdings(BaseModel):
    """Snapshot of the ENS names a wallet currently holds."""
    names: Tuple[str, ...] = ()
    incomplete: bool = False

    class Config:
        frozen = True


@dataclass(frozen=True)
class ActivityScope:
    """What an activity request is about: one token, a whole collection, or one wallet."""
    contract: Optional[str] = None
    token_id: Optional[str] = None
    wallet: Optional[str] = None

    def __post_init__(self):
        if self.wallet:
            if self.contract or self.token_id:
                raise ConfigurationError("Activity scope must be either a token or a wallet, not both")
            return
        if not self.contract:
            raise ConfigurationError("Activity scope requires a contract or a wallet")

    @classmethod
    def for_token(cls, contract: str, token_id: str) -> 'ActivityScope':
        if not contract or not token_id:
            raise ConfigurationError("Token activity scope requires both a contract and a token id")
        return cls(contract=contract.lower(), token_id=str(token_id))

    @classmethod
    def for_collection(cls, contract: str) -> 'ActivityScope':
        if not contract:
            raise ConfigurationError("Collection activity scope requires a contract")
        return cls(contract=contract.lower())

    @classmethod
    def for_wallet(cls, wallet: str) -> 'ActivityScope':
        if not wallet:
            raise ConfigurationError("Wallet activity scope requires an address")
        return cls(wallet=wallet.lower())

    @property
    def is_wallet(self) -> bool:
        return self.wallet is not None

    @property
    def is_collection(self) -> bool:
        return self.wallet is None and self.token_id is None

    def describe(self) -> str:
        if self.wallet:
            return f"wallet {self.wallet[:10]}..."
        if self.token_id is None:
            return f"collection {self.contract[:10]}..."
        return f"token {self.contract[:10]}...:{self.token_id[:12]}"
