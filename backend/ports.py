"""
Interfaces the action routes expect from their collaborators.

Lookups return `Found(value)` or `NotFound(item_id)` so callers must handle a
missing item or listing explicitly.
"""

from dataclasses import dataclass
from typing import Generic, Optional, Protocol, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Listing:
    price: int  # lamports, net of fees
    seller: str
    royalty_rate_bps: int
    royalties_applicable: bool
    active: bool = True


@dataclass(frozen=True)
class NftItem:
    item_id: str
    onchain_id: str
    name: str
    image_uri: Optional[str]
    owner: Optional[str]
    listing: Optional[Listing] = None


@dataclass(frozen=True)
class Found(Generic[T]):
    value: T


@dataclass(frozen=True)
class NotFound:
    item_id: str


ItemLookup = Union[Found[NftItem], NotFound]
ListingLookup = Union[Found[Listing], NotFound]


class MarketDataSource(Protocol):
    """Marketplace data service (item metadata and listings)."""

    def get_item(self, item_id: str) -> ItemLookup:
        ...

    def get_listing(self, item_id: str) -> ListingLookup:
        """NotFound when the item is missing or not actively listed."""
        ...


class LedgerAccess(Protocol):
    def get_recent_blockhash(self) -> str:
        ...
