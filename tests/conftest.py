"""
Shared fixtures: fake collaborators injected through FastAPI dependency overrides.
"""

from typing import Dict, Optional

import pytest
from fastapi.testclient import TestClient
from solders.hash import Hash
from solders.keypair import Keypair

from errors import UpstreamUnavailable
from ports import Found, Listing, NftItem, NotFound


# =============================================================================
# Fakes
# =============================================================================


class FakeMarket:
    def __init__(self, items: Optional[Dict[str, NftItem]] = None):
        self.items = items or {}
        self.calls = []

    def get_item(self, item_id: str):
        self.calls.append(("get_item", item_id))
        item = self.items.get(item_id)
        return Found(item) if item else NotFound(item_id)

    def get_listing(self, item_id: str):
        self.calls.append(("get_listing", item_id))
        item = self.items.get(item_id)
        if item is None or item.listing is None or not item.listing.active:
            return NotFound(item_id)
        return Found(item.listing)


class FakeLedger:
    def __init__(self, blockhash: str, error: Optional[Exception] = None):
        self.blockhash = blockhash
        self.error = error
        self.calls = 0

    def get_recent_blockhash(self) -> str:
        self.calls += 1
        if self.error:
            raise self.error
        return self.blockhash


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def blockhash() -> str:
    return str(Hash.new_unique())


@pytest.fixture
def buyer() -> str:
    return str(Keypair().pubkey())


@pytest.fixture
def seller() -> str:
    return str(Keypair().pubkey())


@pytest.fixture
def listed_item(seller) -> NftItem:
    mint = str(Keypair().pubkey())
    return NftItem(
        item_id=mint,
        onchain_id=mint,
        name="Mad Lad #1234",
        image_uri="https://example.com/madlad.png",
        owner=seller,
        listing=Listing(
            price=1_000_000_000,
            seller=seller,
            royalty_rate_bps=500,
            royalties_applicable=True,
        ),
    )


@pytest.fixture
def unlisted_item() -> NftItem:
    mint = str(Keypair().pubkey())
    return NftItem(
        item_id=mint,
        onchain_id=mint,
        name="Unlisted #7",
        image_uri=None,
        owner=str(Keypair().pubkey()),
    )


@pytest.fixture
def market(listed_item, unlisted_item) -> FakeMarket:
    return FakeMarket({listed_item.item_id: listed_item, unlisted_item.item_id: unlisted_item})


@pytest.fixture
def ledger(blockhash) -> FakeLedger:
    return FakeLedger(blockhash)


@pytest.fixture
def client(market, ledger):
    from main import app, get_ledger, get_market_data

    app.dependency_overrides[get_market_data] = lambda: market
    app.dependency_overrides[get_ledger] = lambda: ledger
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def failing_ledger():
    return FakeLedger("", error=UpstreamUnavailable("rpc down"))
