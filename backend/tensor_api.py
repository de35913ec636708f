"""
Tensor REST client used as the marketplace data service.

Only reads item metadata and listings; transactions are built locally.
"""

from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from errors import InvalidAmount, UpstreamUnavailable
from ports import Found, ItemLookup, Listing, ListingLookup, NftItem, NotFound
from price_engine import parse_lamports

DEFAULT_TENSOR_API_BASE = "https://api.mainnet.tensordev.io"
# Token standards whose transfers enforce creator royalties on-chain.
ROYALTY_ENFORCED_STANDARDS = {
    "programmablenonfungible",
    "programmablenonfungibleedition",
}


def create_http_session(retries: int = 3, backoff_factor: float = 0.5) -> requests.Session:
    session = requests.Session()
    retry_strategy = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=["GET"],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def _first(data: dict, *keys: str) -> Any:
    for key in keys:
        val = data.get(key)
        if val is not None:
            return val
    return None


def royalties_enforced(token_standard: Optional[str]) -> bool:
    norm = str(token_standard or "").replace("_", "").replace(" ", "").lower()
    return norm in ROYALTY_ENFORCED_STANDARDS


def parse_listing(mint: dict) -> Optional[Listing]:
    """Build a Listing from a Tensor mint payload, or None when the mint is not listed."""
    raw = mint.get("listing") or {}
    if not isinstance(raw, dict) or raw.get("price") in (None, ""):
        return None
    seller = _first(raw, "seller", "owner")
    if not seller:
        return None
    royalty_bps = _first(mint, "royaltyBps", "sellRoyaltyFeeBPS", "sellerFeeBasisPoints") or 0
    return Listing(
        price=parse_lamports(raw["price"]),
        seller=str(seller),
        royalty_rate_bps=parse_lamports(royalty_bps),
        royalties_applicable=royalties_enforced(_first(mint, "tokenStandard", "token_standard")),
        active=raw.get("active", True) is not False,
    )


def parse_item(item_id: str, mint: dict) -> NftItem:
    onchain_id = _first(mint, "onchainId", "mint", "mintAddress") or item_id
    return NftItem(
        item_id=item_id,
        onchain_id=str(onchain_id),
        name=str(_first(mint, "name") or onchain_id),
        image_uri=_first(mint, "imageUri", "image_uri", "image"),
        owner=_first(mint, "owner"),
        listing=parse_listing(mint),
    )


class TensorClient:
    def __init__(
        self,
        base_url: str = DEFAULT_TENSOR_API_BASE,
        api_key: Optional[str] = None,
        timeout: float = 15,
        session: Optional[requests.Session] = None,
        logger=None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or create_http_session()
        self.logger = logger

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-tensor-api-key"] = self.api_key
        return headers

    def _fetch_mint(self, item_id: str) -> Optional[dict]:
        url = f"{self.base_url}/api/v1/mint"
        try:
            resp = self.session.get(url, headers=self._headers(), params={"mints": item_id}, timeout=self.timeout)
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            if self.logger:
                self.logger.warning("tensor_request_failed item=%s error=%s", item_id, exc, exc_info=True)
            raise UpstreamUnavailable(f"Tensor lookup failed for {item_id}") from exc
        mints = data
        if isinstance(data, dict):
            mints = data.get("mints") or data.get("data") or ([data] if data.get("mint") or data.get("onchainId") else [])
        if not isinstance(mints, list):
            raise UpstreamUnavailable(f"Unexpected Tensor payload for {item_id}")
        for mint in mints:
            if isinstance(mint, dict) and item_id in (mint.get("mint"), mint.get("onchainId")):
                return mint
        return None

    def get_item(self, item_id: str) -> ItemLookup:
        mint = self._fetch_mint(item_id)
        if mint is None:
            return NotFound(item_id)
        try:
            return Found(parse_item(item_id, mint))
        except InvalidAmount as exc:
            if self.logger:
                self.logger.warning("tensor_payload_invalid item=%s error=%s", item_id, exc)
            raise UpstreamUnavailable(f"Tensor returned an unusable listing for {item_id}") from exc

    def get_listing(self, item_id: str) -> ListingLookup:
        lookup = self.get_item(item_id)
        if isinstance(lookup, NotFound):
            return lookup
        listing = lookup.value.listing
        if listing is None or not listing.active:
            return NotFound(item_id)
        return Found(listing)
