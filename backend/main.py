from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from solana.rpc.commitment import Commitment

from errors import InvalidAccount, InvalidAmount, UpstreamUnavailable
from ports import LedgerAccess, MarketDataSource, NotFound
from price_engine import MARKETPLACE_FEE_BPS, compute_bid_amount, compute_total_price, format_sol
from solana_rpc import SolanaLedger
from tensor_api import DEFAULT_TENSOR_API_BASE, TensorClient
from tx_builder import (
    TENSOR_BID_PROGRAM_ID,
    build_bid_transaction,
    build_transfer_transaction,
    envelope_to_dict,
    serialize_transaction,
    to_pubkey,
)


class Settings(BaseSettings):
    solana_rpc: str = "https://api.mainnet-beta.solana.com"
    helius_rpc_url: str = ""
    blockhash_commitment: str = "finalized"
    tensor_api_base: str = DEFAULT_TENSOR_API_BASE
    tensor_api_key: Optional[str] = None
    tensor_timeout: float = 15
    bid_program_id: str = str(TENSOR_BID_PROGRAM_ID)
    marketplace_fee_bps: int = MARKETPLACE_FEE_BPS
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger("tensor_actions")

# Prefer Helius RPC if provided to improve reliability.
rpc_url = settings.helius_rpc_url or settings.solana_rpc
tensor_client = TensorClient(
    base_url=settings.tensor_api_base,
    api_key=settings.tensor_api_key,
    timeout=settings.tensor_timeout,
    logger=logger,
)
ledger = SolanaLedger(rpc_url, commitment=Commitment(settings.blockhash_commitment), logger=logger)

ACTIONS_PREFIX = "/api/tensor/buy-offer-item"
ACTION_VERSION = "2.1.3"
SOLANA_MAINNET_CHAIN_ID = "solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp"
OFFER_PARAMETER = "offerAmount"

app = FastAPI(title="Tensor NFT Actions", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Content-Encoding",
        "Accept-Encoding",
        "X-Accept-Action-Version",
        "X-Accept-Blockchain-Ids",
    ],
    expose_headers=["X-Action-Version", "X-Blockchain-Ids"],
)


@app.middleware("http")
async def action_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Action-Version"] = ACTION_VERSION
    response.headers["X-Blockchain-Ids"] = SOLANA_MAINNET_CHAIN_ID
    return response


def get_market_data() -> MarketDataSource:
    return tensor_client


def get_ledger() -> LedgerAccess:
    return ledger


class ActionParameter(BaseModel):
    name: str
    label: Optional[str] = None
    required: Optional[bool] = None


class LinkedAction(BaseModel):
    label: str
    href: str
    parameters: Optional[List[ActionParameter]] = None


class ActionLinks(BaseModel):
    actions: List[LinkedAction]


class ActionGetResponse(BaseModel):
    type: str = "action"
    icon: Optional[str] = None
    title: str
    description: str
    label: str
    links: ActionLinks


class ActionPostRequest(BaseModel):
    account: str


class ActionPostResponse(BaseModel):
    transaction: str
    message: Optional[str] = None


class ActionError(BaseModel):
    message: str


def action_error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ActionError(message=message).model_dump())


@app.exception_handler(InvalidAccount)
def invalid_account_handler(request: Request, exc: InvalidAccount):
    return action_error(400, f"Invalid account: {exc}")


@app.exception_handler(InvalidAmount)
def invalid_amount_handler(request: Request, exc: InvalidAmount):
    return action_error(400, f"Invalid amount: {exc}")


@app.exception_handler(UpstreamUnavailable)
def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailable):
    logger.warning("upstream_unavailable path=%s error=%s", request.url.path, exc)
    return action_error(502, "Marketplace data is temporarily unavailable, please try again")


@app.on_event("startup")
def startup_event():
    logger.info(
        "tensor_actions_startup rpc=%s tensor_api=%s fee_bps=%s bid_program=%s",
        rpc_url,
        settings.tensor_api_base,
        settings.marketplace_fee_bps,
        settings.bid_program_id,
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/actions.json")
def actions_rules():
    return {"rules": [{"pathPattern": "/api/tensor/**", "apiPath": "/api/tensor/**"}]}


@app.get(
    f"{ACTIONS_PREFIX}/item/{{item_id}}",
    response_model=ActionGetResponse,
    response_model_exclude_none=True,
)
def describe_item(item_id: str, market: MarketDataSource = Depends(get_market_data)):
    lookup = market.get_item(item_id)
    if isinstance(lookup, NotFound):
        return action_error(422, f"Item {item_id} not found")
    item = lookup.value

    actions: List[LinkedAction] = []
    ui_price = None
    description = f"Make an offer on {item.name}."
    listing = item.listing
    if listing is not None and listing.active:
        ui_price = format_sol(listing.price)
        pricing = compute_total_price(
            listing.price, listing.royalty_rate_bps, listing.royalties_applicable, settings.marketplace_fee_bps
        )
        description = f"Buy {item.name} for {format_sol(pricing.total)} SOL including fees, or make an offer."
        actions.append(LinkedAction(label=f"BUY {ui_price} SOL", href=f"{ACTIONS_PREFIX}/item/{item_id}/buy"))
    actions.append(
        LinkedAction(
            label="Make an Offer",
            href=f"{ACTIONS_PREFIX}/item/{item_id}/offer/{{{OFFER_PARAMETER}}}",
            parameters=[ActionParameter(name=OFFER_PARAMETER, label="Enter an offer amount in SOL", required=True)],
        )
    )
    return ActionGetResponse(
        icon=item.image_uri,
        title=item.name,
        description=description,
        label=f"{ui_price} SOL" if ui_price else "Make an Offer",
        links=ActionLinks(actions=actions),
    )


@app.post(
    f"{ACTIONS_PREFIX}/item/{{item_id}}/buy",
    response_model=ActionPostResponse,
    response_model_exclude_none=True,
)
def buy_item(
    item_id: str,
    req: ActionPostRequest,
    market: MarketDataSource = Depends(get_market_data),
    chain: LedgerAccess = Depends(get_ledger),
):
    buyer = to_pubkey(req.account)
    lookup = market.get_listing(item_id)
    if isinstance(lookup, NotFound):
        return action_error(422, f"Item {item_id} is not listed for sale")
    listing = lookup.value
    try:
        pricing = compute_total_price(
            listing.price, listing.royalty_rate_bps, listing.royalties_applicable, settings.marketplace_fee_bps
        )
        blockhash = chain.get_recent_blockhash()
        envelope = build_transfer_transaction(buyer, listing.seller, pricing.total, blockhash)
        transaction = serialize_transaction(envelope)
    except (InvalidAccount, InvalidAmount, UpstreamUnavailable):
        raise
    except Exception as exc:  # noqa: BLE001
        logger.error("buy_tx_failed item=%s buyer=%s error=%s", item_id, buyer, exc, exc_info=True)
        return action_error(500, "Failed to prepare transaction")
    logger.info(
        "buy_tx_built item=%s buyer=%s seller=%s price=%s fee=%s royalty=%s total=%s",
        item_id,
        buyer,
        listing.seller,
        pricing.base_price,
        pricing.marketplace_fee,
        pricing.royalty_fee,
        pricing.total,
    )
    logger.debug("buy_tx_envelope %s", envelope_to_dict(envelope))
    return ActionPostResponse(
        transaction=transaction,
        message=f"Buying for {format_sol(pricing.total)} SOL including fees",
    )


@app.post(
    f"{ACTIONS_PREFIX}/item/{{item_id}}/offer/{{offer_amount}}",
    response_model=ActionPostResponse,
    response_model_exclude_none=True,
)
def offer_item(
    item_id: str,
    offer_amount: str,
    req: ActionPostRequest,
    market: MarketDataSource = Depends(get_market_data),
    chain: LedgerAccess = Depends(get_ledger),
):
    try:
        bid_lamports = compute_bid_amount(offer_amount)
    except InvalidAmount:
        return action_error(400, "Offer amount is not a valid number")
    if bid_lamports == 0:
        return action_error(400, "Offer amount must be greater than zero")
    buyer = to_pubkey(req.account)

    lookup = market.get_item(item_id)
    if isinstance(lookup, NotFound):
        return action_error(422, f"Item {item_id} not found")
    item = lookup.value
    if not item.owner:
        return action_error(422, f"Owner of item {item_id} is unknown")
    try:
        blockhash = chain.get_recent_blockhash()
        envelope = build_bid_transaction(
            target=item.onchain_id,
            owner=item.owner,
            buyer=buyer,
            price=bid_lamports,
            recent_blockhash=blockhash,
            program_id=settings.bid_program_id,
        )
        transaction = serialize_transaction(envelope)
    except (InvalidAccount, InvalidAmount, UpstreamUnavailable):
        raise
    except Exception as exc:  # noqa: BLE001
        logger.error("offer_tx_failed item=%s buyer=%s error=%s", item_id, buyer, exc, exc_info=True)
        return action_error(500, "Failed to prepare transaction")
    logger.info("offer_tx_built item=%s buyer=%s owner=%s lamports=%s", item_id, buyer, item.owner, bid_lamports)
    logger.debug("offer_tx_envelope %s", envelope_to_dict(envelope))
    return ActionPostResponse(
        transaction=transaction,
        message=f"Offering {format_sol(bid_lamports)} SOL for {item.name}",
    )
