"""
Pricing for Tensor buy and offer actions.

All amounts are lamports unless a name says otherwise. Every fee term is an
integer basis-point share of the list price, truncated toward zero, so
`total == base_price + marketplace_fee + royalty_fee` holds exactly.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, DecimalException, InvalidOperation, localcontext
from typing import Union

from errors import InvalidAmount

LAMPORTS_PER_SOL = 1_000_000_000
SOL_DECIMALS = 9
MAX_LAMPORTS = 2**64 - 1  # u64
MARKETPLACE_FEE_BPS = 150  # Tensor taker fee, 1.5%
BPS_DENOMINATOR = 10_000
UI_DECIMALS = 4


@dataclass(frozen=True)
class PricingResult:
    base_price: int
    marketplace_fee: int
    royalty_fee: int
    total: int


def bps_share(amount: int, bps: int) -> int:
    product = amount * bps
    share = abs(product) // BPS_DENOMINATOR
    return share if product >= 0 else -share


def compute_total_price(
    price: int,
    royalty_rate_bps: int,
    royalties_applicable: bool,
    fee_bps: int = MARKETPLACE_FEE_BPS,
) -> PricingResult:
    """
    Total a buyer pays for an outright purchase at `price`.

    Inputs are trusted: negative or out-of-range values give consistent but
    meaningless output.
    """
    marketplace_fee = bps_share(price, fee_bps)
    royalty_fee = bps_share(price, royalty_rate_bps) if royalties_applicable else 0
    return PricingResult(
        base_price=price,
        marketplace_fee=marketplace_fee,
        royalty_fee=royalty_fee,
        total=price + marketplace_fee + royalty_fee,
    )


def _to_decimal(value: Union[Decimal, int, float, str]) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(f"Amount is not a number: {value!r}")
    if isinstance(value, str):
        value = value.strip()
    try:
        # str() first so floats like 0.19 keep their shortest repr
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(f"Amount is not a number: {value!r}") from exc


def compute_bid_amount(offer_amount: Union[Decimal, int, float, str]) -> int:
    """Convert an offer in whole SOL to lamports, truncating sub-lamport dust."""
    amount = _to_decimal(offer_amount)
    if not amount.is_finite():
        raise InvalidAmount(f"Amount is not finite: {offer_amount!r}")
    if amount < 0:
        raise InvalidAmount(f"Amount must be non-negative: {offer_amount!r}")
    try:
        with localcontext() as ctx:
            # wide enough that scaling never rounds before the truncation below
            ctx.prec = max(ctx.prec, len(amount.as_tuple().digits) + SOL_DECIMALS)
            lamports = amount.scaleb(SOL_DECIMALS).quantize(Decimal(1), rounding=ROUND_DOWN)
    except DecimalException as exc:
        raise InvalidAmount(f"Amount out of range: {offer_amount!r}") from exc
    if lamports > MAX_LAMPORTS:
        raise InvalidAmount(f"Amount out of range: {offer_amount!r}")
    return int(lamports)


def parse_lamports(value: Union[int, str, None]) -> int:
    """Validate a lamport amount reported by the data service as int or numeric string."""
    if value is None or isinstance(value, bool):
        raise InvalidAmount(f"Lamport amount missing or invalid: {value!r}")
    if isinstance(value, int):
        lamports = value
    else:
        amount = _to_decimal(value)
        if not amount.is_finite() or amount != amount.to_integral_value():
            raise InvalidAmount(f"Lamport amount must be a whole number: {value!r}")
        if abs(amount) > MAX_LAMPORTS:
            raise InvalidAmount(f"Lamport amount out of range: {value!r}")
        lamports = int(amount)
    if lamports < 0:
        raise InvalidAmount(f"Lamport amount must be non-negative: {value!r}")
    if lamports > MAX_LAMPORTS:
        raise InvalidAmount(f"Lamport amount out of range: {value!r}")
    return lamports


def lamports_to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / LAMPORTS_PER_SOL


def format_sol(lamports: int, decimals: int = UI_DECIMALS) -> str:
    """Render lamports as a short SOL string for labels, e.g. 1065000000 -> '1.065'."""
    quantum = Decimal(1).scaleb(-decimals)
    value = lamports_to_sol(lamports).quantize(quantum, rounding=ROUND_DOWN)
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
