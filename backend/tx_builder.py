import base64
import hashlib
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from borsh_construct import CStruct, Option, U64
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from errors import InvalidAccount, InvalidAmount

SYS_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
TENSOR_BID_PROGRAM_ID = Pubkey.from_string("TB1Dqt8JeKQh7RLDzfYDJsq8KS4fS2yt87avRjyRxMv")
BID_STATE_SEED = b"bid_state"
MAX_U64 = 2**64 - 1

BidLayout = CStruct(
    "price" / U64,
    "expire_in_sec" / Option(U64),
)

AccountLike = Union[Pubkey, str]


@dataclass(frozen=True)
class TransactionEnvelope:
    """Unsigned, unsent instructions anchored to one blockhash. Order is execution order."""

    instructions: Tuple[Instruction, ...]
    payer: Pubkey
    recent_blockhash: str


def sighash(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def to_pubkey(value: AccountLike) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    if not isinstance(value, str):
        raise InvalidAccount(f"Account must be a base58 string, got {type(value).__name__}")
    try:
        return Pubkey.from_string(value.strip())
    except Exception as exc:  # noqa: BLE001
        raise InvalidAccount(f"Invalid account {value!r}: {exc}") from exc


def check_lamports(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"Lamport amount must be an integer, got {amount!r}")
    if amount < 0 or amount > MAX_U64:
        raise InvalidAmount(f"Lamport amount out of range: {amount}")
    return amount


def bid_state_pda(buyer: Pubkey, target: Pubkey, program_id: Pubkey = TENSOR_BID_PROGRAM_ID) -> Pubkey:
    return Pubkey.find_program_address([BID_STATE_SEED, bytes(buyer), bytes(target)], program_id)[0]


def encode_bid(price: int, expire_in_sec: Optional[int] = None) -> bytes:
    data = BidLayout.build({"price": price, "expire_in_sec": expire_in_sec})
    return sighash("bid") + data


def build_system_transfer_ix(sender: Pubkey, recipient: Pubkey, lamports: int) -> Instruction:
    # SystemProgram transfer: instruction = 2 (u32 LE) + lamports (u64 LE)
    data = (2).to_bytes(4, "little") + lamports.to_bytes(8, "little")
    accounts = [
        AccountMeta(pubkey=sender, is_signer=True, is_writable=True),
        AccountMeta(pubkey=recipient, is_signer=False, is_writable=True),
    ]
    return Instruction(program_id=SYS_PROGRAM_ID, data=data, accounts=accounts)


def build_bid_ix(
    buyer: Pubkey,
    target: Pubkey,
    owner: Pubkey,
    price: int,
    program_id: Pubkey = TENSOR_BID_PROGRAM_ID,
    expire_in_sec: Optional[int] = None,
) -> Instruction:
    # Five-account `bid` layout (buyer, mint, owner, bid state, system program).
    # Not checked against Tensor's published IDL; point BID_PROGRAM_ID at a program
    # with this interface.
    accounts = [
        AccountMeta(pubkey=buyer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=target, is_signer=False, is_writable=False),
        AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=bid_state_pda(buyer, target, program_id), is_signer=False, is_writable=True),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=program_id, data=encode_bid(price, expire_in_sec), accounts=accounts)


def build_transfer_transaction(
    payer: AccountLike,
    recipient: AccountLike,
    amount: int,
    recent_blockhash: str,
) -> TransactionEnvelope:
    """Single transfer of `amount` lamports from payer to recipient."""
    payer_pk = to_pubkey(payer)
    recipient_pk = to_pubkey(recipient)
    lamports = check_lamports(amount)
    instructions = (build_system_transfer_ix(payer_pk, recipient_pk, lamports),)
    return TransactionEnvelope(instructions=instructions, payer=payer_pk, recent_blockhash=recent_blockhash)


def build_bid_transaction(
    target: AccountLike,
    owner: AccountLike,
    buyer: AccountLike,
    price: int,
    recent_blockhash: str,
    program_id: AccountLike = TENSOR_BID_PROGRAM_ID,
    expire_in_sec: Optional[int] = None,
) -> TransactionEnvelope:
    """
    Bid of `price` lamports by `buyer` on the NFT `target` currently held by `owner`.

    The bid program escrows the price in the bid state PDA; the buyer pays fees.
    """
    target_pk = to_pubkey(target)
    owner_pk = to_pubkey(owner)
    buyer_pk = to_pubkey(buyer)
    program_pk = to_pubkey(program_id)
    lamports = check_lamports(price)
    if expire_in_sec is not None and not 0 < expire_in_sec <= MAX_U64:
        raise ValueError(f"expire_in_sec out of range: {expire_in_sec}")
    instructions = (build_bid_ix(buyer_pk, target_pk, owner_pk, lamports, program_pk, expire_in_sec),)
    return TransactionEnvelope(instructions=instructions, payer=buyer_pk, recent_blockhash=recent_blockhash)


def compile_message(envelope: TransactionEnvelope) -> MessageV0:
    try:
        blockhash = Hash.from_string(envelope.recent_blockhash)
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Unusable blockhash {envelope.recent_blockhash!r}: {exc}") from exc
    return MessageV0.try_compile(envelope.payer, list(envelope.instructions), [], blockhash)


def unsigned_transaction(envelope: TransactionEnvelope) -> VersionedTransaction:
    message = compile_message(envelope)
    sigs = [Signature.default() for _ in range(message.header.num_required_signatures)]
    return VersionedTransaction.populate(message, sigs)


def serialize_transaction(envelope: TransactionEnvelope) -> str:
    return base64.b64encode(bytes(unsigned_transaction(envelope))).decode()


def instruction_to_dict(ix: Instruction) -> dict:
    return {
        "program_id": str(ix.program_id),
        "keys": [
            {
                "pubkey": str(k.pubkey),
                "is_signer": k.is_signer,
                "is_writable": k.is_writable,
            }
            for k in ix.accounts
        ],
        "data": base64.b64encode(ix.data).decode(),
    }


def envelope_to_dict(envelope: TransactionEnvelope) -> dict:
    instructions: List[dict] = [instruction_to_dict(ix) for ix in envelope.instructions]
    return {
        "payer": str(envelope.payer),
        "recent_blockhash": envelope.recent_blockhash,
        "instructions": instructions,
    }
