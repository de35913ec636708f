"""
Unit tests for tx_builder.py: transfer and bid envelopes, serialization.
"""

import base64

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from errors import InvalidAccount, InvalidAmount
from tx_builder import (
    MAX_U64,
    SYS_PROGRAM_ID,
    TENSOR_BID_PROGRAM_ID,
    BidLayout,
    bid_state_pda,
    build_bid_transaction,
    build_transfer_transaction,
    compile_message,
    envelope_to_dict,
    serialize_transaction,
    sighash,
    to_pubkey,
)


def transfer_lamports(data: bytes) -> int:
    assert int.from_bytes(data[:4], "little") == 2
    return int.from_bytes(data[4:12], "little")


# =============================================================================
# Account parsing
# =============================================================================


class TestToPubkey:
    def test_accepts_string_and_pubkey(self):
        pk = Keypair().pubkey()
        assert to_pubkey(str(pk)) == pk
        assert to_pubkey(pk) is pk

    @pytest.mark.parametrize(
        "bad",
        ["", "not-a-valid-address", "0x742d35Cc6634C0532925a3b844Bc9e7595f8fE2d", "1111", None, 12345],
    )
    def test_rejects_malformed(self, bad):
        with pytest.raises(InvalidAccount):
            to_pubkey(bad)


# =============================================================================
# Transfer
# =============================================================================


class TestBuildTransferTransaction:
    def test_single_transfer_instruction(self, buyer, seller, blockhash):
        envelope = build_transfer_transaction(buyer, seller, 1_065_000, blockhash)

        assert len(envelope.instructions) == 1
        ix = envelope.instructions[0]
        assert ix.program_id == SYS_PROGRAM_ID
        assert transfer_lamports(bytes(ix.data)) == 1_065_000
        assert [meta.pubkey for meta in ix.accounts] == [Pubkey.from_string(buyer), Pubkey.from_string(seller)]
        assert ix.accounts[0].is_signer and ix.accounts[0].is_writable
        assert not ix.accounts[1].is_signer and ix.accounts[1].is_writable
        assert envelope.payer == Pubkey.from_string(buyer)
        assert envelope.recent_blockhash == blockhash

    def test_zero_amount_allowed(self, buyer, seller, blockhash):
        envelope = build_transfer_transaction(buyer, seller, 0, blockhash)
        assert transfer_lamports(bytes(envelope.instructions[0].data)) == 0

    def test_malformed_recipient(self, buyer, blockhash):
        with pytest.raises(InvalidAccount):
            build_transfer_transaction(buyer, "not-a-valid-address", 1_000, blockhash)

    def test_malformed_payer(self, seller, blockhash):
        with pytest.raises(InvalidAccount):
            build_transfer_transaction("xyz", seller, 1_000, blockhash)

    @pytest.mark.parametrize("bad", [-1, 1.5, "100", True, None, MAX_U64 + 1])
    def test_invalid_amount(self, buyer, seller, blockhash, bad):
        with pytest.raises(InvalidAmount):
            build_transfer_transaction(buyer, seller, bad, blockhash)

    def test_idempotent(self, buyer, seller, blockhash):
        first = build_transfer_transaction(buyer, seller, 42_000, blockhash)
        second = build_transfer_transaction(buyer, seller, 42_000, blockhash)
        assert first == second
        assert serialize_transaction(first) == serialize_transaction(second)


# =============================================================================
# Bid
# =============================================================================


class TestBuildBidTransaction:
    def test_bid_instruction_layout(self, buyer, seller, blockhash):
        target = Keypair().pubkey()
        envelope = build_bid_transaction(target, seller, buyer, 190_000_000, blockhash)

        assert len(envelope.instructions) == 1
        ix = envelope.instructions[0]
        buyer_pk = Pubkey.from_string(buyer)
        assert ix.program_id == TENSOR_BID_PROGRAM_ID
        assert bytes(ix.data)[:8] == sighash("bid")
        parsed = BidLayout.parse(bytes(ix.data)[8:])
        assert parsed.price == 190_000_000
        assert parsed.expire_in_sec is None
        assert [meta.pubkey for meta in ix.accounts] == [
            buyer_pk,
            target,
            Pubkey.from_string(seller),
            bid_state_pda(buyer_pk, target),
            SYS_PROGRAM_ID,
        ]
        assert ix.accounts[0].is_signer
        assert envelope.payer == buyer_pk

    def test_custom_program_and_expiry(self, buyer, seller, blockhash):
        program = Keypair().pubkey()
        target = Keypair().pubkey()
        envelope = build_bid_transaction(
            target, seller, buyer, 5, blockhash, program_id=str(program), expire_in_sec=3600
        )
        ix = envelope.instructions[0]
        assert ix.program_id == program
        assert BidLayout.parse(bytes(ix.data)[8:]).expire_in_sec == 3600
        assert ix.accounts[3].pubkey == bid_state_pda(Pubkey.from_string(buyer), target, program)

    def test_malformed_target(self, buyer, seller, blockhash):
        with pytest.raises(InvalidAccount):
            build_bid_transaction("bogus", seller, buyer, 1, blockhash)

    def test_negative_price(self, buyer, seller, blockhash):
        with pytest.raises(InvalidAmount):
            build_bid_transaction(Keypair().pubkey(), seller, buyer, -5, blockhash)


# =============================================================================
# Serialization
# =============================================================================


class TestSerialization:
    def test_unsigned_versioned_transaction(self, buyer, seller, blockhash):
        envelope = build_transfer_transaction(buyer, seller, 7_777, blockhash)
        tx = VersionedTransaction.from_bytes(base64.b64decode(serialize_transaction(envelope)))

        assert tx.message.recent_blockhash == Hash.from_string(blockhash)
        assert tx.message.account_keys[0] == Pubkey.from_string(buyer)
        assert len(tx.signatures) == 1
        assert tx.signatures[0] == Signature.default()
        assert transfer_lamports(bytes(tx.message.instructions[0].data)) == 7_777

    def test_compile_rejects_garbage_blockhash(self, buyer, seller):
        envelope = build_transfer_transaction(buyer, seller, 1, "not-a-hash")
        with pytest.raises(ValueError):
            compile_message(envelope)

    def test_envelope_to_dict(self, buyer, seller, blockhash):
        envelope = build_transfer_transaction(buyer, seller, 1, blockhash)
        data = envelope_to_dict(envelope)
        assert data["payer"] == buyer
        assert data["recent_blockhash"] == blockhash
        assert data["instructions"][0]["program_id"] == str(SYS_PROGRAM_ID)
        assert [k["pubkey"] for k in data["instructions"][0]["keys"]] == [buyer, seller]
