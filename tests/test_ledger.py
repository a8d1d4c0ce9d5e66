"""Tests for the in-memory token ledger — proves transfers are all-or-nothing."""

import pytest

from jobescrow.compensation.ledger import (
    ESCROW_ACCOUNT,
    REASON_DUPLICATE_REFERENCE,
    REASON_INSUFFICIENT_FUNDS,
    REASON_INVALID_AMOUNT,
    REASON_UNAVAILABLE,
    InMemoryLedger,
    TokenLedger,
    Transfer,
)


def _funded() -> InMemoryLedger:
    ledger = InMemoryLedger()
    ledger.mint("alice", 1_000, "USDC")
    return ledger


class TestProtocol:
    def test_in_memory_ledger_satisfies_protocol(self) -> None:
        assert isinstance(InMemoryLedger(), TokenLedger)

    def test_default_escrow_account(self) -> None:
        assert InMemoryLedger().escrow_account == ESCROW_ACCOUNT


class TestTransfers:
    def test_mint_and_balance(self) -> None:
        ledger = _funded()
        assert ledger.balance_of("alice", "USDC") == 1_000
        assert ledger.balance_of("alice", "USDT") == 0

    def test_mint_rejects_non_positive(self) -> None:
        with pytest.raises(ValueError):
            InMemoryLedger().mint("alice", 0, "USDC")

    def test_custody_moves_into_escrow(self) -> None:
        ledger = _funded()
        assert ledger.custody(100, "USDC", "alice", reference="r1").ok
        assert ledger.balance_of("alice", "USDC") == 900
        assert ledger.balance_of(ESCROW_ACCOUNT, "USDC") == 100

    def test_insufficient_funds_changes_nothing(self) -> None:
        ledger = _funded()
        result = ledger.transfer("alice", "bob", 1_001, "USDC", reference="r1")
        assert not result.ok
        assert result.reason == REASON_INSUFFICIENT_FUNDS
        assert ledger.balance_of("alice", "USDC") == 1_000
        assert ledger.applied_references() == []

    def test_tokens_are_separate(self) -> None:
        ledger = _funded()
        result = ledger.transfer("alice", "bob", 1, "USDT", reference="r1")
        assert result.reason == REASON_INSUFFICIENT_FUNDS

    @pytest.mark.parametrize("amount", [0, -5])
    def test_invalid_amount(self, amount: int) -> None:
        result = _funded().transfer("alice", "bob", amount, "USDC", reference="r1")
        assert result.reason == REASON_INVALID_AMOUNT

    def test_duplicate_reference_rejected(self) -> None:
        ledger = _funded()
        assert ledger.transfer("alice", "bob", 10, "USDC", reference="r1").ok
        result = ledger.transfer("alice", "bob", 10, "USDC", reference="r1")
        assert result.reason == REASON_DUPLICATE_REFERENCE
        assert ledger.balance_of("bob", "USDC") == 10

    def test_failed_reference_can_be_retried(self) -> None:
        ledger = InMemoryLedger()
        assert not ledger.transfer("alice", "bob", 10, "USDC", reference="r1").ok
        ledger.mint("alice", 10, "USDC")
        assert ledger.transfer("alice", "bob", 10, "USDC", reference="r1").ok

    def test_unavailable_ledger_fails_every_call(self) -> None:
        ledger = _funded()
        ledger.set_available(False)
        result = ledger.custody(100, "USDC", "alice", reference="r1")
        assert result.reason == REASON_UNAVAILABLE
        assert ledger.balance_of("alice", "USDC") == 1_000


class TestBatch:
    def test_batch_applies_every_leg(self) -> None:
        ledger = _funded()
        ledger.custody(100, "USDC", "alice", reference="post")
        result = ledger.transfer_batch([
            Transfer(ESCROW_ACCOUNT, "fees", 2, "USDC"),
            Transfer(ESCROW_ACCOUNT, "bob", 98, "USDC"),
        ], reference="settle")
        assert result.ok
        assert ledger.balance_of("fees", "USDC") == 2
        assert ledger.balance_of("bob", "USDC") == 98
        assert ledger.balance_of(ESCROW_ACCOUNT, "USDC") == 0

    def test_batch_is_all_or_nothing(self) -> None:
        ledger = _funded()
        ledger.custody(100, "USDC", "alice", reference="post")
        result = ledger.transfer_batch([
            Transfer(ESCROW_ACCOUNT, "fees", 2, "USDC"),
            Transfer(ESCROW_ACCOUNT, "bob", 99, "USDC"),
        ], reference="settle")
        assert result.reason == REASON_INSUFFICIENT_FUNDS
        assert ledger.balance_of("fees", "USDC") == 0
        assert ledger.balance_of(ESCROW_ACCOUNT, "USDC") == 100

    def test_empty_batch_rejected(self) -> None:
        assert _funded().transfer_batch([], reference="r").reason == REASON_INVALID_AMOUNT

    def test_supply_is_conserved(self) -> None:
        ledger = _funded()
        ledger.custody(300, "USDC", "alice", reference="post")
        ledger.transfer_batch([
            Transfer(ESCROW_ACCOUNT, "fees", 6, "USDC"),
            Transfer(ESCROW_ACCOUNT, "bob", 294, "USDC"),
        ], reference="settle")
        assert ledger.total_supply("USDC") == 1_000
