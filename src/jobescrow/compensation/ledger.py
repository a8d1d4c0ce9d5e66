"""Token ledger — the custodian contract the escrow engine settles through.

The escrow engine never moves balances itself. It asks a ledger to
take custody of a job's price at posting time and to pay the escrow
out at settlement time. Any custodian satisfying ``TokenLedger`` can
be plugged in; ``InMemoryLedger`` is the reference implementation used
by the service, the CLI and the tests.

Ledger contract:
- Every call completes or fails synchronously and reports which.
- A failed call leaves every balance untouched.
- ``transfer_batch`` is all-or-nothing: each leg is reserved first, and
  balances are only written once every leg has been reserved.
- Each call carries a caller-chosen reference. A reference already
  applied is rejected, so a caller retrying after a lost reply cannot
  pay twice.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol, Tuple, runtime_checkable


ESCROW_ACCOUNT = "escrow"

REASON_INSUFFICIENT_FUNDS = "insufficient_funds"
REASON_INVALID_AMOUNT = "invalid_amount"
REASON_DUPLICATE_REFERENCE = "duplicate_reference"
REASON_UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of a ledger call."""
    ok: bool
    reason: str = ""

    @staticmethod
    def success() -> LedgerResult:
        return LedgerResult(ok=True)

    @staticmethod
    def failure(reason: str) -> LedgerResult:
        return LedgerResult(ok=False, reason=reason)


@dataclass(frozen=True)
class Transfer:
    """One leg of a (possibly multi-leg) payment."""
    sender: str
    recipient: str
    amount: int
    token: str


@runtime_checkable
class TokenLedger(Protocol):
    """Contract for token custodians.

    Adding a new custodian = implement this Protocol. Zero changes to
    the escrow engine.
    """

    @property
    def escrow_account(self) -> str:
        """Account that holds funds in custody on the marketplace's behalf."""
        ...

    def balance_of(self, account: str, token: str) -> int:
        """Current balance of ``account`` in ``token`` base units."""
        ...

    def transfer(
        self, sender: str, recipient: str, amount: int, token: str, reference: str,
    ) -> LedgerResult:
        """Move ``amount`` from sender to recipient."""
        ...

    def custody(
        self, amount: int, token: str, sender: str, reference: str,
    ) -> LedgerResult:
        """Move ``amount`` from sender into escrow custody."""
        ...

    def transfer_batch(
        self, transfers: List[Transfer], reference: str,
    ) -> LedgerResult:
        """Apply every transfer or none of them."""
        ...


class InMemoryLedger:
    """Reference custodian holding balances in memory.

    Usage:
        ledger = InMemoryLedger()
        ledger.mint("alice", 1_000, "USDC")
        ledger.custody(100, "USDC", "alice", reference="job-1:custody")
        ledger.transfer_batch([
            Transfer(ledger.escrow_account, "fees", 2, "USDC"),
            Transfer(ledger.escrow_account, "bob", 98, "USDC"),
        ], reference="job-1:settle")
    """

    def __init__(
        self,
        balances: Optional[Dict[Tuple[str, str], int]] = None,
        escrow_account: str = ESCROW_ACCOUNT,
        references: Optional[Iterable[str]] = None,
    ) -> None:
        # (token, account) -> balance
        self._balances: Dict[Tuple[str, str], int] = dict(balances or {})
        self._escrow_account = escrow_account
        self._references: set[str] = set(references or ())
        self._lock = threading.Lock()
        self._available = True

    @property
    def escrow_account(self) -> str:
        return self._escrow_account

    def balance_of(self, account: str, token: str) -> int:
        return self._balances.get((token, account), 0)

    def mint(self, account: str, amount: int, token: str) -> None:
        """Credit ``account`` out of thin air (funding, tests, faucets)."""
        if amount <= 0:
            raise ValueError(f"Mint amount must be positive, got {amount}")
        with self._lock:
            key = (token, account)
            self._balances[key] = self._balances.get(key, 0) + amount

    def set_available(self, available: bool) -> None:
        """Simulate the custodian going offline (every call then fails)."""
        self._available = available

    def balances(self) -> Dict[Tuple[str, str], int]:
        """Copy of all non-zero balances."""
        return {k: v for k, v in self._balances.items() if v}

    def applied_references(self) -> list[str]:
        return sorted(self._references)

    def total_supply(self, token: str) -> int:
        return sum(v for (t, _), v in self._balances.items() if t == token)

    def transfer(
        self, sender: str, recipient: str, amount: int, token: str, reference: str,
    ) -> LedgerResult:
        return self.transfer_batch(
            [Transfer(sender, recipient, amount, token)], reference,
        )

    def custody(
        self, amount: int, token: str, sender: str, reference: str,
    ) -> LedgerResult:
        return self.transfer(sender, self._escrow_account, amount, token, reference)

    def transfer_batch(
        self, transfers: List[Transfer], reference: str,
    ) -> LedgerResult:
        with self._lock:
            if not self._available:
                return LedgerResult.failure(REASON_UNAVAILABLE)
            if reference in self._references:
                return LedgerResult.failure(REASON_DUPLICATE_REFERENCE)
            if not transfers or any(t.amount <= 0 for t in transfers):
                return LedgerResult.failure(REASON_INVALID_AMOUNT)

            # Phase 1: reserve every leg against a scratch copy.
            pending = self._reserve(transfers)
            if pending is None:
                return LedgerResult.failure(REASON_INSUFFICIENT_FUNDS)

            # Phase 2: commit all legs at once.
            self._balances.update(pending)
            self._references.add(reference)
            return LedgerResult.success()

    def _reserve(
        self, transfers: Iterable[Transfer],
    ) -> Optional[Dict[Tuple[str, str], int]]:
        """Return post-transfer balances for touched keys, or None if short."""
        pending: Dict[Tuple[str, str], int] = {}
        for leg in transfers:
            src = (leg.token, leg.sender)
            dst = (leg.token, leg.recipient)
            available = pending.get(src, self._balances.get(src, 0))
            if available < leg.amount:
                return None
            pending[src] = available - leg.amount
            pending[dst] = pending.get(dst, self._balances.get(dst, 0)) + leg.amount
        return pending
