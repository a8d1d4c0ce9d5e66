"""Compensation subsystem — escrow engine, fee policy, token ledger.

The escrow engine is the only code that moves money. It talks to the
token custodian exclusively through the TokenLedger protocol.
"""

from jobescrow.compensation.escrow import EscrowEngine
from jobescrow.compensation.fee_policy import FeePolicy
from jobescrow.compensation.ledger import InMemoryLedger, TokenLedger, Transfer

__all__ = [
    "EscrowEngine",
    "FeePolicy",
    "InMemoryLedger",
    "TokenLedger",
    "Transfer",
]
