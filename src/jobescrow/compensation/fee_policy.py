"""Fee policy — the platform's cut of every settled job.

Fixed when the marketplace starts and never changed by any job
operation. Both settlement paths (client confirmation and auto-release)
compute their payout through the same ``split`` so the math cannot
diverge between them.

Arithmetic:
    fee        = amount * fee_percent // 100   (floor)
    remainder  = amount - fee
    fee + remainder == amount                   (always, exactly)

The rounding remainder stays with the worker.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

DEFAULT_FEE_PERCENT = 2
DEFAULT_FEE_WALLET = "0x000000000000000000000000000000000000dead"


@dataclass(frozen=True)
class FeePolicy:
    """Immutable fee configuration injected into the escrow engine."""

    fee_percent: int
    fee_wallet: str

    def __post_init__(self) -> None:
        if isinstance(self.fee_percent, bool) or not isinstance(self.fee_percent, int):
            raise ValueError(
                f"fee_percent must be an integer, got {self.fee_percent!r}"
            )
        if not (0 <= self.fee_percent <= 100):
            raise ValueError(
                f"fee_percent must be in [0, 100], got {self.fee_percent}"
            )
        if not self.fee_wallet or not self.fee_wallet.strip():
            raise ValueError("fee_wallet is required")

    def split(self, amount: int) -> Tuple[int, int]:
        """Split ``amount`` into (fee, worker remainder)."""
        if amount < 0:
            raise ValueError(f"Cannot split a negative amount: {amount}")
        fee = amount * self.fee_percent // 100
        return fee, amount - fee

    @classmethod
    def from_config_file(cls, path: Path) -> FeePolicy:
        """Load from the ``fee_policy`` block of marketplace_params.json."""
        params = json.loads(path.read_text(encoding="utf-8"))
        block = params["fee_policy"]
        return cls(
            fee_percent=block["fee_percent"],
            fee_wallet=block["fee_wallet"],
        )
