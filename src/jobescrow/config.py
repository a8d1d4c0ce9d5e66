"""Marketplace configuration — fee policy and supported tokens.

Loaded once at startup from ``config/marketplace_params.json``. The
fee settings can be overridden by FEE_PERCENT and FEE_WALLET, taken
from the process environment or a ``.env`` file at the project root.

The result is frozen. Nothing in the running marketplace can change
the fee after initialisation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from jobescrow.compensation.fee_policy import (
    DEFAULT_FEE_PERCENT,
    DEFAULT_FEE_WALLET,
    FeePolicy,
)
from jobescrow.compensation.tokens import TokenRegistry

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_DIR = ROOT / "config"
PARAMS_FILENAME = "marketplace_params.json"


@dataclass(frozen=True)
class MarketplaceConfig:
    """Immutable startup configuration."""
    fee_policy: FeePolicy
    tokens: TokenRegistry

    @classmethod
    def load(
        cls,
        config_dir: Path = DEFAULT_CONFIG_DIR,
        env_file: Optional[Path] = None,
    ) -> MarketplaceConfig:
        """Read the params file, then apply environment overrides.

        A missing params file falls back to the built-in defaults
        (2% fee to the burn address, USDC and USDT).
        """
        load_dotenv(env_file if env_file is not None else ROOT / ".env")

        params_path = config_dir / PARAMS_FILENAME
        if params_path.exists():
            fee_policy = FeePolicy.from_config_file(params_path)
            tokens = TokenRegistry.from_config_file(params_path)
        else:
            fee_policy = FeePolicy(DEFAULT_FEE_PERCENT, DEFAULT_FEE_WALLET)
            tokens = TokenRegistry.default()

        percent = os.getenv("FEE_PERCENT")
        wallet = os.getenv("FEE_WALLET")
        if percent is not None or wallet is not None:
            try:
                fee_percent = int(percent) if percent is not None else fee_policy.fee_percent
            except ValueError:
                raise ValueError(f"FEE_PERCENT must be an integer, got {percent!r}")
            fee_policy = FeePolicy(
                fee_percent=fee_percent,
                fee_wallet=wallet if wallet is not None else fee_policy.fee_wallet,
            )
        return cls(fee_policy=fee_policy, tokens=tokens)
