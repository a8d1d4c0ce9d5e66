#!/usr/bin/env python3
"""Marketplace invariant checks against the configuration artifacts."""

import json
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = ROOT / "config"
PARAMS_FILENAME = "marketplace_params.json"


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_fee_policy(block: dict, errors: list[str]) -> None:
    """Fee percent is an integer in [0, 100]; the wallet is named."""
    percent = block.get("fee_percent")
    if isinstance(percent, bool) or not isinstance(percent, int):
        errors.append(f"fee_policy.fee_percent must be an integer, got {percent!r}")
    elif not (0 <= percent <= 100):
        errors.append(f"fee_policy.fee_percent must be in [0, 100], got {percent}")
    wallet = block.get("fee_wallet")
    if not isinstance(wallet, str) or not wallet.strip():
        errors.append("fee_policy.fee_wallet must be a non-empty string")


def check_tokens(tokens: list, errors: list[str]) -> None:
    if not tokens:
        errors.append("supported_tokens must list at least one token")
        return
    seen_symbols: set[str] = set()
    seen_addresses: set[str] = set()
    for entry in tokens:
        symbol = str(entry.get("symbol", "")).upper()
        address = str(entry.get("address", "")).lower()
        decimals = entry.get("decimals")
        if not symbol:
            errors.append(f"Token entry missing symbol: {entry}")
        elif symbol in seen_symbols:
            errors.append(f"Duplicate token symbol: {symbol}")
        if not address:
            errors.append(f"Token {symbol} missing address")
        elif address in seen_addresses:
            errors.append(f"Duplicate token address: {address}")
        if isinstance(decimals, bool) or not isinstance(decimals, int) or decimals < 0:
            errors.append(f"Token {symbol} decimals must be a non-negative integer")
        seen_symbols.add(symbol)
        seen_addresses.add(address)


def check(config_dir: Path = CONFIG_DIR) -> int:
    params_path = config_dir / PARAMS_FILENAME
    if not params_path.exists():
        print(f"Invariant check failed: missing {params_path}")
        return 1
    params = load_json(params_path)
    errors: list[str] = []

    if "fee_policy" not in params:
        errors.append("fee_policy block is missing")
    else:
        check_fee_policy(params["fee_policy"], errors)
    check_tokens(params.get("supported_tokens", []), errors)

    if errors:
        print("Invariant check failed:")
        for error in errors:
            print(f"  - {error}")
        return 1

    print("Invariant checks passed.")
    return 0


if __name__ == "__main__":
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else CONFIG_DIR
    raise SystemExit(check(target))
