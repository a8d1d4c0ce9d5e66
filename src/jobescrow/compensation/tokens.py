"""Supported payment tokens and unit conversion.

Job prices are stored in base units (integers). People type prices in
display units ("12.5 USDC"), so conversion goes through Decimal with
the token's decimals. No floats in finance.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List


@dataclass(frozen=True)
class PaymentToken:
    """A token jobs can be priced in."""
    symbol: str
    address: str
    decimals: int


# Stablecoins on the Polygon Mumbai testnet.
DEFAULT_TOKENS = (
    PaymentToken("USDC", "0x9aa7fEc87CA69695Dd1f879567CcF49F3ba417E2", 6),
    PaymentToken("USDT", "0x2e4A31Ff703212b8e1EcE5C5119fFaa9C89C6dBe", 6),
)


def to_base_units(amount: str, decimals: int) -> int:
    """Convert a display amount like "12.5" into integer base units.

    Raises ValueError if the amount is malformed, negative, or has more
    fractional digits than the token supports.
    """
    try:
        value = Decimal(amount)
    except InvalidOperation:
        raise ValueError(f"Not a valid amount: {amount!r}")
    if not value.is_finite() or value < 0:
        raise ValueError(f"Amount must be a non-negative number, got {amount!r}")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(
            f"Amount {amount} has more than {decimals} decimal places"
        )
    return int(scaled)


def from_base_units(units: int, decimals: int) -> str:
    """Render base units as a display amount, trailing zeros trimmed."""
    value = Decimal(units).scaleb(-decimals)
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


class TokenRegistry:
    """Lookup of supported tokens by symbol or address."""

    def __init__(self, tokens: List[PaymentToken]) -> None:
        self._by_symbol: Dict[str, PaymentToken] = {}
        for token in tokens:
            if token.decimals < 0:
                raise ValueError(f"Token {token.symbol}: decimals must be >= 0")
            key = token.symbol.upper()
            if key in self._by_symbol:
                raise ValueError(f"Duplicate token symbol: {token.symbol}")
            self._by_symbol[key] = token

    @classmethod
    def default(cls) -> TokenRegistry:
        return cls(list(DEFAULT_TOKENS))

    @classmethod
    def from_config_file(cls, path: Path) -> TokenRegistry:
        """Load the ``supported_tokens`` list from marketplace_params.json."""
        params = json.loads(path.read_text(encoding="utf-8"))
        return cls([
            PaymentToken(
                symbol=entry["symbol"],
                address=entry["address"],
                decimals=entry["decimals"],
            )
            for entry in params.get("supported_tokens", [])
        ])

    def get(self, symbol_or_address: str) -> PaymentToken:
        token = self._by_symbol.get(symbol_or_address.upper())
        if token is not None:
            return token
        for candidate in self._by_symbol.values():
            if candidate.address.lower() == symbol_or_address.lower():
                return candidate
        raise ValueError(f"Unsupported payment token: {symbol_or_address}")

    def is_supported(self, symbol_or_address: str) -> bool:
        try:
            self.get(symbol_or_address)
        except ValueError:
            return False
        return True

    def symbols(self) -> list[str]:
        return [t.symbol for t in self._by_symbol.values()]
