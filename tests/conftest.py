"""Shared fixtures for the job escrow test suite."""

import pytest


@pytest.fixture(autouse=True)
def _clean_fee_env(monkeypatch) -> None:
    # load_dotenv writes into os.environ; monkeypatch restores it afterwards.
    monkeypatch.delenv("FEE_PERCENT", raising=False)
    monkeypatch.delenv("FEE_WALLET", raising=False)
