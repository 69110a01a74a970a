"""Pytest configuration and fixtures."""

import pytest

PRICEFEED_ENV = ("COINGECKO_API_KEY", "PRICEFEED_OFFLINE", "PRICEFEED_HTTP_TIMEOUT")


@pytest.fixture(autouse=True)
def clean_pricefeed_env(monkeypatch):
    """Keep the host's provider settings out of every test."""
    for name in PRICEFEED_ENV:
        monkeypatch.delenv(name, raising=False)
