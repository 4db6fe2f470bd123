"""Pytest configuration: block the web3 plugin, shorten polling sleeps, isolate env."""

import pytest

# web3.tools.pytest_ethereum is auto-registered by web3 and breaks collection
pytest_plugins = []


def pytest_configure(config):
    config.pluginmanager.set_blocked("web3.tools.pytest_ethereum")


@pytest.fixture(autouse=True)
def fast_sleep(monkeypatch):
    """Confirmation polling and retry backoff sleep for at most 1ms in tests."""
    import time as time_module
    original_sleep = time_module.sleep

    def short_sleep(seconds):
        original_sleep(min(seconds, 0.001) if seconds > 0.1 else seconds)

    monkeypatch.setattr(time_module, "sleep", short_sleep)


@pytest.fixture(autouse=True)
def no_swap_env(monkeypatch):
    """Keep a developer's real swap settings out of the tests."""
    for key in ("RPC", "WALLET_PRIVATE_KEY", "SWAP_ROUTER_ADDRESS", "INDEXER_API_KEY", "INDEXER_URL"):
        monkeypatch.delenv(key, raising=False)
