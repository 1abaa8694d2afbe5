import os

# must be set before config is imported
os.environ["LOG_FILE"] = ""
os.environ["USE_PROXY"] = "false"

import pytest

from fakes import CONTRACT, KEYS


@pytest.fixture
def base_env():
    return {
        "CONTRACT_ADDRESS": CONTRACT,
        "AVAX_AMOUNT": "0.5",
        "MAX_GAS_PRICE": "100",
        "PRIVATE_KEY": KEYS[0],
    }


@pytest.fixture
def isolated_dir(tmp_path, monkeypatch):
    """Runs the test from an empty directory so no wallets file is picked up."""
    monkeypatch.chdir(tmp_path)
    return tmp_path
