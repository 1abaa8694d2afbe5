import asyncio

import pytest
from eth_account import Account

from config import load_settings
from contribute import build_wallet_states, check_balances
from errors import ConfigurationError
from fakes import ETHER, KEYS, FakeChainClient, make_submitter, make_wallet


def test_wallet_states_skip_duplicates():
    rows = [
        {"private_key": KEYS[0], "label": "A", "proxy": None},
        {"private_key": KEYS[0], "label": "A again", "proxy": None},
        {"private_key": KEYS[1], "label": "B", "proxy": None},
    ]

    states = build_wallet_states(rows)

    assert [state.label for state, _ in states] == ["A", "B"]
    assert states[1][0].address == Account.from_key(KEYS[1]).address
    assert all(proxy is None for _, proxy in states)


def test_wallet_states_need_a_usable_key():
    with pytest.raises(ConfigurationError):
        build_wallet_states([{"private_key": "0x00", "label": "Broken"}])


def test_balance_check_counts_funded_wallets(base_env):
    settings = load_settings(base_env)
    submitters = [
        make_submitter(FakeChainClient(balance=ETHER), wallet=make_wallet(0)),
        make_submitter(FakeChainClient(balance=settings.contribution_wei), wallet=make_wallet(1)),
        make_submitter(FakeChainClient(balance=0), wallet=make_wallet(2)),
    ]

    assert asyncio.run(check_balances(submitters, settings)) == 1
