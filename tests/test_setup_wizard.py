import asyncio

from web3 import Web3

from setup_wizard import (
    is_valid_address,
    is_valid_amount,
    is_valid_date,
    is_valid_private_key,
    offer_configuration_check,
    render_env,
    run_setup,
)
from fakes import CONTRACT, KEYS


def scripted(answers):
    answers = iter(answers)
    return lambda prompt="": next(answers)


def test_validators():
    assert is_valid_private_key(KEYS[0])
    assert is_valid_private_key(KEYS[0][2:])
    assert not is_valid_private_key("0x123")

    assert is_valid_address(CONTRACT)
    assert not is_valid_address("")
    assert not is_valid_address("0xnothex")

    assert is_valid_amount("0.1")
    assert not is_valid_amount("0")
    assert not is_valid_amount("-2")
    assert not is_valid_amount("ten")

    assert is_valid_date("")
    assert is_valid_date("2024-12-31T23:59:59Z")
    assert not is_valid_date("31/12/2024")


def test_render_env_puts_comments_on_their_own_lines():
    text = render_env({"AVAX_AMOUNT": "0.5", "MAX_ATTEMPTS": "10"})
    lines = text.splitlines()

    assert "AVAX_AMOUNT=0.5" in lines
    assert lines[lines.index("AVAX_AMOUNT=0.5") - 1] == "# Amount in AVAX to contribute"
    assert "MAX_ATTEMPTS=10" in lines
    assert "START_TIME=" in lines


def test_run_setup_writes_env_file(tmp_path):
    env_path = tmp_path / ".env"
    answers = [
        "",                         # RPC URL, default
        "bad address",
        CONTRACT,
        "",                         # amount, default
        "2030-01-01T00:00:00Z",
        "500",
        "",                         # max gas price
        "",                         # multiplier
        "5",
        "",                         # concurrency
        "",                         # priority fee
    ]

    written = run_setup(str(env_path), input_fn=scripted(answers), secret_fn=scripted(["nope", KEYS[0][2:]]))

    lines = env_path.read_text().splitlines()
    assert written
    assert f"PRIVATE_KEY={KEYS[0]}" in lines
    assert f"CONTRACT_ADDRESS={Web3.to_checksum_address(CONTRACT)}" in lines
    assert "AVALANCHE_RPC_URL=https://api.avax.network/ext/bc/C/rpc" in lines
    assert "AVAX_AMOUNT=0.1" in lines
    assert "START_TIME=2030-01-01T00:00:00Z" in lines
    assert "POLL_INTERVAL=500" in lines
    assert "MAX_ATTEMPTS=5" in lines
    assert "CONCURRENT_TRANSACTIONS=3" in lines


def test_run_setup_keeps_existing_file(tmp_path):
    env_path = tmp_path / ".env"
    env_path.write_text("AVAX_AMOUNT=1\n")

    written = run_setup(str(env_path), input_fn=scripted(["n"]), secret_fn=scripted([]))

    assert not written
    assert env_path.read_text() == "AVAX_AMOUNT=1\n"


def test_configuration_check_can_be_declined(tmp_path, capsys):
    ok = asyncio.run(offer_configuration_check(str(tmp_path / ".env"), input_fn=scripted(["n"])))

    assert ok
    assert "python main.py check" in capsys.readouterr().out
