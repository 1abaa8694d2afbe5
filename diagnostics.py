"""Pre-flight checks: configuration, network, wallets, contract, gas settings."""

import os
import time
from datetime import datetime
from decimal import Decimal
from typing import Mapping, Optional

from eth_account import Account
from web3 import Web3

import config
from chain import ChainClient
from errors import ConfigurationError
from fees import compute_fee
from utils import get_w3, load_abi, load_wallets

REQUIRED_ENV_VARS = ["CONTRACT_ADDRESS", "AVAX_AMOUNT", "MAX_GAS_PRICE"]
LOW_BALANCE_WARNING = Web3.to_wei(Decimal("0.1"), "ether")


def _ok(message: str) -> None:
    print(f"  [OK]    {message}")


def _warn(message: str) -> None:
    print(f"  [WARN]  {message}")


def _fail(message: str) -> None:
    print(f"  [ERROR] {message}")


def _client_for(env: Mapping[str, str]) -> ChainClient:
    rpc_url = env.get("AVALANCHE_RPC_URL") or config.DEFAULT_RPC_URL
    # the contract address only matters for submissions; any valid address works here
    address = env.get("CONTRACT_ADDRESS") or "0x0000000000000000000000000000000000000000"
    if not Web3.is_address(address):
        address = "0x0000000000000000000000000000000000000000"
    return ChainClient(get_w3(rpc_url), Web3.to_checksum_address(address), load_abi())


async def check_configuration(env: Optional[Mapping[str, str]] = None, client=None) -> bool:
    """Prints a configuration report. Returns False if any error was found."""
    env = os.environ if env is None else env
    has_errors = False

    print("\n===== CONFIGURATION CHECK =====")
    print("\n1. Environment variables:")
    for var in REQUIRED_ENV_VARS:
        if env.get(var):
            _ok(f"{var} is set")
        else:
            _fail(f"{var} is not set in .env")
            has_errors = True

    settings = None
    try:
        settings = config.load_settings(env)
    except ConfigurationError as e:
        _fail(str(e))
        has_errors = True

    raw_start = env.get("START_TIME")
    if not raw_start:
        _warn("START_TIME is not set, the contribution starts immediately")
    elif settings is not None and settings.start_time is not None:
        remaining = (settings.start_time - datetime.now().astimezone()).total_seconds()
        if remaining < 0:
            _warn(f"START_TIME {settings.start_time.isoformat()} has already passed")
        else:
            minutes = int(remaining // 60)
            _ok(f"START_TIME {settings.start_time.isoformat()} ({minutes // 60}h {minutes % 60}m from now)")

    wallets = []
    try:
        wallets = load_wallets(env=env)
        _ok(f"{len(wallets)} wallet(s) configured")
    except ConfigurationError as e:
        _fail(str(e))
        has_errors = True

    print("\n2. Network:")
    if client is None:
        client = _client_for(env)
    try:
        chain_id = await client.chain_id()
    except Exception as e:
        _fail(f"Could not connect to the RPC: {e}")
        has_errors = True
        chain_id = None
    if chain_id is not None:
        _ok(f"Connected (chainId: {chain_id})")
        if config.EXPECTED_CHAIN_ID and chain_id != config.EXPECTED_CHAIN_ID:
            _warn(f"Not connected to the expected chain (expected {config.EXPECTED_CHAIN_ID}, got {chain_id})")

        print("\n3. Wallets:")
        for row in wallets:
            address = Account.from_key(row["private_key"]).address
            try:
                balance = await client.get_balance(address)
            except Exception as e:
                _fail(f"{row['label']} ({address}): balance check failed: {e}")
                has_errors = True
                continue
            shown = f"{row['label']} ({address}): {Web3.from_wei(balance, 'ether')} AVAX"
            if balance == 0:
                _fail(f"{shown} - no balance to pay for gas")
                has_errors = True
            elif settings is not None and settings.contribution_wei > balance:
                _fail(f"{shown} - less than the contribution amount")
                has_errors = True
            elif balance < LOW_BALANCE_WARNING:
                _warn(f"{shown} - low balance, gas may not be covered")
            else:
                _ok(shown)

        if settings is not None:
            print("\n4. Contract:")
            try:
                code = await client.get_code(settings.contract_address)
            except Exception as e:
                _fail(f"Could not read the contract: {e}")
                has_errors = True
            else:
                if not code:
                    _fail(f"No code at {settings.contract_address}, check the address")
                    has_errors = True
                else:
                    _ok(f"Contract found at {settings.contract_address}")

    print("\n5. Time zone:")
    now = datetime.now().astimezone()
    print(f"  System time: {now.isoformat()}")
    print(f"  Time zone: {time.tzname[time.localtime().tm_isdst > 0]} (UTC{now.strftime('%z')})")

    print("\n===== RESULT =====")
    if has_errors:
        print("Errors were found in the configuration, fix the issues above.")
    else:
        print("Configuration is valid.")
    return not has_errors


async def check_gas_settings(env: Optional[Mapping[str, str]] = None, client=None) -> bool:
    """Shows network fee data and the fee parameters the first attempt would use."""
    env = os.environ if env is None else env
    try:
        settings = config.load_settings(env)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return False
    if client is None:
        client = _client_for(env)

    print(f"Connecting to {settings.rpc_url}...")
    try:
        fee_data = await client.get_fee_data()
    except Exception as e:
        print(f"ERROR while reading fee data: {e}")
        return False

    print("\nNetwork gas data:")
    print(f"  Gas price: {Web3.from_wei(fee_data.gas_price, 'gwei')} gwei")
    if fee_data.max_fee_per_gas is not None:
        print(f"  Max fee per gas: {Web3.from_wei(fee_data.max_fee_per_gas, 'gwei')} gwei")
    if fee_data.max_priority_fee_per_gas is not None:
        print(f"  Max priority fee per gas: {Web3.from_wei(fee_data.max_priority_fee_per_gas, 'gwei')} gwei")

    fee = compute_fee(fee_data, 1, settings.fee_policy())
    print("\nFirst attempt would use:")
    print(f"  Final gas price: {Web3.from_wei(fee.price, 'gwei')} gwei")
    if not fee.is_fee_market:
        print("  Network has no fee market, legacy gasPrice transactions will be sent")
        return True

    print(f"  maxFeePerGas: {Web3.from_wei(fee.max_fee_per_gas, 'gwei')} gwei")
    print(f"  maxPriorityFeePerGas: {Web3.from_wei(fee.max_priority_fee_per_gas, 'gwei')} gwei")
    if fee.price < settings.priority_fee_wei:
        print("  Gas price is below the priority fee, maxFeePerGas raised to twice the priority fee")
    return True
