"""Interactive .env writer."""

import getpass
import os
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Optional

from dotenv import dotenv_values
from web3 import Web3

import config
from diagnostics import check_configuration
from errors import ConfigurationError
from utils import normalize_private_key

ENV_SECTIONS = [
    ("Avalanche network", ["AVALANCHE_RPC_URL"]),
    ("Wallet", ["PRIVATE_KEY"]),
    ("Contract", ["CONTRACT_ADDRESS"]),
    ("Transaction", ["AVAX_AMOUNT", "START_TIME", "POLL_INTERVAL", "MAX_GAS_PRICE"]),
    ("Advanced options", ["GAS_MULTIPLIER", "MAX_ATTEMPTS", "CONCURRENT_TRANSACTIONS", "PRIORITY_FEE"]),
]

ENV_COMMENTS = {
    "AVAX_AMOUNT": "Amount in AVAX to contribute",
    "START_TIME": "ISO-8601 time when the whitelist opens (empty = start immediately)",
    "POLL_INTERVAL": "Milliseconds between attempts",
    "MAX_GAS_PRICE": "Maximum gas price in nAVAX (gwei)",
    "GAS_MULTIPLIER": "Multiplier for the network gas price",
    "MAX_ATTEMPTS": "Maximum attempts per wallet (0 = unlimited)",
    "CONCURRENT_TRANSACTIONS": "Pending transactions allowed per wallet",
    "PRIORITY_FEE": "Priority fee in nAVAX (gwei)",
}


def is_valid_private_key(key: str) -> bool:
    return normalize_private_key(key) is not None


def is_valid_address(address: str) -> bool:
    return bool(address) and Web3.is_address(address.strip())


def is_valid_amount(amount: str) -> bool:
    try:
        value = Decimal(amount.strip())
    except (InvalidOperation, AttributeError):
        return False
    return value.is_finite() and value > 0


def is_valid_date(value: str) -> bool:
    if not value:
        return True
    try:
        config.parse_start_time(value)
    except ConfigurationError:
        return False
    return True


def render_env(values: Dict[str, str]) -> str:
    lines = []
    for title, keys in ENV_SECTIONS:
        lines.append(f"# {title}")
        for key in keys:
            if key in ENV_COMMENTS:
                lines.append(f"# {ENV_COMMENTS[key]}")
            lines.append(f"{key}={values.get(key, '')}")
        lines.append("")
    return "\n".join(lines)


def _ask(input_fn: Callable[[str], str], question: str, default: str = "",
         validator: Optional[Callable[[str], bool]] = None, error: str = "Invalid value, please try again.") -> str:
    while True:
        answer = input_fn(question).strip() or default
        if validator is None or validator(answer):
            return answer
        print(error)


def collect_values(input_fn: Callable[[str], str] = input,
                   secret_fn: Callable[[str], str] = getpass.getpass) -> Dict[str, str]:
    values = {}

    print("The RPC URL decides how you reach the Avalanche network. For time critical")
    print("contributions a private RPC (Infura, Alchemy, QuickNode) is more reliable.")
    values["AVALANCHE_RPC_URL"] = _ask(input_fn, f"Avalanche RPC URL [{config.DEFAULT_RPC_URL}]: ",
                                       default=config.DEFAULT_RPC_URL)

    values["PRIVATE_KEY"] = normalize_private_key(_ask(
        secret_fn, "Wallet private key (input is hidden): ",
        validator=is_valid_private_key, error="Invalid private key, please try again.",
    ))
    values["CONTRACT_ADDRESS"] = Web3.to_checksum_address(_ask(
        input_fn, "Contract address: ",
        validator=is_valid_address, error="Invalid contract address, please try again.",
    ))
    values["AVAX_AMOUNT"] = _ask(input_fn, "AVAX amount to contribute [0.1]: ", default="0.1",
                                 validator=is_valid_amount, error="Invalid AVAX amount, please try again.")

    now = datetime.now().astimezone()
    print(f"\nLocal time zone: UTC{now.strftime('%z')}, current time: {now.isoformat(timespec='seconds')}")
    print("Format: YYYY-MM-DDTHH:MM:SSZ for UTC, or add an offset such as +03:00.")
    print("Without Z or an offset the time is read as local time.")
    values["START_TIME"] = _ask(input_fn, "Start time (empty to start immediately): ",
                                validator=is_valid_date, error="Invalid date format, please try again.")

    values["POLL_INTERVAL"] = _ask(input_fn, "Poll interval in milliseconds [1000]: ", default="1000",
                                   validator=str.isdigit)
    values["MAX_GAS_PRICE"] = _ask(input_fn, "Maximum gas price in gwei [100]: ", default="100",
                                   validator=is_valid_amount)

    print("\nAdvanced options (press Enter for defaults):")
    values["GAS_MULTIPLIER"] = _ask(input_fn, "Gas price multiplier [1.2]: ", default="1.2",
                                    validator=is_valid_amount)
    values["MAX_ATTEMPTS"] = _ask(input_fn, "Maximum attempts per wallet, 0 for unlimited [10]: ", default="10",
                                  validator=str.isdigit)
    values["CONCURRENT_TRANSACTIONS"] = _ask(input_fn, "Concurrent transactions per wallet [3]: ", default="3",
                                             validator=lambda v: v.isdigit() and int(v) >= 1)
    values["PRIORITY_FEE"] = _ask(input_fn, "Priority fee in gwei [2]: ", default="2",
                                  validator=is_valid_amount)
    return values


def run_setup(env_path: str = ".env", input_fn: Callable[[str], str] = input,
              secret_fn: Callable[[str], str] = getpass.getpass) -> bool:
    """Writes env_path from prompted values. Returns False if the user kept an existing file."""
    print("AVAX contribution setup\n")
    if os.path.exists(env_path):
        overwrite = input_fn(f"{env_path} already exists. Overwrite it? (y/n): ").strip().lower()
        if overwrite != "y":
            print(f"Setup cancelled, {env_path} was not modified.")
            return False

    values = collect_values(input_fn, secret_fn)
    with open(env_path, "w", encoding="utf-8") as f:
        f.write(render_env(values))
    print(f"\n{env_path} created.")
    return True


async def offer_configuration_check(env_path: str = ".env", input_fn: Callable[[str], str] = input) -> bool:
    answer = input_fn("Run the configuration check now? (y/n): ").strip().lower()
    if answer != "y":
        print("You can run it later with: python main.py check")
        return True
    # the process environment was loaded before the file existed
    env = dict(os.environ)
    env.update({k: v for k, v in dotenv_values(env_path).items() if v is not None})
    return await check_configuration(env)
