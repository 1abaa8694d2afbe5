# config.py
# Configuration. Values come from the process environment, then from .env.
import os
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

from dotenv import load_dotenv
from web3 import Web3

from errors import ConfigurationError
from fees import FeePolicy

load_dotenv()

# Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Log file path (empty string disables file logging)
LOG_FILE = os.getenv("LOG_FILE", "contribute_log.txt")

# Number of connection attempts per RPC endpoint at startup
RPC_TRY = int(os.getenv("RPC_TRY", "3"))

# Seconds between "still pending" warnings while waiting for a receipt
TX_TIMEOUT = int(os.getenv("TX_TIMEOUT", "120"))

# Gas limit for the contribute() call
GAS_LIMIT = 300_000

# Path to the contract ABI
CONTRIBUTE_ABI_PATH = os.getenv("CONTRIBUTE_ABI_PATH", os.path.join(os.path.dirname(__file__), "abis", "contribute_abi.json"))

# Wallet sources, tried in this order: JSON file, Excel file, PRIVATE_KEY
WALLETS_FILE = os.getenv("WALLETS_FILE", "wallets.json")
EXCEL_PATH = os.getenv("EXCEL_PATH", "wallets.xlsx")

# Route each wallet through the proxy given in its wallet entry (True/False)
USE_PROXY = os.getenv("USE_PROXY", "false").lower() in ("1", "true", "yes")

# Seconds between stats reports while running (0 disables)
STATS_INTERVAL = float(os.getenv("STATS_INTERVAL", "5"))

# Seconds between pending-count checks while draining after an interrupt
DRAIN_POLL_INTERVAL = 1.0

# Extra delay per wallet index added to the poll interval (milliseconds)
WALLET_STAGGER_MS = 50

# Avalanche C-Chain. 0 disables the chain id check
EXPECTED_CHAIN_ID = int(os.getenv("EXPECTED_CHAIN_ID", "43114"))

# Native balance kept aside for gas on top of the contribution (in AVAX)
MIN_GAS_RESERVE = Decimal("0.01")

DEFAULT_RPC_URL = "https://api.avax.network/ext/bc/C/rpc"


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    contract_address: str
    contribution_wei: int
    start_time: Optional[datetime]
    poll_interval: float  # seconds
    max_gas_price_wei: int
    gas_multiplier: Decimal
    max_attempts: int
    concurrent_transactions: int
    priority_fee_wei: int
    escalation_step: Decimal = Decimal("0.05")
    escalation_cycle: int = 10
    wait_for_pending_on_success: bool = False

    def fee_policy(self) -> FeePolicy:
        return FeePolicy(
            gas_multiplier=self.gas_multiplier,
            max_gas_price=self.max_gas_price_wei,
            priority_fee=self.priority_fee_wei,
            escalation_step=self.escalation_step,
            escalation_cycle=self.escalation_cycle,
        )


def _decimal(env: Mapping[str, str], key: str, default: str) -> Decimal:
    raw = env.get(key) or default
    try:
        value = Decimal(raw.strip())
    except (InvalidOperation, AttributeError):
        raise ConfigurationError(f"{key} must be a decimal number, got {raw!r}")
    if not value.is_finite() or value < 0:
        raise ConfigurationError(f"{key} must be a non-negative number, got {raw!r}")
    return value


def _int(env: Mapping[str, str], key: str, default: str, minimum: int = 0) -> int:
    raw = env.get(key) or default
    try:
        value = int(raw.strip())
    except (ValueError, AttributeError):
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigurationError(f"{key} must be >= {minimum}, got {value}")
    return value


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if not raw:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y")


def parse_start_time(raw: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 start time. Naive values are taken as local time."""
    if not raw or not raw.strip():
        return None
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ConfigurationError(f"START_TIME must be ISO-8601 (e.g. 2024-12-31T23:59:59), got {raw!r}")
    return parsed.astimezone()


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build and validate the run settings from a flat key-value record."""
    env = os.environ if env is None else env

    contract_address = (env.get("CONTRACT_ADDRESS") or "").strip()
    if not contract_address:
        raise ConfigurationError("CONTRACT_ADDRESS must be set in the .env file")
    if not Web3.is_address(contract_address):
        raise ConfigurationError(f"CONTRACT_ADDRESS is not a valid address: {contract_address}")

    amount = _decimal(env, "AVAX_AMOUNT", "0.1")
    if amount == 0:
        raise ConfigurationError("AVAX_AMOUNT must be greater than zero")

    gas_multiplier = _decimal(env, "GAS_MULTIPLIER", "1.2")
    if gas_multiplier == 0:
        raise ConfigurationError("GAS_MULTIPLIER must be greater than zero")

    return Settings(
        rpc_url=(env.get("AVALANCHE_RPC_URL") or DEFAULT_RPC_URL).strip(),
        contract_address=Web3.to_checksum_address(contract_address),
        contribution_wei=Web3.to_wei(amount, "ether"),
        start_time=parse_start_time(env.get("START_TIME")),
        poll_interval=_int(env, "POLL_INTERVAL", "1000", minimum=1) / 1000,
        max_gas_price_wei=Web3.to_wei(_decimal(env, "MAX_GAS_PRICE", "100"), "gwei"),
        gas_multiplier=gas_multiplier,
        max_attempts=_int(env, "MAX_ATTEMPTS", "0"),
        concurrent_transactions=_int(env, "CONCURRENT_TRANSACTIONS", "3", minimum=1),
        priority_fee_wei=Web3.to_wei(_decimal(env, "PRIORITY_FEE", "2"), "gwei"),
        escalation_step=_decimal(env, "GAS_ESCALATION_STEP", "0.05"),
        escalation_cycle=_int(env, "GAS_ESCALATION_CYCLE", "10"),
        wait_for_pending_on_success=_bool(env, "WAIT_FOR_PENDING_ON_SUCCESS", False),
    )
