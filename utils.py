import json
import os
import pandas as pd
from web3 import Web3, HTTPProvider
from typing import List, Dict, Any, Optional, Mapping
from requests import Session
import config
from errors import ConfigurationError
from logger import get_logger

logger = get_logger("Utils", config.LOG_LEVEL)

HEX_DIGITS = set("0123456789abcdefABCDEF")


def shorten_address(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}"


def normalize_private_key(pk: Any) -> Optional[str]:
    """Returns the key as '0x' + 64 hex chars, or None if it is not a valid key."""
    if isinstance(pk, (int, float)):
        pk = str(pk)
    if not isinstance(pk, str):
        return None
    pk = pk.strip()
    if not pk.startswith("0x"):
        pk = "0x" + pk
    if len(pk) != 66 or not all(c in HEX_DIGITS for c in pk[2:]):
        return None
    return pk


def _wallets_from_frame(df: pd.DataFrame, source: str) -> List[Dict[str, Any]]:
    """Validates wallet rows row-by-row and returns only valid entries.
    Accepted columns: private_key / privateKey, optional label, optional proxy.
    """
    df = df.rename(columns=lambda c: str(c).strip())
    df = df.rename(columns={"privateKey": "private_key"})
    df.columns = df.columns.str.lower()
    if "private_key" not in df.columns:
        raise ConfigurationError(f"{source} must contain a private_key (or privateKey) column")
    if config.USE_PROXY and "proxy" not in df.columns:
        raise ConfigurationError(f"{source} must contain a proxy column when USE_PROXY is enabled")

    for column in ("label", "proxy"):
        if column in df.columns:
            df[column] = df[column].astype(object).where(pd.notnull(df[column]), None)

    valid_rows = []
    for idx, row in df.iterrows():
        pk = normalize_private_key(row["private_key"])
        if pk is None:
            logger.error(f"{source} entry {idx + 1}: invalid private key, skipping")
            continue

        label = row.get("label") if "label" in df.columns else None
        proxy = row.get("proxy") if "proxy" in df.columns else None
        if config.USE_PROXY and not proxy:
            logger.error(f"{source} entry {idx + 1}: proxy required, skipping")
            continue

        valid_rows.append({
            "private_key": pk,
            "label": str(label) if label else f"Wallet {len(valid_rows) + 1}",
            "proxy": proxy,
        })
    return valid_rows


def load_wallets(
    wallets_file: str = config.WALLETS_FILE,
    excel_path: str = config.EXCEL_PATH,
    env: Optional[Mapping[str, str]] = None,
) -> List[Dict[str, Any]]:
    """Loads wallets from the JSON wallets file, the Excel file, or PRIVATE_KEY, in that order."""
    env = os.environ if env is None else env

    if wallets_file and os.path.exists(wallets_file):
        with open(wallets_file, encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"{wallets_file} is not valid JSON: {e}")
        if not isinstance(data, list) or not data:
            raise ConfigurationError(f"{wallets_file} must contain a non-empty array of wallets")
        wallets = _wallets_from_frame(pd.DataFrame(data), wallets_file)
        source = wallets_file
    elif excel_path and os.path.exists(excel_path):
        df = pd.read_excel(excel_path, engine="openpyxl")
        wallets = _wallets_from_frame(df, excel_path)
        source = excel_path
    elif env.get("PRIVATE_KEY"):
        pk = normalize_private_key(env["PRIVATE_KEY"])
        if pk is None:
            raise ConfigurationError("PRIVATE_KEY is not a valid private key")
        wallets = [{"private_key": pk, "label": "Main wallet", "proxy": None}]
        source = "PRIVATE_KEY"
    else:
        raise ConfigurationError(
            f"No wallets found: create {wallets_file} or {excel_path}, or set PRIVATE_KEY in .env"
        )

    if not wallets:
        raise ConfigurationError(f"No valid wallets in {source}")
    logger.info(f"Loaded {len(wallets)} valid wallets from {source}")
    return wallets


def load_abi(path: str = config.CONTRIBUTE_ABI_PATH) -> Any:
    """Loads contract ABI from JSON file."""
    with open(path) as f:
        return json.load(f)


def get_w3(rpc_url: str, proxy: Optional[str] = None) -> Web3:
    """Returns Web3 connection to RPC (with optional HTTP proxy session)."""
    if proxy:
        session = Session()
        session.proxies = {'http': proxy, 'https': proxy}
        provider = HTTPProvider(rpc_url, request_kwargs={'timeout': 30}, session=session)
    else:
        provider = HTTPProvider(rpc_url, request_kwargs={'timeout': 30})
    return Web3(provider)


def get_w3_with_retry(rpc_url: str, proxy: Optional[str] = None) -> Web3:
    """Returns a Web3 connection after verifying the chain id against config.EXPECTED_CHAIN_ID.
    Raises ConfigurationError if the RPC is unreachable or on the wrong chain.
    """
    for attempt in range(1, config.RPC_TRY + 1):
        try:
            w3 = get_w3(rpc_url, proxy)
            chain_id = w3.eth.chain_id
        except Exception as e:
            logger.warning(f"Attempt {attempt}/{config.RPC_TRY} failed for {rpc_url}: {e}")
            continue
        if config.EXPECTED_CHAIN_ID and chain_id != config.EXPECTED_CHAIN_ID:
            raise ConfigurationError(
                f"{rpc_url}: unexpected chain_id {chain_id} (expected {config.EXPECTED_CHAIN_ID})"
            )
        return w3
    raise ConfigurationError(f"All {config.RPC_TRY} connection attempts failed for {rpc_url}")
