import asyncio
import signal
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

from eth_account import Account
from web3 import Web3

import config
from chain import ChainClient
from errors import ConfigurationError
from logger import get_logger
from nonces import NonceAllocator
from scheduler import EXIT_FAILURE, FleetScheduler, RunMode
from submitter import WalletState, WalletSubmitter
from utils import get_w3_with_retry, load_abi, load_wallets, shorten_address

logger = get_logger("Contribute", config.LOG_LEVEL)


def build_wallet_states(wallet_rows: List[Dict[str, Any]]) -> List[Tuple[WalletState, Optional[str]]]:
    """Returns (state, proxy) pairs for every row with a usable key."""
    wallets = []
    seen = set()
    for index, row in enumerate(wallet_rows, start=1):
        label = row.get("label") or f"Wallet {index}"
        try:
            signer = Account.from_key(row["private_key"])
        except Exception as e:
            logger.error(f"{label}: invalid private key: {e}")
            continue
        if signer.address in seen:
            logger.warning(f"{label} ({shorten_address(signer.address)}): duplicate wallet, skipping")
            continue
        seen.add(signer.address)
        proxy = row.get("proxy") if config.USE_PROXY else None
        wallets.append((WalletState(signer=signer, label=label), proxy))
    if not wallets:
        raise ConfigurationError("No valid wallet could be initialized, check the private keys")
    logger.info(f"Initialized {len(wallets)} wallets")
    return wallets


async def build_submitters(
    settings: config.Settings,
    wallet_rows: List[Dict[str, Any]],
    abi: Any,
    executor: ThreadPoolExecutor,
) -> List[WalletSubmitter]:
    """Creates one submitter per wallet. Wallets sharing a proxy share a chain client."""
    loop = asyncio.get_running_loop()
    clients: Dict[Optional[str], ChainClient] = {}
    submitters = []
    for state, proxy in build_wallet_states(wallet_rows):
        if proxy not in clients:
            w3 = await loop.run_in_executor(executor, get_w3_with_retry, settings.rpc_url, proxy)
            clients[proxy] = ChainClient(w3, settings.contract_address, abi, executor)
        client = clients[proxy]
        submitters.append(WalletSubmitter(
            state,
            client,
            NonceAllocator(client.get_transaction_count),
            settings.fee_policy(),
            value=settings.contribution_wei,
            concurrency_limit=settings.concurrent_transactions,
        ))
    return submitters


async def check_balances(submitters: List[WalletSubmitter], settings: config.Settings) -> int:
    """Logs each wallet's balance. Returns how many wallets can afford one contribution."""
    min_required = settings.contribution_wei + Web3.to_wei(config.MIN_GAS_RESERVE, "ether")
    funded = 0
    for submitter in submitters:
        ws = submitter.wallet
        try:
            balance = await submitter.client.get_balance(ws.address)
        except Exception as e:
            logger.error(f"[{ws.label}] Balance check failed: {e}")
            continue
        if balance < min_required:
            logger.error(
                f"[{ws.label}] Insufficient balance: {Web3.from_wei(balance, 'ether')} AVAX, "
                f"need at least {Web3.from_wei(min_required, 'ether')} AVAX"
            )
        else:
            logger.info(f"[{ws.label}] Balance: {Web3.from_wei(balance, 'ether')} AVAX - OK")
            funded += 1
    return funded


def install_stop_handlers(scheduler: FleetScheduler) -> List[int]:
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.request_stop)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(scheduler.request_stop))
    return installed


def remove_stop_handlers(installed: List[int]) -> None:
    loop = asyncio.get_running_loop()
    for sig in installed:
        loop.remove_signal_handler(sig)


async def run_contribution(mode: RunMode = RunMode.SCHEDULED) -> int:
    """Runs the contribution loop and returns the process exit code."""
    try:
        settings = config.load_settings()
        wallet_rows = load_wallets()
        abi = load_abi()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_FAILURE

    logger.info(f"Target contract: {settings.contract_address}")
    logger.info(f"Contribution per wallet: {Web3.from_wei(settings.contribution_wei, 'ether')} AVAX")
    logger.info(f"Poll interval: {int(settings.poll_interval * 1000)}ms, "
                f"concurrent transactions per wallet: {settings.concurrent_transactions}")
    if settings.max_attempts > 0:
        logger.info(f"Maximum attempts per wallet: {settings.max_attempts}")
    else:
        logger.info("Maximum attempts: unlimited (MAX_ATTEMPTS=0)")

    # Confirmation polls hold a worker only for one RPC call at a time
    executor = ThreadPoolExecutor(max_workers=max(4, len(wallet_rows) * (settings.concurrent_transactions + 2)))
    try:
        submitters = await build_submitters(settings, wallet_rows, abi, executor)
        funded = await check_balances(submitters, settings)
        if funded == 0:
            logger.error("No wallet has enough balance for a contribution")
            return EXIT_FAILURE
        if funded < len(submitters):
            logger.warning("Some wallets have insufficient balance, continuing with the rest")

        scheduler = FleetScheduler.from_settings(submitters, settings, mode)
        installed = install_stop_handlers(scheduler)
        try:
            termination = await scheduler.run()
        finally:
            remove_stop_handlers(installed)
            logger.info("\n" + scheduler.format_stats())
        return termination.exit_code
    except ConfigurationError as e:
        logger.error(f"Startup error: {e}")
        return EXIT_FAILURE
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
