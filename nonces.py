import asyncio
from typing import Awaitable, Callable, Dict

import config
from logger import get_logger

logger = get_logger("Nonces", config.LOG_LEVEL)


class NonceAllocator:
    """Per-wallet nonce sequence, lazily initialized from the chain.

    `fetch_count` returns the account's transaction count (pending tag).
    Allocation for one wallet is serialized by that wallet's lock.
    """

    def __init__(self, fetch_count: Callable[[str], Awaitable[int]]):
        self._fetch_count = fetch_count
        self._locks: Dict[str, asyncio.Lock] = {}
        # highest nonce handed out per address, survives reset
        self._issued: Dict[str, int] = {}

    def _lock_for(self, address: str) -> asyncio.Lock:
        if address not in self._locks:
            self._locks[address] = asyncio.Lock()
        return self._locks[address]

    async def next(self, wallet) -> int:
        address = wallet.address
        async with self._lock_for(address):
            if wallet.nonce is None:
                chain_count = await self._fetch_count(address)
                issued = self._issued.get(address)
                if issued is not None and chain_count <= issued:
                    logger.warning(
                        f"[{wallet.label}] Chain nonce {chain_count} is behind last issued {issued}, continuing from {issued + 1}"
                    )
                    chain_count = issued + 1
                wallet.nonce = chain_count
            else:
                wallet.nonce += 1
            self._issued[address] = wallet.nonce
            return wallet.nonce

    async def reset(self, wallet) -> None:
        async with self._lock_for(wallet.address):
            logger.debug(f"[{wallet.label}] Nonce reset (was {wallet.nonce})")
            wallet.nonce = None

