"""web3-backed chain client used by the submitter.

Web3 calls are blocking, so every call runs on a shared thread pool and is
awaited from the event loop.
"""

import asyncio
from concurrent.futures import Executor
from dataclasses import dataclass
from functools import partial
from typing import Any, Optional

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import TransactionNotFound

import config
from errors import TransactionReverted
from fees import FeeData, FeeParams
from logger import get_logger

logger = get_logger("Chain", config.LOG_LEVEL)

RECEIPT_POLL_INTERVAL = 1.0
FALLBACK_PRIORITY_FEE = 1_000_000_000  # 1 gwei


@dataclass(frozen=True)
class ContributionTx:
    value: int
    gas_limit: int
    nonce: int
    fee: FeeParams


class ChainClient:
    def __init__(
        self,
        w3: Web3,
        contract_address: str,
        abi: Any,
        executor: Optional[Executor] = None,
        timeout: float = config.TX_TIMEOUT,
        poll_interval: float = RECEIPT_POLL_INTERVAL,
    ):
        self.w3 = w3
        self.contract = w3.eth.contract(address=contract_address, abi=abi)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._executor = executor
        self._chain_id: Optional[int] = None

    async def _call(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(fn, *args, **kwargs))

    def _fee_data(self) -> FeeData:
        gas_price = int(self.w3.eth.gas_price)
        try:
            base_fee = self.w3.eth.get_block("latest").get("baseFeePerGas")
        except Exception as e:
            logger.debug(f"Latest block unavailable, assuming legacy pricing: {e}")
            base_fee = None
        if base_fee is None:
            return FeeData(gas_price=gas_price)

        try:
            priority = int(self.w3.eth.max_priority_fee)
        except Exception as e:
            logger.debug(f"eth_maxPriorityFeePerGas unavailable, using 1 gwei: {e}")
            priority = FALLBACK_PRIORITY_FEE
        return FeeData(
            gas_price=gas_price,
            max_fee_per_gas=int(base_fee) * 2 + priority,
            max_priority_fee_per_gas=priority,
        )

    async def get_fee_data(self) -> FeeData:
        return await self._call(self._fee_data)

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self._call(lambda: self.w3.eth.chain_id)
        return self._chain_id

    async def get_transaction_count(self, address: str) -> int:
        return await self._call(self.w3.eth.get_transaction_count, address, "pending")

    async def get_balance(self, address: str) -> int:
        return await self._call(self.w3.eth.get_balance, address)

    async def get_code(self, address: str) -> bytes:
        return bytes(await self._call(self.w3.eth.get_code, address))

    def _submit(self, signer: LocalAccount, tx: ContributionTx, chain_id: int) -> str:
        txn = self.contract.functions.contribute().build_transaction({
            "from": signer.address,
            "value": tx.value,
            "gas": tx.gas_limit,
            "nonce": tx.nonce,
            "chainId": chain_id,
            **tx.fee.as_tx_fields(),
        })
        signed = signer.sign_transaction(txn)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    async def submit(self, signer: LocalAccount, tx: ContributionTx) -> str:
        chain_id = await self.chain_id()
        return await self._call(self._submit, signer, tx, chain_id)

    async def await_confirmation(self, handle: str) -> Any:
        """Polls until a receipt exists. Raises TransactionReverted on status 0.

        Never gives up on its own; logs a warning every `self.timeout` seconds.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        next_warning = started + self.timeout
        while True:
            try:
                receipt = await self._call(self.w3.eth.get_transaction_receipt, handle)
            except TransactionNotFound:
                receipt = None
            except Exception as e:
                logger.warning(f"Receipt lookup for {handle} failed, retrying: {e}")
                receipt = None
            if receipt is not None:
                if receipt["status"] != 1:
                    raise TransactionReverted(f"Transaction {handle} reverted in block {receipt['blockNumber']}")
                return receipt
            if loop.time() >= next_warning:
                logger.warning(f"Transaction {handle} still pending after {int(loop.time() - started)}s")
                next_warning += self.timeout
            await asyncio.sleep(self.poll_interval)
