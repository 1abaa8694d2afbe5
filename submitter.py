"""One wallet's submission attempts and the tracking of its in-flight transactions."""

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable, Dict, Optional, Set

from web3 import Web3

import config
from chain import ContributionTx
from errors import Outcome, classify
from fees import FeePolicy, compute_fee
from logger import get_logger, log_success
from nonces import NonceAllocator

logger = get_logger("Submitter", config.LOG_LEVEL)

MAX_ERROR_LENGTH = 200


def _short_error(message: str) -> str:
    return message if len(message) <= MAX_ERROR_LENGTH else message[:MAX_ERROR_LENGTH] + "..."


@dataclass(eq=False)
class WalletState:
    signer: Any
    label: str
    nonce: Optional[int] = None
    pending: Set[str] = field(default_factory=set)
    attempt_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    disabled: bool = False
    disabled_reason: Optional[str] = None

    @property
    def address(self) -> str:
        return self.signer.address

    def disable(self, reason: str) -> bool:
        """One-way latch. Returns True only on the call that disabled the wallet."""
        if self.disabled:
            return False
        self.disabled = True
        self.disabled_reason = reason
        return True


class AttemptStatus(StrEnum):
    SUBMITTED = "Submitted"
    SKIPPED = "Skipped"
    REJECTED = "Rejected"


@dataclass(frozen=True)
class AttemptResult:
    status: AttemptStatus
    handle: Optional[str] = None
    reason: Optional[str] = None
    outcome: Optional[Outcome] = None

    @classmethod
    def submitted(cls, handle: str) -> "AttemptResult":
        return cls(AttemptStatus.SUBMITTED, handle=handle)

    @classmethod
    def skipped(cls, reason: str) -> "AttemptResult":
        return cls(AttemptStatus.SKIPPED, reason=reason)

    @classmethod
    def rejected(cls, outcome: Outcome, reason: str) -> "AttemptResult":
        return cls(AttemptStatus.REJECTED, reason=reason, outcome=outcome)


@dataclass(frozen=True)
class ConfirmationEvent:
    wallet: WalletState
    handle: str
    receipt: Any = None
    error: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return self.error is None


class WalletSubmitter:
    """Owns a WalletState; submits contributions and tracks them to completion.

    Each accepted transaction gets a watcher task. When it resolves, the
    wallet counters are updated and a ConfirmationEvent is posted to
    `on_confirmation`. An exception raised while posting is handed to
    `on_fatal`.
    """

    def __init__(
        self,
        wallet: WalletState,
        client,
        nonces: NonceAllocator,
        fee_policy: FeePolicy,
        *,
        value: int,
        concurrency_limit: int,
        gas_limit: int = config.GAS_LIMIT,
        on_confirmation: Optional[Callable[[ConfirmationEvent], None]] = None,
        on_fatal: Optional[Callable[[BaseException], None]] = None,
    ):
        self.wallet = wallet
        self.client = client
        self.nonces = nonces
        self.fee_policy = fee_policy
        self.value = value
        self.gas_limit = gas_limit
        self.concurrency_limit = concurrency_limit
        self.on_confirmation = on_confirmation
        self.on_fatal = on_fatal
        self._lock = asyncio.Lock()
        self._watchers: Dict[str, asyncio.Task] = {}
        self._halted = False

    def halt(self) -> None:
        """Refuse every further attempt. In-flight transactions keep being tracked."""
        self._halted = True

    @property
    def pending_count(self) -> int:
        return len(self.wallet.pending)

    async def attempt(self) -> AttemptResult:
        async with self._lock:
            return await self._attempt()

    async def _attempt(self) -> AttemptResult:
        ws = self.wallet
        if ws.disabled:
            return AttemptResult.skipped("wallet disabled")
        if self._halted:
            return AttemptResult.skipped("run stopped")
        if len(ws.pending) >= self.concurrency_limit:
            logger.debug(f"[{ws.label}] {len(ws.pending)}/{self.concurrency_limit} transactions pending, waiting")
            return AttemptResult.skipped("concurrency limit reached")

        ws.attempt_count += 1
        attempt = ws.attempt_count
        try:
            fee_data = await self.client.get_fee_data()
            fee = compute_fee(fee_data, attempt, self.fee_policy)
            nonce = await self.nonces.next(ws)
            if self._halted:
                return AttemptResult.skipped("run stopped")

            if fee.is_fee_market:
                logger.info(
                    f"[{ws.label}] Attempt #{attempt}: contributing {Web3.from_wei(self.value, 'ether')} AVAX, "
                    f"maxFeePerGas {Web3.from_wei(fee.max_fee_per_gas, 'gwei')} gwei, "
                    f"maxPriorityFeePerGas {Web3.from_wei(fee.max_priority_fee_per_gas, 'gwei')} gwei, nonce {nonce}"
                )
            else:
                logger.info(
                    f"[{ws.label}] Attempt #{attempt}: contributing {Web3.from_wei(self.value, 'ether')} AVAX, "
                    f"gasPrice {Web3.from_wei(fee.price, 'gwei')} gwei, nonce {nonce}"
                )
            handle = await self.client.submit(
                ws.signer,
                ContributionTx(value=self.value, gas_limit=self.gas_limit, nonce=nonce, fee=fee),
            )
        except Exception as e:
            return await self._rejected(attempt, e)

        ws.pending.add(handle)
        logger.info(f"[{ws.label}] Attempt #{attempt}: transaction sent, hash {handle}")
        task = asyncio.create_task(self._track(handle))
        self._watchers[handle] = task
        task.add_done_callback(self._watcher_done)
        return AttemptResult.submitted(handle)

    async def _rejected(self, attempt: int, error: Exception) -> AttemptResult:
        ws = self.wallet
        ws.failure_count += 1
        message = str(error) or type(error).__name__
        outcome = classify(message)
        prefix = f"[{ws.label}] Attempt #{attempt}: {outcome}"

        if outcome is Outcome.NONCE_CONFLICT:
            await self.nonces.reset(ws)
            logger.warning(f"{prefix}, nonce will be re-read from chain - {_short_error(message)}")
        elif outcome is Outcome.INSUFFICIENT_FUNDS:
            logger.error(f"{prefix}, wallet {ws.address} cannot pay for the contribution")
        elif outcome is Outcome.GAS_PARAMETER_ERROR:
            logger.warning(f"{prefix}, fee will be recomputed next attempt - {_short_error(message)}")
        elif outcome is Outcome.RETRYABLE_REJECTION:
            logger.warning(f"{prefix}, not whitelisted or not open yet - {_short_error(message)}")
        else:
            logger.error(f"{prefix} - {message}")
        return AttemptResult.rejected(outcome, message)

    async def _track(self, handle: str) -> None:
        ws = self.wallet
        try:
            receipt = await self.client.await_confirmation(handle)
        except Exception as e:
            ws.pending.discard(handle)
            ws.failure_count += 1
            logger.error(f"[{ws.label}] Transaction {handle} failed: {_short_error(str(e))}")
            event = ConfirmationEvent(ws, handle, error=str(e) or type(e).__name__)
        else:
            ws.pending.discard(handle)
            ws.success_count += 1
            log_success(
                logger,
                f"[{ws.label}] Transaction {handle} confirmed in block {receipt['blockNumber']}, "
                f"gas used {receipt['gasUsed']}",
            )
            event = ConfirmationEvent(ws, handle, receipt=receipt)

        self._watchers.pop(handle, None)
        if self.on_confirmation is not None:
            self.on_confirmation(event)

    def _watcher_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        if self.on_fatal is not None:
            self.on_fatal(exc)
        else:
            logger.critical(f"[{self.wallet.label}] Confirmation bookkeeping failed: {exc!r}")

    async def close(self) -> None:
        """Stops watching in-flight transactions. Does not touch the transactions themselves."""
        watchers = list(self._watchers.values())
        for task in watchers:
            task.cancel()
        if watchers:
            await asyncio.gather(*watchers, return_exceptions=True)
        self._watchers.clear()
