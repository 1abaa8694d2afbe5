"""Drives a fleet of wallet submitters until one contribution confirms.

Phases: AWAITING_START -> RUNNING -> (DRAINING) -> TERMINATED. Every wallet
ticks on its own timer. The scheduler alone decides when the run ends; the
submitters only post confirmation events back to it.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Callable, List, Optional, Set

import config
from errors import Outcome
from logger import get_logger, log_success
from submitter import ConfirmationEvent, WalletState, WalletSubmitter
from utils import shorten_address

logger = get_logger("Scheduler", config.LOG_LEVEL)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


class RunMode(StrEnum):
    SCHEDULED = "scheduled"
    IMMEDIATE = "immediate"


class RunPhase(StrEnum):
    AWAITING_START = "AwaitingStart"
    RUNNING = "Running"
    DRAINING = "Draining"
    TERMINATED = "Terminated"


class Termination(StrEnum):
    SUCCESS = "Success"
    ALL_EXHAUSTED = "AllExhausted"
    INTERRUPTED = "Interrupted"
    FORCED = "Forced"

    @property
    def exit_code(self) -> int:
        if self in (Termination.SUCCESS, Termination.INTERRUPTED):
            return EXIT_SUCCESS
        return EXIT_FAILURE


@dataclass
class GlobalRunState:
    mode: RunMode
    start_at: Optional[datetime]
    max_attempts_per_wallet: int
    concurrency_limit_per_wallet: int
    wallets: List[WalletState] = field(default_factory=list)
    started_at: Optional[float] = None

    @property
    def attempts(self) -> int:
        return sum(w.attempt_count for w in self.wallets)

    @property
    def successes(self) -> int:
        return sum(w.success_count for w in self.wallets)

    @property
    def failures(self) -> int:
        return sum(w.failure_count for w in self.wallets)

    @property
    def pending(self) -> int:
        return sum(len(w.pending) for w in self.wallets)

    @property
    def active_wallets(self) -> int:
        return sum(1 for w in self.wallets if not w.disabled)

    def format_stats(self) -> str:
        elapsed = int(time.monotonic() - self.started_at) if self.started_at else 0
        lines = [
            "===== CONTRIBUTION STATS =====",
            f"Elapsed: {elapsed // 60}m {elapsed % 60}s",
            f"Total attempts: {self.attempts}",
            f"Confirmed: {self.successes}",
            f"Failed: {self.failures}",
            f"Pending: {self.pending}",
            f"Active wallets: {self.active_wallets}/{len(self.wallets)}",
            f"Attempt limit: {self.max_attempts_per_wallet} per wallet"
            if self.max_attempts_per_wallet > 0 else "Attempt limit: unlimited",
        ]
        for w in self.wallets:
            status = f"disabled ({w.disabled_reason})" if w.disabled else "active"
            line = (
                f"  {w.label} ({shorten_address(w.address)}): attempts {w.attempt_count}, "
                f"confirmed {w.success_count}, failed {w.failure_count}, pending {len(w.pending)}"
            )
            if self.max_attempts_per_wallet > 0:
                line += f", remaining {max(0, self.max_attempts_per_wallet - w.attempt_count)}"
            lines.append(f"{line}, {status}")
        return "\n".join(lines)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FleetScheduler:
    def __init__(
        self,
        submitters: List[WalletSubmitter],
        *,
        poll_interval: float,
        mode: RunMode = RunMode.SCHEDULED,
        start_at: Optional[datetime] = None,
        max_attempts: int = 0,
        concurrency_limit: int = 1,
        wait_for_pending_on_success: bool = False,
        stagger: float = config.WALLET_STAGGER_MS / 1000,
        stats_interval: float = config.STATS_INTERVAL,
        drain_poll_interval: float = config.DRAIN_POLL_INTERVAL,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.submitters = submitters
        self.poll_interval = poll_interval
        self.stagger = stagger
        self.stats_interval = stats_interval
        self.drain_poll_interval = drain_poll_interval
        self.wait_for_pending_on_success = wait_for_pending_on_success
        self._now = now
        self.run_state = GlobalRunState(
            mode=mode,
            start_at=start_at,
            max_attempts_per_wallet=max_attempts,
            concurrency_limit_per_wallet=concurrency_limit,
            wallets=[s.wallet for s in submitters],
        )
        self.phase = RunPhase.AWAITING_START
        self.termination: Optional[Termination] = None

        self._wake = asyncio.Event()
        self._accepting = False
        self._interrupted = False
        self._forced = False
        self._exhausted = False
        self._fatal: Optional[BaseException] = None
        self._tick_tasks: List[asyncio.Task] = []
        self._ticks_in_progress: Set[asyncio.Future] = set()
        self._stats_task: Optional[asyncio.Task] = None

        for s in submitters:
            s.on_confirmation = self._on_confirmation
            s.on_fatal = self._on_fatal

    @classmethod
    def from_settings(cls, submitters: List[WalletSubmitter], settings, mode: RunMode) -> "FleetScheduler":
        return cls(
            submitters,
            poll_interval=settings.poll_interval,
            mode=mode,
            start_at=settings.start_time,
            max_attempts=settings.max_attempts,
            concurrency_limit=settings.concurrent_transactions,
            wait_for_pending_on_success=settings.wait_for_pending_on_success,
        )

    @property
    def pending_count(self) -> int:
        return self.run_state.pending

    def format_stats(self) -> str:
        return self.run_state.format_stats()

    async def run(self) -> Termination:
        try:
            if await self._await_start():
                self._start()
                await self._wake.wait()
                await self._stop_ticking(wait_in_progress=self._will_drain())
                await self._settle()
            elif self.termination is None:
                self.termination = Termination.INTERRUPTED
        finally:
            await self._stop_ticking()
            if self._stats_task is not None:
                self._stats_task.cancel()
                await asyncio.gather(self._stats_task, return_exceptions=True)
            for s in self.submitters:
                await s.close()
            self.phase = RunPhase.TERMINATED

        if self._fatal is not None:
            raise self._fatal
        logger.info(f"Run terminated: {self.termination}")
        return self.termination

    def request_stop(self) -> None:
        """Operator interrupt. A second call while draining forces termination."""
        if self.phase is RunPhase.TERMINATED:
            return
        if not self._interrupted:
            self._interrupted = True
            logger.warning("Stop requested, no new attempts will be made")
            self._halt_all()
            self._wake.set()
        else:
            self._forced = True
            logger.warning("Second stop request, abandoning pending transactions")
            self._finish(Termination.FORCED)

    async def _await_start(self) -> bool:
        start_at = self.run_state.start_at
        if self.run_state.mode is RunMode.IMMEDIATE or start_at is None:
            logger.info("No start time configured, starting immediately")
            return True

        delay = (start_at - self._now()).total_seconds()
        if delay <= 0:
            logger.info(f"Start time {start_at.isoformat()} has already passed, starting immediately")
            return True

        logger.info(
            f"Waiting until start time {start_at.isoformat()} "
            f"({int(delay // 60)} minutes and {int(delay % 60)} seconds)"
        )
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        except asyncio.TimeoutError:
            logger.info("Start time reached, beginning contribution attempts")
            return True
        return False

    def _start(self) -> None:
        self.phase = RunPhase.RUNNING
        self._accepting = True
        self.run_state.started_at = time.monotonic()
        for index, submitter in enumerate(self.submitters):
            self._tick_tasks.append(asyncio.create_task(self._drive(submitter, index)))
        if self.stats_interval > 0:
            self._stats_task = asyncio.create_task(self._report_stats())

    async def _drive(self, submitter: WalletSubmitter, index: int) -> None:
        period = self.poll_interval + index * self.stagger
        while self._accepting and not submitter.wallet.disabled:
            await asyncio.sleep(period)
            if not self._accepting:
                break
            # shielded so a stop can let an attempt that is mid-submit finish
            tick = asyncio.ensure_future(self._tick(submitter))
            self._ticks_in_progress.add(tick)
            tick.add_done_callback(self._ticks_in_progress.discard)
            tick.add_done_callback(self._task_done)
            await asyncio.shield(tick)

    async def _tick(self, submitter: WalletSubmitter) -> None:
        ws = submitter.wallet
        if ws.disabled:
            return
        limit = self.run_state.max_attempts_per_wallet
        if limit > 0 and ws.attempt_count >= limit:
            self._disable(ws, f"reached maximum attempts ({limit})")
            return

        result = await submitter.attempt()
        if result.outcome is Outcome.INSUFFICIENT_FUNDS:
            self._disable(ws, "insufficient funds")

    def _disable(self, ws: WalletState, reason: str) -> None:
        if not ws.disable(reason):
            return
        logger.warning(f"[{ws.label}] Wallet disabled: {reason}")
        if self.run_state.active_wallets > 0:
            return
        if self.pending_count == 0:
            logger.error("All wallets are disabled without a confirmed contribution")
            self._finish(Termination.ALL_EXHAUSTED)
        else:
            self._exhausted = True
            logger.warning(f"All wallets are disabled, waiting for {self.pending_count} pending transactions")

    def _on_confirmation(self, event: ConfirmationEvent) -> None:
        if event.confirmed:
            log_success(logger, f"SUCCESS! [{event.wallet.label}] contribution confirmed, stopping all attempts")
            self._finish(Termination.SUCCESS)
        elif self._exhausted and self.pending_count == 0:
            logger.error("All wallets are disabled and no pending transaction confirmed")
            self._finish(Termination.ALL_EXHAUSTED)

    def _on_fatal(self, exc: BaseException) -> None:
        logger.critical(f"Unrecoverable error in transaction tracking: {exc!r}")
        if self._fatal is None:
            self._fatal = exc
        self._halt_all()
        self._wake.set()

    def _task_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            self._on_fatal(task.exception())

    def _halt_all(self) -> None:
        self._accepting = False
        for s in self.submitters:
            s.halt()

    def _finish(self, termination: Termination) -> None:
        if self.termination is None:
            self.termination = termination
        self._halt_all()
        self._wake.set()

    async def _stop_ticking(self, wait_in_progress: bool = False) -> None:
        tasks = [t for t in self._tick_tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        ticks = list(self._ticks_in_progress)
        if not ticks:
            return
        if not wait_in_progress:
            for tick in ticks:
                tick.cancel()
        await asyncio.gather(*ticks, return_exceptions=True)

    def _will_drain(self) -> bool:
        if self.termination is Termination.SUCCESS:
            return self.wait_for_pending_on_success
        return self.termination is None and self._interrupted

    async def _settle(self) -> None:
        if self._fatal is not None:
            return
        if self.termination is Termination.SUCCESS:
            if self.wait_for_pending_on_success and self.pending_count:
                await self._drain()
            return
        if self.termination is None and self._interrupted:
            if self.pending_count:
                await self._drain()
            if self.termination is None:
                self.termination = Termination.INTERRUPTED

    async def _drain(self) -> None:
        self.phase = RunPhase.DRAINING
        logger.warning(f"Waiting for {self.pending_count} pending transactions to complete before exiting")
        while self.pending_count and not self._forced and self._fatal is None:
            await asyncio.sleep(self.drain_poll_interval)
        if not self.pending_count:
            logger.info("All pending transactions completed")

    async def _report_stats(self) -> None:
        while True:
            await asyncio.sleep(self.stats_interval)
            logger.info("\n" + self.format_stats())
