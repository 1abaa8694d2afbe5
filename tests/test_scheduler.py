import asyncio
from datetime import datetime, timedelta, timezone

from scheduler import EXIT_FAILURE, EXIT_SUCCESS, RunMode, RunPhase, Termination
from fakes import (
    HANG,
    REVERTED,
    FakeChainClient,
    make_scheduler,
    make_submitter,
    make_wallet,
    run_with_timeout,
)

NOT_WHITELISTED = "execution reverted: Not whitelisted"
NO_FUNDS = "insufficient funds for gas * price + value"


def rejecting_client(message, count=1000, **kwargs):
    return FakeChainClient(submit_errors=[ValueError(message)] * count, **kwargs)


def test_single_wallet_exhausts_attempts():
    async def scenario():
        submitter = make_submitter(rejecting_client(NOT_WHITELISTED))
        scheduler = make_scheduler([submitter], mode=RunMode.IMMEDIATE, max_attempts=3)
        return scheduler, await run_with_timeout(scheduler)

    scheduler, termination = asyncio.run(scenario())
    wallet = scheduler.run_state.wallets[0]
    assert termination is Termination.ALL_EXHAUSTED
    assert termination.exit_code == EXIT_FAILURE
    assert wallet.attempt_count == 3
    assert wallet.failure_count == 3
    assert wallet.disabled
    assert scheduler.phase is RunPhase.TERMINATED


def test_insufficient_funds_disables_only_that_wallet():
    async def scenario():
        broke = make_submitter(rejecting_client(NO_FUNDS), wallet=make_wallet(0))
        other = make_submitter(rejecting_client(NOT_WHITELISTED), wallet=make_wallet(1))
        scheduler = make_scheduler([broke, other], mode=RunMode.IMMEDIATE, max_attempts=5)
        return broke.wallet, other.wallet, await run_with_timeout(scheduler)

    broke, other, termination = asyncio.run(scenario())
    assert broke.disabled_reason == "insufficient funds"
    assert broke.attempt_count == 1
    assert other.attempt_count == 5
    assert other.disabled
    assert termination is Termination.ALL_EXHAUSTED


def test_remaining_wallet_can_still_succeed():
    async def scenario():
        broke = make_submitter(rejecting_client(NO_FUNDS), wallet=make_wallet(0))
        other = make_submitter(FakeChainClient(), wallet=make_wallet(1))
        scheduler = make_scheduler([broke, other], mode=RunMode.IMMEDIATE, max_attempts=5)
        return broke.wallet, other.wallet, await run_with_timeout(scheduler)

    broke, other, termination = asyncio.run(scenario())
    assert broke.disabled
    assert broke.attempt_count == 1
    assert not other.disabled
    assert other.success_count == 1
    assert termination is Termination.SUCCESS
    assert termination.exit_code == EXIT_SUCCESS


def test_no_submissions_after_first_confirmation():
    async def scenario():
        journal = []
        client = FakeChainClient(confirm_delay=0.05, journal=journal)
        submitters = [
            make_submitter(client, wallet=make_wallet(i), concurrency_limit=3)
            for i in range(3)
        ]
        scheduler = make_scheduler(submitters, mode=RunMode.IMMEDIATE)
        termination = await run_with_timeout(scheduler)
        attempts = scheduler.run_state.attempts
        await asyncio.sleep(0.1)
        return journal, termination, attempts, scheduler.run_state.attempts

    journal, termination, attempts_at_stop, attempts_later = asyncio.run(scenario())
    assert termination is Termination.SUCCESS
    first_confirmation = next(i for i, entry in enumerate(journal) if entry[0] == "confirmed")
    assert all(entry[0] != "submit" for entry in journal[first_confirmation:])
    assert attempts_at_stop == attempts_later


def test_waits_for_start_time():
    start_at = datetime(2030, 1, 1, tzinfo=timezone.utc)

    async def scenario():
        loop = asyncio.get_running_loop()
        journal = []
        submitter = make_submitter(FakeChainClient(journal=journal))
        scheduler = make_scheduler(
            [submitter],
            start_at=start_at,
            now=lambda: start_at - timedelta(seconds=0.2),
        )
        started = loop.time()
        submit_times = []
        real_submit = submitter.client.submit

        async def timed_submit(signer, tx):
            submit_times.append(loop.time() - started)
            return await real_submit(signer, tx)

        submitter.client.submit = timed_submit
        return await run_with_timeout(scheduler), submit_times

    termination, submit_times = asyncio.run(scenario())
    assert termination is Termination.SUCCESS
    assert submit_times[0] >= 0.2


def test_start_time_in_the_past_starts_immediately():
    start_at = datetime(2020, 1, 1, tzinfo=timezone.utc)

    async def scenario():
        scheduler = make_scheduler([make_submitter()], start_at=start_at)
        return await run_with_timeout(scheduler, timeout=1)

    assert asyncio.run(scenario()) is Termination.SUCCESS


def test_immediate_mode_ignores_start_time():
    start_at = datetime.now(timezone.utc) + timedelta(hours=1)

    async def scenario():
        scheduler = make_scheduler([make_submitter()], mode=RunMode.IMMEDIATE, start_at=start_at)
        return await run_with_timeout(scheduler, timeout=1)

    assert asyncio.run(scenario()) is Termination.SUCCESS


def test_interrupt_before_start():
    start_at = datetime.now(timezone.utc) + timedelta(hours=1)

    async def scenario():
        submitter = make_submitter()
        scheduler = make_scheduler([submitter], start_at=start_at)
        asyncio.get_running_loop().call_later(0.05, scheduler.request_stop)
        return submitter, await run_with_timeout(scheduler)

    submitter, termination = asyncio.run(scenario())
    assert termination is Termination.INTERRUPTED
    assert termination.exit_code == EXIT_SUCCESS
    assert submitter.wallet.attempt_count == 0


def test_interrupt_without_pending_transactions():
    async def scenario():
        submitter = make_submitter(rejecting_client(NOT_WHITELISTED))
        scheduler = make_scheduler([submitter], mode=RunMode.IMMEDIATE)
        asyncio.get_running_loop().call_later(0.1, scheduler.request_stop)
        termination = await run_with_timeout(scheduler)
        attempts = submitter.wallet.attempt_count
        await asyncio.sleep(0.05)
        return submitter, termination, attempts

    submitter, termination, attempts = asyncio.run(scenario())
    assert termination is Termination.INTERRUPTED
    assert attempts > 0
    assert submitter.wallet.attempt_count == attempts


def test_interrupt_drains_pending_transactions():
    async def scenario():
        client = FakeChainClient(default_result=REVERTED, confirm_delay=0.3)
        submitter = make_submitter(client)
        scheduler = make_scheduler([submitter], mode=RunMode.IMMEDIATE)
        asyncio.get_running_loop().call_later(0.1, scheduler.request_stop)
        return submitter, client, await run_with_timeout(scheduler)

    submitter, client, termination = asyncio.run(scenario())
    assert termination is Termination.INTERRUPTED
    assert len(client.submitted) == 1
    assert submitter.wallet.pending == set()
    assert submitter.wallet.failure_count == 1


def test_second_interrupt_forces_exit():
    async def scenario():
        submitter = make_submitter(FakeChainClient(default_result=HANG))
        scheduler = make_scheduler([submitter], mode=RunMode.IMMEDIATE)
        loop = asyncio.get_running_loop()
        loop.call_later(0.1, scheduler.request_stop)
        loop.call_later(0.2, scheduler.request_stop)
        return submitter, await run_with_timeout(scheduler)

    submitter, termination = asyncio.run(scenario())
    assert termination is Termination.FORCED
    assert termination.exit_code == EXIT_FAILURE
    assert len(submitter.wallet.pending) == 1


def test_exhausted_fleet_waits_for_pending_transaction():
    async def scenario():
        client = FakeChainClient(confirm_delay=0.2)
        submitter = make_submitter(client, concurrency_limit=2)
        scheduler = make_scheduler([submitter], mode=RunMode.IMMEDIATE, max_attempts=1)
        return submitter, await run_with_timeout(scheduler)

    submitter, termination = asyncio.run(scenario())
    assert submitter.wallet.disabled
    assert termination is Termination.SUCCESS


def test_exhausted_fleet_with_failed_pending_transaction():
    async def scenario():
        client = FakeChainClient(default_result=REVERTED, confirm_delay=0.2)
        submitter = make_submitter(client, concurrency_limit=2)
        scheduler = make_scheduler([submitter], mode=RunMode.IMMEDIATE, max_attempts=1)
        return await run_with_timeout(scheduler)

    assert asyncio.run(scenario()) is Termination.ALL_EXHAUSTED


def test_stats_report_lists_every_wallet():
    async def scenario():
        submitters = [make_submitter(wallet=make_wallet(i, label=f"W{i}")) for i in range(2)]
        scheduler = make_scheduler(submitters, mode=RunMode.IMMEDIATE, max_attempts=4, stagger=0.05)
        await run_with_timeout(scheduler)
        return scheduler.format_stats()

    stats = asyncio.run(scenario())
    assert "Confirmed: 1" in stats
    assert "W0 (" in stats and "W1 (" in stats
    assert "remaining" in stats
