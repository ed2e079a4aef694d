# PATH: tests/unit/test_driver.py
"""
tests/unit/test_driver.py - Polling driver: runs and campaigns.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from chains.endpoints import EndpointResolver
from core.constants import ConcurrencyMode, ErrorCode
from core.exceptions import ConfigurationError, RateLimitError, RPCTimeoutError
from core.models import Endpoint, Failure, Success
from polling.driver import FanOutScheduler, drive_run, run_campaign, run_once


ENDPOINT = Endpoint(chain_id="1", url="http://gw/v1/chain/1")


async def collect(iterator):
    return [attempt async for attempt in iterator]


def counting_fetch(start=100):
    """Fetch returning start, start+1, ... on successive calls."""
    state = {"next": start}

    async def fetch(endpoint):
        value = state["next"]
        state["next"] += 1
        return value

    return fetch


class SelectiveResolver(EndpointResolver):
    """Resolver that refuses some chains."""

    def __init__(self, broken):
        super().__init__("http://gw")
        self.broken = set(broken)

    def resolve(self, chain_id):
        if chain_id in self.broken:
            raise ConfigurationError(f"no route for {chain_id}", details={"chain_id": chain_id})
        return super().resolve(chain_id)


class TestRunOnce:
    """Single run semantics."""

    @pytest.mark.asyncio
    async def test_all_successes_in_order(self):
        """Five successes carrying 100..104."""
        attempts = await collect(run_once(ENDPOINT, 5, fetch=counting_fetch(100)))

        assert [a.index for a in attempts] == [0, 1, 2, 3, 4]
        assert all(isinstance(a.outcome, Success) for a in attempts)
        assert [a.outcome.block_number for a in attempts] == [100, 101, 102, 103, 104]

    @pytest.mark.asyncio
    async def test_failure_in_middle_does_not_abort(self):
        """Failure at index 1 -> [Success, Failure, Success]."""
        fetch = AsyncMock(side_effect=[7, RPCTimeoutError("slow"), 9])

        attempts = await collect(run_once(ENDPOINT, 3, fetch=fetch))

        assert [type(a.outcome) for a in attempts] == [Success, Failure, Success]
        assert attempts[1].outcome.error_code == ErrorCode.TRANSPORT_TIMEOUT
        assert "slow" in attempts[1].outcome.reason
        assert fetch.await_count == 3

    @pytest.mark.asyncio
    async def test_every_attempt_failing_still_yields_full_count(self):
        fetch = AsyncMock(side_effect=RateLimitError("429"))

        attempts = await collect(run_once(ENDPOINT, 25, fetch=fetch))

        assert len(attempts) == 25
        assert [a.index for a in attempts] == list(range(25))
        assert all(not a.ok for a in attempts)
        assert {a.outcome.error_code for a in attempts} == {ErrorCode.TRANSPORT_RATE_LIMIT}

    @pytest.mark.asyncio
    async def test_foreign_exception_recorded_as_unknown(self):
        fetch = AsyncMock(side_effect=[ValueError(), 5])

        attempts = await collect(run_once(ENDPOINT, 2, fetch=fetch))

        assert attempts[0].outcome == Failure(reason="ValueError", error_code=ErrorCode.UNKNOWN)
        assert attempts[1].outcome == Success(block_number=5)

    @pytest.mark.asyncio
    async def test_each_attempt_calls_fetch_once_with_endpoint(self):
        fetch = AsyncMock(return_value=1)

        await collect(run_once(ENDPOINT, 4, fetch=fetch))

        assert fetch.await_count == 4
        for call in fetch.await_args_list:
            assert call.args == (ENDPOINT,)

    @pytest.mark.asyncio
    async def test_attempts_are_never_concurrent(self):
        active = {"now": 0, "peak": 0}

        async def fetch(endpoint):
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
            await asyncio.sleep(0)
            active["now"] -= 1
            return 1

        await collect(run_once(ENDPOINT, 10, fetch=fetch))

        assert active["peak"] == 1

    @pytest.mark.asyncio
    async def test_delay_between_attempts_regardless_of_outcome(self):
        fetch = AsyncMock(side_effect=[1, RPCTimeoutError("t"), 3])

        with patch("polling.driver.asyncio.sleep", new=AsyncMock()) as sleep:
            attempts = await collect(run_once(ENDPOINT, 3, 0.1, fetch=fetch))

        assert len(attempts) == 3
        assert sleep.await_count == 2
        for call in sleep.await_args_list:
            assert call.args == (0.1,)

    @pytest.mark.asyncio
    async def test_no_delay_by_default(self):
        with patch("polling.driver.asyncio.sleep", new=AsyncMock()) as sleep:
            await collect(run_once(ENDPOINT, 3, fetch=AsyncMock(return_value=1)))

        sleep.assert_not_awaited()

    def test_invalid_attempt_count_raises_immediately(self):
        with pytest.raises(ConfigurationError) as exc_info:
            run_once(ENDPOINT, 0, fetch=AsyncMock())
        assert exc_info.value.code == ErrorCode.CONFIG_INVALID

    def test_negative_delay_raises_immediately(self):
        with pytest.raises(ConfigurationError):
            run_once(ENDPOINT, 3, -1.0, fetch=AsyncMock())

    @pytest.mark.asyncio
    async def test_lazy_and_not_restartable(self):
        fetch = AsyncMock(return_value=1)

        run = run_once(ENDPOINT, 3, fetch=fetch)
        assert fetch.await_count == 0

        first = await collect(run)
        second = await collect(run)

        assert len(first) == 3
        assert second == []
        assert fetch.await_count == 3

    @pytest.mark.asyncio
    async def test_cancel_takes_effect_between_attempts(self):
        """In-flight attempt completes; no further attempts start."""
        stop = asyncio.Event()
        calls = []

        async def fetch(endpoint):
            calls.append(len(calls))
            if len(calls) == 2:
                stop.set()
            await asyncio.sleep(0)
            return 42

        attempts = await collect(run_once(ENDPOINT, 10, fetch=fetch, cancel_event=stop))

        assert len(attempts) == 2
        assert all(a.ok for a in attempts)
        assert len(calls) == 2


class TestDriveRun:
    """Resolution + run."""

    @pytest.mark.asyncio
    async def test_summary_counts(self):
        fetch = AsyncMock(side_effect=[1, RPCTimeoutError("t"), 3, 4])

        summary = await drive_run("1", EndpointResolver("http://gw"), fetch, attempt_count=4, repetition=2)

        assert summary.chain_id == "1"
        assert summary.repetition == 2
        assert (summary.attempts, summary.successes, summary.failures) == (4, 3, 1)
        assert summary.skipped is False

    @pytest.mark.asyncio
    async def test_resolution_failure_skips_run(self):
        fetch = AsyncMock(return_value=1)

        summary = await drive_run("1", EndpointResolver(None), fetch, attempt_count=4)

        assert summary.skipped is True
        assert "CONFIG_MISSING" in summary.skip_reason
        assert summary.attempts == 0
        fetch.assert_not_awaited()


class TestRunCampaign:
    """Campaign orchestration."""

    @pytest.mark.asyncio
    async def test_empty_chain_list_completes_immediately(self):
        fetch = AsyncMock(return_value=1)

        summary = await run_campaign([], 5, resolver=EndpointResolver("http://gw"), fetch=fetch)

        assert summary.runs == []
        assert summary.total_attempts == 0
        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sequential_finishes_each_chain_before_next(self):
        calls = []

        async def fetch(endpoint):
            calls.append(endpoint.chain_id)
            await asyncio.sleep(0)
            return 1

        summary = await run_campaign(
            ["1", "2"], 3, resolver=EndpointResolver("http://gw"), fetch=fetch
        )

        assert calls == ["1", "1", "1", "2", "2", "2"]
        assert [r.chain_id for r in summary.runs] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_sequential_repetitions_in_order(self):
        calls = []

        async def fetch(endpoint):
            calls.append(endpoint.chain_id)
            return 1

        summary = await run_campaign(
            ["a", "b"], 1, 3, ConcurrencyMode.SEQUENTIAL,
            resolver=EndpointResolver("http://gw"), fetch=fetch,
        )

        assert calls == ["a", "b"] * 3
        assert [(r.repetition, r.chain_id) for r in summary.runs] == [
            (0, "a"), (0, "b"), (1, "a"), (1, "b"), (2, "a"), (2, "b"),
        ]

    @pytest.mark.asyncio
    async def test_duplicate_chain_ids_polled_twice(self):
        fetch = AsyncMock(return_value=1)

        summary = await run_campaign(
            ["1", "1"], 2, resolver=EndpointResolver("http://gw"), fetch=fetch
        )

        assert len(summary.runs) == 2
        assert fetch.await_count == 4

    @pytest.mark.asyncio
    async def test_unresolvable_chain_skipped_others_continue(self):
        fetch = AsyncMock(return_value=1)

        summary = await run_campaign(
            ["1", "bad", "3"], 2, resolver=SelectiveResolver({"bad"}), fetch=fetch
        )

        assert [r.skipped for r in summary.runs] == [False, True, False]
        assert summary.skipped_runs == 1
        assert summary.total_attempts == 4
        assert fetch.await_count == 4

    @pytest.mark.asyncio
    async def test_missing_base_host_never_raises(self):
        summary = await run_campaign(
            ["1", "2"], 2, resolver=EndpointResolver(None), fetch=AsyncMock()
        )

        assert summary.skipped_runs == 2
        assert summary.total_attempts == 0

    @pytest.mark.asyncio
    async def test_failures_do_not_leak_out_of_campaign(self):
        fetch = AsyncMock(side_effect=RPCTimeoutError("down"))

        summary = await run_campaign(
            ["1", "2"], 3, 2, ConcurrencyMode.FAN_OUT,
            resolver=EndpointResolver("http://gw"), fetch=fetch,
        )

        assert summary.total_attempts == 12
        assert summary.total_failures == 12

    @pytest.mark.asyncio
    async def test_invalid_repetitions_rejected(self):
        with pytest.raises(ConfigurationError):
            await run_campaign(
                ["1"], 1, 0, resolver=EndpointResolver("http://gw"), fetch=AsyncMock()
            )

    @pytest.mark.asyncio
    async def test_fan_out_launches_without_waiting(self):
        """Every run starts before any run is allowed to finish."""
        release = asyncio.Event()
        started = []

        async def fetch(endpoint):
            started.append(endpoint.chain_id)
            await release.wait()
            return 1

        scheduler = FanOutScheduler()
        campaign = asyncio.create_task(
            run_campaign(
                ["1", "2"], 1, 3, ConcurrencyMode.FAN_OUT,
                resolver=EndpointResolver("http://gw"), fetch=fetch, scheduler=scheduler,
            )
        )
        for _ in range(10):
            await asyncio.sleep(0)

        assert len(started) == 6
        assert len(scheduler.tasks) == 6
        assert len(scheduler.pending) == 6

        release.set()
        summary = await campaign

        assert summary.total_successes == 6
        assert scheduler.pending == []
        assert [(r.repetition, r.chain_id) for r in summary.runs] == [
            (0, "1"), (0, "2"), (1, "1"), (1, "2"), (2, "1"), (2, "2"),
        ]

    @pytest.mark.asyncio
    async def test_fan_out_max_concurrency(self):
        active = {"now": 0, "peak": 0}

        async def fetch(endpoint):
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
            await asyncio.sleep(0)
            active["now"] -= 1
            return 1

        summary = await run_campaign(
            ["1", "2", "3", "4", "5"], 3, 1, ConcurrencyMode.FAN_OUT,
            resolver=EndpointResolver("http://gw"), fetch=fetch, max_concurrency=2,
        )

        assert summary.total_successes == 15
        assert active["peak"] <= 2

    @pytest.mark.asyncio
    async def test_mode_accepts_string_value(self):
        summary = await run_campaign(
            ["1"], 2, 2, "fan-out",
            resolver=EndpointResolver("http://gw"), fetch=AsyncMock(return_value=1),
        )

        assert len(summary.runs) == 2

    @pytest.mark.asyncio
    async def test_preset_cancel_event_runs_nothing(self):
        stop = asyncio.Event()
        stop.set()
        fetch = AsyncMock(return_value=1)

        summary = await run_campaign(
            ["1", "2"], 5, 2, ConcurrencyMode.FAN_OUT,
            resolver=EndpointResolver("http://gw"), fetch=fetch, cancel_event=stop,
        )

        assert len(summary.runs) == 4
        assert summary.total_attempts == 0
        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fan_out_cancelled_run_recorded_as_skipped(self):
        """Cancelling one run task leaves the other summaries intact."""
        release = asyncio.Event()

        async def fetch(endpoint):
            await release.wait()
            return 5

        scheduler = FanOutScheduler()
        campaign = asyncio.create_task(
            run_campaign(
                ["1", "2", "3"], 1, 1, ConcurrencyMode.FAN_OUT,
                resolver=EndpointResolver("http://gw"), fetch=fetch, scheduler=scheduler,
            )
        )
        for _ in range(5):
            await asyncio.sleep(0)

        scheduler.tasks[0].cancel()
        release.set()
        summary = await campaign

        assert [r.chain_id for r in summary.runs] == ["1", "2", "3"]
        assert summary.runs[0].skipped
        assert "cancelled" in summary.runs[0].skip_reason
        assert [r.successes for r in summary.runs[1:]] == [1, 1]

    @pytest.mark.asyncio
    async def test_fan_out_run_raising_recorded_as_skipped(self):
        class ExplodingResolver(EndpointResolver):
            def resolve(self, chain_id):
                if chain_id == "2":
                    raise RuntimeError("resolver bug")
                return super().resolve(chain_id)

        summary = await run_campaign(
            ["1", "2"], 2, 1, ConcurrencyMode.FAN_OUT,
            resolver=ExplodingResolver("http://gw"), fetch=AsyncMock(return_value=1),
        )

        assert summary.runs[0].successes == 2
        assert summary.runs[1].skipped
        assert "RuntimeError: resolver bug" in summary.runs[1].skip_reason

    @pytest.mark.asyncio
    async def test_reused_scheduler_reports_only_this_campaign(self):
        scheduler = FanOutScheduler()
        resolver = EndpointResolver("http://gw")
        fetch = AsyncMock(return_value=1)

        first = await run_campaign(
            ["1"], 1, 1, ConcurrencyMode.FAN_OUT,
            resolver=resolver, fetch=fetch, scheduler=scheduler,
        )
        second = await run_campaign(
            ["2"], 1, 1, ConcurrencyMode.FAN_OUT,
            resolver=resolver, fetch=fetch, scheduler=scheduler,
        )

        assert [r.chain_id for r in first.runs] == ["1"]
        assert [r.chain_id for r in second.runs] == ["2"]
        assert len(scheduler.tasks) == 2

    @pytest.mark.asyncio
    async def test_scheduler_with_different_cancel_event_rejected(self):
        fetch = AsyncMock(return_value=1)

        with pytest.raises(ConfigurationError) as exc_info:
            await run_campaign(
                ["1"], 1, 1, ConcurrencyMode.FAN_OUT,
                resolver=EndpointResolver("http://gw"), fetch=fetch,
                cancel_event=asyncio.Event(), scheduler=FanOutScheduler(),
            )

        assert exc_info.value.code == ErrorCode.CONFIG_INVALID
        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_scheduler_sharing_cancel_event_accepted(self):
        stop = asyncio.Event()
        stop.set()

        summary = await run_campaign(
            ["1"], 3, 1, ConcurrencyMode.FAN_OUT,
            resolver=EndpointResolver("http://gw"), fetch=AsyncMock(return_value=1),
            cancel_event=stop, scheduler=FanOutScheduler(stop_event=stop),
        )

        assert summary.total_attempts == 0


class TestFanOutScheduler:
    """Task handle set."""

    @pytest.mark.asyncio
    async def test_join_returns_results_in_launch_order(self):
        scheduler = FanOutScheduler()

        async def work(value, delay):
            await asyncio.sleep(delay)
            return value

        scheduler.launch(work("slow", 0.01))
        scheduler.launch(work("fast", 0))

        assert await scheduler.join() == ["slow", "fast"]
        assert scheduler.pending == []

    @pytest.mark.asyncio
    async def test_stop_sets_event(self):
        scheduler = FanOutScheduler()
        assert not scheduler.stop_event.is_set()
        scheduler.stop()
        assert scheduler.stop_event.is_set()

    @pytest.mark.asyncio
    async def test_invalid_max_concurrency(self):
        with pytest.raises(ConfigurationError):
            FanOutScheduler(max_concurrency=0)

    @pytest.mark.asyncio
    async def test_cancel_while_queued_closes_coroutine(self):
        scheduler = FanOutScheduler(max_concurrency=1)
        gate = asyncio.Event()

        scheduler.launch(gate.wait())
        waiting = asyncio.sleep(0)
        queued = scheduler.launch(waiting)
        for _ in range(3):
            await asyncio.sleep(0)

        queued.cancel()
        gate.set()
        results = await scheduler.join()

        assert results[0] is True
        assert isinstance(results[1], asyncio.CancelledError)
        assert waiting.cr_frame is None

    @pytest.mark.asyncio
    async def test_slot_released_after_queued_cancel(self):
        scheduler = FanOutScheduler(max_concurrency=1)
        gate = asyncio.Event()

        scheduler.launch(gate.wait())
        queued = scheduler.launch(asyncio.sleep(0, result="never"))
        await asyncio.sleep(0)
        queued.cancel()
        gate.set()
        later = scheduler.launch(asyncio.sleep(0, result="ran"))

        assert await scheduler.join([later]) == ["ran"]

    @pytest.mark.asyncio
    async def test_join_subset_of_tasks(self):
        scheduler = FanOutScheduler()
        gate = asyncio.Event()

        blocked = scheduler.launch(gate.wait())
        quick = scheduler.launch(asyncio.sleep(0, result="done"))

        assert await scheduler.join([quick]) == ["done"]
        assert scheduler.pending == [blocked]

        gate.set()
        await scheduler.join()
