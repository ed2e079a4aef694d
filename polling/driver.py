# PATH: polling/driver.py
"""
polling/driver.py - Polling driver (runs and campaigns).

A run is a fixed number of sequential attempts against one endpoint.
A campaign is every configured chain, repeated N times, either one run
after another (sequential) or all runs launched at once (fan-out).

Failure isolation:
- an attempt's exception becomes a Failure outcome at that index
- a chain whose endpoint cannot be resolved is recorded as a skipped run
- nothing above the attempt level sees transport exceptions
"""

import asyncio
import time
from typing import AsyncIterator, Awaitable, Callable, Coroutine, Iterable, List, Optional, TypeVar

from chains.endpoints import EndpointResolver
from core.constants import ConcurrencyMode, ErrorCode, DEFAULT_ATTEMPT_COUNT, DEFAULT_REPETITIONS
from core.exceptions import ConfigurationError, HarnessError
from core.logging import ContextAdapter, get_logger, log_error, log_failure, log_success
from core.models import Attempt, CampaignSummary, Endpoint, Failure, Outcome, RunSummary, Success

logger = get_logger("rpcpoll.driver")

Fetch = Callable[[Endpoint], Awaitable[int]]
T = TypeVar("T")


def _validate_run_args(attempt_count: int, delay_seconds: Optional[float]) -> None:
    if attempt_count < 1:
        raise ConfigurationError(
            f"attempt_count must be positive, got {attempt_count}",
            code=ErrorCode.CONFIG_INVALID,
        )
    if delay_seconds is not None and delay_seconds < 0:
        raise ConfigurationError(
            f"delay must be non-negative, got {delay_seconds}",
            code=ErrorCode.CONFIG_INVALID,
        )


def run_once(
    endpoint: Endpoint,
    attempt_count: int = DEFAULT_ATTEMPT_COUNT,
    delay_seconds: Optional[float] = None,
    *,
    fetch: Fetch,
    cancel_event: Optional[asyncio.Event] = None,
    log: Optional[ContextAdapter] = None,
) -> AsyncIterator[Attempt]:
    """
    Start a run against one endpoint.

    Args:
        endpoint: Resolved endpoint
        attempt_count: Number of attempts (> 0)
        delay_seconds: Pause between consecutive attempts; None = back-to-back
        fetch: Latest-block-number call, awaited once per attempt
        cancel_event: When set, the run stops before its next attempt
        log: Logger carrying run context

    Returns:
        Async iterator yielding one Attempt per index, in order

    Raises:
        ConfigurationError: Invalid attempt_count or delay (raised immediately)
    """
    _validate_run_args(attempt_count, delay_seconds)
    return _attempts(
        endpoint,
        attempt_count,
        delay_seconds,
        fetch,
        cancel_event,
        log or logger.bind(chain_id=endpoint.chain_id),
    )


async def _attempts(
    endpoint: Endpoint,
    attempt_count: int,
    delay_seconds: Optional[float],
    fetch: Fetch,
    cancel_event: Optional[asyncio.Event],
    log: ContextAdapter,
) -> AsyncIterator[Attempt]:
    for index in range(attempt_count):
        if index > 0 and delay_seconds:
            await asyncio.sleep(delay_seconds)

        if cancel_event is not None and cancel_event.is_set():
            log.info(
                "run cancelled",
                extra={"context": {"completed_attempts": index}},
            )
            return

        start = time.monotonic()
        outcome: Outcome
        try:
            block_number = await fetch(endpoint)
        except Exception as e:
            code = e.code if isinstance(e, HarnessError) else ErrorCode.UNKNOWN
            outcome = Failure(reason=str(e) or type(e).__name__, error_code=code)
        else:
            outcome = Success(block_number=block_number)
        latency_ms = int((time.monotonic() - start) * 1000)

        if isinstance(outcome, Success):
            log_success(log, index, outcome.block_number, latency_ms)
        else:
            log_failure(log, index, outcome.error_code.value, outcome.reason, latency_ms=latency_ms)

        yield Attempt(index=index, endpoint=endpoint, outcome=outcome, latency_ms=latency_ms)


class FanOutScheduler:
    """
    Explicit set of launched run tasks.

    launch() never waits for earlier tasks. An optional max_concurrency
    bounds how many launched tasks are active at once; the rest wait on a
    semaphore. stop() signals runs to end before their next attempt.
    """

    def __init__(
        self,
        max_concurrency: Optional[int] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        if max_concurrency is not None and max_concurrency < 1:
            raise ConfigurationError(
                f"max_concurrency must be positive, got {max_concurrency}",
                code=ErrorCode.CONFIG_INVALID,
            )
        self.max_concurrency = max_concurrency
        self.stop_event = stop_event or asyncio.Event()
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None
        self._tasks: List[asyncio.Task] = []

    def launch(self, coro: Coroutine[None, None, T], name: Optional[str] = None) -> "asyncio.Task[T]":
        task = asyncio.create_task(self._guarded(coro), name=name)
        self._tasks.append(task)
        return task

    async def _guarded(self, coro: Coroutine[None, None, T]) -> T:
        if self._semaphore is None:
            return await coro
        try:
            await self._semaphore.acquire()
        except asyncio.CancelledError:
            # cancelled while queued: the run never started
            coro.close()
            raise
        try:
            return await coro
        finally:
            self._semaphore.release()

    @property
    def tasks(self) -> tuple:
        return tuple(self._tasks)

    @property
    def pending(self) -> List[asyncio.Task]:
        return [t for t in self._tasks if not t.done()]

    def stop(self) -> None:
        self.stop_event.set()

    async def join(self, tasks: Optional[Iterable[asyncio.Task]] = None) -> list:
        """
        Wait for tasks (default: every launched task).

        Results come back in the given order. A task that was cancelled or
        raised contributes its exception instead of a result.
        """
        tasks = list(self._tasks if tasks is None else tasks)
        return list(await asyncio.gather(*tasks, return_exceptions=True))


def _aborted_run(chain_id: str, repetition: int, error: BaseException) -> RunSummary:
    """Summary for a run task that was cancelled or raised."""
    if isinstance(error, asyncio.CancelledError):
        reason = "run task cancelled"
    else:
        reason = f"run task failed: {type(error).__name__}: {error}"
    log_error(
        logger.bind(chain_id=str(chain_id), repetition=repetition),
        ErrorCode.UNKNOWN.value,
        reason,
    )
    return RunSummary(
        chain_id=str(chain_id),
        repetition=repetition,
        skipped=True,
        skip_reason=reason,
    )


async def drive_run(
    chain_id: str,
    resolver: EndpointResolver,
    fetch: Fetch,
    attempt_count: int = DEFAULT_ATTEMPT_COUNT,
    delay_seconds: Optional[float] = None,
    repetition: int = 0,
    cancel_event: Optional[asyncio.Event] = None,
) -> RunSummary:
    """Resolve one chain's endpoint and drive its run to completion."""
    summary = RunSummary(chain_id=str(chain_id), repetition=repetition)
    run_log = logger.bind(chain_id=str(chain_id), repetition=repetition)

    try:
        endpoint = resolver.resolve(chain_id)
    except ConfigurationError as e:
        log_error(run_log, e.code.value, f"skipping chain: {e.message}")
        summary.skipped = True
        summary.skip_reason = str(e)
        return summary

    run_log = run_log.bind(url=endpoint.redacted_url)
    run_log.info("run started", extra={"context": {"attempt_count": attempt_count}})

    async for attempt in run_once(
        endpoint,
        attempt_count,
        delay_seconds,
        fetch=fetch,
        cancel_event=cancel_event,
        log=run_log,
    ):
        summary.record(attempt)

    run_log.info(
        "run completed",
        extra={"context": {"successes": summary.successes, "failures": summary.failures}},
    )
    return summary


async def run_campaign(
    chain_ids: Iterable[str],
    attempt_count: int = DEFAULT_ATTEMPT_COUNT,
    repetitions: int = DEFAULT_REPETITIONS,
    mode: ConcurrencyMode = ConcurrencyMode.SEQUENTIAL,
    *,
    resolver: EndpointResolver,
    fetch: Fetch,
    delay_seconds: Optional[float] = None,
    max_concurrency: Optional[int] = None,
    cancel_event: Optional[asyncio.Event] = None,
    scheduler: Optional[FanOutScheduler] = None,
) -> CampaignSummary:
    """
    Run every chain, repetitions times.

    Sequential mode finishes each run before starting the next. Fan-out
    mode launches one task per (repetition, chain) without waiting on
    earlier ones, then joins the tasks launched by this call. A task that
    ends cancelled or with an exception is recorded as a skipped run.

    Args:
        chain_ids: Ordered chain identifiers (duplicates are polled twice)
        attempt_count: Attempts per run
        repetitions: Passes over the chain list
        mode: ConcurrencyMode
        resolver: Endpoint resolver
        fetch: Latest-block-number call
        delay_seconds: Pause between attempts within a run
        max_concurrency: Fan-out cap on simultaneously active runs
        cancel_event: Stops runs between attempts when set
        scheduler: Pre-built fan-out scheduler (for inspection); its
            stop_event is the campaign's cancel event

    Returns:
        CampaignSummary with one RunSummary per (repetition, chain),
        ordered by repetition then chain

    Raises:
        ConfigurationError: Invalid counts or delay, or a cancel_event that
            differs from the given scheduler's stop_event (before any run
            starts)
    """
    chain_ids = list(chain_ids)
    _validate_run_args(attempt_count, delay_seconds)
    if repetitions < 1:
        raise ConfigurationError(
            f"repetitions must be positive, got {repetitions}",
            code=ErrorCode.CONFIG_INVALID,
        )

    if (
        scheduler is not None
        and cancel_event is not None
        and cancel_event is not scheduler.stop_event
    ):
        raise ConfigurationError(
            "pass cancel_event or a scheduler with its own stop_event, not both",
            code=ErrorCode.CONFIG_INVALID,
        )

    campaign = CampaignSummary()
    if not chain_ids:
        logger.info("no chain identifiers configured; nothing to do")
        return campaign

    mode = ConcurrencyMode(mode)
    logger.info(
        "campaign started",
        extra={
            "context": {
                "chains": chain_ids,
                "repetitions": repetitions,
                "attempt_count": attempt_count,
                "mode": mode.value,
            }
        },
    )

    def make_run(chain_id: str, repetition: int, stop: Optional[asyncio.Event]):
        return drive_run(
            chain_id,
            resolver,
            fetch,
            attempt_count=attempt_count,
            delay_seconds=delay_seconds,
            repetition=repetition,
            cancel_event=stop,
        )

    if mode is ConcurrencyMode.SEQUENTIAL:
        for repetition in range(repetitions):
            for chain_id in chain_ids:
                campaign.runs.append(await make_run(chain_id, repetition, cancel_event))
    else:
        if scheduler is None:
            scheduler = FanOutScheduler(max_concurrency=max_concurrency, stop_event=cancel_event)
        launched = []
        for repetition in range(repetitions):
            for chain_id in chain_ids:
                task = scheduler.launch(
                    make_run(chain_id, repetition, scheduler.stop_event),
                    name=f"run-{chain_id}-{repetition}",
                )
                launched.append((chain_id, repetition, task))

        results = await scheduler.join([task for _, _, task in launched])
        for (chain_id, repetition, _), result in zip(launched, results):
            if isinstance(result, BaseException):
                result = _aborted_run(chain_id, repetition, result)
            campaign.runs.append(result)

    logger.info("campaign completed", extra={"context": campaign.to_dict()})
    return campaign
