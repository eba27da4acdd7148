"""
Concurrent enrichment run for one address.

Every task is wrapped in the retry decorator and launched at once; the run
waits for all of them to settle before building the report. A failing task
never cancels another. Only ``ConfigurationError`` (raised while building the
default tasks) escapes, and it does so before anything starts.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Awaitable, Callable, Dict, Optional, Sequence

from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt, wait_fixed

from postbuy.config import HOUSECANARY_KEYS, REQUIRED_KEYS, Settings, load_settings
from postbuy.logging import bind_context, task_finished, task_started, task_transition
from postbuy.models import AggregatedReport, TaskState, WorkerResult, WorkerTask
from postbuy.telemetry import ResourceSampler
from postbuy.workers import build_default_tasks

Sleep = Callable[[float], Awaitable[None]]
AttemptHook = Callable[[str, int], None]


def _coerce(task: WorkerTask, outcome: object) -> WorkerResult:
    if isinstance(outcome, WorkerResult):
        return outcome
    return WorkerResult.failure(f"{task.name} failure: operation returned {type(outcome).__name__}")


async def run_with_retry(
    task: WorkerTask,
    address: str,
    sleep: Sleep = asyncio.sleep,
    on_attempt: Optional[AttemptHook] = None,
    run_id: Optional[str] = None,
) -> tuple[WorkerResult, int]:
    """
    Call ``task.operation`` until it succeeds or ``task.max_retries`` attempts are used.

    Exceptions and ``success=False`` both count as a failed attempt and are
    followed by ``task.retry_delay`` seconds of waiting. Returns the first
    success or the last failure, with the number of attempts made.
    """
    attempts = 0

    async def attempt() -> WorkerResult:
        nonlocal attempts
        attempts += 1
        if on_attempt is not None:
            on_attempt(task.name, attempts)
        task_transition(task.name, TaskState.RUNNING.value, attempts, run_id)
        try:
            result = _coerce(task, await task.operation(address))
        except Exception as exc:
            logger.exception(f"{task.name} raised on attempt {attempts}")
            result = WorkerResult.failure(f"{task.name} failure: {exc}")
        state = TaskState.SUCCEEDED if result.success else TaskState.FAILED
        task_transition(task.name, state.value, attempts, run_id)
        return result

    def before_sleep(retry_state: RetryCallState) -> None:
        result = retry_state.outcome.result()
        bind_context(task=task.name, run_id=run_id).warning(
            f"Attempt {retry_state.attempt_number}/{task.max_retries} failed: {result.message}; "
            f"retrying in {task.retry_delay}s"
        )
        task_transition(task.name, TaskState.PENDING.value, retry_state.attempt_number, run_id)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(task.max_retries),
        wait=wait_fixed(task.retry_delay),
        retry=retry_if_result(lambda result: not result.success),
        before_sleep=before_sleep,
        retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        sleep=sleep,
    )
    result = await retrying(attempt)
    return result, attempts


class EnrichmentOrchestrator:
    def __init__(
        self,
        tasks: Sequence[WorkerTask],
        run_timeout: Optional[float] = None,
        sample_interval: float = 2.0,
        sleep: Sleep = asyncio.sleep,
    ):
        names = [task.name for task in tasks]
        if len(set(names)) != len(names):
            raise ValueError(f"Task names must be unique: {names}")
        self.tasks = tuple(tasks)
        self.run_timeout = run_timeout
        self.sample_interval = sample_interval
        self._sleep = sleep

    async def run_all(self, address: str) -> AggregatedReport:
        if not address or not address.strip():
            raise ValueError("Address is required")
        address = address.strip()
        run_id = uuid.uuid4().hex[:8]
        attempts: Dict[str, int] = {task.name: 0 for task in self.tasks}

        def on_attempt(name: str, number: int) -> None:
            attempts[name] = number

        logger.info(f"[{run_id}] Enriching '{address}' with {len(self.tasks)} task(s)")
        started = time.perf_counter()

        async with ResourceSampler(self.sample_interval) as sampler:
            running: Dict[asyncio.Task, WorkerTask] = {}
            for task in self.tasks:
                task_started(task.name, run_id)
                coro = run_with_retry(task, address, self._sleep, on_attempt, run_id)
                running[asyncio.create_task(coro, name=task.name)] = task

            stragglers: set = set()
            if running:
                _, stragglers = await asyncio.wait(running, timeout=self.run_timeout)
            for aio_task in stragglers:
                aio_task.cancel()
            if stragglers:
                # Let cancelled tasks run their own session cleanup.
                await asyncio.gather(*stragglers, return_exceptions=True)

        results: Dict[str, WorkerResult] = {}
        for aio_task, task in running.items():
            if aio_task in stragglers or aio_task.cancelled():
                result = WorkerResult.failure(
                    f"{task.name} failure: run timed out after {self.run_timeout}s"
                )
            elif aio_task.exception() is not None:
                result = WorkerResult.failure(f"{task.name} failure: {aio_task.exception()}")
            else:
                result, attempts[task.name] = aio_task.result()
            results[task.name] = result
            task_finished(
                task.name,
                {"success": result.success, "attempts": attempts[task.name], "message": result.message},
                run_id,
            )

        report = AggregatedReport(
            address=address,
            results=results,
            attempts=attempts,
            elapsed_seconds=time.perf_counter() - started,
            resource_usage=sampler.usage(),
        )
        logger.info(f"[{run_id}] {report.message} in {report.elapsed_seconds:.1f}s")
        for name in sorted(report.failed_tasks):
            logger.warning(f"[{run_id}] {name}: {results[name].message}")
        return report


async def run_all(
    address: str,
    settings: Optional[Settings] = None,
    tasks: Optional[Sequence[WorkerTask]] = None,
) -> AggregatedReport:
    """Entry point used by the CLI, the HTTP wrapper and the monitor."""
    if not address or not address.strip():
        raise ValueError("Address is required")
    if tasks is None:
        settings = settings or load_settings(required=REQUIRED_KEYS + HOUSECANARY_KEYS)
        tasks = build_default_tasks(settings)
    run_timeout = settings.run_timeout if settings is not None else None
    return await EnrichmentOrchestrator(tasks, run_timeout=run_timeout).run_all(address)
