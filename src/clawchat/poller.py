"""Background polling of asynchronous gateway runs.

A poll loop is an ``asyncio.Task`` owned by the poller, not by whoever
started it, so it keeps running after the initiating view goes away. Every
terminal transition (complete, error, exhausted) reports through a handler
first and then clears the durable pending record.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from clawchat.client import GatewayClient, GatewayError
from clawchat.config import PollConfig
from clawchat.models import JobStatus, PendingJob
from clawchat.pending import PendingJobStore

logger = logging.getLogger(__name__)

GENERIC_JOB_ERROR = "Job failed"


class PollState(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"
    EXHAUSTED = "exhausted"


class PollTransientError(Exception):
    pass


class JobError(Exception):
    pass


class JobExhausted(JobError):
    pass


CompleteHandler = Callable[[str, PendingJob, str], Awaitable[None] | None]
ErrorHandler = Callable[[str, PendingJob, JobError], Awaitable[None] | None]
Sleeper = Callable[[float], Awaitable[Any]]


class JobPoller:
    def __init__(
        self,
        client: GatewayClient,
        pending_store: PendingJobStore,
        config: PollConfig | None = None,
        on_complete: CompleteHandler | None = None,
        on_error: ErrorHandler | None = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.client = client
        self.pending_store = pending_store
        self.config = config or PollConfig()
        self.on_complete = on_complete
        self.on_error = on_error
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task] = {}
        self.states: dict[str, PollState] = {}

    def is_polling(self, conversation_id: str) -> bool:
        task = self._tasks.get(conversation_id)
        return task is not None and not task.done()

    def start(
        self, conversation_id: str, job: PendingJob, immediate: bool = False
    ) -> asyncio.Task:
        existing = self._tasks.get(conversation_id)
        if existing is not None and not existing.done():
            logger.debug(f"Poll loop already running for {conversation_id}")
            return existing

        self.states[conversation_id] = PollState.PENDING
        task = asyncio.create_task(
            self._run(conversation_id, job, immediate),
            name=f"poll-{job.run_id}",
        )
        self._tasks[conversation_id] = task
        task.add_done_callback(lambda t: self._forget(conversation_id, t))
        return task

    def resume(self, conversation_id: str) -> asyncio.Task | None:
        if self.is_polling(conversation_id):
            return self._tasks[conversation_id]
        job = self.pending_store.get(conversation_id)
        if job is None:
            return None
        logger.info(f"Resuming run {job.run_id} for conversation {conversation_id}")
        return self.start(conversation_id, job, immediate=True)

    async def wait(self, conversation_id: str) -> PollState | None:
        task = self._tasks.get(conversation_id)
        if task is not None:
            return await task
        return self.states.get(conversation_id)

    async def cancel(self, conversation_id: str) -> None:
        self.states.pop(conversation_id, None)
        task = self._tasks.pop(conversation_id, None)
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        for conversation_id in list(self._tasks):
            await self.cancel(conversation_id)

    def _forget(self, conversation_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(conversation_id) is task:
            del self._tasks[conversation_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Poll loop for {conversation_id} crashed: {task.exception()}"
            )

    async def _run(
        self, conversation_id: str, job: PendingJob, immediate: bool
    ) -> PollState:
        delay = 0.0 if immediate else self.config.initial_delay

        for attempt in range(1, self.config.max_attempts + 1):
            if delay > 0:
                await self._sleep(delay)
            delay = self.config.interval

            try:
                status = await self._check(job)
            except PollTransientError as e:
                logger.warning(
                    f"Status check {attempt}/{self.config.max_attempts} failed, "
                    f"retrying in {delay:.1f}s: {e}"
                )
                continue

            if status.status == "complete":
                logger.info(f"Run {job.run_id} complete after {attempt} checks")
                await self._call(self.on_complete, conversation_id, job, status.content or "")
                return self._finish(conversation_id, PollState.COMPLETE)

            if status.status == "error":
                message = status.error or GENERIC_JOB_ERROR
                logger.warning(f"Run {job.run_id} failed: {message}")
                await self._call(self.on_error, conversation_id, job, JobError(message))
                return self._finish(conversation_id, PollState.ERROR)

            logger.debug(
                f"Run {job.run_id} still pending ({attempt}/{self.config.max_attempts})"
            )

        message = (
            f"No response for run {job.run_id} after "
            f"{self.config.max_attempts} status checks"
        )
        logger.warning(message)
        await self._call(self.on_error, conversation_id, job, JobExhausted(message))
        return self._finish(conversation_id, PollState.EXHAUSTED)

    async def _check(self, job: PendingJob) -> JobStatus:
        try:
            return await self.client.poll_status(job.run_id)
        except GatewayError as e:
            raise PollTransientError(f"run {job.run_id}: {e}") from e

    def _finish(self, conversation_id: str, state: PollState) -> PollState:
        self.pending_store.clear(conversation_id)
        self.states[conversation_id] = state
        return state

    async def _call(self, handler, *args) -> None:
        if handler is None:
            return
        result = handler(*args)
        if inspect.isawaitable(result):
            await result
