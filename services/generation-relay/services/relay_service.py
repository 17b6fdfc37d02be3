import asyncio
import re
import time
from typing import Awaitable, Callable, Optional, TypeVar
from urllib.parse import urlparse

import structlog
from core.config import Settings
from core.exceptions import ProviderError, ProviderTransportError, ValidationException
from core.logging import task_context
from core.retry import call_with_retries
from core.telemetry import tracer
from domain.interfaces import GenerationProvider
from domain.models import (
    MISSING_RESULT,
    SUBMIT_TIMEOUT,
    UNRECOGNIZED_STATUS,
    ErrorDetails,
    GenerationRequest,
    GenerationTask,
    TaskHandle,
    TaskSnapshot,
    TaskStatus,
)
from services.image_validator import validate_request

logger = structlog.get_logger()

TASK_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,127}$")

T = TypeVar("T")


def _is_model_url(url: Optional[str]) -> bool:
    if not url or not isinstance(url, str):
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class GenerationRelay:
    """
    Turns a provider's slow asynchronous job into something a request handler
    can wait on: submit, poll, and a budget-bounded wait that either ends in a
    terminal snapshot or hands back a resumable 'processing' one.

    Deadlines are absolute times on `clock`. An outbound call still running
    when its deadline passes is abandoned.

    The relay keeps no state between calls; the provider owns the task.
    """

    def __init__(
        self,
        provider: GenerationProvider,
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider
        self.settings = settings
        self._clock = clock
        self._sleep = sleep

    async def _with_retries(self, operation, description: str, deadline: Optional[float] = None):
        return await call_with_retries(
            operation,
            max_retries=self.settings.MAX_RETRIES,
            backoff_base=self.settings.RETRY_BACKOFF_BASE,
            description=description,
            sleep=self._sleep,
            deadline=deadline,
            clock=self._clock,
        )

    async def _before_deadline(self, operation: Callable[[], Awaitable[T]], deadline: float) -> T:
        """Raises asyncio.TimeoutError if `operation` is not done by `deadline`."""
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise asyncio.TimeoutError()
        return await asyncio.wait_for(operation(), timeout=remaining)

    async def submit(self, request: GenerationRequest, deadline: Optional[float] = None) -> TaskHandle:
        validate_request(request)

        async def attempt() -> TaskHandle:
            return await self._with_retries(
                lambda: self.provider.submit(request), f"{self.provider.name}.submit", deadline
            )

        with tracer.start_as_current_span("relay.submit") as span, task_context(self.provider.name):
            if deadline is None:
                handle = await attempt()
            else:
                try:
                    handle = await self._before_deadline(attempt, deadline)
                except asyncio.TimeoutError:
                    logger.warning("submit_timed_out")
                    raise ProviderTransportError(
                        f"{self.provider.name.capitalize()} did not accept the task in time.",
                        code=SUBMIT_TIMEOUT,
                        suggestion="Try again; the provider is slow to respond right now.",
                        provider=self.provider.name,
                    )

            span.set_attribute("relay.task_id", handle.task_id)
            logger.info("generation_submitted", task_id=handle.task_id, provider_trace_id=handle.trace_id)

        return handle

    @staticmethod
    def _check_task_id(task_id: str) -> None:
        if not task_id or not TASK_ID_PATTERN.match(task_id):
            raise ValidationException("Missing or invalid taskId.")

    async def poll(self, task_id: str, deadline: Optional[float] = None) -> TaskSnapshot:
        self._check_task_id(task_id)

        with tracer.start_as_current_span("relay.poll") as span, task_context(self.provider.name, task_id):
            snapshot = await self._with_retries(
                lambda: self.provider.poll(task_id), f"{self.provider.name}.poll", deadline
            )
            span.set_attribute("relay.status", snapshot.status.value)

            snapshot = self._require_result_url(snapshot)
            logger.debug(
                "task_polled",
                status=snapshot.status.value,
                raw_status=snapshot.raw_status,
                progress=snapshot.progress,
            )
        return snapshot

    def _require_result_url(self, snapshot: TaskSnapshot) -> TaskSnapshot:
        """Success only counts when it comes with a usable model URL."""
        if snapshot.status is not TaskStatus.SUCCEEDED or _is_model_url(snapshot.result_url):
            return snapshot

        logger.error("task_succeeded_without_result", task_id=snapshot.task_id, provider=self.provider.name)
        return snapshot.model_copy(
            update={
                "status": TaskStatus.FAILED,
                "result_url": None,
                "error": ErrorDetails(
                    code=MISSING_RESULT,
                    message=f"{self.provider.name.capitalize()} task succeeded but no model URL was returned",
                    suggestion="Retry the generation; the provider did not deliver a model file.",
                    trace_id=snapshot.trace_id,
                ),
            }
        )

    def time_budget(self, requested: Optional[float] = None) -> float:
        """The smaller of what the caller asked for and what the host allows."""
        effective = self.settings.effective_time_budget()
        if requested is None:
            return effective
        return max(0.0, min(requested, effective))

    async def await_completion(
        self,
        task_id: str,
        poll_interval: Optional[float] = None,
        time_budget: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> TaskSnapshot:
        """
        Polls until the task is terminal or the budget is spent.

        Running out of budget is not an error: the returned snapshot is
        non-terminal and carries the task id so the caller can resume. A poll
        still in flight at the deadline is abandoned. An explicit `deadline`
        takes precedence over `time_budget`.

        Provider errors propagate with `task_id` set on them.
        """
        self._check_task_id(task_id)
        interval = poll_interval if poll_interval and poll_interval > 0 else self.settings.POLLING_INTERVAL
        if deadline is None:
            deadline = self._clock() + self.time_budget(time_budget)
        tolerance = self.settings.UNRECOGNIZED_STATUS_TOLERANCE

        task = GenerationTask(task_id=task_id)
        unrecognized_streak = 0
        polls = 0

        with tracer.start_as_current_span("relay.await_completion") as span, task_context(
            self.provider.name, task_id
        ):
            span.set_attribute("relay.time_budget", max(deadline - self._clock(), 0.0))

            try:
                while True:
                    try:
                        polled = await self._before_deadline(lambda: self.poll(task_id, deadline), deadline)
                    except asyncio.TimeoutError:
                        logger.info("time_budget_exhausted", polls=polls, status=task.status.value, in_flight=True)
                        return task.processing_snapshot()

                    snapshot = task.observe(polled)
                    polls += 1

                    if snapshot.is_terminal:
                        logger.info("task_finished", status=snapshot.status.value, polls=polls)
                        return snapshot

                    if snapshot.recognized:
                        unrecognized_streak = 0
                    else:
                        unrecognized_streak += 1
                        logger.warning(
                            "task_status_unrecognized",
                            raw_status=snapshot.raw_status,
                            streak=unrecognized_streak,
                        )
                        if unrecognized_streak >= tolerance:
                            return task.observe(self._unrecognized_failure(snapshot))

                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        logger.info("time_budget_exhausted", polls=polls, status=snapshot.status.value)
                        return task.processing_snapshot()

                    await self._sleep(min(interval, remaining))
            except ProviderError as e:
                if e.task_id is None:
                    e.task_id = task_id
                raise

    def _unrecognized_failure(self, snapshot: TaskSnapshot) -> TaskSnapshot:
        return snapshot.model_copy(
            update={
                "status": TaskStatus.FAILED,
                "error": ErrorDetails(
                    code=UNRECOGNIZED_STATUS,
                    message=f"{self.provider.name.capitalize()} kept reporting unrecognized status "
                    f"'{snapshot.raw_status}'",
                    trace_id=snapshot.trace_id,
                ),
            }
        )

    async def generate(self, request: GenerationRequest, time_budget: Optional[float] = None) -> TaskSnapshot:
        """
        Submit, then wait. One deadline covers both steps.
        A zero budget submits and returns 'processing' without polling.
        """
        budget = self.time_budget(time_budget)
        deadline = self._clock() + budget

        handle = await self.submit(request, deadline=deadline if budget > 0 else None)
        snapshot = await self.await_completion(handle.task_id, deadline=deadline)
        if snapshot.trace_id is None and handle.trace_id:
            snapshot = snapshot.model_copy(update={"trace_id": handle.trace_id})
        return snapshot
