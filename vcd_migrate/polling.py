"""Bounded readiness polling built on tenacity."""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    wait_fixed,
)

from vcd_migrate.client import VcdClient
from vcd_migrate.config import ReadinessConfig
from vcd_migrate.exceptions import ReadinessTimeoutError, RestError

logger = structlog.get_logger(__name__)


def _not_ready(ready: bool) -> bool:
    return not ready


def build_retrying(policy: ReadinessConfig, description: str) -> AsyncRetrying:
    """Translate the configured policy into a tenacity retrier.

    Only a falsy probe result is retried. Exceptions raised by the probe
    propagate on the first occurrence.
    """
    stop = stop_after_attempt(policy.max_attempts)
    if policy.max_elapsed is not None:
        stop = stop | stop_after_delay(policy.max_elapsed)

    if policy.backoff == "exponential":
        wait = wait_exponential(multiplier=policy.poll_interval, max=policy.max_interval)
    else:
        wait = wait_fixed(policy.poll_interval)

    def log_poll(retry_state: RetryCallState) -> None:
        logger.info(
            "Waiting for object to become ready",
            object=description,
            attempt=retry_state.attempt_number,
        )

    return AsyncRetrying(
        stop=stop,
        wait=wait,
        retry=retry_if_result(_not_ready),
        before_sleep=log_poll,
    )


async def wait_until_ready(
    probe: Callable[[], Awaitable[bool]],
    policy: ReadinessConfig,
    description: str,
) -> None:
    """Call ``probe`` until it returns True.

    Args:
        probe: Coroutine function reporting readiness.
        policy: Poll interval, bounds and backoff.
        description: Object being waited on, for logs and errors.

    Raises:
        ReadinessTimeoutError: When the policy is exhausted.
    """
    retrying = build_retrying(policy, description)
    try:
        await retrying(probe)
    except RetryError as e:
        attempts = e.last_attempt.attempt_number
        logger.error(
            "Object never became ready", object=description, attempts=attempts
        )
        raise ReadinessTimeoutError(
            f"{description} not ready after {attempts} polls"
        ) from e

    logger.info("Object is ready", object=description)


async def settle(policy: ReadinessConfig, description: str) -> None:
    """Fixed wait after readiness; the target accepts objects before they are usable."""
    if policy.settle_delay > 0:
        logger.info(
            "Waiting for object to settle",
            object=description,
            seconds=policy.settle_delay,
        )
        await asyncio.sleep(policy.settle_delay)


# Terminal Task states other than "success"
FAILED_TASK_STATES = ("error", "aborted", "canceled")


async def wait_for_task(
    client: VcdClient,
    task_document: Mapping[str, Any] | None,
    policy: ReadinessConfig,
    description: str,
) -> None:
    """Poll a vCD Task returned by an asynchronous call until it succeeds.

    A response without a Task body is treated as already complete.

    Raises:
        RestError: The task ended in error, was aborted or canceled.
        ReadinessTimeoutError: When the policy is exhausted.
    """
    task = (task_document or {}).get("Task")
    if not isinstance(task, Mapping) or not task.get("@href"):
        return
    href = task["@href"]

    async def task_succeeded() -> bool:
        document = await client.get(href)
        current = document.get("Task") or {}
        status = current.get("@status")
        if status in FAILED_TASK_STATES:
            error = current.get("Error")
            message = error.get("@message") if isinstance(error, Mapping) else None
            raise RestError(message or f"Task {status}", method="GET", url=href)
        return status == "success"

    await wait_until_ready(task_succeeded, policy, description)
