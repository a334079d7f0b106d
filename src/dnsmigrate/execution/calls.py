"""Call-scoped retry policies.

Each collaborator call is bounded by a timeout and retried on its own, so a
transient failure never forces already-successful work to be redone:

- CallPolicy: Provisioner, DnsAdmin and Resolver calls. Timeouts and
  TransientCollaboratorError are retried with exponential backoff; anything
  else (ApplyRejected in particular) propagates untouched on first sight.
- confirm_link_with_retry: LinkProbe confirmation, retried on LinkNotReachable.

Both cap attempts at MAX_ATTEMPTS regardless of configuration.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import ProbeConfig, RetryConfig
from ..constants import DEFAULT_CALL_TIMEOUT, DEFAULT_MAX_ATTEMPTS
from ..core.connectivity import ConnectivityTracker
from ..models.connectivity import ConnectivityEdge
from ..observability.metrics import get_global_collector
from ..utils.exceptions import ApplyRejected, LinkNotReachable, TransientCollaboratorError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = DEFAULT_MAX_ATTEMPTS


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Retrying after transient failure",
        attempt=retry_state.attempt_number,
        error=str(error),
    )


class CallPolicy:
    """
    Timeout plus bounded retry for one collaborator call.

    Usage:
        policy = CallPolicy(RetryConfig(), timeout=30.0)
        handle = await policy.call("create_or_update", spec.name,
                                   lambda: provisioner.create_or_update(spec))
    """

    def __init__(self, retry: RetryConfig | None = None, timeout: float | None = None) -> None:
        self.retry = retry or RetryConfig()
        self.timeout = DEFAULT_CALL_TIMEOUT if timeout is None else timeout

    @property
    def max_attempts(self) -> int:
        return max(1, min(self.retry.max_attempts, MAX_ATTEMPTS))

    async def call(self, operation: str, target: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run `fn` with the timeout and retry policy.

        Args:
            operation: Collaborator operation name, for logs and metrics
            target: Entity the call is about
            fn: Zero-argument factory returning a fresh awaitable per attempt

        Raises:
            TransientCollaboratorError: Still failing after the last attempt
            ApplyRejected: The collaborator rejected the request
        """
        collector = get_global_collector()
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientCollaboratorError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.retry.backoff_multiplier,
                min=self.retry.backoff_min,
                max=self.retry.backoff_max,
            ),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                start = time.monotonic()
                logger.debug("Collaborator call", operation=operation, target=target)
                try:
                    result = await asyncio.wait_for(fn(), self.timeout)
                except TimeoutError as e:
                    collector.count_call(operation, "timeout")
                    raise TransientCollaboratorError(
                        operation, target, f"timed out after {self.timeout}s"
                    ) from e
                except TransientCollaboratorError:
                    collector.count_call(operation, "transient")
                    raise
                except ApplyRejected:
                    collector.count_call(operation, "rejected")
                    raise
                collector.count_call(operation, "ok")
                collector.record_latency(operation, (time.monotonic() - start) * 1000)
                return result
        raise AssertionError("unreachable")  # pragma: no cover


async def confirm_link_with_retry(
    tracker: ConnectivityTracker,
    segment_a: str,
    segment_b: str,
    probe: ProbeConfig | None = None,
) -> ConnectivityEdge:
    """
    Confirm a declared link, retrying LinkNotReachable with backoff.

    Raises:
        LinkNotReachable: The link is still unreachable after the last attempt;
            the edge stays unverified.
    """
    probe = probe or ProbeConfig()
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(LinkNotReachable),
        stop=stop_after_attempt(max(1, min(probe.max_attempts, MAX_ATTEMPTS))),
        wait=wait_exponential(
            multiplier=probe.backoff_multiplier, min=probe.backoff_min, max=probe.backoff_max
        ),
        before_sleep=_log_retry,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await tracker.confirm_link(segment_a, segment_b)
    raise AssertionError("unreachable")  # pragma: no cover
