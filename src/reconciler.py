"""
Lifecycle Reconciler - Drives one remote resource through apply, fetch and
delete against a ResourceApi.

The control plane is asynchronous and eventually consistent; the reconciler
hides that behind three awaitable operations that block until a terminal
outcome or the caller's deadline. Time is read from an injected Clock so
polling can be exercised without real delays.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from arm_client import LongRunningOperation, OperationStatus
from config import MIN_DELETE_POLL_INTERVAL
from errors import (
    OperationFailedError,
    OperationTimeoutError,
    ProviderError,
    RequestError,
)
from resource_ids import ResourceId

logger = logging.getLogger(__name__)


class Clock(ABC):
    """Source of monotonic time and suspension for polling loops."""

    @abstractmethod
    def monotonic(self) -> float:
        """Current monotonic time in seconds."""
        pass

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for the given number of seconds."""
        pass


class SystemClock(Clock):
    """Clock backed by time.monotonic and asyncio.sleep."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class OutcomeStatus(Enum):
    """Terminal result of a lifecycle operation."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class DeleteState(Enum):
    """States of the delete confirmation loop."""

    PENDING = "Pending"
    DELETED = "Deleted"
    FAILED = "Failed"


class DeleteConfirmation(Enum):
    """How completion of a delete is established."""

    # Re-read the resource until it is gone
    EXISTENCE_PROBE = "existence_probe"
    # Trust the delete request's own operation handle
    OPERATION = "operation"


@dataclass
class Outcome:
    """Result of apply() or delete()."""

    status: OutcomeStatus
    message: str = ""
    error: Optional[ProviderError] = None
    probes: int = 0
    model: Optional[Dict[str, Any]] = None
    state: Optional[DeleteState] = None

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

    def raise_for_status(self) -> "Outcome":
        """Raise the carried error unless the outcome succeeded."""
        if self.succeeded:
            return self
        if self.error is not None:
            raise self.error
        raise ProviderError(self.message or f"operation {self.status.value}")


def _failed(error: ProviderError, probes: int = 0, **kwargs) -> Outcome:
    return Outcome(
        status=OutcomeStatus.FAILED,
        message=error.message,
        error=error,
        probes=probes,
        **kwargs,
    )


def _timed_out(context: str, timeout: float, probes: int, **kwargs) -> Outcome:
    error = OperationTimeoutError(f"{context}: timed out after {timeout:g}s")
    return Outcome(
        status=OutcomeStatus.TIMED_OUT,
        message=error.message,
        error=error,
        probes=probes,
        **kwargs,
    )


class LifecycleReconciler:
    """
    Apply, fetch and delete one resource type through a ResourceApi.

    The API client and clock are injected; nothing is resolved from global
    state.
    """

    def __init__(
        self,
        api: Any,
        clock: Optional[Clock] = None,
        delete_poll_interval: float = MIN_DELETE_POLL_INTERVAL,
        operation_poll_interval: float = 10,
        delete_confirmation: DeleteConfirmation = DeleteConfirmation.EXISTENCE_PROBE,
    ):
        self.api = api
        self.clock = clock or SystemClock()
        self.delete_poll_interval = max(delete_poll_interval, MIN_DELETE_POLL_INTERVAL)
        self.operation_poll_interval = operation_poll_interval
        self.delete_confirmation = delete_confirmation

    async def apply(
        self, identity: ResourceId, desired: Dict[str, Any], timeout: float
    ) -> Outcome:
        """
        Create or update a resource and wait for the operation to finish.

        Args:
            identity: The resource ID.
            desired: Request document in the API's shape.
            timeout: Seconds before the wait gives up.

        Returns:
            Outcome; SUCCEEDED carries the final model when available.
        """
        deadline = self.clock.monotonic() + timeout
        logger.info(f"Creating/updating {identity}")

        try:
            operation = await self.api.create_or_update(identity, desired)
        except RequestError as e:
            logger.error(f"Creating/updating {identity} was rejected: {e.message}")
            return _failed(e.with_context(f"creating/updating {identity}"))

        return await self._await_operation(
            operation, deadline, timeout, f"waiting for creation/update of {identity}"
        )

    async def fetch(self, identity: ResourceId) -> Optional[Dict[str, Any]]:
        """
        Read a resource once.

        Returns:
            The observed model, or None if the resource does not exist.

        Raises:
            RequestError: For any failure other than not-found.
        """
        try:
            return await self.api.get(identity)
        except RequestError as e:
            if e.was_not_found:
                return None
            raise e.with_context(f"retrieving {identity}") from e

    async def delete(self, identity: ResourceId, timeout: float) -> Outcome:
        """
        Delete a resource and wait until it is confirmed gone.

        Deleting a resource that no longer exists succeeds.

        Args:
            identity: The resource ID.
            timeout: Seconds before the wait gives up.

        Returns:
            Outcome with ``state`` set to the final DeleteState.
        """
        deadline = self.clock.monotonic() + timeout
        logger.info(f"Deleting {identity}")

        operation: Optional[LongRunningOperation] = None
        try:
            operation = await self.api.delete(identity)
        except RequestError as e:
            if not e.was_not_found:
                logger.error(f"Deleting {identity} was rejected: {e.message}")
                return _failed(
                    e.with_context(f"deleting {identity}"), state=DeleteState.FAILED
                )
            logger.debug(f"{identity} was already gone when delete was requested")

        context = f"waiting for deletion of {identity}"

        if self.delete_confirmation is DeleteConfirmation.OPERATION:
            if operation is None:
                return Outcome(
                    status=OutcomeStatus.SUCCEEDED, state=DeleteState.DELETED
                )
            outcome = await self._await_operation(operation, deadline, timeout, context)
            outcome.state = {
                OutcomeStatus.SUCCEEDED: DeleteState.DELETED,
                OutcomeStatus.FAILED: DeleteState.FAILED,
                OutcomeStatus.TIMED_OUT: DeleteState.PENDING,
            }[outcome.status]
            return outcome

        # The operation handle does not report the transition to not-found
        # reliably, so completion is confirmed by re-reading the resource.
        logger.debug(f"Waiting for {identity} to be deleted")
        return await self._confirm_deleted(identity, deadline, timeout, context)

    async def _confirm_deleted(
        self, identity: ResourceId, deadline: float, timeout: float, context: str
    ) -> Outcome:
        state = DeleteState.PENDING
        probes = 0

        while state is DeleteState.PENDING:
            probes += 1
            try:
                observed = await self.fetch(identity)
            except RequestError as e:
                state = DeleteState.FAILED
                logger.error(f"{context}: {e.message}")
                return _failed(e.with_context(context), probes=probes, state=state)

            if observed is None:
                state = DeleteState.DELETED
                break

            logger.debug(
                f"{identity} still exists after {probes} probe(s), "
                f"next check in {self.delete_poll_interval:g}s"
            )
            if not await self._wait_tick(deadline, self.delete_poll_interval):
                logger.error(f"{context}: timed out after {timeout:g}s")
                return _timed_out(context, timeout, probes, state=state)

        logger.info(f"{identity} deleted")
        return Outcome(status=OutcomeStatus.SUCCEEDED, probes=probes, state=state)

    async def _await_operation(
        self,
        operation: LongRunningOperation,
        deadline: float,
        timeout: float,
        context: str,
    ) -> Outcome:
        probes = 0

        while True:
            if operation.done:
                result = operation.result
            else:
                probes += 1
                try:
                    result = await operation.poll()
                except RequestError as e:
                    logger.error(f"{context}: {e.message}")
                    return _failed(e.with_context(context), probes=probes)

            if result.status is OperationStatus.SUCCEEDED:
                return Outcome(
                    status=OutcomeStatus.SUCCEEDED, probes=probes, model=result.model
                )

            if result.status.is_terminal:
                detail = result.error_message or "no error detail returned"
                if result.error_code:
                    detail = f"{result.error_code}: {detail}"
                error = OperationFailedError(
                    f"{context}: operation {result.status.value}: {detail}",
                    code=result.error_code,
                )
                logger.error(error.message)
                return _failed(error, probes=probes)

            interval = max(self.operation_poll_interval, operation.retry_after or 0)
            logger.debug(f"{context}: still in progress, next poll in {interval:g}s")
            if not await self._wait_tick(deadline, interval):
                logger.error(f"{context}: timed out after {timeout:g}s")
                return _timed_out(context, timeout, probes)

    async def _wait_tick(self, deadline: float, interval: float) -> bool:
        """
        Sleep one tick unless the deadline comes first.

        Returns:
            True if another probe may run, False once the deadline is reached.
            When less than a full tick remains the sleep stops at the deadline,
            so probes are never closer together than ``interval``.
        """
        remaining = deadline - self.clock.monotonic()
        if remaining <= 0:
            return False
        if remaining < interval:
            await self.clock.sleep(remaining)
            return False
        await self.clock.sleep(interval)
        return self.clock.monotonic() < deadline
