"""
Waiting for remote long-running actions.

Mutations against the API return an action that completes after the call
has returned. ActionWaiter turns such an action into a terminal outcome,
suspending the caller in between polls instead of spinning.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from cloudprovider.hcloud.client import HCloudClient
from cloudprovider.hcloud.models import Action, ActionStatus
from errors import ActionCanceledError, ActionFailedError

logger = logging.getLogger(__name__)


class ActionOutcome(Enum):
    """Terminal outcomes of waiting for an action."""

    SUCCESS = "success"
    FAILURE = "failure"
    CANCELED = "canceled"


@dataclass(frozen=True)
class ActionResult:
    """Result of ActionWaiter.wait()."""

    outcome: ActionOutcome
    action_id: int
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome == ActionOutcome.SUCCESS

    def raise_for_outcome(self, operation: str) -> None:
        """
        Raise if the action did not succeed.

        Args:
            operation: Description used as the error prefix
                (e.g. 'unable to create route').

        Raises:
            ActionFailedError: The action ended in an error state.
            ActionCanceledError: The wait was canceled or timed out.
        """
        if self.success:
            return
        if self.outcome == ActionOutcome.FAILURE:
            raise ActionFailedError(
                f"{operation}: action {self.action_id} failed: "
                f"{self.error_message} ({self.error_code})",
                action_id=self.action_id,
                code=self.error_code,
                reason=self.error_message,
            )
        if self.outcome == ActionOutcome.CANCELED:
            raise ActionCanceledError(
                f"{operation}: waiting for action {self.action_id} was canceled",
                action_id=self.action_id,
            )


class ActionWaiter:
    """
    Blocks on a remote action until it succeeds, fails, or the caller gives up.

    The poll delay starts at ``poll_interval`` and doubles up to
    ``max_poll_interval``. The action itself is never retried and is left
    running on cancellation.
    """

    def __init__(
        self,
        client: HCloudClient,
        poll_interval: float = 1.0,
        max_poll_interval: float = 10.0,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.client = client
        self.poll_interval = poll_interval
        self.max_poll_interval = max(poll_interval, max_poll_interval)
        self.timeout = timeout
        self.cancel_event = cancel_event

    async def wait(
        self,
        action: Action,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> ActionResult:
        """
        Wait for an action to reach a terminal state.

        Args:
            action: The action returned by a mutating call.
            cancel_event: Setting this event ends the wait with CANCELED.
                Defaults to the waiter's own event.
            timeout: Deadline in seconds, after which the wait ends with
                CANCELED. Defaults to the waiter's own timeout.

        Returns:
            ActionResult with the terminal outcome.

        Raises:
            TransportError: Polling the action failed.
        """
        cancel_event = cancel_event or self.cancel_event
        timeout = timeout if timeout is not None else self.timeout

        if action.is_terminal:
            return self._to_result(action)

        poll_task = asyncio.create_task(self._poll(action.id))
        pending = {poll_task}
        if cancel_event is not None:
            pending.add(asyncio.create_task(cancel_event.wait()))

        try:
            done, _ = await asyncio.wait(
                pending, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in pending:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if poll_task in done:
            return self._to_result(poll_task.result())

        reason = "deadline exceeded" if not done else "canceled"
        logger.warning(
            f"Stopped waiting for action {action.id} ({action.command}): {reason}"
        )
        return ActionResult(outcome=ActionOutcome.CANCELED, action_id=action.id)

    async def _poll(self, action_id: int) -> Action:
        """Poll an action with backoff until it is terminal."""
        delay = self.poll_interval

        while True:
            await asyncio.sleep(delay)
            action = await self.client.get_action(action_id)

            if action.is_terminal:
                return action

            logger.debug(
                f"Action {action_id} ({action.command}) at {action.progress}%, "
                f"waiting {delay}s..."
            )
            delay = min(delay * 2, self.max_poll_interval)

    @staticmethod
    def _to_result(action: Action) -> ActionResult:
        if action.status == ActionStatus.SUCCESS:
            return ActionResult(outcome=ActionOutcome.SUCCESS, action_id=action.id)

        error = action.error
        return ActionResult(
            outcome=ActionOutcome.FAILURE,
            action_id=action.id,
            error_code=error.code if error else None,
            error_message=error.message if error else None,
        )
