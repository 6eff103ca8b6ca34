# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Stack Monitor Module

Polls a CloudFormation stack until its current operation reaches a terminal
status, showing the latest resource event while waiting.
"""

import logging
import time
from typing import Callable, Dict, List, Optional

from botocore.exceptions import ClientError
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from .aws import call_with_retries
from .exceptions import (
    IrrecoverableError,
    OperationInterruptedError,
    PartialFailureError,
    WaitTimeoutError,
)
from .models import ResourceFailure

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = {
    "CREATE": {"CREATE_COMPLETE"},
    "UPDATE": {"UPDATE_COMPLETE"},
    "IMPORT": {"IMPORT_COMPLETE"},
    "DELETE": {"DELETE_COMPLETE"},
}


def is_terminal(status: str) -> bool:
    return not status.endswith("_IN_PROGRESS")


class StackMonitor:
    """Waits for stack operations with a bounded total wait"""

    def __init__(
        self,
        cfn,
        poll_interval: float = 10.0,
        timeout: float = 3600.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        console: Optional[Console] = None,
    ):
        """
        Initialize stack monitor

        Args:
            cfn: CloudFormation client
            poll_interval: Seconds between polls
            timeout: Total wait ceiling in seconds
            sleep: Sleep function
            clock: Monotonic clock
            console: Console for the progress spinner
        """
        self.cfn = cfn
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self.console = console or Console()

    def wait(self, stack_id: str, operation: str) -> Dict:
        """
        Wait for a stack operation to reach a terminal status

        Args:
            stack_id: Stack name or ID. Use the ID for DELETE so the deleted
                stack can still be described.
            operation: CREATE, UPDATE, IMPORT or DELETE

        Returns:
            Dictionary with final status and outputs

        Raises:
            PartialFailureError: Terminal status is not the success status
            IrrecoverableError: Deletion ended in DELETE_FAILED
            WaitTimeoutError: The wait ceiling was exceeded
            OperationInterruptedError: The operator interrupted the wait
        """
        success = SUCCESS_STATUSES[operation]
        deadline = self._clock() + self.timeout
        last_status: Optional[str] = None
        last_event = None

        logger.info(f"Waiting for {operation} of {stack_id} to complete...")

        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=self.console,
            ) as progress:
                task = progress.add_task(f"[cyan]{operation} stack: {stack_id}", total=None)

                while True:
                    stack = self._describe(stack_id)
                    if stack is None:
                        # A stack described by name vanishes once deleted
                        last_status = "DELETE_COMPLETE"
                        stack = {}
                    else:
                        last_status = stack.get("StackStatus", "")

                    event = self._latest_event(stack_id)
                    if event and event.get("EventId") != last_event:
                        last_event = event.get("EventId")
                        progress.update(
                            task,
                            description=(
                                f"[cyan]{operation}: {event.get('LogicalResourceId', '')}"
                                f" - {event.get('ResourceStatus', '')}"
                            ),
                        )

                    if is_terminal(last_status):
                        break

                    if self._clock() >= deadline:
                        raise WaitTimeoutError(
                            f"{operation} of {stack_id} did not finish within "
                            f"{int(self.timeout)}s (last status: {last_status})",
                            last_status=last_status,
                        )
                    self._sleep(self.poll_interval)
        except KeyboardInterrupt:
            raise OperationInterruptedError(
                f"Interrupted while waiting for {operation} of {stack_id} "
                f"(last status: {last_status})",
                last_status=last_status,
            )

        if last_status in success:
            logger.info(f"{operation} of {stack_id} finished: {last_status}")
            return {
                "stack_id": stack_id,
                "operation": operation,
                "status": last_status,
                "outputs": {
                    o.get("OutputKey", ""): o.get("OutputValue", "")
                    for o in stack.get("Outputs", [])
                },
            }

        failures = self.failure_details(stack_id)
        detail = "; ".join(str(f) for f in failures) or "detail unavailable"
        message = f"{operation} of {stack_id} ended in {last_status}: {detail}"
        logger.error(message)
        if last_status == "DELETE_FAILED":
            raise IrrecoverableError(message, failures=failures, status=last_status)
        raise PartialFailureError(message, failures=failures, status=last_status)

    def failure_details(self, stack_id: str) -> List[ResourceFailure]:
        """
        Collect the resources that failed, falling back to stack events.

        Returns an empty list when no detail can be retrieved.
        """
        failures: List[ResourceFailure] = []
        try:
            response = self.cfn.describe_stack_resources(StackName=stack_id)
            for resource in response.get("StackResources", []):
                if resource.get("ResourceStatus", "").endswith("FAILED"):
                    failures.append(
                        ResourceFailure(
                            logical_id=resource.get("LogicalResourceId", ""),
                            resource_type=resource.get("ResourceType", ""),
                            status=resource.get("ResourceStatus", ""),
                            reason=resource.get("ResourceStatusReason", "") or "",
                        )
                    )
        except ClientError as e:
            logger.warning(f"Could not describe resources of {stack_id}: {e}")

        if failures:
            return failures

        seen = set()
        try:
            response = self.cfn.describe_stack_events(StackName=stack_id)
            for event in response.get("StackEvents", []):
                logical_id = event.get("LogicalResourceId", "")
                if "FAILED" not in event.get("ResourceStatus", "") or logical_id in seen:
                    continue
                seen.add(logical_id)
                failures.append(
                    ResourceFailure(
                        logical_id=logical_id,
                        resource_type=event.get("ResourceType", ""),
                        status=event.get("ResourceStatus", ""),
                        reason=event.get("ResourceStatusReason", "") or "",
                    )
                )
        except ClientError as e:
            logger.warning(f"Could not read events of {stack_id}: {e}")
        return failures

    def _describe(self, stack_id: str) -> Optional[Dict]:
        try:
            response = call_with_retries(
                self.cfn.describe_stacks, StackName=stack_id, sleep=self._sleep
            )
        except ClientError as e:
            if "does not exist" in str(e):
                return None
            raise
        stacks = response.get("Stacks", [])
        return stacks[0] if stacks else None

    def _latest_event(self, stack_id: str) -> Optional[Dict]:
        try:
            response = self.cfn.describe_stack_events(StackName=stack_id)
        except ClientError as e:
            logger.debug(f"Error getting stack events: {e}")
            return None
        events = response.get("StackEvents", [])
        return events[0] if events else None
