# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Foundation CLI Exceptions

Categorized exception classes. Every failure that leaves the CLI is one of
these, so the operator always sees what failed and where to look next.
"""

from typing import List, Optional, Sequence


class FoundationError(Exception):
    """Base exception for all foundation errors."""

    category = "ERROR"
    default_hint: Optional[str] = None

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint or self.default_hint


class PreconditionError(FoundationError):
    """
    Raised when the environment is not ready for a mutating operation.

    Examples:
        - Uncommitted changes in the repository
        - Invalid or missing AWS credentials
        - Template missing or not declaring a required parameter
    """

    category = "PRECONDITION"
    default_hint = "Run 'foundation-cli check' to list unmet prerequisites"


class ThumbprintError(PreconditionError):
    """Raised when an OIDC issuer thumbprint cannot be computed."""

    default_hint = "Verify the issuer host is reachable over HTTPS from this machine"


class UnsupportedProviderError(FoundationError):
    """Raised when the repository host has no known OIDC federation endpoint."""

    category = "UNSUPPORTED_PROVIDER"
    default_hint = (
        "Supported hosts are github.com, gitlab.com and bitbucket.org; "
        "configure OIDC manually for other providers"
    )


class StateConflictError(FoundationError):
    """Raised when another stack operation is already in progress."""

    category = "STATE_CONFLICT"
    default_hint = "Wait for the current operation to finish and run again"


class TransientApiError(FoundationError):
    """Raised when a read keeps failing with throttling or service errors."""

    category = "TRANSIENT_API"
    default_hint = "Retry in a few minutes; check AWS service health if it persists"


class StackOperationError(FoundationError):
    """
    Base for failures that carry per-resource diagnostics.

    Args:
        message: Human readable summary
        failures: Individual resources that failed (ResourceFailure models)
        status: Last observed stack status
        hint: Next diagnostic step
    """

    def __init__(
        self,
        message: str,
        failures: Optional[Sequence] = None,
        status: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message, hint)
        self.failures: List = list(failures or [])
        self.status = status

    @property
    def detail_available(self) -> bool:
        return bool(self.failures)


class PartialFailureError(StackOperationError):
    """Raised when some sub-resources of a multi-resource operation failed."""

    category = "PARTIAL_FAILURE"
    default_hint = "Inspect the failure reason of each listed resource"


class IrrecoverableError(StackOperationError):
    """Raised when a stack is stuck and requires manual operator action."""

    category = "IRRECOVERABLE"
    default_hint = (
        "Delete or retain the listed resources manually in the CloudFormation "
        "console, then run again"
    )


class WaitTimeoutError(FoundationError):
    """Raised when a stack operation does not finish within the wait ceiling."""

    category = "TIMEOUT"
    default_hint = "Check the stack events in the CloudFormation console before retrying"

    def __init__(self, message: str, last_status: Optional[str] = None):
        super().__init__(message)
        self.last_status = last_status


class OperationInterruptedError(FoundationError):
    """Raised when the operator interrupts a blocking wait."""

    category = "INTERRUPTED"
    default_hint = "The stack operation continues server-side; run 'foundation-cli status'"

    def __init__(self, message: str, last_status: Optional[str] = None):
        super().__init__(message)
        self.last_status = last_status
