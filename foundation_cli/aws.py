# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
AWS helpers: session construction, client retry configuration and error
classification shared by all components.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, EndpointConnectionError

from .exceptions import TransientApiError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Botocore handles throttling on every call; call_with_retries adds a bounded
# outer loop for reads only.
CLIENT_CONFIG = Config(retries={"mode": "adaptive", "max_attempts": 5})

TRANSIENT_ERROR_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "SlowDown",
    "RequestTimeout",
    "RequestTimeoutException",
    "InternalError",
    "InternalFailure",
    "ServiceUnavailable",
    "ServiceUnavailableException",
}

NOT_FOUND_CODES = {"404", "NoSuchBucket", "NotFound", "ResourceNotFoundException"}


def create_session(
    region: Optional[str] = None, profile: Optional[str] = None
) -> boto3.Session:
    """Create a boto3 session for the given profile and region"""
    if profile:
        return boto3.Session(profile_name=profile, region_name=region)
    return boto3.Session(region_name=region)


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def is_not_found(error: ClientError) -> bool:
    """True for definitive not-found answers from S3, DynamoDB and CloudFormation"""
    return error_code(error) in NOT_FOUND_CODES or "does not exist" in str(error)


def is_transient(error: Exception) -> bool:
    if isinstance(error, EndpointConnectionError):
        return True
    if isinstance(error, ClientError):
        code = error_code(error)
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        return code in TRANSIENT_ERROR_CODES or status >= 500
    return False


def call_with_retries(
    fn: Callable[..., T],
    *args,
    attempts: int = 4,
    base_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs,
) -> T:
    """
    Call a read-only AWS API, retrying throttling and service errors

    Args:
        fn: Bound client method
        attempts: Total attempts before giving up
        base_delay: First backoff delay in seconds, doubled per attempt
        sleep: Sleep function

    Returns:
        The API response

    Raises:
        TransientApiError: If every attempt failed with a transient error
    """
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except (ClientError, EndpointConnectionError) as e:
            if not is_transient(e):
                raise
            if attempt == attempts:
                raise TransientApiError(
                    f"AWS API still failing after {attempts} attempts: {e}"
                ) from e
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                f"Transient error (attempt {attempt}/{attempts}), retrying in {delay}s: {e}"
            )
            sleep(delay)
    raise AssertionError("unreachable")
