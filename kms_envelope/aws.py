"""
Shared AWS plumbing: session/client construction and error classification.
"""

from __future__ import annotations

from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from .config import Settings

# Error codes AWS reports for transient throttling on any service.
THROTTLING_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "RequestThrottledException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "SlowDown",
    }
)


def new_session(settings: Optional[Settings] = None) -> boto3.Session:
    """Create a boto3 session from settings (region and profile)."""
    settings = settings or Settings()
    kwargs = {}
    if settings.profile:
        kwargs["profile_name"] = settings.profile
    if settings.region:
        kwargs["region_name"] = settings.region
    return boto3.Session(**kwargs)


def new_client(
    service: str,
    settings: Optional[Settings] = None,
    session: Optional[boto3.Session] = None,
) -> Any:
    """
    Create a boto3 service client.

    SDK-level retries are disabled; retry policy belongs to the caller and
    is driven by each error's ``retryable`` flag.
    """
    settings = settings or Settings()
    session = session or new_session(settings)
    kwargs = {"config": BotoConfig(retries={"max_attempts": 1, "mode": "standard"})}
    if settings.endpoint_url:
        kwargs["endpoint_url"] = settings.endpoint_url
    return session.client(service, **kwargs)


def error_code(exc: BaseException) -> str:
    """Return the AWS error code of a ClientError, or an empty string."""
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "") or ""
    return ""


def is_error_retryable(exc: BaseException) -> bool:
    """
    Classify an SDK failure as retryable.

    Dispatch I/O failures are retryable: everything under botocore's
    HTTPClientError (read timeouts, resets, broken response streams) and
    ConnectionError (connect timeouts, endpoint, proxy and TLS failures).
    So are throttling codes and server-side (5xx) responses. Everything
    else is not.
    """
    if isinstance(exc, (HTTPClientError, BotoConnectionError)):
        return True
    if isinstance(exc, ClientError):
        if error_code(exc) in THROTTLING_ERROR_CODES:
            return True
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        return status >= 500
    return False
