"""Tests for AWS client construction and error classification."""

from __future__ import annotations

import pytest
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    HTTPClientError,
    NoCredentialsError,
    ProxyConnectionError,
    ReadTimeoutError,
    ResponseStreamingError,
    SSLError,
)

from kms_envelope.aws import error_code, is_error_retryable, new_client
from kms_envelope.config import Settings


def client_error(code: str, status: int) -> ClientError:
    return ClientError(
        {"Error": {"Code": code}, "ResponseMetadata": {"HTTPStatusCode": status}}, "Op"
    )


@pytest.mark.parametrize(
    "error",
    [
        ReadTimeoutError(endpoint_url="https://example"),
        ConnectTimeoutError(endpoint_url="https://example"),
        EndpointConnectionError(endpoint_url="https://example"),
        ConnectionClosedError(endpoint_url="https://example"),
        HTTPClientError(error="connection reset by peer"),
        ResponseStreamingError(error="connection broken: IncompleteRead"),
        ProxyConnectionError(proxy_url="http://proxy:3128", error="refused"),
        SSLError(endpoint_url="https://example", error="handshake failure"),
        client_error("Throttling", 400),
        client_error("TooManyRequestsException", 429),
        client_error("ServiceUnavailable", 503),
        client_error("InternalFailure", 500),
    ],
)
def test_retryable(error):
    assert is_error_retryable(error) is True


@pytest.mark.parametrize(
    "error",
    [
        client_error("AccessDeniedException", 400),
        client_error("ValidationException", 400),
        NoCredentialsError(),
        ValueError("not an sdk error"),
    ],
)
def test_not_retryable(error):
    assert is_error_retryable(error) is False


def test_error_code():
    assert error_code(client_error("NoSuchKey", 404)) == "NoSuchKey"
    assert error_code(ValueError("x")) == ""


def test_new_client_uses_settings():
    settings = Settings(region="eu-central-1", endpoint_url="http://localhost:4566")
    client = new_client("kms", settings)

    assert client.meta.region_name == "eu-central-1"
    assert client.meta.endpoint_url == "http://localhost:4566"
