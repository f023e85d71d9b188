"""HTTP transport with bounded retry, plus backoff for the outer loop."""

from linkrelay.http.backoff import ExponentialBackoff
from linkrelay.http.client import HTTPClient, HTTPClientError, RetryConfig

__all__ = ["ExponentialBackoff", "HTTPClient", "HTTPClientError", "RetryConfig"]
