"""Retrying HTTP fetch layer with a narrow insecure-TLS fallback."""

from __future__ import annotations

import ssl
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

import httpx

from .errors import TransportError
from .logging import get_logger

logger = get_logger(__name__)

# OpenSSL X509_V_ERR_UNABLE_TO_GET_ISSUER_CERT_LOCALLY
_ISSUER_UNKNOWN_CODE = 20
_ISSUER_UNKNOWN_TEXT = "unable to get local issuer certificate"


@dataclass(frozen=True, slots=True)
class FetchPolicy:
    retries: int = 3
    retry_delay_ms: int = 1000
    label: str = "Fetch"
    allow_insecure_tls: bool = False

    def __post_init__(self) -> None:
        if self.retries < 1:
            raise ValueError("retries must be at least 1")


def _default_insecure_client(timeout: float, headers: httpx.Headers) -> httpx.Client:
    return httpx.Client(timeout=timeout, headers=headers, follow_redirects=True, verify=False)


class ResilientFetcher:
    """Sends a single request with bounded retries and linear backoff."""

    def __init__(
        self,
        client: httpx.Client,
        sleep: Callable[[float], None] = time.sleep,
        insecure_client_factory: Optional[Callable[[float, httpx.Headers], httpx.Client]] = None,
    ) -> None:
        self._client = client
        self._sleep = sleep
        self._insecure_client_factory = insecure_client_factory or _default_insecure_client

    def fetch(self, method: str, url: str, policy: FetchPolicy, **kwargs: Any) -> httpx.Response:
        """Return the first response obtained; HTTP status is left to the caller."""
        last_error: Optional[httpx.TransportError] = None
        for attempt in range(1, policy.retries + 1):
            try:
                return self._client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                last_error = exc
                if policy.allow_insecure_tls and is_issuer_unknown_error(exc):
                    return self._fetch_insecure(method, url, policy, **kwargs)
                logger.warning(
                    "http_retry",
                    label=policy.label,
                    url=url,
                    attempt=attempt,
                    retries=policy.retries,
                    error=str(exc),
                )
                if attempt < policy.retries:
                    self._sleep(policy.retry_delay_ms * attempt / 1000)

        raise TransportError(f"{policy.label} failed: {last_error}", cause=last_error) from last_error

    def _fetch_insecure(
        self, method: str, url: str, policy: FetchPolicy, **kwargs: Any
    ) -> httpx.Response:
        logger.warning("tls_fallback_insecure", label=policy.label, url=url)
        timeout = self._client.timeout.read or 30.0
        # Dedicated client so verification stays on for every other request.
        with self._insecure_client_factory(timeout, self._client.headers) as insecure:
            try:
                response = insecure.request(method, url, **kwargs)
                response.read()
                return response
            except httpx.TransportError as exc:
                raise TransportError(
                    f"{policy.label} failed: insecure TLS fallback: {exc}", cause=exc
                ) from exc


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def is_issuer_unknown_error(exc: BaseException) -> bool:
    """True when the failure is a missing-issuer certificate verification error."""
    for item in _exception_chain(exc):
        if (
            isinstance(item, ssl.SSLCertVerificationError)
            and getattr(item, "verify_code", None) == _ISSUER_UNKNOWN_CODE
        ):
            return True
        if _ISSUER_UNKNOWN_TEXT in str(item).lower():
            return True
    return False
