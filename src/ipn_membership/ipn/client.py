"""
PayPal IPN verification transport.

The verifier depends on the VerificationTransport protocol only, so tests
and other runtimes can substitute their own transport.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx

from ipn_membership.core.exceptions import NetworkError
from ipn_membership.core.logging import get_logger
from ipn_membership.ipn.parser import FORM_CONTENT_TYPE

logger = get_logger("paypal")

USER_AGENT = "ipn-membership/1.0"


@dataclass(frozen=True)
class VerificationReply:
    """Raw answer from the verification endpoint."""

    status_code: int
    text: str

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class VerificationTransport(Protocol):
    """Capability to send one verification request to PayPal."""

    async def send_verification(self, body: bytes) -> VerificationReply:
        """
        POST ``body`` to the verification endpoint.

        Raises:
            NetworkError: If no HTTP response was obtained
        """
        ...


class PayPalIPNClient:
    """
    httpx-backed VerificationTransport.

    Usage:
        client = PayPalIPNClient(config.paypal_verify_url, timeout=config.verify_timeout)
        reply = await client.send_verification(b"cmd=_notify-validate&" + raw.body)
    """

    def __init__(
        self,
        verify_url: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            verify_url: Full URL of PayPal's IPN verification endpoint.
            timeout: Request timeout in seconds.
            http_client: Shared httpx client (for connection pooling and tests).
        """
        self._verify_url = verify_url
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = False

    @property
    def verify_url(self) -> str:
        return self._verify_url

    async def _get_client(self) -> httpx.AsyncClient:
        """Lazy-init HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close owned HTTP client."""
        if self._owns_client and self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def send_verification(self, body: bytes) -> VerificationReply:
        client = await self._get_client()
        logger.debug(f"POST {self._verify_url}")
        try:
            response = await client.post(
                self._verify_url,
                content=body,
                headers={"Content-Type": FORM_CONTENT_TYPE, "User-Agent": USER_AGENT},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(
                f"PayPal verification timed out after {self._timeout}s", url=self._verify_url
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(
                f"PayPal verification request failed: {e}", url=self._verify_url
            ) from e
        return VerificationReply(status_code=response.status_code, text=response.text)
