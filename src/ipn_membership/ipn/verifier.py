"""
IPN Verifier.

Re-posts the exact received body to PayPal, prefixed with the
``cmd=_notify-validate`` marker, and interprets the verdict.
"""

from __future__ import annotations

import asyncio

from ipn_membership.core.config import Config
from ipn_membership.core.exceptions import NetworkError
from ipn_membership.core.logging import get_logger
from ipn_membership.core.types import RawNotification, VerificationResult
from ipn_membership.ipn.client import VerificationTransport

logger = get_logger("verifier")

VERIFY_PREFIX = b"cmd=_notify-validate&"
VERIFIED_TOKEN = "VERIFIED"
INVALID_TOKEN = "INVALID"


def build_verification_body(raw: RawNotification) -> bytes:
    """The literal received body, prefixed with the confirmation marker."""
    return VERIFY_PREFIX + raw.body


class IPNVerifier:
    """
    Asks PayPal whether a notification is authentic.

    Exactly one outbound call per ``verify``; no retries and no caching.
    Anything other than an exact VERIFIED/INVALID answer within the timeout
    is PROVIDER_UNREACHABLE, which is never treated as verified.
    """

    def __init__(self, config: Config, transport: VerificationTransport) -> None:
        self._config = config
        self._transport = transport

    async def verify(self, raw: RawNotification) -> VerificationResult:
        body = build_verification_body(raw)
        timeout = self._config.verify_timeout

        try:
            reply = await asyncio.wait_for(self._transport.send_verification(body), timeout)
        except asyncio.TimeoutError:
            logger.error(f"PayPal verification timed out after {timeout}s")
            return VerificationResult.PROVIDER_UNREACHABLE
        except NetworkError as e:
            logger.error(f"PayPal verification unreachable: {e}")
            return VerificationResult.PROVIDER_UNREACHABLE

        if not reply.is_success:
            logger.error(f"PayPal IPN verification failed - status: {reply.status_code}")
            return VerificationResult.PROVIDER_UNREACHABLE

        if reply.text == VERIFIED_TOKEN:
            return VerificationResult.VERIFIED
        if reply.text == INVALID_TOKEN:
            return VerificationResult.INVALID

        logger.error(f"Unexpected IPN verify response body: {reply.text[:200]!r}")
        return VerificationResult.PROVIDER_UNREACHABLE
