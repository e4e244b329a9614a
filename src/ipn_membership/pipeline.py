"""
IPN Pipeline Coordinator.

Runs one delivery through parse -> verify -> validate -> sync and turns the
first failing stage into exactly one response. The status code tells
PayPal whether to redeliver:

- 2xx: processed, or permanently irrelevant (do not retry)
- 4xx: unusable or forged payload
- 5xx: transient failure, PayPal's own retry schedule redelivers
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

from ipn_membership.core.config import Config
from ipn_membership.core.exceptions import MalformedPayloadError, UnsupportedMediaTypeError
from ipn_membership.core.logging import delivery_logger
from ipn_membership.core.types import (
    IPNResponse,
    MembershipUpsertResult,
    PipelineOutcome,
    VerificationResult,
)
from ipn_membership.ipn.client import PayPalIPNClient, VerificationTransport
from ipn_membership.ipn.parser import IPNParser
from ipn_membership.ipn.validator import validate
from ipn_membership.ipn.verifier import IPNVerifier
from ipn_membership.mailing.client import MailchimpClient, MailingListClient
from ipn_membership.mailing.sync import MembershipSynchronizer

STATUS_OK = 200
STATUS_BAD_REQUEST = 400
STATUS_UNSUPPORTED_MEDIA_TYPE = 415
STATUS_INTERNAL_ERROR = 500
STATUS_BAD_GATEWAY = 502
STATUS_UNAVAILABLE = 503


def _respond(
    status_code: int,
    outcome: PipelineOutcome,
    message: str,
    stage: str,
    txn_id: str | None = None,
) -> IPNResponse:
    return IPNResponse(
        status_code=status_code, outcome=outcome, message=message, txn_id=txn_id, stage=stage
    )


class IPNPipeline:
    """
    Coordinates the IPN stages for a single delivery.

    Holds no per-request state, so one instance serves concurrent deliveries.

    Usage:
        pipeline = IPNPipeline.from_config(config)
        response = await pipeline.handle(body, request.headers.get("content-type"))
    """

    def __init__(
        self,
        config: Config,
        verifier: IPNVerifier,
        synchronizer: MembershipSynchronizer,
        parser: IPNParser | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._verifier = verifier
        self._synchronizer = synchronizer
        self._parser = parser or IPNParser()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(
        cls,
        config: Config,
        transport: VerificationTransport | None = None,
        mailing_list: MailingListClient | None = None,
    ) -> IPNPipeline:
        """Wire the default PayPal and MailChimp clients unless substitutes are given."""
        transport = transport or PayPalIPNClient(
            config.paypal_verify_url, timeout=config.verify_timeout
        )
        mailing_list = mailing_list or MailchimpClient.from_config(config)
        return cls(
            config=config,
            verifier=IPNVerifier(config, transport),
            synchronizer=MembershipSynchronizer(config, mailing_list),
        )

    async def handle(self, body: bytes, content_type: str | None) -> IPNResponse:
        """
        Process one IPN delivery.

        Never raises: every failure is mapped to a response.
        """
        try:
            return await self._process(body, content_type)
        except Exception as e:
            delivery_logger(None).exception(f"Unexpected error while processing IPN: {e}")
            return _respond(
                STATUS_INTERNAL_ERROR,
                PipelineOutcome.TRANSIENT_RETRY,
                "Internal error",
                stage="unexpected",
            )

    async def _process(self, body: bytes, content_type: str | None) -> IPNResponse:
        log = delivery_logger(None)
        log.info("PayPal IPN Notification Event received successfully.")

        # Parse
        try:
            raw = self._parser.parse(body, content_type)
        except UnsupportedMediaTypeError as e:
            log.warning(f"IPN rejected [unsupported_media_type]: {e}")
            return _respond(
                STATUS_UNSUPPORTED_MEDIA_TYPE,
                PipelineOutcome.REJECTED_NO_RETRY,
                str(e),
                stage="parse",
            )
        except MalformedPayloadError as e:
            log.warning(f"IPN rejected [malformed_payload]: {e}")
            return _respond(
                STATUS_BAD_REQUEST, PipelineOutcome.REJECTED_NO_RETRY, str(e), stage="parse"
            )

        try:
            parsed = self._parser.project(raw)
        except MalformedPayloadError as e:
            txn_id = raw.get("txn_id")
            delivery_logger(txn_id).warning(
                f"IPN rejected [malformed_payload] field={e.field}: {e}"
            )
            return _respond(
                STATUS_BAD_REQUEST,
                PipelineOutcome.REJECTED_NO_RETRY,
                str(e),
                stage="parse",
                txn_id=txn_id,
            )

        txn_id = parsed.txn_id
        log = delivery_logger(txn_id)
        log.info(f"Payment Timestamp: {parsed.timestamp.isoformat()}")

        # Verify
        if self._config.paypal_sandbox:
            log.info("SANDBOX: Using PayPal sandbox environment")
        verification = await self._verifier.verify(raw)
        if verification == VerificationResult.INVALID:
            log.warning(
                f"IPN rejected [verification_failure]: PayPal says INVALID, possible forgery "
                f"(payer={parsed.payer_email}, receiver={parsed.receiver_email})"
            )
            return _respond(
                STATUS_BAD_REQUEST,
                PipelineOutcome.REJECTED_NO_RETRY,
                "IPN verification failed",
                stage="verify",
                txn_id=txn_id,
            )
        if verification == VerificationResult.PROVIDER_UNREACHABLE:
            log.error("IPN deferred [provider_unreachable]: PayPal verification unavailable")
            return _respond(
                STATUS_UNAVAILABLE,
                PipelineOutcome.TRANSIENT_RETRY,
                "IPN verification unavailable",
                stage="verify",
                txn_id=txn_id,
            )
        log.info(f'Verified IPN: IPN message for Transaction ID "{txn_id}" is verified')

        # Validate
        outcome = validate(parsed, self._config, now=self._clock())
        reason = outcome.reason
        if reason is not None:
            log.info(f"IPN ignored [validation_rejection:{reason.value}]: {outcome.detail}")
            return _respond(
                STATUS_OK,
                PipelineOutcome.REJECTED_NO_RETRY,
                f"Ignored: {reason.value}",
                stage="validate",
                txn_id=txn_id,
            )

        log.info(
            f'IPN: type: "{parsed.txn_type_raw}" - gross amount: {parsed.gross} - '
            f"currency: {parsed.currency} - exchange rate: {parsed.exchange_rate or '(none)'}"
        )

        # Sync
        upsert = await self._synchronizer.upsert(parsed)
        if upsert.result == MembershipUpsertResult.PROVIDER_ERROR:
            log.error(f"IPN deferred [sync_provider_error]: {upsert.cause}")
            return _respond(
                STATUS_BAD_GATEWAY,
                PipelineOutcome.TRANSIENT_RETRY,
                "Mailing list update failed",
                stage="sync",
                txn_id=txn_id,
            )

        log.info(f"IPN processed: membership {upsert.result.value} for {parsed.payer_email}")
        return _respond(
            STATUS_OK,
            PipelineOutcome.SUCCESS,
            f"OK: {upsert.result.value}",
            stage="sync",
            txn_id=txn_id,
        )
