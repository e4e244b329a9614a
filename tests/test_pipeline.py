"""
End-to-end tests for the IPN pipeline coordinator.

PayPal and MailChimp are replaced by in-process fakes, so every scenario
runs through the real parser, verifier, validator and synchronizer.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from conftest import NOW, PAYER, TODAY, FakeVerificationTransport, build_ipn
from ipn_membership.core.exceptions import MailingListError, NetworkError
from ipn_membership.core.types import PipelineOutcome
from ipn_membership.ipn.parser import FORM_CONTENT_TYPE
from ipn_membership.ipn.verifier import IPNVerifier
from ipn_membership.mailing.sync import MembershipSynchronizer
from ipn_membership.pipeline import IPNPipeline


def make_pipeline(config, transport, mailing_list) -> IPNPipeline:
    return IPNPipeline(
        config=config,
        verifier=IPNVerifier(config, transport),
        synchronizer=MembershipSynchronizer(config, mailing_list, today=lambda: TODAY),
        clock=lambda: NOW,
    )


@pytest.fixture
def pipeline(config, transport, mailing_list) -> IPNPipeline:
    return make_pipeline(config, transport, mailing_list)


class TestSuccess:
    @pytest.mark.asyncio
    async def test_completed_payment_is_applied(self, pipeline, transport, mailing_list) -> None:
        response = await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)

        assert response.status_code == 200
        assert response.outcome == PipelineOutcome.SUCCESS
        assert response.message == "OK: applied"
        assert response.txn_id == "61E67681CH3238416"
        assert transport.calls == [b"cmd=_notify-validate&" + build_ipn()]
        assert mailing_list.record(PAYER)["status"] == "pending"

    @pytest.mark.asyncio
    async def test_usd_payment_is_applied(self, pipeline, mailing_list) -> None:
        response = await pipeline.handle(build_ipn(mc_currency="USD"), FORM_CONTENT_TYPE)

        assert response.status_code == 200
        assert response.message == "OK: applied"

    @pytest.mark.asyncio
    async def test_redelivery_is_already_current(self, pipeline, transport, mailing_list) -> None:
        """Same verified IPN twice: re-verified each time, one subscriber record."""
        first = await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)
        second = await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)

        assert first.message == "OK: applied"
        assert second.status_code == 200
        assert second.outcome == PipelineOutcome.SUCCESS
        assert second.message == "OK: already_current"
        assert len(transport.calls) == 2
        assert len(mailing_list.members) == 1
        assert mailing_list.writes() == [("PUT", PAYER)]

    @pytest.mark.asyncio
    async def test_redelivery_on_a_later_day_is_already_current(
        self, config, transport, mailing_list
    ) -> None:
        """PayPal redelivers for days; the expiry must not creep forward."""
        days = [TODAY]
        pipeline = IPNPipeline(
            config=config,
            verifier=IPNVerifier(config, transport),
            synchronizer=MembershipSynchronizer(config, mailing_list, today=lambda: days[-1]),
            clock=lambda: NOW,
        )

        first = await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)
        days.append(TODAY + timedelta(days=1))
        second = await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)

        assert first.message == "OK: applied"
        assert second.message == "OK: already_current"
        assert mailing_list.writes() == [("PUT", PAYER)]
        assert mailing_list.record(PAYER)["merge_fields"]["EXPIRES"] == "2027-10-19"

    @pytest.mark.asyncio
    async def test_unsubscribed_member_is_acknowledged(self, pipeline, mailing_list) -> None:
        mailing_list.add(PAYER, status="unsubscribed")

        response = await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)

        assert response.status_code == 200
        assert response.outcome == PipelineOutcome.SUCCESS
        assert response.message == "OK: skipped"


class TestParseFailures:
    """Unusable payloads never reach PayPal or MailChimp."""

    @pytest.mark.asyncio
    async def test_wrong_content_type(self, pipeline, transport, mailing_list) -> None:
        response = await pipeline.handle(b'{"txn_id": "1"}', "application/json")

        assert response.status_code == 415
        assert response.outcome == PipelineOutcome.REJECTED_NO_RETRY
        assert response.stage == "parse"
        assert transport.calls == []
        assert mailing_list.calls == []

    @pytest.mark.asyncio
    async def test_malformed_body(self, pipeline, transport) -> None:
        response = await pipeline.handle(b"txn_id=%zz", FORM_CONTENT_TYPE)

        assert response.status_code == 400
        assert response.outcome == PipelineOutcome.REJECTED_NO_RETRY
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_missing_transaction_id(self, pipeline, transport) -> None:
        response = await pipeline.handle(build_ipn(txn_id=None), FORM_CONTENT_TYPE)

        assert response.status_code == 400
        assert response.outcome == PipelineOutcome.REJECTED_NO_RETRY
        assert transport.calls == []


class TestVerificationFailures:
    @pytest.mark.asyncio
    async def test_invalid_never_syncs(self, config, mailing_list) -> None:
        """Forged payloads cause no mailing-list calls at all."""
        transport = FakeVerificationTransport(text="INVALID")
        mailchimp = AsyncMock()
        pipeline = make_pipeline(config, transport, mailchimp)

        response = await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)

        assert response.status_code == 400
        assert response.outcome == PipelineOutcome.REJECTED_NO_RETRY
        assert response.stage == "verify"
        assert mailchimp.mock_calls == []

    @pytest.mark.asyncio
    async def test_verification_timeout_is_retryable(self, config, mailing_list) -> None:
        transport = FakeVerificationTransport(delay=1.0)
        pipeline = make_pipeline(config.with_updates(verify_timeout=0.05), transport, mailing_list)

        response = await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)

        assert response.status_code == 503
        assert response.outcome == PipelineOutcome.TRANSIENT_RETRY
        assert response.should_retry is True
        assert mailing_list.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "transport",
        [
            FakeVerificationTransport(error=NetworkError("connection refused")),
            FakeVerificationTransport(status_code=500, text="VERIFIED"),
            FakeVerificationTransport(text="SOMETHING ELSE"),
        ],
    )
    async def test_unreachable_is_always_retryable(self, config, transport, mailing_list) -> None:
        pipeline = make_pipeline(config, transport, mailing_list)

        response = await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)

        assert response.status_code >= 500
        assert response.outcome == PipelineOutcome.TRANSIENT_RETRY
        assert mailing_list.calls == []


class TestValidationRejections:
    """Business-rule mismatches are acknowledged with 200 and never synced."""

    @pytest.mark.asyncio
    async def test_pending_payment(self, pipeline, transport, mailing_list) -> None:
        response = await pipeline.handle(build_ipn(payment_status="Pending"), FORM_CONTENT_TYPE)

        assert response.status_code == 200
        assert response.outcome == PipelineOutcome.REJECTED_NO_RETRY
        assert response.message == "Ignored: unsupported_payment_status"
        assert len(transport.calls) == 1
        assert mailing_list.calls == []

    @pytest.mark.asyncio
    async def test_wrong_receiver_despite_verification(self, pipeline, mailing_list) -> None:
        body = build_ipn(receiver_email="other@example.org", business="other@example.org")

        response = await pipeline.handle(body, FORM_CONTENT_TYPE)

        assert response.status_code == 200
        assert response.outcome == PipelineOutcome.REJECTED_NO_RETRY
        assert response.message == "Ignored: wrong_receiver"
        assert mailing_list.calls == []

    @pytest.mark.asyncio
    async def test_refund(self, pipeline, mailing_list) -> None:
        body = build_ipn(payment_status="Refunded", mc_gross="-25.00")

        response = await pipeline.handle(body, FORM_CONTENT_TYPE)

        assert response.status_code == 200
        assert response.message == "Ignored: unsupported_transaction_type"
        assert mailing_list.calls == []

    @pytest.mark.asyncio
    async def test_stale_delivery(self, pipeline, mailing_list) -> None:
        old = (NOW - timedelta(days=30)).strftime("%H:%M:%S %b %d, %Y UTC")

        response = await pipeline.handle(build_ipn(payment_date=old), FORM_CONTENT_TYPE)

        assert response.message == "Ignored: stale_timestamp"
        assert mailing_list.calls == []

    @pytest.mark.asyncio
    async def test_small_donation(self, pipeline, mailing_list) -> None:
        response = await pipeline.handle(build_ipn(mc_gross="5.00"), FORM_CONTENT_TYPE)

        assert response.status_code == 200
        assert response.message == "Ignored: insufficient_amount"
        assert mailing_list.calls == []


class TestSyncFailures:
    @pytest.mark.asyncio
    async def test_provider_error_is_retryable(self, pipeline, mailing_list) -> None:
        mailing_list.errors["PUT"] = MailingListError("rate limited", status_code=429)

        response = await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)

        assert response.status_code == 502
        assert response.outcome == PipelineOutcome.TRANSIENT_RETRY
        assert response.stage == "sync"

    @pytest.mark.asyncio
    async def test_retry_after_provider_error_applies(self, pipeline, mailing_list) -> None:
        mailing_list.errors["GET"] = MailingListError("down", status_code=503)
        first = await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)
        del mailing_list.errors["GET"]
        second = await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)

        assert first.should_retry is True
        assert second.message == "OK: applied"

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_retryable_response(
        self, config, transport
    ) -> None:
        mailchimp = AsyncMock()
        mailchimp.get_member.side_effect = RuntimeError("boom")
        pipeline = make_pipeline(config, transport, mailchimp)

        response = await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)

        assert response.status_code == 500
        assert response.outcome == PipelineOutcome.TRANSIENT_RETRY


class TestFromConfig:
    def test_wires_default_clients(self, config) -> None:
        pipeline = IPNPipeline.from_config(config)
        assert isinstance(pipeline, IPNPipeline)

    @pytest.mark.asyncio
    async def test_uses_given_capabilities(self, config, transport, mailing_list) -> None:
        pipeline = IPNPipeline.from_config(config, transport=transport, mailing_list=mailing_list)

        response = await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)

        # Real clock: the fixed payment date may be outside the window.
        assert response.status_code == 200
        assert len(transport.calls) == 1
