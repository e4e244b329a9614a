"""Tests for logging setup and transaction-tagged delivery logs."""

import json
import logging
import sys

import pytest

from conftest import NOW, FakeVerificationTransport, build_ipn
from ipn_membership.core.logging import (
    LOGGER_NAME,
    JsonFormatter,
    configure_logging,
    delivery_logger,
    get_logger,
)
from ipn_membership.ipn.parser import FORM_CONTENT_TYPE
from ipn_membership.ipn.verifier import IPNVerifier
from ipn_membership.mailing.sync import MembershipSynchronizer
from ipn_membership.pipeline import IPNPipeline


@pytest.fixture(autouse=True)
def reset_logger():
    """Drop handlers bound to a test's captured stdout."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = True


class TestConfigureLogging:
    def test_single_handler_after_reconfigure(self) -> None:
        configure_logging("INFO")
        logger = configure_logging("DEBUG")

        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG
        assert logger.propagate is False

    def test_text_format(self, capsys) -> None:
        configure_logging("INFO")
        get_logger("pipeline").info("hello")

        assert "INFO [ipn_membership.pipeline] hello" in capsys.readouterr().out

    def test_level_filters(self, capsys) -> None:
        configure_logging("WARNING")
        get_logger("pipeline").info("quiet")

        assert capsys.readouterr().out == ""

    def test_quiets_httpx(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING


class TestDeliveryLogger:
    def test_prefixes_transaction_id(self, capsys) -> None:
        configure_logging("INFO")
        delivery_logger("61E67681CH3238416").warning("IPN rejected [verification_failure]")

        assert "[txn=61E67681CH3238416] IPN rejected" in capsys.readouterr().out

    def test_missing_transaction_id(self, capsys) -> None:
        configure_logging("INFO")
        delivery_logger(None).info("received")

        assert "[txn=-] received" in capsys.readouterr().out

    def test_json_lines_carry_transaction_id(self, capsys) -> None:
        configure_logging("INFO", json_format=True)
        delivery_logger("61E67681CH3238416").info('payer "Jane" paid')

        line = json.loads(capsys.readouterr().out.strip())
        assert line["level"] == "INFO"
        assert line["name"] == "ipn_membership.pipeline"
        assert line["txn_id"] == "61E67681CH3238416"
        assert line["message"] == '[txn=61E67681CH3238416] payer "Jane" paid'


class TestPipelineLogs:
    """Rejections are logged with the transaction id and the failure kind."""

    @pytest.mark.asyncio
    async def test_invalid_verification_is_logged(self, config, mailing_list, capsys) -> None:
        configure_logging("INFO")
        pipeline = IPNPipeline(
            config=config,
            verifier=IPNVerifier(config, FakeVerificationTransport(text="INVALID")),
            synchronizer=MembershipSynchronizer(config, mailing_list),
            clock=lambda: NOW,
        )

        await pipeline.handle(build_ipn(), FORM_CONTENT_TYPE)

        out = capsys.readouterr().out
        assert "WARNING" in out
        assert "[txn=61E67681CH3238416] IPN rejected [verification_failure]" in out

    @pytest.mark.asyncio
    async def test_validation_rejection_names_reason(
        self, config, transport, mailing_list, capsys
    ) -> None:
        configure_logging("INFO")
        pipeline = IPNPipeline(
            config=config,
            verifier=IPNVerifier(config, transport),
            synchronizer=MembershipSynchronizer(config, mailing_list),
            clock=lambda: NOW,
        )

        response = await pipeline.handle(build_ipn(mc_gross="5.00"), FORM_CONTENT_TYPE)

        assert response.message == "Ignored: insufficient_amount"
        assert "IPN ignored [validation_rejection:insufficient_amount]" in capsys.readouterr().out


class TestJsonFormatter:
    def test_includes_exception(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.getLogger("x").makeRecord(
                "x", logging.ERROR, __file__, 1, "failed", None, exc_info=sys.exc_info()
            )

        line = json.loads(JsonFormatter().format(record))
        assert line["message"] == "failed"
        assert "RuntimeError: boom" in line["exc_info"]
        assert "txn_id" not in line
