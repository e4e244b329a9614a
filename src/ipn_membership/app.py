"""
HTTP surface for the membership functions.

Routes mirror the function host's layout:

- ``GET /``                   liveness ping for the host
- ``POST /Paypal-IPN``        PayPal IPN receiver
- ``POST /Membership-Check``  membership lookup by email
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel

from ipn_membership.core.config import Config
from ipn_membership.core.exceptions import MailingListError
from ipn_membership.core.logging import get_logger
from ipn_membership.ipn.client import PayPalIPNClient
from ipn_membership.mailing.client import MailchimpClient
from ipn_membership.membership.check import MembershipChecker
from ipn_membership.pipeline import IPNPipeline

logger = get_logger("app")


class MembershipCheckRequest(BaseModel):
    email: str


def create_app(
    config: Config,
    pipeline: IPNPipeline | None = None,
    checker: MembershipChecker | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    When ``pipeline``/``checker`` are not supplied, the lifespan creates the
    PayPal and MailChimp clients and closes them on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        paypal: PayPalIPNClient | None = None
        mailchimp: MailchimpClient | None = None

        if pipeline is None or checker is None:
            mailchimp = MailchimpClient.from_config(config)
        if pipeline is None:
            paypal = PayPalIPNClient(config.paypal_verify_url, timeout=config.verify_timeout)
            app.state.pipeline = IPNPipeline.from_config(
                config, transport=paypal, mailing_list=mailchimp
            )
        else:
            app.state.pipeline = pipeline
        app.state.checker = checker or MembershipChecker(mailchimp)  # type: ignore[arg-type]

        if config.paypal_sandbox:
            logger.warning("SANDBOX: Using PayPal sandbox environment")
        logger.info(
            f"Membership functions ready (mailchimp key {config.masked_api_key()}, "
            f"list {config.mailchimp_list_id})"
        )
        try:
            yield
        finally:
            if paypal is not None:
                await paypal.close()
            if mailchimp is not None:
                await mailchimp.close()

    app = FastAPI(title="IPN Membership Functions", lifespan=lifespan)

    @app.get("/")
    async def ping() -> Response:
        return Response(status_code=200)

    @app.post("/Paypal-IPN")
    async def paypal_ipn(request: Request) -> PlainTextResponse:
        # Raw body: PayPal verification needs the exact bytes.
        body = await request.body()
        ipn_pipeline: IPNPipeline = request.app.state.pipeline
        result = await ipn_pipeline.handle(body, request.headers.get("content-type"))
        return PlainTextResponse(result.message, status_code=result.status_code)

    @app.post("/Membership-Check")
    async def membership_check(payload: MembershipCheckRequest, request: Request) -> Response:
        membership_checker: MembershipChecker = request.app.state.checker
        try:
            status = await membership_checker.check(payload.email)
        except MailingListError as e:
            logger.error(f"Membership check failed: {e}")
            return PlainTextResponse(
                "Internal Server Error: mailchimp error", status_code=500
            )

        if not status.found:
            return PlainTextResponse("No such member", status_code=404)
        return JSONResponse(
            {"membership": status.membership, "expiration": status.expiration}
        )

    return app
