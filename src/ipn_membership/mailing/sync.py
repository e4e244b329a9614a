"""
Membership Synchronizer.

Upserts the payer of a validated notification into the MailChimp list,
keyed by email address. Idempotent per subscriber: re-applying the same
payment finds the record already current and issues no write.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Any

from ipn_membership.core.config import Config
from ipn_membership.core.exceptions import MailingListError
from ipn_membership.core.logging import get_logger
from ipn_membership.core.types import (
    MailingListMember,
    MembershipUpsertResult,
    ParsedNotification,
    UpsertOutcome,
)
from ipn_membership.mailing.client import MailingListClient

logger = get_logger("sync")

MAILCHIMP_DATE_FORMAT = "%Y-%m-%d"
ACTIVE_STATUSES = ("pending", "subscribed")


def format_mailchimp_date(value: date) -> str:
    return value.strftime(MAILCHIMP_DATE_FORMAT)


def parse_mailchimp_date(value: Any) -> date | None:
    """Parse a MailChimp date merge field; empty or garbage yields None."""
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def add_years(value: date, years: int = 1) -> date:
    """Add whole years, clamping Feb 29 to Feb 28 in non-leap years."""
    target_year = value.year + years
    try:
        return value.replace(year=target_year)
    except ValueError:
        return date(target_year, 2, 28)


class MembershipSynchronizer:
    """
    Applies a payment to the payer's list membership.

    New members are added as ``pending`` so they can confirm the email
    subscription themselves. Existing subscribers stay subscribed and their
    expiry is pushed to at least one year after the payment date. Members who
    unsubscribed are never re-subscribed.
    """

    def __init__(
        self,
        config: Config,
        client: MailingListClient,
        today: Callable[[], date] | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._today = today or (lambda: datetime.now(timezone.utc).date())

    async def upsert(self, parsed: ParsedNotification) -> UpsertOutcome:
        email = parsed.payer_email
        try:
            existing = await self._client.get_member(email)
        except MailingListError as e:
            logger.error(f"Mailchimp GET failed for {email}: {e}")
            return UpsertOutcome(MembershipUpsertResult.PROVIDER_ERROR, cause=e)

        if existing is not None:
            logger.info(f"Mailchimp existing status: {existing.status}")
            if existing.status == "unsubscribed":
                # Still a list member, just not emailed; leave the record alone.
                logger.info(f"Not re-subscribing unsubscribed member: {email}")
                return UpsertOutcome(MembershipUpsertResult.SKIPPED, member=existing)

        status, merge_fields = self._desired_state(parsed, existing)
        tag = self._config.mailchimp_member_tag
        needs_tag = bool(tag) and (existing is None or tag not in existing.tags)

        if existing is not None and self._is_current(existing, status, merge_fields, needs_tag):
            logger.info(f"Mailchimp record already current for: {email}")
            return UpsertOutcome(MembershipUpsertResult.ALREADY_CURRENT, member=existing)

        body = {
            "email_address": email,
            "status_if_new": status,
            "status": status,
            "merge_fields": merge_fields,
        }
        try:
            member = await self._client.put_member(email, body)
        except MailingListError as e:
            logger.error(f"Mailchimp PUT failed for {email}: {e}")
            return UpsertOutcome(MembershipUpsertResult.PROVIDER_ERROR, cause=e)

        if member.status not in ACTIVE_STATUSES:
            error = MailingListError(
                f"Mailchimp: unsuccessful result status {member.status!r}",
                details={"email": member.email_address},
            )
            logger.error(str(error))
            return UpsertOutcome(MembershipUpsertResult.PROVIDER_ERROR, member=member, cause=error)

        if needs_tag:
            try:
                await self._client.add_tags(email, [tag])  # type: ignore[list-item]
            except MailingListError as e:
                logger.error(f"Mailchimp tag {tag!r} failed for {email}: {e}")
                return UpsertOutcome(MembershipUpsertResult.PROVIDER_ERROR, member=member, cause=e)
            member.tags.append(tag)  # type: ignore[arg-type]

        logger.info(
            f'Mailchimp: successfully set subscription status "{member.status}" for: '
            f"{member.email_address}"
        )
        return UpsertOutcome(MembershipUpsertResult.APPLIED, member=member)

    def _desired_state(
        self, parsed: ParsedNotification, existing: MailingListMember | None
    ) -> tuple[str, dict[str, str]]:
        today = self._today()
        paid_on = parsed.timestamp.astimezone(timezone.utc).date()
        # Expiry follows the payment date, not the processing day.
        renewal = add_years(paid_on)

        merge_fields: dict[str, str] = {}
        if parsed.first_name:
            merge_fields["FNAME"] = parsed.first_name
        if parsed.last_name:
            merge_fields["LNAME"] = parsed.last_name

        if existing is None:
            status = "pending"
            expires = renewal
            joined = format_mailchimp_date(today)
        else:
            status = "subscribed" if existing.status == "subscribed" else "pending"
            raw_expires = existing.merge_fields.get("EXPIRES")
            current_expiry = parse_mailchimp_date(raw_expires)
            if raw_expires and current_expiry is None:
                logger.warning(f"Ignoring unparseable EXPIRES value: {raw_expires!r}")
            expires = renewal
            if current_expiry is not None and current_expiry > renewal:
                logger.info(f"existing EXPIRES is beyond one year, using it: {raw_expires}")
                expires = current_expiry
            joined = existing.merge_fields.get("JOINED") or format_mailchimp_date(today)

        merge_fields["JOINED"] = joined
        merge_fields["EXPIRES"] = format_mailchimp_date(expires)
        merge_fields["LASTPAID"] = format_mailchimp_date(paid_on)
        return status, merge_fields

    @staticmethod
    def _is_current(
        existing: MailingListMember,
        status: str,
        merge_fields: dict[str, str],
        needs_tag: bool,
    ) -> bool:
        if needs_tag or existing.status != status:
            return False
        return all(existing.merge_fields.get(k) == v for k, v in merge_fields.items())
