"""Read-only membership lookup against the MailChimp list."""

from __future__ import annotations

from ipn_membership.core.logging import get_logger
from ipn_membership.core.types import MembershipStatus
from ipn_membership.mailing.client import MailingListClient
from ipn_membership.mailing.sync import ACTIVE_STATUSES

logger = get_logger("membership_check")


class MembershipChecker:
    """Checks whether an email is on the list and when its membership expires."""

    def __init__(self, client: MailingListClient) -> None:
        self._client = client

    async def check(self, email: str) -> MembershipStatus:
        """
        Look up ``email``.

        Raises:
            MailingListError: If MailChimp fails for any reason other than 404
        """
        logger.info(f"Membership check - Email: {email}")
        member = await self._client.get_member(email)
        if member is None:
            logger.info(f"No such member: {email}")
            return MembershipStatus(email=email, found=False)

        return MembershipStatus(
            email=email,
            found=True,
            active=member.status in ACTIVE_STATUSES,
            expiration=member.merge_fields.get("EXPIRES") or None,
        )
