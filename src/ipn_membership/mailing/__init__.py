"""MailChimp list access and membership synchronization."""

from ipn_membership.mailing.client import MailchimpClient, MailingListClient, subscriber_hash
from ipn_membership.mailing.sync import MembershipSynchronizer

__all__ = [
    "MailchimpClient",
    "MailingListClient",
    "MembershipSynchronizer",
    "subscriber_hash",
]
