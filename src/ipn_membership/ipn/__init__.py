"""
PayPal IPN handling: parsing, verification and business-rule validation.

Example:
    >>> from ipn_membership.ipn import IPNParser, IPNVerifier, validate
    >>> raw = IPNParser().parse(body, "application/x-www-form-urlencoded")
"""

from ipn_membership.ipn.client import PayPalIPNClient, VerificationReply, VerificationTransport
from ipn_membership.ipn.parser import IPNParser, parse_payment_date
from ipn_membership.ipn.validator import validate
from ipn_membership.ipn.verifier import IPNVerifier, build_verification_body

__all__ = [
    "IPNParser",
    "IPNVerifier",
    "PayPalIPNClient",
    "VerificationReply",
    "VerificationTransport",
    "build_verification_body",
    "parse_payment_date",
    "validate",
]
