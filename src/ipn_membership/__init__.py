"""
IPN Membership - PayPal payment notifications to MailChimp memberships.

Usage:
    >>> from ipn_membership import Config, IPNPipeline
    >>>
    >>> config = Config.from_env()
    >>> pipeline = IPNPipeline.from_config(config)
    >>> response = await pipeline.handle(body, "application/x-www-form-urlencoded")
    >>> response.status_code
    200
"""

from ipn_membership.core.config import Config
from ipn_membership.core.exceptions import (
    ConfigurationError,
    IPNMembershipError,
    MailingListError,
    MalformedPayloadError,
    NetworkError,
    ParseError,
    UnsupportedMediaTypeError,
)
from ipn_membership.core.logging import configure_logging, get_logger
from ipn_membership.core.types import (
    IPNResponse,
    MembershipStatus,
    MembershipUpsertResult,
    ParsedNotification,
    PaymentStatus,
    PipelineOutcome,
    RawNotification,
    RejectionReason,
    TransactionType,
    ValidationOutcome,
    VerificationResult,
)
from ipn_membership.membership.check import MembershipChecker
from ipn_membership.pipeline import IPNPipeline

__version__ = "3.2.7"

__all__ = [
    "IPNPipeline",
    "MembershipChecker",
    # Config
    "Config",
    "configure_logging",
    "get_logger",
    # Types
    "IPNResponse",
    "MembershipStatus",
    "MembershipUpsertResult",
    "ParsedNotification",
    "PaymentStatus",
    "PipelineOutcome",
    "RawNotification",
    "RejectionReason",
    "TransactionType",
    "ValidationOutcome",
    "VerificationResult",
    # Exceptions
    "IPNMembershipError",
    "ConfigurationError",
    "ParseError",
    "UnsupportedMediaTypeError",
    "MalformedPayloadError",
    "NetworkError",
    "MailingListError",
]
