"""
Type definitions for the IPN membership functions.

This module contains the enums and data classes passed between the
pipeline stages. Everything here lives for a single request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class TransactionType(str, Enum):
    """Kind of PayPal transaction an IPN describes."""

    PAYMENT_COMPLETED = "payment_completed"  # web_accept, subscr_payment
    SUBSCRIPTION_SIGNUP = "subscription_signup"  # subscr_signup
    REFUND = "refund"  # refunds and reversals of an earlier payment
    OTHER = "other"

    @classmethod
    def from_ipn(cls, txn_type: str | None, payment_status: str | None) -> TransactionType:
        """Map PayPal's ``txn_type``/``payment_status`` pair to a TransactionType."""
        if payment_status in ("Refunded", "Reversed", "Canceled_Reversal"):
            return cls.REFUND
        if txn_type in ("web_accept", "subscr_payment"):
            return cls.PAYMENT_COMPLETED
        if txn_type == "subscr_signup":
            return cls.SUBSCRIPTION_SIGNUP
        return cls.OTHER

    @classmethod
    def from_string(cls, value: str) -> TransactionType:
        value_lower = value.strip().lower().replace("-", "_")
        for member in cls:
            if member.value == value_lower:
                return member
        raise ValueError(
            f"Unknown transaction type: {value}. Supported: {[t.value for t in cls]}"
        )


class PaymentStatus(str, Enum):
    """PayPal ``payment_status`` values we distinguish."""

    COMPLETED = "Completed"
    PENDING = "Pending"
    DENIED = "Denied"
    REFUNDED = "Refunded"
    REVERSED = "Reversed"
    OTHER = "Other"

    @classmethod
    def from_ipn(cls, value: str | None) -> PaymentStatus:
        for member in cls:
            if member is not cls.OTHER and member.value == value:
                return member
        return cls.OTHER


class VerificationResult(str, Enum):
    """PayPal's verdict on a re-submitted IPN."""

    VERIFIED = "verified"
    INVALID = "invalid"
    PROVIDER_UNREACHABLE = "provider_unreachable"


class RejectionReason(str, Enum):
    """Business-rule reasons for ignoring a verified notification."""

    WRONG_RECEIVER = "wrong_receiver"
    UNSUPPORTED_CURRENCY = "unsupported_currency"
    UNSUPPORTED_TRANSACTION_TYPE = "unsupported_transaction_type"
    UNSUPPORTED_PAYMENT_STATUS = "unsupported_payment_status"
    STALE_TIMESTAMP = "stale_timestamp"
    INSUFFICIENT_AMOUNT = "insufficient_amount"


class MembershipUpsertResult(str, Enum):
    """Outcome of synchronizing a payment into the mailing list."""

    APPLIED = "applied"
    ALREADY_CURRENT = "already_current"
    SKIPPED = "skipped"  # member opted out of the list, record left untouched
    PROVIDER_ERROR = "provider_error"


class PipelineOutcome(str, Enum):
    """Terminal state of one IPN delivery."""

    SUCCESS = "success"
    REJECTED_NO_RETRY = "rejected_no_retry"
    TRANSIENT_RETRY = "transient_retry"


@dataclass(frozen=True)
class RawField:
    """One ``key=value`` segment exactly as received, plus its decoded form."""

    raw: str
    key: str
    value: str


@dataclass(frozen=True)
class RawNotification:
    """
    An IPN body as received.

    ``body`` holds the original bytes for re-submission to PayPal. ``fields``
    keeps every named segment in order, duplicates included. ``segments`` is
    the body split on ``&``, empty segments included.
    """

    body: bytes
    fields: tuple[RawField, ...]
    segments: tuple[str, ...] = ()

    def get(self, key: str, default: str | None = None) -> str | None:
        """Return the first decoded value for ``key``."""
        for f in self.fields:
            if f.key == key:
                return f.value
        return default

    def get_all(self, key: str) -> list[str]:
        return [f.value for f in self.fields if f.key == key]

    def items(self) -> list[tuple[str, str]]:
        return [(f.key, f.value) for f in self.fields]

    def encode(self) -> bytes:
        """Rebuild the body from the raw segments, preserving order and escapes."""
        segments = self.segments or tuple(f.raw for f in self.fields)
        return "&".join(segments).encode("utf-8")


@dataclass(frozen=True)
class ParsedNotification:
    """Typed view of the IPN fields the pipeline acts on."""

    txn_id: str
    txn_type: TransactionType
    payment_status: PaymentStatus
    payer_email: str
    receiver_email: str
    receiver_id: str
    gross: Decimal
    currency: str
    timestamp: datetime
    first_name: str = ""
    last_name: str = ""
    exchange_rate: str | None = None
    txn_type_raw: str | None = None
    payment_status_raw: str | None = None
    business: str | None = None
    extras: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class ValidationOutcome:
    """Accepted(notification) or Rejected(reason)."""

    notification: ParsedNotification
    reason: RejectionReason | None = None
    detail: str = ""

    @property
    def accepted(self) -> bool:
        return self.reason is None

    @classmethod
    def accept(cls, notification: ParsedNotification) -> ValidationOutcome:
        return cls(notification=notification)

    @classmethod
    def reject(
        cls, notification: ParsedNotification, reason: RejectionReason, detail: str = ""
    ) -> ValidationOutcome:
        return cls(notification=notification, reason=reason, detail=detail)


@dataclass
class MailingListMember:
    """Subset of a MailChimp list member we read and write."""

    email_address: str
    status: str
    merge_fields: dict[str, Any] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> MailingListMember:
        return cls(
            email_address=data.get("email_address", ""),
            status=data.get("status", ""),
            merge_fields=dict(data.get("merge_fields") or {}),
            tags=[t.get("name", "") for t in data.get("tags") or [] if isinstance(t, dict)],
        )


@dataclass
class UpsertOutcome:
    """Result of a membership upsert, with the cause attached on failure."""

    result: MembershipUpsertResult
    member: MailingListMember | None = None
    cause: Exception | None = None


@dataclass(frozen=True)
class MembershipStatus:
    """Answer to a membership check."""

    email: str
    found: bool
    active: bool = False
    expiration: str | None = None

    @property
    def membership(self) -> str:
        return "active" if self.active else "expired"


@dataclass(frozen=True)
class IPNResponse:
    """The single response produced for one IPN delivery."""

    status_code: int
    outcome: PipelineOutcome
    message: str
    txn_id: str | None = None
    stage: str = ""

    @property
    def should_retry(self) -> bool:
        return self.outcome == PipelineOutcome.TRANSIENT_RETRY
