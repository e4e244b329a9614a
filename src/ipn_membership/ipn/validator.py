"""
Notification Validator - business rules for verified IPNs.

Rules are applied in order and the first failing rule wins:

1. Receiver must be our PayPal account
2. Currency must be accepted
3. Transaction type must be accepted
4. Payment status must be Completed
5. Timestamp must be within the staleness window
6. Gross amount must meet the membership minimum
"""

from __future__ import annotations

from datetime import datetime, timezone

from ipn_membership.core.config import Config
from ipn_membership.core.types import (
    ParsedNotification,
    PaymentStatus,
    RejectionReason,
    ValidationOutcome,
)


def _receiver_matches(parsed: ParsedNotification, expected: str) -> bool:
    expected_lower = expected.strip().lower()
    candidates = (parsed.receiver_email, parsed.business or "", parsed.receiver_id)
    return any(c and c.strip().lower() == expected_lower for c in candidates)


def validate(
    parsed: ParsedNotification,
    config: Config,
    now: datetime | None = None,
) -> ValidationOutcome:
    """
    Apply the business rules to a verified notification.

    Args:
        parsed: Verified, typed notification
        config: Accepted receiver, currencies, types, window and minimum
        now: Reference time (defaults to the current UTC time)

    Returns:
        ValidationOutcome, accepted or carrying the first failing reason
    """
    if not _receiver_matches(parsed, config.expected_receiver):
        return ValidationOutcome.reject(
            parsed,
            RejectionReason.WRONG_RECEIVER,
            f"receiver {parsed.receiver_email or parsed.receiver_id or '(none)'}",
        )

    if parsed.currency not in config.accepted_currencies:
        return ValidationOutcome.reject(
            parsed,
            RejectionReason.UNSUPPORTED_CURRENCY,
            f"currency {parsed.currency or '(none)'}",
        )

    if parsed.txn_type not in config.accepted_txn_types:
        return ValidationOutcome.reject(
            parsed,
            RejectionReason.UNSUPPORTED_TRANSACTION_TYPE,
            f"txn_type {parsed.txn_type_raw or '(none)'} ({parsed.txn_type.value})",
        )

    # Usually a "Completed" IPN follows later for a pending transaction.
    if parsed.payment_status != PaymentStatus.COMPLETED:
        return ValidationOutcome.reject(
            parsed,
            RejectionReason.UNSUPPORTED_PAYMENT_STATUS,
            f"payment status {parsed.payment_status_raw or '(none)'}",
        )

    now = now or datetime.now(timezone.utc)
    age = now - parsed.timestamp
    if abs(age) > config.staleness_window:
        return ValidationOutcome.reject(
            parsed,
            RejectionReason.STALE_TIMESTAMP,
            f"timestamp {parsed.timestamp.isoformat()} is {age} from now",
        )

    if parsed.gross < config.minimum_amount:
        return ValidationOutcome.reject(
            parsed,
            RejectionReason.INSUFFICIENT_AMOUNT,
            f"gross {parsed.gross} {parsed.currency} below {config.minimum_amount}",
        )

    return ValidationOutcome.accept(parsed)
