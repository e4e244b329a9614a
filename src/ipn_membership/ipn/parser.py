"""
IPN Payload Parser.

Turns a raw PayPal IPN body into a RawNotification (kept byte-for-byte for
re-submission) and projects it into a typed ParsedNotification.
Does NOT talk to PayPal - that is the verifier's job.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from urllib.parse import unquote_to_bytes

from ipn_membership.core.exceptions import MalformedPayloadError, UnsupportedMediaTypeError
from ipn_membership.core.types import (
    ParsedNotification,
    PaymentStatus,
    RawField,
    RawNotification,
    TransactionType,
)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")

# PayPal sends e.g. "10:20:30 Oct 19, 2026 PDT"
_PAYPAL_DATE = re.compile(
    r"^(?P<time>\d{1,2}:\d{2}:\d{2}) (?P<month>[A-Za-z]{3})\.? (?P<day>\d{1,2}), "
    r"(?P<year>\d{4}) (?P<tz>[A-Za-z]+)$"
)
_TZ_OFFSETS = {
    "PST": timedelta(hours=-8),
    "PDT": timedelta(hours=-7),
    "UTC": timedelta(0),
    "GMT": timedelta(0),
}

# Fields projected onto ParsedNotification; everything else goes to extras.
_KNOWN_FIELDS = frozenset(
    {
        "txn_id",
        "subscr_id",
        "txn_type",
        "payment_status",
        "payer_email",
        "receiver_email",
        "receiver_id",
        "business",
        "mc_gross",
        "mc_currency",
        "payment_date",
        "subscr_date",
        "first_name",
        "last_name",
        "exchange_rate",
    }
)


def _decode_component(raw: str, field_name: str | None) -> str:
    if _BAD_ESCAPE.search(raw):
        raise MalformedPayloadError(
            f"Invalid percent-escape in {raw!r}", field=field_name
        )
    try:
        return unquote_to_bytes(raw.replace("+", " ")).decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedPayloadError(
            f"Field is not valid UTF-8 after decoding: {e}", field=field_name
        ) from e


def parse_payment_date(value: str) -> datetime:
    """
    Parse an IPN ``payment_date``.

    Accepts PayPal's ``HH:MM:SS Mon DD, YYYY TZ`` format and ISO-8601.
    Always returns an aware datetime.

    Raises:
        ValueError: If the value is in neither format
    """
    value = value.strip()
    match = _PAYPAL_DATE.match(value)
    if match:
        offset = _TZ_OFFSETS.get(match["tz"].upper())
        if offset is None:
            raise ValueError(f"Unknown timezone abbreviation: {match['tz']}")
        naive = datetime.strptime(
            f"{match['time']} {match['month'].title()} {match['day']} {match['year']}",
            "%H:%M:%S %b %d %Y",
        )
        return naive.replace(tzinfo=timezone(offset))

    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class IPNParser:
    """
    Framework-agnostic IPN body parser.

    Pure: no I/O, no configuration.
    """

    def parse(self, body: bytes, content_type: str | None) -> RawNotification:
        """
        Decode a webhook body into ordered raw fields.

        Args:
            body: Raw request body
            content_type: Value of the request's Content-Type header

        Returns:
            RawNotification

        Raises:
            UnsupportedMediaTypeError: If the body is not form-encoded
            MalformedPayloadError: If the body cannot be decoded
        """
        media_type = (content_type or "").split(";", 1)[0].strip().lower()
        if media_type != FORM_CONTENT_TYPE:
            raise UnsupportedMediaTypeError(
                f"Expected {FORM_CONTENT_TYPE}, got {content_type or 'no content type'}",
                content_type=content_type,
            )

        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPayloadError(f"Body is not valid UTF-8: {e}") from e

        if not text.strip():
            raise MalformedPayloadError("Empty IPN body")

        segments = tuple(text.split("&"))
        parsed_fields: list[RawField] = []
        for segment in segments:
            if not segment:
                continue
            raw_key, _, raw_value = segment.partition("=")
            key = _decode_component(raw_key, None)
            if not key:
                raise MalformedPayloadError(f"Field without a name: {segment!r}")
            value = _decode_component(raw_value, key)
            parsed_fields.append(RawField(raw=segment, key=key, value=value))

        return RawNotification(body=body, fields=tuple(parsed_fields), segments=segments)

    def project(self, raw: RawNotification) -> ParsedNotification:
        """
        Build the typed notification from raw fields.

        Raises:
            MalformedPayloadError: If a required field is missing or unparseable
        """
        txn_id = (raw.get("txn_id") or raw.get("subscr_id") or "").strip()
        if not txn_id:
            raise MalformedPayloadError("IPN has no transaction id", field="txn_id")

        payer_email = (raw.get("payer_email") or "").strip()
        if not payer_email:
            raise MalformedPayloadError("IPN has no payer email", field="payer_email")

        txn_type_raw = raw.get("txn_type")
        payment_status_raw = raw.get("payment_status")

        gross_raw = (raw.get("mc_gross") or "").strip()
        try:
            gross = Decimal(gross_raw) if gross_raw else Decimal("0")
        except InvalidOperation:
            raise MalformedPayloadError(
                f"Unparseable mc_gross: {gross_raw!r}", field="mc_gross"
            ) from None
        if not gross.is_finite():
            raise MalformedPayloadError(f"Unparseable mc_gross: {gross_raw!r}", field="mc_gross")

        date_field = "payment_date" if raw.get("payment_date") else "subscr_date"
        date_raw = raw.get(date_field)
        if not date_raw:
            raise MalformedPayloadError("IPN has no payment date", field="payment_date")
        try:
            timestamp = parse_payment_date(date_raw)
        except ValueError as e:
            raise MalformedPayloadError(
                f"Unparseable {date_field}: {date_raw!r}", field=date_field
            ) from e

        business = raw.get("business")
        return ParsedNotification(
            txn_id=txn_id,
            txn_type=TransactionType.from_ipn(txn_type_raw, payment_status_raw),
            payment_status=PaymentStatus.from_ipn(payment_status_raw),
            payer_email=payer_email,
            receiver_email=(raw.get("receiver_email") or business or "").strip(),
            receiver_id=(raw.get("receiver_id") or "").strip(),
            gross=gross,
            currency=(raw.get("mc_currency") or "").strip().upper(),
            timestamp=timestamp,
            first_name=raw.get("first_name") or "",
            last_name=raw.get("last_name") or "",
            exchange_rate=raw.get("exchange_rate"),
            txn_type_raw=txn_type_raw,
            payment_status_raw=payment_status_raw,
            business=business,
            extras=tuple((k, v) for k, v in raw.items() if k not in _KNOWN_FIELDS),
        )
