"""
Configuration management for the IPN membership functions.

Handles loading configuration from environment variables and validation.
Nothing in here is ever taken from a webhook payload.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from dotenv import load_dotenv

from ipn_membership.core.exceptions import ConfigurationError
from ipn_membership.core.types import TransactionType

PAYPAL_LIVE_VERIFY_URL = "https://ipnpb.paypal.com/cgi-bin/webscr"
PAYPAL_SANDBOX_VERIFY_URL = "https://ipnpb.sandbox.paypal.com/cgi-bin/webscr"

_FALSE_VALUES = ("", "0", "false", "no", "off")


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {name} is not set")
    return value


def _split_list(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None


@dataclass(frozen=True)
class Config:
    """Runtime configuration, built once and handed to every component."""

    mailchimp_api_key: str
    mailchimp_list_id: str
    expected_receiver: str
    paypal_sandbox: bool = False

    # Business rules for accepted notifications
    accepted_currencies: tuple[str, ...] = ("CAD", "USD")
    accepted_txn_types: tuple[TransactionType, ...] = (TransactionType.PAYMENT_COMPLETED,)
    minimum_amount: Decimal = Decimal("10.00")
    staleness_window: timedelta = timedelta(hours=120)

    # Timeouts (seconds)
    verify_timeout: float = 10.0
    mailchimp_timeout: float = 10.0
    mailchimp_max_attempts: int = 2

    # Optional tag applied to paying members
    mailchimp_member_tag: str | None = None

    log_level: str = "INFO"
    log_json: bool = False
    port: int = 80

    def __post_init__(self) -> None:
        if not self.mailchimp_api_key:
            raise ConfigurationError("mailchimp_api_key is required")
        if "-" not in self.mailchimp_api_key or not self.mailchimp_api_key.rsplit("-", 1)[1]:
            raise ConfigurationError(
                "mailchimp_api_key must be a full key including the datacenter suffix",
                details={"api_key": self.masked_api_key()},
            )
        if not self.mailchimp_list_id:
            raise ConfigurationError("mailchimp_list_id is required")
        if not self.expected_receiver:
            raise ConfigurationError("expected_receiver is required")
        if self.verify_timeout <= 0 or self.mailchimp_timeout <= 0:
            raise ConfigurationError("timeouts must be positive")
        if self.staleness_window <= timedelta(0):
            raise ConfigurationError("staleness_window must be positive")
        if self.mailchimp_max_attempts < 1:
            raise ConfigurationError("mailchimp_max_attempts must be at least 1")

    @property
    def paypal_verify_url(self) -> str:
        """IPN verification endpoint, selected only by configuration."""
        return PAYPAL_SANDBOX_VERIFY_URL if self.paypal_sandbox else PAYPAL_LIVE_VERIFY_URL

    @property
    def mailchimp_datacenter(self) -> str:
        return self.mailchimp_api_key.rsplit("-", 1)[1]

    @property
    def mailchimp_base_url(self) -> str:
        return f"https://{self.mailchimp_datacenter}.api.mailchimp.com/3.0"

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables (and a .env file, if any)."""
        load_dotenv(override=False)

        mailchimp_api_key = overrides.get("mailchimp_api_key") or _get_env_var(
            "MAILCHIMP_API_KEY", required=True
        )
        mailchimp_list_id = overrides.get("mailchimp_list_id") or _get_env_var(
            "MAILCHIMP_LIST_ID", required=True
        )
        expected_receiver = overrides.get("expected_receiver") or _get_env_var(
            "PAYPAL_RECEIVER_EMAIL", required=True
        )

        if "paypal_sandbox" in overrides:
            paypal_sandbox = bool(overrides["paypal_sandbox"])
        else:
            sandbox_raw = _get_env_var("PAYPAL_SANDBOX", default="") or ""
            paypal_sandbox = sandbox_raw.strip().lower() not in _FALSE_VALUES

        values: dict[str, Any] = {
            "mailchimp_api_key": mailchimp_api_key,
            "mailchimp_list_id": mailchimp_list_id,
            "expected_receiver": expected_receiver,
            "paypal_sandbox": paypal_sandbox,
        }

        currencies = _get_env_var("IPN_ACCEPTED_CURRENCIES")
        if currencies:
            values["accepted_currencies"] = tuple(c.upper() for c in _split_list(currencies))

        txn_types = _get_env_var("IPN_ACCEPTED_TXN_TYPES")
        if txn_types:
            try:
                values["accepted_txn_types"] = tuple(
                    TransactionType.from_string(t) for t in _split_list(txn_types)
                )
            except ValueError as e:
                raise ConfigurationError(str(e)) from e

        minimum = _get_env_var("IPN_MINIMUM_AMOUNT")
        if minimum:
            try:
                values["minimum_amount"] = Decimal(minimum)
            except InvalidOperation:
                raise ConfigurationError(
                    f"IPN_MINIMUM_AMOUNT must be a decimal amount, got {minimum!r}"
                ) from None

        window = _get_env_var("IPN_STALENESS_WINDOW_HOURS")
        if window:
            values["staleness_window"] = timedelta(
                hours=_parse_float("IPN_STALENESS_WINDOW_HOURS", window)
            )

        verify_timeout = _get_env_var("PAYPAL_VERIFY_TIMEOUT")
        if verify_timeout:
            values["verify_timeout"] = _parse_float("PAYPAL_VERIFY_TIMEOUT", verify_timeout)

        mailchimp_timeout = _get_env_var("MAILCHIMP_TIMEOUT")
        if mailchimp_timeout:
            values["mailchimp_timeout"] = _parse_float("MAILCHIMP_TIMEOUT", mailchimp_timeout)

        attempts = _get_env_var("MAILCHIMP_MAX_ATTEMPTS")
        if attempts:
            values["mailchimp_max_attempts"] = int(
                _parse_float("MAILCHIMP_MAX_ATTEMPTS", attempts)
            )

        tag = _get_env_var("MAILCHIMP_MEMBER_TAG")
        if tag:
            values["mailchimp_member_tag"] = tag

        values["log_level"] = _get_env_var("LOGLEVEL", default="INFO")
        values["log_json"] = (_get_env_var("LOG_FORMAT") or "").strip().lower() == "json"

        port = _get_env_var("FUNCTIONS_CUSTOMHANDLER_PORT")
        if port:
            try:
                values["port"] = int(port)
            except ValueError:
                raise ConfigurationError(
                    f"FUNCTIONS_CUSTOMHANDLER_PORT must be a number, got {port!r}"
                ) from None

        known = {f.name for f in fields(cls)}
        values.update({k: v for k, v in overrides.items() if k in known})
        return cls(**values)

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        return replace(self, **updates)

    def masked_api_key(self) -> str:
        """Return API key with most characters masked for safe logging."""
        if len(self.mailchimp_api_key) <= 8:
            return "****"
        return self.mailchimp_api_key[:4] + "..." + self.mailchimp_api_key[-4:]
