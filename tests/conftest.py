import asyncio
from copy import deepcopy
from datetime import date, datetime, timezone
from typing import Any
from urllib.parse import urlencode

import pytest

from ipn_membership.core.config import Config
from ipn_membership.core.exceptions import MailingListError
from ipn_membership.core.types import MailingListMember
from ipn_membership.ipn.client import VerificationReply
from ipn_membership.mailing.client import subscriber_hash

# 11:00 PDT on the fixed "today" used across the suite
NOW = datetime(2026, 10, 19, 18, 0, 0, tzinfo=timezone.utc)
TODAY = date(2026, 10, 19)
PAYMENT_DATE = "11:00:00 Oct 19, 2026 PDT"

RECEIVER = "treasurer@example.org"
PAYER = "member@example.com"

DEFAULT_IPN_FIELDS: dict[str, str] = {
    "mc_gross": "25.00",
    "protection_eligibility": "Eligible",
    "payer_id": "LPLWNMTBWMFAY",
    "payment_date": PAYMENT_DATE,
    "payment_status": "Completed",
    "charset": "UTF-8",
    "first_name": "Jane",
    "mc_fee": "1.03",
    "notify_version": "3.9",
    "payer_status": "verified",
    "business": RECEIVER,
    "verify_sign": "AtkOfCXbDm2hu0ZELryHFjY-Vb7PAUvS6nMXgysbElEn9v-1XcmSoGtf",
    "payer_email": PAYER,
    "txn_id": "61E67681CH3238416",
    "payment_type": "instant",
    "last_name": "Doe",
    "receiver_email": RECEIVER,
    "receiver_id": "S8XGHLYDW9T3S",
    "txn_type": "web_accept",
    "item_name": "Annual membership",
    "mc_currency": "CAD",
    "ipn_track_id": "a7f1c4b5e2d3f",
}


def build_ipn(**overrides: str | None) -> bytes:
    """Form-encode an IPN; a value of None drops the field."""
    fields = dict(DEFAULT_IPN_FIELDS)
    fields.update(overrides)
    return urlencode([(k, v) for k, v in fields.items() if v is not None]).encode("ascii")


class FakeVerificationTransport:
    """Records verification bodies and replies with a canned answer."""

    def __init__(
        self,
        status_code: int = 200,
        text: str = "VERIFIED",
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.status_code = status_code
        self.text = text
        self.error = error
        self.delay = delay
        self.calls: list[bytes] = []

    async def send_verification(self, body: bytes) -> VerificationReply:
        self.calls.append(body)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return VerificationReply(status_code=self.status_code, text=self.text)


class InMemoryMailingList:
    """A MailChimp list kept in a dict, keyed by subscriber hash like the real API."""

    def __init__(self) -> None:
        self.members: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.errors: dict[str, MailingListError] = {}

    def add(
        self,
        email: str,
        status: str = "subscribed",
        merge_fields: dict[str, Any] | None = None,
        tags: list[str] | None = None,
    ) -> None:
        self.members[subscriber_hash(email)] = {
            "email_address": email,
            "status": status,
            "merge_fields": dict(merge_fields or {}),
            "tags": [{"name": t} for t in tags or []],
        }

    def record(self, email: str) -> dict[str, Any] | None:
        return self.members.get(subscriber_hash(email))

    def writes(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] != "GET"]

    def _call(self, method: str, email: str) -> None:
        self.calls.append((method, email))
        if method in self.errors:
            raise self.errors[method]

    async def get_member(self, email: str) -> MailingListMember | None:
        self._call("GET", email)
        data = self.record(email)
        return MailingListMember.from_api(deepcopy(data)) if data else None

    async def put_member(self, email: str, body: dict[str, Any]) -> MailingListMember:
        self._call("PUT", email)
        key = subscriber_hash(email)
        current = self.members.get(key)
        if current is None:
            current = {
                "email_address": body["email_address"],
                "status": body.get("status_if_new", body.get("status")),
                "merge_fields": {},
                "tags": [],
            }
            self.members[key] = current
        else:
            current["status"] = body.get("status", current["status"])
        current["merge_fields"].update(body.get("merge_fields", {}))
        return MailingListMember.from_api(deepcopy(current))

    async def add_tags(self, email: str, tags: list[str]) -> None:
        self._call("TAGS", email)
        current = self.members[subscriber_hash(email)]
        names = {t["name"] for t in current["tags"]}
        current["tags"].extend({"name": t} for t in tags if t not in names)


@pytest.fixture
def config() -> Config:
    return Config(
        mailchimp_api_key="0123456789abcdef0123456789abcdef-us21",
        mailchimp_list_id="a1b2c3d4e5",
        expected_receiver=RECEIVER,
        mailchimp_max_attempts=1,
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def transport() -> FakeVerificationTransport:
    return FakeVerificationTransport()


@pytest.fixture
def mailing_list() -> InMemoryMailingList:
    return InMemoryMailingList()
