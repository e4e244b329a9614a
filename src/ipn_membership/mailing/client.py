"""
MailChimp list client.

Only the handful of list-member endpoints the membership functions need.
Transient failures (network, 429, 5xx) are retried with tenacity; anything
else surfaces immediately as MailingListError.
"""

from __future__ import annotations

import hashlib
from typing import Any, Protocol

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ipn_membership.core.config import Config
from ipn_membership.core.exceptions import MailingListError
from ipn_membership.core.logging import get_logger
from ipn_membership.core.types import MailingListMember

logger = get_logger("mailchimp")

MEMBER_FIELDS = "email_address,status,merge_fields,tags"


def subscriber_hash(email: str) -> str:
    """MailChimp identifies list members by the MD5 of the lowercased email."""
    return hashlib.md5(email.lower().encode("utf-8")).hexdigest()


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, MailingListError) and exc.is_transient()


class MailingListClient(Protocol):
    """Capability to read and upsert list members."""

    async def get_member(self, email: str) -> MailingListMember | None:
        """Return the member, or None if the email is not on the list."""
        ...

    async def put_member(self, email: str, body: dict[str, Any]) -> MailingListMember:
        """Create or update the member keyed by ``email``."""
        ...

    async def add_tags(self, email: str, tags: list[str]) -> None:
        """Activate ``tags`` on the member."""
        ...


class MailchimpClient:
    """
    httpx-backed MailingListClient.

    Usage:
        client = MailchimpClient.from_config(config)
        member = await client.get_member("someone@example.com")
    """

    def __init__(
        self,
        api_key: str,
        list_id: str,
        base_url: str,
        timeout: float = 10.0,
        max_attempts: int = 2,
        retry_wait: float = 0.5,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            api_key: Full MailChimp API key (``<key>-<dc>``)
            list_id: Audience/list id
            base_url: API root, e.g. ``https://us1.api.mailchimp.com/3.0``
            timeout: Request timeout in seconds
            max_attempts: Total attempts for transient failures
            retry_wait: Base backoff in seconds between attempts
            http_client: Shared httpx client (for connection pooling and tests)
        """
        self._auth = httpx.BasicAuth("any", api_key)
        self._list_id = list_id
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._retry_wait = retry_wait
        self._http_client = http_client
        self._owns_client = False

    @classmethod
    def from_config(
        cls, config: Config, http_client: httpx.AsyncClient | None = None
    ) -> MailchimpClient:
        return cls(
            api_key=config.mailchimp_api_key,
            list_id=config.mailchimp_list_id,
            base_url=config.mailchimp_base_url,
            timeout=config.mailchimp_timeout,
            max_attempts=config.mailchimp_max_attempts,
            http_client=http_client,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Lazy-init HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close owned HTTP client."""
        if self._owns_client and self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _member_url(self, email: str) -> str:
        return f"{self._base_url}/lists/{self._list_id}/members/{subscriber_hash(email)}"

    async def _send_once(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        allow_not_found: bool = False,
    ) -> httpx.Response | None:
        client = await self._get_client()
        logger.debug(f"{method} {url}")
        try:
            response = await client.request(
                method, url, params=params, json=json, auth=self._auth, timeout=self._timeout
            )
        except httpx.HTTPError as e:
            raise MailingListError(f"Mailchimp {method} failed: {e}", url=url) from e

        if allow_not_found and response.status_code == 404:
            return None
        if response.is_success:
            return response

        title = None
        try:
            title = response.json().get("title")
        except (ValueError, AttributeError):
            pass
        raise MailingListError(
            f"Mailchimp {method}: error status {response.status_code}",
            status_code=response.status_code,
            url=url,
            title=title,
            details={"body": response.text[:500]},
        )

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response | None:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            wait=wait_exponential(multiplier=self._retry_wait, max=4),
            stop=stop_after_attempt(self._max_attempts),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        f"Retrying Mailchimp {method} (attempt {attempt.retry_state.attempt_number})"
                    )
                return await self._send_once(method, url, **kwargs)
        return None  # pragma: no cover

    @staticmethod
    def _member_from(response: httpx.Response, url: str) -> MailingListMember:
        try:
            data = response.json()
        except ValueError as e:
            raise MailingListError(
                "Mailchimp returned a non-JSON member body",
                status_code=response.status_code,
                url=url,
            ) from e
        return MailingListMember.from_api(data)

    async def get_member(self, email: str) -> MailingListMember | None:
        url = self._member_url(email)
        response = await self._send(
            "GET", url, params={"fields": MEMBER_FIELDS}, allow_not_found=True
        )
        if response is None:
            return None
        return self._member_from(response, url)

    async def put_member(self, email: str, body: dict[str, Any]) -> MailingListMember:
        url = self._member_url(email)
        response = await self._send("PUT", url, json=body)
        if response is None:
            raise MailingListError("Mailchimp PUT returned no member", url=url)
        return self._member_from(response, url)

    async def add_tags(self, email: str, tags: list[str]) -> None:
        url = f"{self._member_url(email)}/tags"
        await self._send("POST", url, json={"tags": [{"name": t, "status": "active"} for t in tags]})
