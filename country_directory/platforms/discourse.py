"""
Discourse implementation of the member directory client.
Members are enumerated through the automatic trust-level groups and
resolved one by one through the public profile endpoint.
"""

import re
from typing import Any, Optional
from urllib.parse import quote

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from country_directory.errors import ConfigurationError, RateLimitError, UpstreamRequestError
from country_directory.platforms.base import BaseDirectoryClient, MemberProfile, MemberStub
from country_directory.utils.logging import get_logger

logger = get_logger(__name__)

_TIER_LEVEL_RE = re.compile(r"^trust_level_(\d)$")


def _tier_trust_level(tier: str) -> Optional[int]:
    match = _TIER_LEVEL_RE.match(tier)
    return int(match.group(1)) if match else None


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class DiscourseClient(BaseDirectoryClient):
    """
    Discourse REST API client.
    Authenticates with the Api-Key / Api-Username header pair.
    """

    name = "discourse"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        api_username: str = "system",
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_min: float = 2.0,
        backoff_max: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url or not api_key:
            raise ConfigurationError("Discourse API key and URL are not configured")

        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._api_username = api_username or "system"
        self._timeout = timeout
        self._max_retries = max_retries
        self._backoff_min = backoff_min
        self._backoff_max = backoff_max
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def initialize(self) -> None:
        """Open the HTTP connection pool."""
        if self._http_client:
            return
        self._http_client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._timeout,
            headers={
                "Accept": "application/json",
                "Api-Key": self._api_key,
                "Api-Username": self._api_username,
            },
            transport=self._transport,
        )
        logger.debug("Discourse client initialized", url=self.base_url, api_username=self._api_username)

    async def close(self) -> None:
        """Close connections."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _get_once(self, path: str, params: Optional[dict] = None) -> dict:
        if not self._http_client:
            raise RuntimeError("Client not initialized")

        try:
            response = await self._http_client.get(path, params=params)
        except httpx.TimeoutException as e:
            raise UpstreamRequestError(f"Timeout requesting {path}") from e
        except httpx.HTTPError as e:
            raise UpstreamRequestError(f"Request to {path} failed: {e}") from e

        if response.status_code == 429:
            logger.warning("Rate limited by Discourse, backing off", path=path)
            raise RateLimitError()

        if response.status_code != 200:
            raise UpstreamRequestError(
                f"Discourse API error {response.status_code} for {path}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamRequestError(f"Malformed JSON from {path}", status_code=200) from e

        if not isinstance(data, dict):
            raise UpstreamRequestError(f"Unexpected payload from {path}", status_code=200)
        return data

    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        """GET a JSON object, retrying with exponential backoff on 429.

        Every attempt, retries included, waits on the pacer first.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=1, min=self._backoff_min, max=self._backoff_max),
            retry=retry_if_exception_type(RateLimitError),
            reraise=True,
        ):
            with attempt:
                await self.pace()
                return await self._get_once(path, params)

    async def list_members(self, tier: str, limit: int, offset: int) -> list[MemberStub]:
        """Fetch one page of a group's members."""
        data = await self._get(
            f"/groups/{quote(tier, safe='')}/members.json",
            params={"limit": limit, "offset": offset},
        )

        members = data.get("members")
        if not isinstance(members, list):
            raise UpstreamRequestError(f"Group {tier} listing has no members array", status_code=200)

        default_level = _tier_trust_level(tier)
        stubs = []
        for item in members:
            if not isinstance(item, dict) or not item.get("username"):
                logger.debug("Skipping malformed group member", tier=tier)
                continue
            level = _as_int(item.get("trust_level"))
            stubs.append(
                MemberStub(
                    username=item["username"],
                    name=item.get("name") or None,
                    avatar_template=item.get("avatar_template"),
                    trust_level=level if level is not None else default_level,
                    tier=tier,
                )
            )
        return stubs

    async def get_profile(self, username: str) -> MemberProfile:
        """Fetch a member's public profile."""
        data = await self._get(f"/u/{quote(username, safe='')}.json")

        user = data.get("user")
        if not isinstance(user, dict):
            raise UpstreamRequestError(f"Profile for {username} has no user object", status_code=200)

        location = user.get("location")
        return MemberProfile(
            username=user.get("username") or username,
            name=user.get("name") or None,
            email=user.get("email"),
            location=location if isinstance(location, str) else None,
            trust_level=_as_int(user.get("trust_level")),
            avatar_template=user.get("avatar_template"),
        )
