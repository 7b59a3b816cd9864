"""
Directory fetcher.

Enumerates every member of the forum tier by tier, then resolves each
member's profile to learn their location. Individual failures degrade
the result instead of aborting it:

- a failed listing page ends that tier, members gathered so far are kept
- a failed profile lookup keeps the member with the "No country" bucket
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from country_directory.config import Settings
from country_directory.errors import UpstreamRequestError
from country_directory.platforms.base import BaseDirectoryClient, Member, MemberStub
from country_directory.platforms.discourse import DiscourseClient
from country_directory.services.credentials import CredentialStore
from country_directory.services.governor import RequestGovernor
from country_directory.utils.logging import get_logger

logger = get_logger(__name__)

ClientFactory = Callable[[], BaseDirectoryClient]

PROGRESS_EVERY = 100


@dataclass
class FetchResult:
    """Outcome of one full enumeration."""
    members: list[Member] = field(default_factory=list)
    # First listing failure, if any tier was cut short
    error: Optional[UpstreamRequestError] = None
    profile_failures: int = 0
    duration_seconds: float = 0.0


def discourse_client_factory(store: CredentialStore, settings: Settings) -> ClientFactory:
    """Build Discourse clients from the credentials current at call time."""

    def factory() -> BaseDirectoryClient:
        creds = store.current()
        return DiscourseClient(
            base_url=creds.api_url,
            api_key=creds.api_key,
            api_username=creds.api_username,
            timeout=settings.request_timeout_seconds,
            max_retries=settings.max_retries,
        )

    return factory


class DirectoryFetcher:
    """Paginated, paced enumeration of all forum members."""

    def __init__(
        self,
        client_factory: ClientFactory,
        governor: RequestGovernor,
        tiers: list[str],
        page_size: int | Callable[[], int] = 1000,
    ):
        self._client_factory = client_factory
        self.governor = governor
        self.tiers = list(tiers)
        self._page_size = page_size

    @property
    def page_size(self) -> int:
        size = self._page_size() if callable(self._page_size) else self._page_size
        return max(1, int(size))

    async def fetch_all_members(self) -> FetchResult:
        """Fetch every member with their resolved country.

        Raises:
            ConfigurationError: credentials are missing, nothing was requested
        """
        client = self._client_factory()
        client.pacer = self.governor.acquire
        started = time.monotonic()
        self.governor.reset()

        async with client:
            stubs, error = await self._list_all(client)
            logger.info("Member listing complete", members=len(stubs), tiers=len(self.tiers))

            result = FetchResult(error=error)
            for index, stub in enumerate(stubs, start=1):
                member = await self._resolve(client, stub)
                if member is None:
                    member = Member.from_stub(stub)
                    result.profile_failures += 1
                result.members.append(member)

                if index % PROGRESS_EVERY == 0:
                    logger.info("Profile resolution progress", resolved=index, total=len(stubs))

        result.duration_seconds = time.monotonic() - started
        logger.info(
            "Directory fetch finished",
            members=len(result.members),
            profile_failures=result.profile_failures,
            listing_error=str(error) if error else None,
            duration_seconds=round(result.duration_seconds, 1),
        )
        return result

    async def _list_all(
        self, client: BaseDirectoryClient
    ) -> tuple[list[MemberStub], Optional[UpstreamRequestError]]:
        """Collect stubs across tiers, deduplicated by username."""
        seen: dict[str, MemberStub] = {}
        first_error: Optional[UpstreamRequestError] = None
        page_size = self.page_size

        for tier in self.tiers:
            offset = 0
            while True:
                try:
                    page = await client.list_members(tier, page_size, offset)
                except UpstreamRequestError as e:
                    logger.warning(
                        "Listing page failed, skipping rest of tier",
                        tier=tier,
                        offset=offset,
                        error=str(e),
                    )
                    first_error = first_error or e
                    break

                for stub in page:
                    known = seen.get(stub.username)
                    # Trust-level groups are cumulative; keep the highest level seen
                    if known is None or (stub.trust_level or 0) > (known.trust_level or 0):
                        seen[stub.username] = stub

                if len(page) < page_size:
                    break
                offset += page_size

        return list(seen.values()), first_error

    async def _resolve(self, client: BaseDirectoryClient, stub: MemberStub) -> Optional[Member]:
        try:
            profile = await client.get_profile(stub.username)
        except UpstreamRequestError as e:
            logger.warning("Profile lookup failed", username=stub.username, error=str(e))
            return None
        return Member.from_profile(stub, profile)

    def estimate_seconds(self, expected_members: int) -> float:
        """Pacing-bound duration of a run over ``expected_members`` members."""
        pages = len(self.tiers) * (expected_members // self.page_size + 1)
        return self.governor.estimate_seconds(expected_members + pages)
