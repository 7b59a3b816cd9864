"""
Remote directory abstraction.
The fetcher only talks to the forum through this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from country_directory.utils.location import NO_COUNTRY, normalize_country


def split_name(name: Optional[str], username: str) -> tuple[str, str]:
    """Split a display name on its first space into (first, last)."""
    parts = (name or "").split(None, 1)
    if not parts:
        return username, ""
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1]


@dataclass(frozen=True)
class MemberStub:
    """Listing entry for a member. The listing endpoint carries no location."""
    username: str
    name: Optional[str] = None
    avatar_template: Optional[str] = None
    trust_level: Optional[int] = None
    tier: Optional[str] = None


@dataclass(frozen=True)
class MemberProfile:
    """Detailed profile of a single member."""
    username: str
    name: Optional[str] = None
    email: Optional[str] = None
    location: Optional[str] = None
    trust_level: Optional[int] = None
    avatar_template: Optional[str] = None


@dataclass(frozen=True)
class Member:
    """A member placed in a cache generation. Never mutated once built."""
    username: str
    first_name: str
    last_name: str
    email: Optional[str]
    location: Optional[str]
    country: str
    trust_level: Optional[int]
    avatar_template: Optional[str]

    @classmethod
    def from_stub(cls, stub: MemberStub) -> "Member":
        """Fallback when the profile could not be resolved."""
        first, last = split_name(stub.name, stub.username)
        return cls(
            username=stub.username,
            first_name=first,
            last_name=last,
            email=None,
            location=None,
            country=NO_COUNTRY,
            trust_level=stub.trust_level,
            avatar_template=stub.avatar_template,
        )

    @classmethod
    def from_profile(cls, stub: MemberStub, profile: MemberProfile) -> "Member":
        """Merge a resolved profile over its listing stub."""
        first, last = split_name(profile.name or stub.name, stub.username)
        return cls(
            username=stub.username,
            first_name=first,
            last_name=last,
            email=profile.email,
            location=profile.location,
            country=normalize_country(profile.location),
            trust_level=profile.trust_level if profile.trust_level is not None else stub.trust_level,
            avatar_template=profile.avatar_template or stub.avatar_template,
        )


class BaseDirectoryClient(ABC):
    """Abstract client for a community platform's member directory."""

    name: str = "base"
    # Awaited before every request sent to the platform, retries included
    pacer: Optional[Callable[[], Awaitable[None]]] = None

    async def initialize(self) -> None:
        """Open connections. Override if the client holds resources."""

    async def close(self) -> None:
        """Release connections."""

    async def pace(self) -> None:
        if self.pacer is not None:
            await self.pacer()

    async def __aenter__(self) -> "BaseDirectoryClient":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @abstractmethod
    async def list_members(self, tier: str, limit: int, offset: int) -> list[MemberStub]:
        """Return one page of members of a tier.

        A page shorter than ``limit`` marks the end of the tier.

        Raises:
            UpstreamRequestError: the page could not be fetched
        """

    @abstractmethod
    async def get_profile(self, username: str) -> MemberProfile:
        """Return the detailed profile of one member.

        Raises:
            UpstreamRequestError: the profile could not be fetched or parsed
        """
