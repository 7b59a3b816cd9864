"""
Aggregation cache for the member directory.

Holds the current snapshot (country -> members) in memory and mirrors it
to a JSON file so a restart can serve data without re-fetching.

A refresh builds a complete new snapshot and swaps the reference in one
assignment, so readers see either the old generation or the new one,
never a mix. A failed refresh leaves the old snapshot in place.
"""

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from country_directory.errors import ConfigurationError, RefreshFailure, RefreshInProgress
from country_directory.platforms.base import Member
from country_directory.services.credentials import write_json_atomic
from country_directory.services.fetcher import DirectoryFetcher
from country_directory.utils.location import NO_COUNTRY
from country_directory.utils.logging import get_logger

logger = get_logger(__name__)

SNAPSHOT_VERSION = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _member_to_dict(member: Member) -> dict:
    """Convert a Member to its persisted form."""
    return {
        "username": member.username,
        "firstname": member.first_name,
        "lastname": member.last_name,
        "email": member.email,
        "location": member.location,
        "country": member.country,
        "trust_level": member.trust_level,
        "avatar_template": member.avatar_template,
    }


def _dict_to_member(d: dict) -> Member:
    """Convert a persisted dict back to a Member."""
    return Member(
        username=d["username"],
        first_name=d.get("firstname") or d["username"],
        last_name=d.get("lastname") or "",
        email=d.get("email"),
        location=d.get("location"),
        country=d.get("country") or NO_COUNTRY,
        trust_level=d.get("trust_level"),
        avatar_template=d.get("avatar_template"),
    )


@dataclass(frozen=True)
class Snapshot:
    """One complete, internally consistent generation of the directory."""
    updated_at: datetime
    buckets: Mapping[str, tuple[Member, ...]]

    @classmethod
    def build(cls, members: list[Member], updated_at: datetime) -> "Snapshot":
        """Group members by country. Later duplicates of a username are dropped."""
        grouped: dict[str, list[Member]] = {}
        seen: set[str] = set()
        for member in members:
            if member.username in seen:
                continue
            seen.add(member.username)
            grouped.setdefault(member.country or NO_COUNTRY, []).append(member)
        return cls(
            updated_at=updated_at,
            buckets=MappingProxyType({k: tuple(v) for k, v in grouped.items()}),
        )

    @property
    def total_members(self) -> int:
        return sum(len(v) for v in self.buckets.values())

    def countries(self) -> list[str]:
        """Sorted country names, without the sentinel bucket."""
        return sorted(c for c in self.buckets if c != NO_COUNTRY)

    def members_of(self, country: str) -> list[Member]:
        return list(self.buckets.get(country, ()))

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or _utcnow()) - self.updated_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "updated_at": self.updated_at.isoformat(),
            "users_by_country": {
                country: [_member_to_dict(m) for m in members]
                for country, members in self.buckets.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Snapshot":
        if data.get("version") != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported snapshot version: {data.get('version')!r}")
        updated_at = datetime.fromisoformat(data["updated_at"])
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        members = [
            _dict_to_member(d)
            for bucket in data["users_by_country"].values()
            for d in bucket
        ]
        return cls.build(members, updated_at)


class AggregationCache:
    """Owns the current snapshot and the single-flight refresh.

    Reads never block and never raise; with no snapshot they return
    empty results.
    """

    def __init__(
        self,
        fetcher: DirectoryFetcher,
        snapshot_path: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._fetcher = fetcher
        self.snapshot_path = Path(snapshot_path) if snapshot_path else None
        self._clock = clock
        self._snapshot: Optional[Snapshot] = None
        self._lock = asyncio.Lock()
        self.last_error: Optional[str] = None
        self.last_refresh_duration: Optional[float] = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> Optional[Snapshot]:
        return self._snapshot

    @property
    def is_refreshing(self) -> bool:
        return self._lock.locked()

    @property
    def updated_at(self) -> Optional[datetime]:
        snapshot = self._snapshot
        return snapshot.updated_at if snapshot else None

    def countries(self) -> list[str]:
        snapshot = self._snapshot
        return snapshot.countries() if snapshot else []

    def members_of(self, country: str) -> list[Member]:
        snapshot = self._snapshot
        return snapshot.members_of(country) if snapshot else []

    def users_by_country(self) -> dict[str, list[Member]]:
        snapshot = self._snapshot
        if not snapshot:
            return {}
        return {country: list(members) for country, members in snapshot.buckets.items()}

    def estimate_refresh_seconds(self) -> Optional[float]:
        """Expected duration of the next refresh, sized on the current generation."""
        snapshot = self._snapshot
        if not snapshot:
            return None
        return self._fetcher.estimate_seconds(snapshot.total_members)

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, timeout: Optional[float] = None) -> Snapshot:
        """Rebuild the directory from the remote platform.

        Args:
            timeout: Seconds allowed for the fetch, unbounded when None

        Raises:
            RefreshInProgress: another refresh holds the lock
            ConfigurationError: credentials are missing
            RefreshFailure: nothing usable was fetched or the fetch timed out;
                the old snapshot stays
        """
        if self._lock.locked():
            raise RefreshInProgress("Cache update already in progress")

        async with self._lock:
            try:
                result = await asyncio.wait_for(self._fetcher.fetch_all_members(), timeout)
            except ConfigurationError:
                raise
            except asyncio.TimeoutError as e:
                self.last_error = f"Refresh timed out after {timeout}s"
                raise RefreshFailure(self.last_error) from e
            except Exception as e:
                self.last_error = str(e)
                raise RefreshFailure(f"Directory fetch failed: {e}") from e

            self.last_refresh_duration = result.duration_seconds
            if result.error is not None and not result.members:
                self.last_error = str(result.error)
                raise RefreshFailure(f"No members fetched: {result.error}") from result.error

            snapshot = Snapshot.build(result.members, self._clock())
            self._snapshot = snapshot
            self.last_error = str(result.error) if result.error else None

            logger.info(
                "Cache refreshed",
                members=snapshot.total_members,
                countries=len(snapshot.countries()),
                partial=result.error is not None,
            )
            await self._persist(snapshot)
            return snapshot

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist(self, snapshot: Snapshot) -> None:
        if not self.snapshot_path:
            return
        try:
            await asyncio.to_thread(write_json_atomic, self.snapshot_path, snapshot.to_dict())
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write snapshot", path=str(self.snapshot_path), error=str(e))

    def load(self) -> bool:
        """Restore the last persisted snapshot. Returns True when one was loaded."""
        if not self.snapshot_path or not self.snapshot_path.exists():
            return False
        try:
            with self.snapshot_path.open(encoding="utf-8") as fh:
                snapshot = Snapshot.from_dict(json.load(fh))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Could not restore snapshot", path=str(self.snapshot_path), error=str(e))
            return False

        self._snapshot = snapshot
        logger.info(
            "Snapshot restored",
            members=snapshot.total_members,
            updated_at=snapshot.updated_at.isoformat(),
        )
        return True

    async def close(self) -> None:
        """Drop the in-memory snapshot. The file on disk is kept."""
        self._snapshot = None
