"""
Read-only queries over the directory cache.
"""

from typing import Optional

from country_directory.platforms.base import Member
from country_directory.services.cache import AggregationCache


def _matches(member: Member, term: str) -> bool:
    fields = (
        member.first_name,
        member.last_name,
        member.email,
        member.username,
        member.country,
        member.location,
    )
    return any(term in value.lower() for value in fields if value)


class QueryService:
    """Thin facade over the cache used by the HTTP layer."""

    def __init__(self, cache: AggregationCache):
        self.cache = cache

    def countries(self) -> list[str]:
        return self.cache.countries()

    def members_of(self, country: str) -> list[Member]:
        return self.cache.members_of(country)

    def users_by_country(
        self,
        search: Optional[str] = None,
        country: Optional[str] = None,
    ) -> dict[str, list[Member]]:
        """Full grouping, optionally narrowed to one country and a search term.
        Countries left without members are omitted."""
        grouped = self.cache.users_by_country()
        if country:
            grouped = {country: grouped.get(country, [])}

        term = (search or "").strip().lower()
        if term:
            grouped = {c: [m for m in members if _matches(m, term)] for c, members in grouped.items()}

        return {c: members for c, members in sorted(grouped.items()) if members}
