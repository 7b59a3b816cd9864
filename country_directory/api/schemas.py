"""Pydantic schemas for API requests and responses."""
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from country_directory.platforms.base import Member
from country_directory.utils.avatars import avatar_url, initials


class MemberResponse(BaseModel):
    """A member card."""
    username: str
    firstname: str
    lastname: str
    email: Optional[str] = None
    location: Optional[str] = None
    country: str
    trust_level: Optional[int] = None
    avatar_template: Optional[str] = None
    avatar_url: str = ""
    initials: str = "?"

    @classmethod
    def from_member(cls, member: Member, base_url: str = "", avatar_size: int = 48) -> "MemberResponse":
        return cls(
            username=member.username,
            firstname=member.first_name,
            lastname=member.last_name,
            email=member.email,
            location=member.location,
            country=member.country,
            trust_level=member.trust_level,
            avatar_template=member.avatar_template,
            avatar_url=avatar_url(member.avatar_template, avatar_size, base_url),
            initials=initials(member.first_name, member.last_name),
        )


class CountriesResponse(BaseModel):
    success: bool
    countries: list[str] = []
    total_countries: int = 0
    cache_updated: Optional[str] = None
    timestamp: str
    message: Optional[str] = None


class MembersResponse(BaseModel):
    success: bool
    users: list[MemberResponse] = []
    country: str
    total_users: int = 0
    cache_updated: Optional[str] = None
    timestamp: str
    message: Optional[str] = None


class UsersByCountryResponse(BaseModel):
    success: bool
    users_by_country: dict[str, list[MemberResponse]] = {}
    total_users: int = 0
    total_countries: int = 0
    cache_updated: Optional[str] = None
    timestamp: str
    message: Optional[str] = None


class UpdateCacheResponse(BaseModel):
    success: bool
    message: str
    estimated_completion: Optional[str] = None


class StatusResponse(BaseModel):
    """Cache health, for operators."""
    success: bool = True
    state: str
    loading: bool
    configured: bool
    cache_updated: Optional[str] = None
    total_users: int = 0
    total_countries: int = 0
    last_error: Optional[str] = None
    last_refresh_duration_seconds: Optional[float] = None
    timestamp: str


class SaveSettingsRequest(BaseModel):
    """Discourse connection settings. Accepts the legacy dmu_* field names."""
    api_key: str = Field(
        ..., min_length=1,
        validation_alias=AliasChoices("api_key", "dmu_discourse_api_key"),
    )
    api_username: str = Field(
        default="system",
        validation_alias=AliasChoices("api_username", "dmu_discourse_api_username"),
    )
    api_url: str = Field(
        ..., min_length=1,
        validation_alias=AliasChoices("api_url", "dmu_discourse_api_url"),
    )
    api_limit: Optional[int] = Field(
        default=None, ge=1, le=1000,
        validation_alias=AliasChoices("api_limit", "dmu_discourse_api_limit"),
    )


class SaveSettingsResponse(BaseModel):
    success: bool


class HealthResponse(BaseModel):
    status: str
