"""
Community platform clients.
"""

from country_directory.platforms.base import (
    BaseDirectoryClient,
    Member,
    MemberProfile,
    MemberStub,
    split_name,
)
from country_directory.platforms.discourse import DiscourseClient

__all__ = [
    "BaseDirectoryClient",
    "DiscourseClient",
    "Member",
    "MemberProfile",
    "MemberStub",
    "split_name",
]
