"""
Profile and pet listing lookups used to validate recipients and to enrich
conversation and message records with names and images.
"""

from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from messenger.models.profile import Profile
from messenger.models.pet_listing import PetListing
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

FALLBACK_DISPLAY_NAME = "User"


class ProfileRepository(BaseRepository[Profile]):
    """Repository for Profile entities."""

    def __init__(self, db: AsyncSession):
        super().__init__(Profile, db)

    async def create_profile(self, display_name: str | None = None, avatar_url: str | None = None,
                             profile_id: UUID | None = None) -> Profile:
        data: dict = {"display_name": display_name, "avatar_url": avatar_url}
        if profile_id is not None:
            data["id"] = profile_id
        return await self.create(**data)

    async def display_names(self, profile_ids: list[UUID]) -> dict[UUID, str]:
        """
        Map profile ids to display names, falling back to "User" for profiles
        without a name and for unknown ids.
        """
        found = await self.get_many_by_ids(profile_ids)
        return {
            pid: (found[pid].display_name if pid in found and found[pid].display_name else FALLBACK_DISPLAY_NAME)
            for pid in profile_ids
        }


class PetListingRepository(BaseRepository[PetListing]):
    """Repository for PetListing entities (read side of the marketplace catalogue)."""

    def __init__(self, db: AsyncSession):
        super().__init__(PetListing, db)
