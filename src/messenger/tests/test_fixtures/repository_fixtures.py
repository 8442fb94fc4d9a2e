"""Fixtures for repository tests."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from messenger.models import PetListing, Profile
from messenger.repositories import (
    ConversationRepository,
    MemberRepository,
    MessageRepository,
    PetListingRepository,
    ProfileRepository,
)

# NOTE: repository fixtures share the `db_session` from conftest.py; nothing is committed.


@pytest.fixture
def profile_repository(db_session: AsyncSession) -> ProfileRepository:
    return ProfileRepository(db_session)


@pytest.fixture
def conversation_repository(db_session: AsyncSession) -> ConversationRepository:
    return ConversationRepository(db_session)


@pytest.fixture
def member_repository(db_session: AsyncSession) -> MemberRepository:
    return MemberRepository(db_session)


@pytest.fixture
def message_repository(db_session: AsyncSession) -> MessageRepository:
    return MessageRepository(db_session)


@pytest.fixture
def make_profile(session_factory, faker):
    """
    Factory that commits a profile in its own session, so the row is visible
    to every other session (store tests open one per operation).

    Usage:
        profile = await make_profile(display_name="Rosa")
    """
    async def _create(**overrides) -> Profile:
        data = {"display_name": faker.first_name(), "avatar_url": faker.image_url()}
        data.update(overrides)
        async with session_factory() as session:
            profile = await ProfileRepository(session).create(**data)
            await session.commit()
        return profile

    return _create


@pytest.fixture
def make_pet(session_factory, faker):
    """Factory that commits a pet listing owned by `owner_id`."""
    async def _create(owner_id, **overrides) -> PetListing:
        data = {"owner_id": owner_id, "pet_name": faker.first_name(), "image_url": faker.image_url()}
        data.update(overrides)
        async with session_factory() as session:
            pet = await PetListingRepository(session).create(**data)
            await session.commit()
        return pet

    return _create
