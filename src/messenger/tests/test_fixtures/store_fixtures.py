"""Fixtures for conversation store tests: committed profiles, a pet and a conversation."""

import pytest

from messenger.models import PetListing, Profile


@pytest.fixture
async def alice(make_profile) -> Profile:
    return await make_profile(display_name="Alice")


@pytest.fixture
async def bob(make_profile) -> Profile:
    return await make_profile(display_name="Bob")


@pytest.fixture
async def carol(make_profile) -> Profile:
    return await make_profile(display_name="Carol")


@pytest.fixture
async def buddy(make_pet, bob) -> PetListing:
    """Bob's listing for a dog called Buddy."""
    return await make_pet(bob.id, pet_name="Buddy")


@pytest.fixture
async def seeded_conversation(store, alice, bob, buddy):
    """
    Alice asked Bob about Buddy. Returns the StartConversationResult seen by Alice.
    """
    return await store.start_conversation(alice.id, bob.id, buddy.id, "Is Buddy still available?")
