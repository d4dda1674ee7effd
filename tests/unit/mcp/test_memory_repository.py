# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Unit tests for InMemoryConfigurationRepository.
"""

import uuid

import pytest

from gengar_bark.mcp.errors import DuplicateServerNameError
from gengar_bark.mcp.models import StoredConfiguration, TransportType, VerificationStatus
from gengar_bark.mcp.repository import InMemoryConfigurationRepository


def stored(user_id="U1", server_name="github", **overrides):
    data = {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "server_name": server_name,
        "transport_type": TransportType.SSE,
        "url": "https://api.github.com/mcp",
    }
    data.update(overrides)
    return StoredConfiguration(**data)


@pytest.fixture
def repo():
    return InMemoryConfigurationRepository()


@pytest.mark.asyncio
async def test_insert_and_get(repo):
    record = await repo.insert(stored())
    fetched = await repo.get("U1", record.id)
    assert fetched.server_name == "github"
    assert await repo.get("U2", record.id) is None


@pytest.mark.asyncio
async def test_duplicate_name_case_insensitive(repo):
    await repo.insert(stored(server_name="GitHub"))
    with pytest.raises(DuplicateServerNameError):
        await repo.insert(stored(server_name="github"))
    await repo.insert(stored(user_id="U2", server_name="github"))


@pytest.mark.asyncio
async def test_find_by_name(repo):
    record = await repo.insert(stored(server_name="My Server"))
    assert (await repo.find_by_name("U1", "  my server ")).id == record.id
    assert await repo.find_by_name("U2", "my server") is None


@pytest.mark.asyncio
async def test_list_ordering_and_filter(repo):
    await repo.insert(stored(server_name="b"))
    await repo.insert(stored(server_name="A", enabled=False))
    await repo.insert(stored(server_name="c"))

    assert [r.server_name for r in await repo.list_for_user("U1")] == ["A", "b", "c"]
    assert [r.server_name for r in await repo.list_for_user("U1", enabled_only=True)] == ["b", "c"]


@pytest.mark.asyncio
async def test_update(repo):
    record = await repo.insert(stored())
    updated = await repo.update("U1", record.id, {"verification_status": VerificationStatus.VERIFIED})

    assert updated.verification_status == VerificationStatus.VERIFIED
    assert updated.updated_at >= record.updated_at
    assert await repo.update("U2", record.id, {"enabled": False}) is None


@pytest.mark.asyncio
async def test_update_rejects_unknown_columns(repo):
    record = await repo.insert(stored())
    with pytest.raises(ValueError, match="user_id"):
        await repo.update("U1", record.id, {"user_id": "U2"})


@pytest.mark.asyncio
async def test_rename_collision(repo):
    await repo.insert(stored(server_name="one"))
    two = await repo.insert(stored(server_name="two"))
    with pytest.raises(DuplicateServerNameError):
        await repo.update("U1", two.id, {"server_name": "ONE"})


@pytest.mark.asyncio
async def test_returned_records_are_copies(repo):
    record = await repo.insert(stored())
    fetched = await repo.get("U1", record.id)
    fetched.server_name = "mutated"
    assert (await repo.get("U1", record.id)).server_name == "github"


@pytest.mark.asyncio
async def test_delete(repo):
    record = await repo.insert(stored())
    assert await repo.delete("U2", record.id) is False
    assert await repo.delete("U1", record.id) is True
    assert await repo.delete("U1", record.id) is False
    assert await repo.list_for_user("U1") == []
