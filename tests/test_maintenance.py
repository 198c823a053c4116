"""Tests for cache housekeeping."""

from __future__ import annotations

import pytest

from vocalize.common.storage import MemoryStore
from vocalize.services.maintenance import (
    API_VERSION,
    check_and_clear_old_cache,
    clear_data_cache,
    get_cache_info,
)


def _populated_store(version: str | None) -> MemoryStore:
    data = {
        "access_token": "a",
        "refresh_token": "r",
        "userId": "42",
        "role": "user",
        "saved_email": "ana@example.org",
        "saved_password": "secret",
        "recordings": "[]",
        "vocalizations": '{"data": [], "timestamp": 1}',
        "user_participantes_42": '{"data": [], "timestamp": 1}',
        "hasParticipant": "true",
        "participantId": "7",
        "username": "Ana",
    }
    if version is not None:
        data["api_version"] = version
    return MemoryStore(data)


@pytest.mark.asyncio
async def test_version_change_purges_versioned_cache_only() -> None:
    store = _populated_store("0.9.0")

    assert await check_and_clear_old_cache(store)

    remaining = store.snapshot()
    assert remaining["api_version"] == API_VERSION
    for key in ("vocalizations", "user_participantes_42", "hasParticipant", "participantId"):
        assert key not in remaining
    for key in ("access_token", "saved_email", "recordings", "username"):
        assert key in remaining


@pytest.mark.asyncio
async def test_first_run_records_version() -> None:
    store = MemoryStore()

    assert await check_and_clear_old_cache(store)
    assert store.snapshot() == {"api_version": API_VERSION}


@pytest.mark.asyncio
async def test_same_version_is_a_no_op() -> None:
    store = _populated_store(API_VERSION)
    before = store.snapshot()

    assert not await check_and_clear_old_cache(store)
    assert store.snapshot() == before


@pytest.mark.asyncio
async def test_clear_data_cache_keeps_session_credentials_and_queue() -> None:
    store = _populated_store(API_VERSION)

    removed = await clear_data_cache(store)

    assert removed == 5
    assert sorted(store.snapshot()) == [
        "access_token",
        "api_version",
        "recordings",
        "refresh_token",
        "role",
        "saved_email",
        "saved_password",
        "userId",
    ]


@pytest.mark.asyncio
async def test_cache_info_lists_data_keys() -> None:
    info = await get_cache_info(_populated_store(API_VERSION))

    assert info.api_version == API_VERSION
    assert info.total_keys == 13
    assert info.cache_keys == [
        "hasParticipant",
        "participantId",
        "user_participantes_42",
        "username",
        "vocalizations",
    ]
