"""
Local cache housekeeping.

Cached payloads are shaped by the API version that produced them. When the
client is upgraded to talk to a different API version, every cached
collection is dropped so nothing is read back in an outdated shape.
Authentication keys, remembered credentials and queued recordings are never
touched here.
"""

import logging
from dataclasses import dataclass, field

from vocalize.common.storage import KeyValueStore
from vocalize.common.vault import REMEMBERED_KEYS, SESSION_KEYS

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
API_VERSION_KEY = "api_version"

VERSIONED_CACHE_KEYS = ("user_data", "vocalizations", "hasParticipant", "participantId")
VERSIONED_CACHE_PREFIXES = ("user_participantes_", "user_audios_")

RECORDINGS_KEY = "recordings"


@dataclass
class CacheInfo:
    api_version: str | None
    total_keys: int
    cache_keys: list[str] = field(default_factory=list)


def _is_versioned_cache_key(key: str) -> bool:
    return any(cache_key in key for cache_key in VERSIONED_CACHE_KEYS) or key.startswith(
        VERSIONED_CACHE_PREFIXES
    )


def _is_data_key(key: str) -> bool:
    protected = set(SESSION_KEYS) | set(REMEMBERED_KEYS) | {API_VERSION_KEY, RECORDINGS_KEY}
    return key not in protected


async def check_and_clear_old_cache(
    store: KeyValueStore, api_version: str = API_VERSION
) -> bool:
    """
    Drop versioned cache entries when the stored API version differs.

    Returns:
        True if entries were cleared (the stored version was outdated)
    """
    stored_version = await store.get(API_VERSION_KEY)
    if stored_version == api_version:
        return False

    doomed = [key for key in await store.keys() if _is_versioned_cache_key(key)]
    if doomed:
        await store.multi_remove(doomed)
    await store.set(API_VERSION_KEY, api_version)
    logger.info(
        f"API version changed ({stored_version} -> {api_version}); "
        f"cleared {len(doomed)} cached entr{'y' if len(doomed) == 1 else 'ies'}"
    )
    return True


async def clear_data_cache(store: KeyValueStore) -> int:
    """
    Remove every cached data key, keeping auth, credentials and recordings.

    Returns:
        Number of keys removed
    """
    doomed = [key for key in await store.keys() if _is_data_key(key)]
    if doomed:
        await store.multi_remove(doomed)
    logger.info(f"Cleared {len(doomed)} cached data key(s)")
    return len(doomed)


async def get_cache_info(store: KeyValueStore) -> CacheInfo:
    """Summarize what is currently cached."""
    keys = await store.keys()
    return CacheInfo(
        api_version=await store.get(API_VERSION_KEY),
        total_keys=len(keys),
        cache_keys=sorted(key for key in keys if _is_data_key(key)),
    )
