"""
Participants: the people whose vocalizations are recorded.

Each user's participants are cached under ``user_participantes_<userId>``.
Two extra keys summarize that list for quick checks at startup:
``hasParticipant`` ("true"/"false") and ``participantId`` (first id).
"""

import logging
from typing import Any

from vocalize.api.client import APIClient
from vocalize.common.cache import (
    CachedCollection,
    merge_by_id,
    patch_entry,
    read_entry,
    remove_by_id,
    upsert_by_id,
)
from vocalize.common.errors import ErrorKind, VocalizeError, normalized_errors
from vocalize.common.vault import CredentialVault

logger = logging.getLogger(__name__)

PARTICIPANTS_KEY_PREFIX = "user_participantes_"
HAS_PARTICIPANT_KEY = "hasParticipant"
PARTICIPANT_ID_KEY = "participantId"


def participants_key(user_id: str | int) -> str:
    return f"{PARTICIPANTS_KEY_PREFIX}{user_id}"


class ParticipantService:
    """CRUD over /participantes with a per-user cached list."""

    def __init__(self, api: APIClient, vault: CredentialVault, cache: CachedCollection):
        self.api = api
        self.vault = vault
        self.cache = cache
        self.store = cache.store

    async def _resolve_user(self, user_id: str | int | None) -> str | None:
        if user_id is not None:
            return str(user_id)
        return await self.vault.get_user_id()

    async def _set_flags(self, participants: list[Any]) -> None:
        if participants and isinstance(participants[0], dict) and "id" in participants[0]:
            await self.store.multi_set(
                [
                    (HAS_PARTICIPANT_KEY, "true"),
                    (PARTICIPANT_ID_KEY, str(participants[0]["id"])),
                ]
            )
        else:
            await self.store.set(HAS_PARTICIPANT_KEY, "false")
            await self.store.remove(PARTICIPANT_ID_KEY)

    async def get_participants_by_user(
        self, user_id: str | int | None = None, force_refresh: bool = False
    ) -> list[dict[str, Any]]:
        """
        List the participants registered by a user.

        Args:
            user_id: Owner; defaults to the signed-in user
            force_refresh: Reload from the server even if the cache is fresh

        Returns:
            Participants, possibly served from cache
        """
        owner = await self._resolve_user(user_id)
        if not owner:
            raise VocalizeError(ErrorKind.VALIDATION, "No user id available.")

        async def load() -> list[dict[str, Any]]:
            response = await self.api.get(f"/participantes/usuario/{owner}")
            return response.data

        participants = await self.cache.fetch(
            participants_key(owner),
            load,
            force_refresh=force_refresh,
            fallback_message="Failed to load the user's participants.",
        )
        with normalized_errors("Failed to load the user's participants."):
            await self._set_flags(participants)
        return participants

    async def get_participant(
        self, participant_id: str | int, user_id: str | int | None = None
    ) -> dict[str, Any]:
        """
        Fetch one participant: from the server when online, else from cache.

        Raises:
            VocalizeError: not_found when neither source has it
        """
        if not participant_id:
            raise VocalizeError(ErrorKind.VALIDATION, "Participant id is required.")

        if await self.cache.connectivity.is_connected():
            try:
                response = await self.api.get(f"/participantes/{participant_id}")
                return response.data
            except VocalizeError as e:
                logger.warning(
                    f"Could not fetch participant {participant_id}, trying cache: {e.message}"
                )

        owner = await self._resolve_user(user_id)
        if owner:
            entry = await read_entry(self.store, participants_key(owner))
            if entry is not None:
                for participant in entry.data:
                    if isinstance(participant, dict) and str(participant.get("id")) == str(
                        participant_id
                    ):
                        return participant

        raise VocalizeError(ErrorKind.NOT_FOUND, "Participant not found in local storage.")

    async def get_all_participants(self) -> list[dict[str, Any]]:
        """List every participant (not cached)."""
        with normalized_errors("Failed to load participants."):
            response = await self.api.get("/participantes")
        return response.data

    async def create_participant(
        self, payload: dict[str, Any], user_id: str | int | None = None
    ) -> dict[str, Any]:
        """
        Create a participant and record it as the user's current one.

        Args:
            payload: Participant fields
            user_id: Owner whose cached list gets the new entry; defaults to
                the signed-in user
        """
        with normalized_errors("Failed to create participant."):
            response = await self.api.post("/participantes", json=payload)
            created = response.data
            if not isinstance(created, dict) or "id" not in created:
                raise VocalizeError(
                    ErrorKind.SERVER_REJECTED,
                    "Create participant response had no id",
                    detail=created,
                )

            await self.invalidate_participant_flag()
            await self.store.multi_set(
                [(HAS_PARTICIPANT_KEY, "true"), (PARTICIPANT_ID_KEY, str(created["id"]))]
            )
            owner = await self._resolve_user(user_id)
            if owner:
                await patch_entry(
                    self.store,
                    participants_key(owner),
                    upsert_by_id(created),
                    create_if_missing=True,
                    now=self.cache.clock(),
                )
        logger.info(f"Created participant {created['id']}")
        return created

    async def update_participant(
        self,
        participant_id: str | int,
        payload: dict[str, Any],
        user_id: str | int | None = None,
    ) -> Any:
        """Update a participant and merge the changes into the cached list."""
        with normalized_errors("Failed to update participant."):
            response = await self.api.patch(f"/participantes/{participant_id}", json=payload)

            await self.invalidate_participant_flag()
            await self.store.multi_set(
                [(HAS_PARTICIPANT_KEY, "true"), (PARTICIPANT_ID_KEY, str(participant_id))]
            )
            owner = await self._resolve_user(user_id)
            if owner:
                await patch_entry(
                    self.store,
                    participants_key(owner),
                    merge_by_id(participant_id, payload),
                    now=self.cache.clock(),
                )
        logger.info(f"Updated participant {participant_id}")
        return response.data

    async def delete_participant(
        self, participant_id: str | int, user_id: str | int | None = None
    ) -> None:
        """Delete a participant and drop it from the cached list."""
        with normalized_errors("Failed to delete participant."):
            await self.api.delete(f"/participantes/{participant_id}")

            await self.invalidate_participant_flag()
            if await self.store.get(PARTICIPANT_ID_KEY) == str(participant_id):
                await self.store.remove(PARTICIPANT_ID_KEY)

            owner = await self._resolve_user(user_id)
            if owner:
                entry = await patch_entry(
                    self.store,
                    participants_key(owner),
                    remove_by_id(participant_id),
                    now=self.cache.clock(),
                )
                if entry is not None and not entry.data:
                    await self.store.set(HAS_PARTICIPANT_KEY, "false")
        logger.info(f"Deleted participant {participant_id}")

    async def invalidate_participant_flag(self) -> None:
        """Forget the cached "has participant" answer."""
        await self.store.remove(HAS_PARTICIPANT_KEY)

    async def check_participant_exists(self) -> bool:
        """
        True if the signed-in user has at least one participant.

        Uses the stored flag when present, otherwise asks the participant
        list (which sets the flag).
        """
        try:
            flag = await self.store.get(HAS_PARTICIPANT_KEY)
            if flag == "true" and await self.store.get(PARTICIPANT_ID_KEY):
                return True
            if flag == "false":
                return False

            user_id = await self.vault.get_user_id()
            if not user_id:
                return False
            participants = await self.get_participants_by_user(user_id)
            return bool(participants)
        except (VocalizeError, OSError) as e:
            logger.warning(f"Could not determine whether a participant exists: {e}")
            return False
