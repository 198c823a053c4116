"""
Vocalizations: the catalogue of sounds participants record.

Reads go through the shared cache policy; writes go to the server first and
then patch the cached list in place.
"""

import logging
from typing import Any

from vocalize.api.client import APIClient
from vocalize.common.cache import (
    CachedCollection,
    merge_by_id,
    patch_entry,
    remove_by_id,
    upsert_by_id,
)
from vocalize.common.errors import ErrorKind, VocalizeError, normalized_errors
from vocalize.common.vault import CredentialVault

logger = logging.getLogger(__name__)

VOCALIZATIONS_KEY = "vocalizations"
ADMIN_ROLE = "admin"


class VocalizationService:
    """CRUD over /vocalizacoes with a cached list."""

    def __init__(self, api: APIClient, vault: CredentialVault, cache: CachedCollection):
        self.api = api
        self.vault = vault
        self.cache = cache

    async def get_vocalizations(self, force_refresh: bool = False) -> list[dict[str, Any]]:
        """
        List all vocalizations.

        Args:
            force_refresh: Reload from the server even if the cache is fresh

        Returns:
            Vocalizations, possibly served from cache
        """

        async def load() -> list[dict[str, Any]]:
            response = await self.api.get("/vocalizacoes")
            return response.data

        return await self.cache.fetch(
            VOCALIZATIONS_KEY,
            load,
            force_refresh=force_refresh,
            fallback_message="Failed to load vocalizations.",
        )

    async def create_vocalization(self, nome: str, descricao: str) -> dict[str, Any]:
        """
        Create a vocalization and add it to the cached list.

        Raises:
            VocalizeError: validation when nome or descricao is empty
        """
        if not nome or not descricao:
            raise VocalizeError(ErrorKind.VALIDATION, "Name and description are required.")

        with normalized_errors("Failed to create vocalization."):
            response = await self.api.post(
                "/vocalizacoes", json={"nome": nome, "descricao": descricao}
            )
            created = response.data
            if isinstance(created, dict) and "id" in created:
                await patch_entry(
                    self.cache.store,
                    VOCALIZATIONS_KEY,
                    upsert_by_id(created),
                    create_if_missing=True,
                    now=self.cache.clock(),
                )
            else:
                logger.warning("Create vocalization response had no id; cache not updated")
        logger.info(f"Created vocalization '{nome}'")
        return created

    async def update_vocalization(self, vocalization_id: str | int, data: dict[str, Any]) -> None:
        """
        Update a vocalization. Only admins and the vocalization's owner may.

        Args:
            vocalization_id: Vocalization id
            data: Fields to change; ``id_usuario`` identifies the owner

        Raises:
            VocalizeError: permission_denied before any request is made
        """
        role = await self.vault.get_role()
        user_id = await self.vault.get_user_id()
        owner_id = data.get("id_usuario")
        is_owner = owner_id is not None and user_id is not None and str(owner_id) == str(user_id)
        if role != ADMIN_ROLE and not is_owner:
            raise VocalizeError(
                ErrorKind.PERMISSION_DENIED,
                "You are not allowed to update vocalizations.",
            )

        with normalized_errors("Failed to update vocalization."):
            await self.api.patch(f"/vocalizacoes/{vocalization_id}", json=data)
            await patch_entry(
                self.cache.store,
                VOCALIZATIONS_KEY,
                merge_by_id(vocalization_id, data),
                now=self.cache.clock(),
            )
        logger.info(f"Updated vocalization {vocalization_id}")

    async def delete_vocalization(self, vocalization_id: str | int) -> None:
        """
        Delete a vocalization. Admin only.

        Raises:
            VocalizeError: permission_denied before any request is made
        """
        if await self.vault.get_role() != ADMIN_ROLE:
            raise VocalizeError(
                ErrorKind.PERMISSION_DENIED,
                "You are not allowed to delete vocalizations.",
            )

        with normalized_errors("Failed to delete vocalization."):
            await self.api.delete(f"/vocalizacoes/{vocalization_id}")
            await patch_entry(
                self.cache.store,
                VOCALIZATIONS_KEY,
                remove_by_id(vocalization_id),
                now=self.cache.clock(),
            )
        logger.info(f"Deleted vocalization {vocalization_id}")
