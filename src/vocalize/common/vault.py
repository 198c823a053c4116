"""
Credential vault: the auth-specific view over the key-value store.

Session keys (tokens, user id, role) are written and cleared together.
Remembered credentials are a separate record that survives logout, and the
pending recordings queue is never touched from here.
"""

import logging

from vocalize.common.models import RememberedCredentials, TokenPair
from vocalize.common.storage import KeyValueStore

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
USER_ID_KEY = "userId"
ROLE_KEY = "role"
SAVED_EMAIL_KEY = "saved_email"
SAVED_PASSWORD_KEY = "saved_password"
USERNAME_KEY = "username"
ACCESS_GRANTED_KEY = "acessoPermitido"

# Keys left behind by older app versions, cleared with the session
LEGACY_SESSION_KEYS = ("token", "tokenExpires")

SESSION_KEYS = (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    USER_ID_KEY,
    ROLE_KEY,
) + LEGACY_SESSION_KEYS

REMEMBERED_KEYS = (SAVED_EMAIL_KEY, SAVED_PASSWORD_KEY)


class CredentialVault:
    """Reads and writes authentication state in a KeyValueStore."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def get_access_token(self) -> str | None:
        return await self.store.get(ACCESS_TOKEN_KEY)

    async def get_refresh_token(self) -> str | None:
        return await self.store.get(REFRESH_TOKEN_KEY)

    async def get_user_id(self) -> str | None:
        return await self.store.get(USER_ID_KEY)

    async def get_role(self) -> str | None:
        return await self.store.get(ROLE_KEY)

    async def save_tokens(self, tokens: TokenPair, user_id: str, role: str) -> None:
        """Persist a full credential record in one write."""
        await self.store.multi_set(
            [
                (ACCESS_TOKEN_KEY, tokens.access_token),
                (REFRESH_TOKEN_KEY, tokens.refresh_token),
                (USER_ID_KEY, user_id),
                (ROLE_KEY, role),
            ]
        )
        logger.debug(f"Session stored for user {user_id} (role={role})")

    async def update_token_pair(self, tokens: TokenPair) -> None:
        """Replace only the token pair, keeping user id and role."""
        await self.store.multi_set(
            [
                (ACCESS_TOKEN_KEY, tokens.access_token),
                (REFRESH_TOKEN_KEY, tokens.refresh_token),
            ]
        )

    async def clear_tokens(self) -> None:
        """Remove the session keys. Remembered credentials are kept."""
        await self.store.multi_remove(SESSION_KEYS)
        logger.debug("Session keys cleared")

    async def save_remembered_credentials(self, email: str, password: str) -> None:
        await self.store.multi_set(
            [(SAVED_EMAIL_KEY, email), (SAVED_PASSWORD_KEY, password)]
        )

    async def get_remembered_credentials(self) -> RememberedCredentials | None:
        values = await self.store.multi_get(REMEMBERED_KEYS)
        email = values.get(SAVED_EMAIL_KEY)
        password = values.get(SAVED_PASSWORD_KEY)
        if not email or not password:
            return None
        return RememberedCredentials(email=email, password=password)

    async def has_remembered_credentials(self) -> bool:
        return await self.get_remembered_credentials() is not None

    async def clear_remembered_credentials(self) -> None:
        await self.store.multi_remove(REMEMBERED_KEYS)

    async def update_remembered_password(self, email: str, password: str) -> bool:
        """
        Replace the remembered password when ``email`` is the remembered one.

        Returns:
            True if the stored password was changed
        """
        saved_email = await self.store.get(SAVED_EMAIL_KEY)
        if saved_email != email:
            return False
        await self.store.set(SAVED_PASSWORD_KEY, password)
        return True

    async def set_profile(self, display_name: str, access_granted: bool | None) -> None:
        """Store the display name and, when known, the access flag."""
        items = [(USERNAME_KEY, display_name)]
        if access_granted is not None:
            items.append((ACCESS_GRANTED_KEY, "true" if access_granted else "false"))
        await self.store.multi_set(items)

    async def get_display_name(self) -> str | None:
        return await self.store.get(USERNAME_KEY)
