"""
Session management: login, silent re-login, logout and account flows.

Auth endpoints go through the public client so that a rejected password is
reported as such instead of kicking off the 401 recovery pipeline.
"""

import logging
import re
from typing import Any

from vocalize.api.client import APIClient, request_login
from vocalize.common.errors import (
    ErrorKind,
    VocalizeError,
    as_vocalize_error,
    extract_detail,
    normalized_errors,
)
from vocalize.common.events import NoticeLevel, SessionEvents
from vocalize.common.models import Destination, LoginResult
from vocalize.common.tokens import decode_claims, is_token_valid
from vocalize.common.vault import REMEMBERED_KEYS, CredentialVault
from vocalize.services.access_gate import apply_access_gate
from vocalize.services.maintenance import RECORDINGS_KEY, check_and_clear_old_cache

logger = logging.getLogger(__name__)

UNVERIFIED_DETAIL = "Usuário não verificado. Verifique seu e-mail para ativar sua conta."

EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")


def _email_local_part(email: str) -> str:
    return email.split("@")[0]


class SessionManager:
    """Orchestrates the authentication flows on top of the API clients."""

    def __init__(
        self,
        api: APIClient,
        vault: CredentialVault,
        events: SessionEvents | None = None,
    ):
        if api.public is None:
            raise ValueError("SessionManager needs the authenticated client")
        self.api = api
        self.public = api.public
        self.vault = vault
        self.store = vault.store
        self.events = events or api.events

    def _fail(self, title: str, error: BaseException, fallback: str) -> VocalizeError:
        """Report an error to the user and return it normalized."""
        normalized = as_vocalize_error(error, fallback)
        self.events.notify(NoticeLevel.ERROR, title, normalized.message)
        return normalized

    # =========================================================================
    # Login / logout
    # =========================================================================

    async def login(self, email: str, password: str, remember: bool = True) -> LoginResult:
        """
        Sign in with email and password.

        Args:
            email: Account email
            password: Account password
            remember: Keep the credentials for silent re-login

        Returns:
            LoginResult.SUCCESS, UNVERIFIED (email not confirmed) or ERROR
        """
        if not email or not password:
            self.events.notify(NoticeLevel.ERROR, "Login failed", "Email and password are required.")
            return LoginResult.ERROR

        try:
            tokens = await request_login(self.public, email, password)
            claims = decode_claims(tokens.access_token)
        except VocalizeError as e:
            if e.status == 403 and extract_detail(e.detail) == UNVERIFIED_DETAIL:
                logger.info(f"Login refused for {email}: account not verified")
                self.events.notify(
                    NoticeLevel.ERROR,
                    "Account not verified",
                    "Check your email to activate your account.",
                )
                return LoginResult.UNVERIFIED
            logger.warning(f"Login failed ({e.kind.value}): {e.message}")
            self.events.notify(NoticeLevel.ERROR, "Login failed", e.message)
            return LoginResult.ERROR

        try:
            await self.vault.save_tokens(tokens, claims.sub, claims.role)
            if remember:
                await self.vault.save_remembered_credentials(email, password)

            if await check_and_clear_old_cache(self.store):
                self.events.notify(
                    NoticeLevel.INFO,
                    "Cache updated",
                    "Old data was cleared to stay compatible with the server.",
                )

            await self._load_profile(claims.sub, tokens.access_token, email)
        except OSError as e:
            logger.error(f"Could not persist session: {e}")
            self.events.notify(NoticeLevel.ERROR, "Login failed", "Could not save the session locally.")
            return LoginResult.ERROR

        logger.info(f"Logged in as user {claims.sub} (role={claims.role})")
        self.events.notify(NoticeLevel.SUCCESS, "Logged in", "Welcome to Vocalize")
        return LoginResult.SUCCESS

    async def _load_profile(self, user_id: str, access_token: str, email: str) -> None:
        """Fetch display name and access flag; best effort."""
        try:
            response = await self.public.get(
                f"/usuarios/{user_id}",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except VocalizeError as e:
            logger.warning(f"Could not load profile for user {user_id}: {e.message}")
            await self.vault.set_profile(_email_local_part(email), None)
            return

        profile: dict[str, Any] = response.data if isinstance(response.data, dict) else {}
        display_name = profile.get("nome") or _email_local_part(email)
        granted = profile.get("acesso_permitido")
        await self.vault.set_profile(display_name, None if granted is None else bool(granted))
        apply_access_gate(bool(granted), self.events)

    async def auto_login(self) -> bool:
        """Replay login with remembered credentials. True on success."""
        credentials = await self.vault.get_remembered_credentials()
        if credentials is None:
            return False
        result = await self.login(credentials.email, credentials.password, remember=False)
        return result is LoginResult.SUCCESS

    async def logout(self, clear_credentials: bool = False) -> None:
        """
        Sign out. Always succeeds locally.

        Everything stored is removed except the queued recordings and, unless
        clear_credentials is set, the remembered credentials.
        """
        access_token = await self.vault.get_access_token()
        refresh_token = await self.vault.get_refresh_token()
        if access_token and refresh_token:
            try:
                await self.public.post(
                    "/auth/logout",
                    json={"refresh_token": refresh_token},
                    headers={"Authorization": f"Bearer {access_token}"},
                )
            except VocalizeError as e:
                logger.warning(f"Server logout failed, continuing locally: {e.message}")

        keep = {RECORDINGS_KEY}
        if not clear_credentials:
            keep.update(REMEMBERED_KEYS)
        try:
            doomed = [key for key in await self.store.keys() if key not in keep]
            if doomed:
                await self.store.multi_remove(doomed)
        except OSError as e:
            logger.warning(f"Could not wipe local storage, clearing session only: {e}")
            await self.vault.clear_tokens()
            if clear_credentials:
                await self.vault.clear_remembered_credentials()

        logger.info("Logged out")
        self.events.navigate(Destination.LOGIN)

    async def is_authenticated(self) -> bool:
        """
        True iff a usable session exists, renewing it silently if possible.

        Order: valid stored token, refresh endpoint, remembered credentials.
        A failed renewal signs the session out.
        """
        access_token = await self.vault.get_access_token()
        if not access_token:
            return await self.auto_login()

        if is_token_valid(access_token):
            return True

        logger.debug("Stored access token expired")
        # Same renewal the 401 pipeline runs, so queued requests share its result
        owner = not self.api.coordinator.is_refreshing
        token = await self.api.coordinator.run(self.api.renew_session)
        if token:
            return True

        if owner:
            await self.vault.clear_tokens()
            self.events.navigate(Destination.LOGIN)
        return False

    # =========================================================================
    # Registration and account recovery
    # =========================================================================

    async def register(
        self,
        nome: str,
        email: str,
        celular: str,
        senha: str,
        confirma_senha: str,
        aceite_termos: bool,
    ) -> bool:
        """
        Create an account. The server then emails a confirmation code.

        Returns:
            True when the server answered 201 Created

        Raises:
            VocalizeError: validation before any request; server errors after
        """
        title = "Registration failed"
        problem = None
        if not nome or not celular or not email or not senha or not confirma_senha:
            problem = "All fields are required."
        elif not aceite_termos:
            problem = "You must accept the terms of use and privacy policy."
        elif not EMAIL_PATTERN.match(email):
            problem = "Invalid email format."
        elif senha != confirma_senha:
            problem = "Passwords do not match."
        if problem:
            self.events.notify(NoticeLevel.ERROR, title, problem)
            raise VocalizeError(ErrorKind.VALIDATION, problem)

        try:
            response = await self.public.post(
                "/auth/register",
                json={
                    "nome": nome,
                    "email": email,
                    "celular": celular,
                    "senha": senha,
                    "aceite_termos": aceite_termos,
                },
            )
        except VocalizeError as e:
            raise self._fail(title, e, "Registration failed.") from e

        if response.status != 201:
            raise self._fail(
                title,
                VocalizeError(ErrorKind.SERVER_REJECTED, "Unexpected response. Try again."),
                "Registration failed.",
            )
        logger.info(f"Registered account for {email}")
        self.events.notify(
            NoticeLevel.SUCCESS, "Registered", "Check your email to confirm your account."
        )
        return True

    async def send_confirmation_code(self, email: str) -> None:
        """Ask the server to email a new confirmation code."""
        self._require_email(email)
        try:
            await self.public.post("/auth/resend-confirmation-code", json={"email": email})
        except VocalizeError as e:
            raise self._fail("Error", e, "Could not send the confirmation code.") from e
        self.events.notify(NoticeLevel.SUCCESS, "Code sent", "A new confirmation code was emailed.")

    async def confirm_registration(self, email: str, codigo_confirmacao: str) -> None:
        """Activate an account with the emailed confirmation code."""
        self._require_email(email)
        if not codigo_confirmacao:
            raise VocalizeError(ErrorKind.VALIDATION, "Confirmation code is required.")
        try:
            await self.public.post(
                "/auth/confirm-registration",
                json={"email": email, "codigo_confirmacao": codigo_confirmacao},
            )
        except VocalizeError as e:
            raise self._fail("Error", e, "Could not confirm the registration.") from e
        self.events.notify(NoticeLevel.SUCCESS, "Account confirmed", "Your account is active.")

    async def request_password_reset(self, email: str) -> None:
        """Ask the server to email a password reset code."""
        self._require_email(email)
        try:
            await self.public.post("/auth/password-reset", json={"email": email})
        except VocalizeError as e:
            raise self._fail("Error", e, "Could not request a password reset.") from e
        self.events.notify(NoticeLevel.SUCCESS, "Code sent", "A reset code was emailed.")

    async def reset_password(self, email: str, codigo_confirmacao: str, nova_senha: str) -> None:
        """
        Set a new password with the emailed reset code.

        The remembered password is updated when the email is the remembered one.
        """
        self._require_email(email)
        if not nova_senha:
            raise VocalizeError(ErrorKind.VALIDATION, "New password is required.")
        try:
            code = int(str(codigo_confirmacao).strip())
        except ValueError as e:
            raise VocalizeError(
                ErrorKind.VALIDATION, "Reset code must be numeric.", cause=e
            ) from e

        try:
            await self.public.post(
                "/auth/confirm-password-reset",
                json={"email": email, "codigo_confirmacao": code, "nova_senha": nova_senha},
            )
        except VocalizeError as e:
            raise self._fail("Error", e, "Could not reset the password.") from e

        await self.vault.update_remembered_password(email, nova_senha)
        self.events.notify(NoticeLevel.SUCCESS, "Password changed", "Your password was reset.")

    @staticmethod
    def _require_email(email: str) -> None:
        if not email or not EMAIL_PATTERN.match(email):
            raise VocalizeError(ErrorKind.VALIDATION, "A valid email is required.")

    # =========================================================================
    # User endpoints
    # =========================================================================

    async def get_user(self, user_id: str | int) -> dict[str, Any]:
        """Fetch a user profile."""
        with normalized_errors("Could not load user."):
            response = await self.api.get(f"/usuarios/{user_id}")
        return response.data

    async def generate_invite_code(self) -> str:
        """Create an invite code other users can register with."""
        response = await self.api.post("/usuarios/gerar-codigo-convite")
        data = response.data if isinstance(response.data, dict) else {}
        code = data.get("codigo_convite")
        if not code:
            raise VocalizeError(
                ErrorKind.SERVER_REJECTED, "Server did not return an invite code", detail=response.data
            )
        return str(code)
