"""
HTTP client for the Vocalize API.

Handles:
- JSON and multipart requests against one base URL
- Static API-key header on every call
- Bearer token injection from the credential vault (authenticated client)
- 401 recovery: single-flight refresh, silent re-login, then sign-out

Two clients exist per context. The authenticated one decorates requests with
the stored bearer token and recovers from 401s. The public one sends only the
API key and is used for the auth endpoints themselves and for calls that must
carry an explicit, freshly minted token.
"""

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from vocalize.api.refresh import RefreshCoordinator
from vocalize.common.errors import (
    ErrorKind,
    VocalizeError,
    as_vocalize_error,
    extract_detail,
)
from vocalize.common.events import SessionEvents
from vocalize.common.models import APIResponse, Destination, TokenPair
from vocalize.common.tokens import decode_claims
from vocalize.common.vault import CredentialVault
from vocalize.common.version import __version__

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
LOGIN_PATH = "/auth/login"
REFRESH_PATH = "/auth/refresh"

SESSION_EXPIRED_MESSAGE = "Session expired. Please sign in again."


@dataclass(frozen=True)
class FilePart:
    """One file field of a multipart request."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class _Request:
    """Everything needed to (re-)issue a call."""

    method: str
    path: str
    json: Any = None
    data: Mapping[str, Any] | None = None
    files: Mapping[str, FilePart] | None = None
    params: Mapping[str, Any] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    retried: bool = False
    sent_token: str | None = None

    @property
    def is_multipart(self) -> bool:
        return bool(self.files)


def _decode_body(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class APIClient:
    """
    HTTP client for the Vocalize API.

    Pass a vault (and coordinator) to get the authenticated client; leave
    them out for the public client.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30,
        vault: CredentialVault | None = None,
        coordinator: RefreshCoordinator | None = None,
        public_client: "APIClient | None" = None,
        events: SessionEvents | None = None,
    ):
        """
        Initialize the API client.

        Args:
            base_url: Server base URL, e.g. https://api.example.org
            api_key: Static key sent as X-API-Key on every call
            timeout: Total request timeout in seconds
            vault: Credential vault; enables bearer injection and 401 recovery
            coordinator: Refresh gate shared by everything using this vault
            public_client: Client used for refresh/re-login calls
            events: Sink for navigation and "session renewed" notices
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.vault = vault
        self.coordinator = coordinator or RefreshCoordinator()
        self.events = events or SessionEvents()
        self._session: aiohttp.ClientSession | None = None
        self._session_loop: asyncio.AbstractEventLoop | None = None

        if vault is not None and public_client is None:
            public_client = APIClient(base_url, api_key=api_key, timeout=timeout)
        self.public = public_client

        kind = "authenticated" if self.authenticated else "public"
        logger.debug(f"API client initialized ({kind}): {self.base_url}")

    def __del__(self):
        """Warn when the session was never closed."""
        if self._session and not self._session.closed:
            logger.warning(
                "APIClient being destroyed with unclosed session. "
                "Please call close() explicitly."
            )

    @property
    def authenticated(self) -> bool:
        return self.vault is not None

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _get_headers(self, request: _Request, token: str | None) -> dict[str, str]:
        """Build request headers: content type, API key, bearer, overrides."""
        headers = {
            "Accept": "application/json",
            "User-Agent": f"Vocalize-Client/{__version__}",
        }
        if not request.is_multipart:
            headers["Content-Type"] = "application/json"
        if self.api_key:
            headers[API_KEY_HEADER] = self.api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        headers.update(request.headers)
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session for the running event loop."""
        loop = asyncio.get_running_loop()
        if (
            self._session is not None
            and not self._session.closed
            and self._session_loop is not loop
        ):
            # Sessions are bound to the loop that created them
            logger.debug("Event loop changed; replacing aiohttp session")
            try:
                await self._session.close()
            except RuntimeError as e:
                logger.debug(f"Stale session close failed: {e}")
            self._session = None

        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._session_loop = loop
            logger.debug("New aiohttp session created")
        return self._session

    async def close(self) -> None:
        """Close the client session (and the public client's)."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._session_loop = None
        if self.public is not None and self.public is not self:
            await self.public.close()

    # =========================================================================
    # Request API
    # =========================================================================

    async def send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        data: Mapping[str, Any] | None = None,
        files: Mapping[str, FilePart] | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> APIResponse:
        """
        Send a request and return the fully read response.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            json: JSON body
            data: Plain form fields (multipart when files are given)
            files: File fields for a multipart body
            params: Query parameters (None values are dropped)
            headers: Extra headers; an explicit Authorization wins

        Returns:
            APIResponse with the decoded body

        Raises:
            VocalizeError: network_unavailable on transport failure,
                server_rejected on error responses, auth_* when the session
                can't be recovered
        """
        request = _Request(
            method=method.upper(),
            path=path,
            json=json,
            data=data,
            files=files,
            params=params,
            headers=dict(headers or {}),
        )
        return await self._dispatch(request)

    async def get(self, path: str, **kwargs: Any) -> APIResponse:
        return await self.send("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> APIResponse:
        return await self.send("POST", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> APIResponse:
        return await self.send("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> APIResponse:
        return await self.send("DELETE", path, **kwargs)

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _dispatch(self, request: _Request) -> APIResponse:
        token = None
        if self.vault is not None:
            token = await self.vault.get_access_token()
            request.sent_token = token

        response = await self._perform(request, self._get_headers(request, token))

        if response.status == 401 and self.vault is not None and not request.retried:
            error = self._error_for(response)
            return await self._recover(request, error)

        if not response.ok:
            raise self._error_for(response)
        return response

    def _build_form(self, request: _Request) -> aiohttp.FormData:
        # FormData can only be serialized once, so build a new one per attempt
        form = aiohttp.FormData()
        for name, value in (request.data or {}).items():
            form.add_field(name, str(value))
        for name, part in (request.files or {}).items():
            form.add_field(
                name,
                part.content,
                filename=part.filename,
                content_type=part.content_type,
            )
        return form

    async def _perform(self, request: _Request, headers: dict[str, str]) -> APIResponse:
        """Put one request on the wire."""
        session = await self._get_session()
        kwargs: dict[str, Any] = {"headers": headers}
        if request.params:
            kwargs["params"] = {
                k: str(v) for k, v in request.params.items() if v is not None
            }
        if request.is_multipart:
            kwargs["data"] = self._build_form(request)
        elif request.data is not None:
            kwargs["data"] = dict(request.data)
        elif request.json is not None:
            kwargs["json"] = request.json

        try:
            async with session.request(
                request.method, self._url(request.path), **kwargs
            ) as resp:
                text = await resp.text()
                logger.debug(f"{request.method} {request.path} -> {resp.status}")
                return APIResponse(
                    status=resp.status,
                    data=_decode_body(text),
                    headers=dict(resp.headers),
                )
        except aiohttp.ClientError as e:
            logger.warning(f"{request.method} {request.path} failed: {type(e).__name__}: {e}")
            raise VocalizeError(
                ErrorKind.NETWORK_UNAVAILABLE,
                f"Could not reach the server: {e}",
                cause=e,
            ) from e
        except asyncio.TimeoutError as e:
            logger.warning(f"{request.method} {request.path} timed out after {self.timeout}s")
            raise VocalizeError(
                ErrorKind.NETWORK_UNAVAILABLE,
                f"Request timed out after {self.timeout:g} seconds",
                cause=e,
            ) from e

    def _error_for(self, response: APIResponse) -> VocalizeError:
        detail = extract_detail(response.data)
        # A 401 means an expired session only when a stored bearer was sent
        if response.status == 401 and self.authenticated:
            kind = ErrorKind.AUTH_EXPIRED
        else:
            kind = ErrorKind.SERVER_REJECTED
        return VocalizeError(
            kind,
            detail or f"Request failed with HTTP {response.status}",
            status=response.status,
            detail=response.data,
        )

    # =========================================================================
    # 401 recovery
    # =========================================================================

    async def _recover(self, request: _Request, error: VocalizeError) -> APIResponse:
        """
        Recover from a 401 on a first attempt.

        The request is marked retried before anything else so a second 401
        surfaces instead of looping.
        """
        assert self.vault is not None
        request.retried = True

        current = await self.vault.get_access_token()
        if current and current != request.sent_token:
            logger.debug(f"{request.method} {request.path}: token already renewed, retrying")
            return await self._dispatch(request)

        owner = not self.coordinator.is_refreshing
        try:
            token = await self.coordinator.run(self.renew_session)
        except Exception as e:
            wrapped = as_vocalize_error(e, SESSION_EXPIRED_MESSAGE, ErrorKind.AUTH_PERMANENT_FAILURE)
            if wrapped is e:
                raise
            raise wrapped from e

        if token is None:
            if owner:
                await self.vault.clear_tokens()
                self.events.navigate(Destination.LOGIN)
            raise VocalizeError(
                ErrorKind.AUTH_PERMANENT_FAILURE,
                SESSION_EXPIRED_MESSAGE,
                cause=error,
                status=error.status,
                detail=error.detail,
            )

        logger.debug(f"{request.method} {request.path}: retrying with renewed session")
        return await self._dispatch(request)

    async def renew_session(self) -> str | None:
        """Refresh endpoint first, remembered credentials second."""
        assert self.vault is not None and self.public is not None

        refresh_token = await self.vault.get_refresh_token()
        if refresh_token:
            try:
                tokens = await request_token_refresh(self.public, refresh_token)
                await self.vault.update_token_pair(tokens)
                logger.info("Access token refreshed")
                return tokens.access_token
            except VocalizeError as e:
                logger.warning(f"Token refresh failed ({e.kind.value}): {e.message}")
        else:
            logger.info("No refresh token stored")

        token = await self._auto_login()
        if token:
            self.events.session_renewed()
            return token

        logger.warning("Session could not be renewed; signing out")
        return None

    async def _auto_login(self) -> str | None:
        """Replay login with remembered credentials, if any."""
        assert self.vault is not None and self.public is not None

        credentials = await self.vault.get_remembered_credentials()
        if credentials is None:
            logger.debug("No remembered credentials for automatic login")
            return None
        try:
            tokens = await request_login(self.public, credentials.email, credentials.password)
            claims = decode_claims(tokens.access_token)
        except VocalizeError as e:
            logger.warning(f"Automatic login failed ({e.kind.value}): {e.message}")
            return None
        await self.vault.save_tokens(tokens, claims.sub, claims.role)
        logger.info(f"Signed in again automatically as user {claims.sub}")
        return tokens.access_token


async def request_login(client: APIClient, email: str, password: str) -> TokenPair:
    """
    Exchange email/password for a token pair.

    Raises:
        VocalizeError: server_rejected when the response carries no tokens
    """
    response = await client.post(LOGIN_PATH, json={"email": email, "senha": password})
    tokens = TokenPair.from_dict(response.data)
    if tokens is None:
        raise VocalizeError(
            ErrorKind.SERVER_REJECTED, "Invalid response from server", detail=response.data
        )
    return tokens


async def request_token_refresh(client: APIClient, refresh_token: str) -> TokenPair:
    """
    Exchange a refresh token for a new token pair.

    Raises:
        VocalizeError: server_rejected when the response carries no tokens
    """
    response = await client.post(REFRESH_PATH, json={"refresh_token": refresh_token})
    tokens = TokenPair.from_dict(response.data)
    if tokens is None:
        raise VocalizeError(
            ErrorKind.SERVER_REJECTED, "Invalid refresh response", detail=response.data
        )
    return tokens
