"""Tests for the HTTP client core and its 401 recovery pipeline."""

from __future__ import annotations

import asyncio

import pytest

from conftest import API_KEY, sign_in
from vocalize.api.client import REFRESH_PATH, APIClient, FilePart
from vocalize.common.errors import ErrorKind, VocalizeError
from vocalize.common.models import Destination
from vocalize.common.vault import CredentialVault


@pytest.mark.asyncio
async def test_authenticated_request_carries_api_key_and_bearer(client, backend) -> None:
    tokens = await sign_in(client, backend)

    response = await client.api.get("/vocalizacoes")

    assert response.status == 200
    call = backend.last_call("GET", "/vocalizacoes")
    assert call.headers["X-API-Key"] == API_KEY
    assert call.headers["Authorization"] == f"Bearer {tokens.access_token}"
    assert call.headers["Content-Type"] == "application/json"


@pytest.mark.asyncio
async def test_public_client_sends_no_bearer(client, backend) -> None:
    await sign_in(client, backend)

    await client.public_api.post("/auth/password-reset", json={"email": "ana@example.org"})

    call = backend.last_call("POST", "/auth/password-reset")
    assert "Authorization" not in call.headers
    assert call.headers["X-API-Key"] == API_KEY


@pytest.mark.asyncio
async def test_error_response_raises_server_rejected_with_detail(client, backend) -> None:
    await sign_in(client, backend)

    with pytest.raises(VocalizeError) as exc:
        await client.api.patch("/vocalizacoes/999", json={"nome": "x"})

    assert exc.value.kind is ErrorKind.SERVER_REJECTED
    assert exc.value.status == 404
    assert exc.value.message == "Vocalização não encontrada"


@pytest.mark.asyncio
async def test_unreachable_server_raises_network_unavailable() -> None:
    api = APIClient("http://127.0.0.1:9", timeout=2)
    try:
        with pytest.raises(VocalizeError) as exc:
            await api.get("/vocalizacoes")
    finally:
        await api.close()

    assert exc.value.kind is ErrorKind.NETWORK_UNAVAILABLE
    assert exc.value.cause is not None


@pytest.mark.asyncio
async def test_concurrent_expired_requests_trigger_exactly_one_refresh(client, backend) -> None:
    await sign_in(client, backend)
    backend.expire_access_tokens()
    backend.refresh_delay = 0.2

    responses = await asyncio.gather(*(client.api.get("/vocalizacoes") for _ in range(6)))

    assert all(r.status == 200 for r in responses)
    assert backend.count("POST", REFRESH_PATH) == 1
    assert client.coordinator.renewals_started == 1
    assert not client.coordinator.is_refreshing
    assert client.coordinator.waiting == 0
    # The rotated token is the one now stored
    assert await client.vault.get_access_token() in backend.valid_access


@pytest.mark.asyncio
async def test_refresh_offline_signs_out_and_raises_permanent_failure(
    client, backend, events, monkeypatch
) -> None:
    await sign_in(client, backend)
    await client.store.set("recordings", "[]")
    backend.expire_access_tokens()

    original_perform = client.public_api._perform

    async def offline_refresh(request, headers):
        if request.path == REFRESH_PATH:
            raise VocalizeError(ErrorKind.NETWORK_UNAVAILABLE, "Could not reach the server")
        return await original_perform(request, headers)

    monkeypatch.setattr(client.public_api, "_perform", offline_refresh)

    with pytest.raises(VocalizeError) as exc:
        await client.api.get("/vocalizacoes")

    assert exc.value.kind is ErrorKind.AUTH_PERMANENT_FAILURE
    assert isinstance(exc.value.cause, VocalizeError)
    assert exc.value.cause.kind is ErrorKind.AUTH_EXPIRED
    assert exc.value.cause.status == 401
    assert await client.vault.get_access_token() is None
    assert await client.vault.get_refresh_token() is None
    assert await client.vault.get_user_id() is None
    assert await client.store.get("recordings") == "[]"
    assert events.destinations == [Destination.LOGIN]
    assert not client.coordinator.is_refreshing


@pytest.mark.asyncio
async def test_failed_refresh_falls_back_to_remembered_credentials(
    client, backend, events
) -> None:
    await sign_in(client, backend)
    await client.vault.save_remembered_credentials("ana@example.org", "secret")
    backend.expire_access_tokens()
    backend.refresh_fails = True

    response = await client.api.get("/vocalizacoes")

    assert response.status == 200
    assert backend.count("POST", "/auth/login") == 1
    assert events.renewals == 1
    assert events.destinations == []
    assert await client.vault.get_user_id() == "42"


@pytest.mark.asyncio
async def test_total_failure_keeps_remembered_credentials(client, backend, events) -> None:
    await sign_in(client, backend)
    await client.vault.save_remembered_credentials("ana@example.org", "changed-elsewhere")
    backend.expire_access_tokens()
    backend.refresh_fails = True

    with pytest.raises(VocalizeError) as exc:
        await client.api.get("/vocalizacoes")

    assert exc.value.kind is ErrorKind.AUTH_PERMANENT_FAILURE
    assert await client.vault.get_access_token() is None
    credentials = await client.vault.get_remembered_credentials()
    assert credentials is not None
    assert credentials.email == "ana@example.org"
    assert events.destinations == [Destination.LOGIN]


@pytest.mark.asyncio
async def test_waiters_share_failure_and_only_owner_signs_out(client, backend, events) -> None:
    await sign_in(client, backend)
    backend.expire_access_tokens()
    backend.refresh_fails = True
    backend.refresh_delay = 0.2

    results = await asyncio.gather(
        *(client.api.get("/vocalizacoes") for _ in range(4)), return_exceptions=True
    )

    assert all(isinstance(r, VocalizeError) for r in results)
    assert {r.kind for r in results} == {ErrorKind.AUTH_PERMANENT_FAILURE}
    assert backend.count("POST", REFRESH_PATH) == 1
    assert events.destinations == [Destination.LOGIN]


@pytest.mark.asyncio
async def test_second_401_after_retry_is_not_recovered_again(
    client, backend, monkeypatch
) -> None:
    await sign_in(client, backend)
    backend.expire_access_tokens()

    # Every token the server hands out is rejected right away
    original_issue = backend.issue_tokens

    def issue_and_revoke(user_id: str = "42"):
        tokens = original_issue(user_id)
        backend.valid_access.pop(tokens.access_token, None)
        return tokens

    monkeypatch.setattr(backend, "issue_tokens", issue_and_revoke)

    with pytest.raises(VocalizeError) as exc:
        await client.api.get("/vocalizacoes")

    assert exc.value.kind is ErrorKind.AUTH_EXPIRED
    assert backend.count("POST", REFRESH_PATH) == 1
    assert backend.count("GET", "/vocalizacoes") == 2


@pytest.mark.asyncio
async def test_multipart_request_is_rebuilt_on_retry(client, backend) -> None:
    await sign_in(client, backend)
    backend.expire_access_tokens()

    response = await client.api.post(
        "/audios",
        data={"participante_id": 7, "vocalizacao_id": 1},
        files={"file": FilePart("take.wav", b"RIFF" + b"\x00" * 96, "audio/wav")},
    )

    assert response.status == 201
    assert backend.count("POST", "/audios") == 2
    assert backend.uploads[0]["size"] == 100
    assert "multipart/form-data" in backend.last_call("POST", "/audios").headers["Content-Type"]


@pytest.mark.asyncio
async def test_public_client_does_not_recover_401(client, backend) -> None:
    with pytest.raises(VocalizeError) as exc:
        await client.public_api.post(
            "/auth/login", json={"email": "ana@example.org", "senha": "wrong"}
        )

    assert exc.value.kind is ErrorKind.SERVER_REJECTED
    assert exc.value.message == "Email ou senha inválidos"
    assert backend.count("POST", REFRESH_PATH) == 0


def test_client_with_vault_builds_its_own_public_client(store) -> None:
    api = APIClient("http://localhost:8000/", api_key="k", vault=CredentialVault(store))

    assert api.authenticated
    assert api.public is not None
    assert not api.public.authenticated
    assert api.base_url == "http://localhost:8000"
