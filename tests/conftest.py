"""Shared fixtures: token factory and an in-process fake Vocalize backend."""

from __future__ import annotations

import asyncio
import base64
import json
import time
from dataclasses import dataclass, field
from typing import Any

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from vocalize.app import VocalizeClient
from vocalize.common.config import ClientConfig
from vocalize.common.connectivity import StaticConnectivity
from vocalize.common.events import RecordingSessionEvents
from vocalize.common.models import TokenPair
from vocalize.common.storage import MemoryStore

API_KEY = "test-api-key"
UNVERIFIED_DETAIL = "Usuário não verificado. Verifique seu e-mail para ativar sua conta."


def _b64(data: dict[str, Any]) -> str:
    raw = json.dumps(data).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def make_token(sub: str = "42", role: str = "user", exp_offset: int = 3600, **claims: Any) -> str:
    """Unsigned JWT-shaped token; the client never verifies signatures."""
    header = _b64({"alg": "HS256", "typ": "JWT"})
    payload = _b64({"sub": sub, "role": role, "exp": int(time.time()) + exp_offset, **claims})
    return f"{header}.{payload}.signature"


@dataclass
class RecordedCall:
    method: str
    path: str
    headers: dict[str, str]
    body: Any = None


@dataclass
class Account:
    id: str
    password: str
    role: str = "user"
    nome: str = "Ana"
    acesso_permitido: bool | None = True
    verified: bool = True


@dataclass
class FakeBackend:
    """Minimal Vocalize API: token auth, vocalizations, participants, audios."""

    accounts: dict[str, Account] = field(
        default_factory=lambda: {
            "ana@example.org": Account(id="42", password="secret"),
            "root@example.org": Account(id="1", password="rootpw", role="admin", nome="Root"),
        }
    )
    vocalizations: list[dict[str, Any]] = field(
        default_factory=lambda: [
            {"id": 1, "nome": "Fome", "descricao": "Choro de fome", "id_usuario": 42},
            {"id": 2, "nome": "Sono", "descricao": "Choro de sono", "id_usuario": 1},
        ]
    )
    participants: list[dict[str, Any]] = field(
        default_factory=lambda: [
            {"id": 7, "nome": "Bebê A", "usuario_id": "42"},
        ]
    )
    audios: list[dict[str, Any]] = field(default_factory=list)
    uploads: list[dict[str, Any]] = field(default_factory=list)
    calls: list[RecordedCall] = field(default_factory=list)

    refresh_delay: float = 0.0
    refresh_fails: bool = False
    profile_fails: bool = False
    failing_uploads: set[str] = field(default_factory=set)

    base_url: str = ""

    def __post_init__(self) -> None:
        self.valid_access: dict[str, str] = {}  # token -> user id
        self.valid_refresh: dict[str, str] = {}  # token -> user id
        self._serial = 0
        self._next_id = 100

    # =========================================================================
    # Helpers used by tests
    # =========================================================================

    def issue_tokens(self, user_id: str = "42") -> TokenPair:
        account = self._account_by_id(user_id)
        self._serial += 1
        access = make_token(user_id, account.role, jti=self._serial)
        refresh = f"refresh-{user_id}-{self._serial}"
        self.valid_access[access] = user_id
        self.valid_refresh[refresh] = user_id
        return TokenPair(access_token=access, refresh_token=refresh)

    def expire_access_tokens(self) -> None:
        self.valid_access.clear()

    def count(self, method: str, path: str) -> int:
        return sum(1 for c in self.calls if c.method == method and c.path == path)

    def last_call(self, method: str, path: str) -> RecordedCall:
        return [c for c in self.calls if c.method == method and c.path == path][-1]

    def _account_by_id(self, user_id: str) -> Account:
        for account in self.accounts.values():
            if account.id == str(user_id):
                return account
        raise KeyError(user_id)

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    # =========================================================================
    # Application
    # =========================================================================

    def build_app(self) -> web.Application:
        @web.middleware
        async def record_and_authorize(request: web.Request, handler):
            body = None
            if request.content_type == "application/json" and request.can_read_body:
                body = await request.json()
            self.calls.append(
                RecordedCall(request.method, request.path, dict(request.headers), body)
            )
            if not request.path.startswith("/auth/") or request.path == "/auth/logout":
                token = request.headers.get("Authorization", "").removeprefix("Bearer ")
                if token not in self.valid_access:
                    return web.json_response({"detail": "Token inválido ou expirado"}, status=401)
                request["user_id"] = self.valid_access[token]
            return await handler(request)

        app = web.Application(middlewares=[record_and_authorize])
        app.add_routes(
            [
                web.post("/auth/login", self.login),
                web.post("/auth/refresh", self.refresh),
                web.post("/auth/logout", self.ok),
                web.post("/auth/register", self.register),
                web.post("/auth/resend-confirmation-code", self.ok),
                web.post("/auth/confirm-registration", self.ok),
                web.post("/auth/password-reset", self.ok),
                web.post("/auth/confirm-password-reset", self.ok),
                web.get("/usuarios/{id}", self.get_user),
                web.post("/usuarios/gerar-codigo-convite", self.invite_code),
                web.get("/vocalizacoes", self.list_vocalizations),
                web.post("/vocalizacoes", self.create_vocalization),
                web.patch("/vocalizacoes/{id}", self.update_vocalization),
                web.delete("/vocalizacoes/{id}", self.delete_vocalization),
                web.get("/participantes", self.list_participants),
                web.post("/participantes", self.create_participant),
                web.get("/participantes/usuario/{user_id}", self.participants_by_user),
                web.get("/participantes/{id}", self.get_participant),
                web.patch("/participantes/{id}", self.update_participant),
                web.delete("/participantes/{id}", self.delete_participant),
                web.get("/audios", self.list_audios),
                web.post("/audios", self.upload_audio),
                web.get("/audios/participante/{id}", self.audios_by_participant),
                web.get("/audios/vocalizacao/{id}", self.audios_by_vocalization),
                web.get("/audios/{id}", self.get_audio),
                web.patch("/audios/{id}", self.update_audio),
                web.delete("/audios/{id}", self.delete_audio),
                web.get("/audios/{id}/play", self.play_audio),
            ]
        )
        return app

    async def ok(self, request: web.Request) -> web.Response:
        return web.json_response({"message": "ok"})

    async def login(self, request: web.Request) -> web.Response:
        body = await request.json()
        account = self.accounts.get(body.get("email"))
        if account is None or account.password != body.get("senha"):
            return web.json_response({"detail": "Email ou senha inválidos"}, status=401)
        if not account.verified:
            return web.json_response({"detail": UNVERIFIED_DETAIL}, status=403)
        tokens = self.issue_tokens(account.id)
        return web.json_response(
            {"access_token": tokens.access_token, "refresh_token": tokens.refresh_token}
        )

    async def refresh(self, request: web.Request) -> web.Response:
        body = await request.json()
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        token = body.get("refresh_token")
        if self.refresh_fails or token not in self.valid_refresh:
            return web.json_response({"detail": "Refresh token inválido"}, status=401)
        user_id = self.valid_refresh.pop(token)
        tokens = self.issue_tokens(user_id)
        return web.json_response(
            {"access_token": tokens.access_token, "refresh_token": tokens.refresh_token}
        )

    async def register(self, request: web.Request) -> web.Response:
        return web.json_response({"id": self._new_id()}, status=201)

    async def get_user(self, request: web.Request) -> web.Response:
        if self.profile_fails:
            return web.json_response({"detail": "Erro interno"}, status=500)
        account = self._account_by_id(request.match_info["id"])
        return web.json_response(
            {"id": int(account.id), "nome": account.nome, "acesso_permitido": account.acesso_permitido}
        )

    async def invite_code(self, request: web.Request) -> web.Response:
        return web.json_response({"codigo_convite": "INV-2024"})

    async def list_vocalizations(self, request: web.Request) -> web.Response:
        return web.json_response(self.vocalizations)

    async def create_vocalization(self, request: web.Request) -> web.Response:
        body = await request.json()
        item = {"id": self._new_id(), "id_usuario": int(request["user_id"]), **body}
        self.vocalizations.append(item)
        return web.json_response(item, status=201)

    async def update_vocalization(self, request: web.Request) -> web.Response:
        body = await request.json()
        for item in self.vocalizations:
            if str(item["id"]) == request.match_info["id"]:
                item.update(body)
                return web.json_response(item)
        return web.json_response({"detail": "Vocalização não encontrada"}, status=404)

    async def delete_vocalization(self, request: web.Request) -> web.Response:
        self.vocalizations = [
            v for v in self.vocalizations if str(v["id"]) != request.match_info["id"]
        ]
        return web.Response(status=204)

    async def list_participants(self, request: web.Request) -> web.Response:
        return web.json_response(self.participants)

    async def participants_by_user(self, request: web.Request) -> web.Response:
        user_id = request.match_info["user_id"]
        return web.json_response([p for p in self.participants if p["usuario_id"] == user_id])

    async def get_participant(self, request: web.Request) -> web.Response:
        for item in self.participants:
            if str(item["id"]) == request.match_info["id"]:
                return web.json_response(item)
        return web.json_response({"detail": "Participante não encontrado"}, status=404)

    async def create_participant(self, request: web.Request) -> web.Response:
        body = await request.json()
        item = {"id": self._new_id(), "usuario_id": request["user_id"], **body}
        self.participants.append(item)
        return web.json_response(item, status=201)

    async def update_participant(self, request: web.Request) -> web.Response:
        body = await request.json()
        for item in self.participants:
            if str(item["id"]) == request.match_info["id"]:
                item.update(body)
                return web.json_response(item)
        return web.json_response({"detail": "Participante não encontrado"}, status=404)

    async def delete_participant(self, request: web.Request) -> web.Response:
        self.participants = [
            p for p in self.participants if str(p["id"]) != request.match_info["id"]
        ]
        return web.Response(status=204)

    async def list_audios(self, request: web.Request) -> web.Response:
        return web.json_response(self.audios)

    async def upload_audio(self, request: web.Request) -> web.Response:
        form = await request.post()
        upload = form["file"]
        if upload.filename in self.failing_uploads:
            return web.json_response({"detail": "Falha ao salvar áudio"}, status=500)
        content = upload.file.read()
        self.uploads.append(
            {
                "filename": upload.filename,
                "content_type": upload.content_type,
                "size": len(content),
                "participante_id": form["participante_id"],
                "vocalizacao_id": form["vocalizacao_id"],
            }
        )
        item = {
            "id": self._new_id(),
            "participante_id": int(form["participante_id"]),
            "vocalizacao_id": int(form["vocalizacao_id"]),
            "filename": upload.filename,
        }
        self.audios.append(item)
        return web.json_response(item, status=201)

    def _find_audio(self, audio_id: str) -> dict[str, Any] | None:
        for item in self.audios:
            if str(item["id"]) == audio_id:
                return item
        return None

    async def get_audio(self, request: web.Request) -> web.Response:
        item = self._find_audio(request.match_info["id"])
        if item is None:
            return web.json_response({"detail": "Áudio não encontrado"}, status=404)
        return web.json_response(item)

    async def update_audio(self, request: web.Request) -> web.Response:
        item = self._find_audio(request.match_info["id"])
        if item is None:
            return web.json_response({"detail": "Áudio não encontrado"}, status=404)
        item.update(await request.json())
        return web.json_response(item)

    async def delete_audio(self, request: web.Request) -> web.Response:
        self.audios = [a for a in self.audios if str(a["id"]) != request.match_info["id"]]
        return web.Response(status=204)

    async def audios_by_participant(self, request: web.Request) -> web.Response:
        wanted = int(request.match_info["id"])
        return web.json_response([a for a in self.audios if a["participante_id"] == wanted])

    async def audios_by_vocalization(self, request: web.Request) -> web.Response:
        wanted = int(request.match_info["id"])
        return web.json_response([a for a in self.audios if a["vocalizacao_id"] == wanted])

    async def play_audio(self, request: web.Request) -> web.Response:
        audio_id = request.match_info["id"]
        return web.json_response({"url": f"https://cdn.example.org/audios/{audio_id}.wav"})


@pytest_asyncio.fixture
async def backend():
    fake = FakeBackend()
    server = TestServer(fake.build_app())
    await server.start_server()
    fake.base_url = str(server.make_url("/")).rstrip("/")
    yield fake
    await server.close()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def events() -> RecordingSessionEvents:
    return RecordingSessionEvents()


@pytest.fixture
def connectivity() -> StaticConnectivity:
    return StaticConnectivity(True)


@pytest.fixture
def clock():
    """Mutable epoch-ms clock: set ``clock.now`` to move time."""

    class _Clock:
        now = 1_700_000_000_000

        def __call__(self) -> int:
            return self.now

    return _Clock()


@pytest.fixture
def config(tmp_path) -> ClientConfig:
    return ClientConfig(tmp_path / "vocalize.yaml", use_env=False)


@pytest_asyncio.fixture
async def client(backend, store, events, connectivity, clock, config):
    config.set("api", "base_url", value=backend.base_url)
    config.set("api", "api_key", value=API_KEY)
    config.set("api", "timeout", value=5)
    vocalize = VocalizeClient(
        config, store=store, connectivity=connectivity, events=events, clock=clock
    )
    async with vocalize:
        yield vocalize


async def sign_in(client: VocalizeClient, backend: FakeBackend, user_id: str = "42") -> TokenPair:
    """Put a valid session straight into the vault."""
    tokens = backend.issue_tokens(user_id)
    role = backend._account_by_id(user_id).role
    await client.vault.save_tokens(tokens, user_id, role)
    return tokens
