"""
Client context: builds and owns every component for one signed-in process.

Nothing in the client is a module-level singleton. A VocalizeClient is
created from a ClientConfig, opened, used and closed; tests build as many
isolated contexts as they need.
"""

import logging
from types import TracebackType

from vocalize.api.client import APIClient
from vocalize.api.refresh import RefreshCoordinator
from vocalize.common.cache import CachedCollection, Clock, now_ms
from vocalize.common.config import ClientConfig
from vocalize.common.connectivity import ConnectivityProbe, HostReachabilityProbe
from vocalize.common.errors import VocalizeError
from vocalize.common.events import SessionEvents
from vocalize.common.storage import JsonFileStore, KeyValueStore
from vocalize.common.vault import CredentialVault
from vocalize.services.audios import AudioService
from vocalize.services.participants import ParticipantService
from vocalize.services.pending import PendingAudioQueue
from vocalize.services.session import SessionManager
from vocalize.services.vocalizations import VocalizationService

logger = logging.getLogger(__name__)


class VocalizeClient:
    """
    Composition root for the Vocalize client.

    Usage:
        async with VocalizeClient(ClientConfig()) as client:
            await client.session.login(email, password)
            vocalizations = await client.vocalizations.get_vocalizations()
    """

    def __init__(
        self,
        config: ClientConfig,
        store: KeyValueStore | None = None,
        connectivity: ConnectivityProbe | None = None,
        events: SessionEvents | None = None,
        clock: Clock = now_ms,
    ):
        """
        Wire the components together.

        Args:
            config: Client configuration
            store: Key-value store; defaults to the JSON file at config.store_path
            connectivity: Network probe; defaults to a TCP check of the API host
            events: UI event sink; defaults to logging only
            clock: Epoch-millisecond clock for cache timestamps
        """
        self.config = config
        self.events = events or SessionEvents()
        self.store = store if store is not None else JsonFileStore(config.store_path)
        self.connectivity = connectivity or HostReachabilityProbe(
            config.base_url, timeout=config.probe_timeout
        )
        self.vault = CredentialVault(self.store)
        self.coordinator = RefreshCoordinator()

        self.public_api = APIClient(config.base_url, api_key=config.api_key, timeout=config.timeout)
        self.api = APIClient(
            config.base_url,
            api_key=config.api_key,
            timeout=config.timeout,
            vault=self.vault,
            coordinator=self.coordinator,
            public_client=self.public_api,
            events=self.events,
        )

        self.cache = CachedCollection(
            self.store, self.connectivity, clock=clock, window_ms=config.cache_window_ms
        )
        self.session = SessionManager(self.api, self.vault, self.events)
        self.vocalizations = VocalizationService(self.api, self.vault, self.cache)
        self.participants = ParticipantService(self.api, self.vault, self.cache)
        self.audios = AudioService(self.api)
        self.pending = PendingAudioQueue(self.store, self.events, clock=clock)
        self._closed = False

    async def open(self) -> "VocalizeClient":
        """Publish the initial pending-recordings state."""
        try:
            self.events.pending_changed(await self.pending.has_pending())
        except VocalizeError as e:
            logger.warning(f"Could not read pending recordings: {e.message}")
        logger.debug(f"Vocalize client opened against {self.config.base_url}")
        return self

    async def close(self) -> None:
        """Close HTTP sessions. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self.api.close()
        logger.debug("Vocalize client closed")

    async def __aenter__(self) -> "VocalizeClient":
        return await self.open()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
