"""
Connectivity checks used by the cache policy.

A probe only answers "can the API host be reached right now". It never
raises: any failure counts as offline.
"""

import asyncio
import logging
import socket
from typing import Protocol
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class ConnectivityProbe(Protocol):
    async def is_connected(self) -> bool: ...


class StaticConnectivity:
    """Probe with a fixed answer, switchable at runtime."""

    def __init__(self, connected: bool = True):
        self.connected = connected

    async def is_connected(self) -> bool:
        return self.connected


class HostReachabilityProbe:
    """
    Considers the network available when the API host resolves and accepts
    a TCP connection within the timeout.
    """

    def __init__(self, base_url: str, timeout: float = 2.0):
        parsed = urlparse(base_url)
        self.host = parsed.hostname or "localhost"
        self.port = parsed.port or (443 if parsed.scheme == "https" else 80)
        self.timeout = timeout

    async def is_connected(self) -> bool:
        try:
            async with asyncio.timeout(self.timeout):
                loop = asyncio.get_running_loop()
                await loop.getaddrinfo(
                    self.host,
                    self.port,
                    family=socket.AF_UNSPEC,
                    type=socket.SOCK_STREAM,
                )
                _, writer = await asyncio.open_connection(self.host, self.port)
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError:
                    pass
            return True
        except asyncio.TimeoutError:
            logger.debug(f"Connectivity probe timed out for {self.host}:{self.port}")
            return False
        except (OSError, socket.gaierror) as e:
            logger.debug(f"Connectivity probe failed for {self.host}:{self.port}: {e}")
            return False
