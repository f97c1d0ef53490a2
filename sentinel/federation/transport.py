"""
Transports delivering federated contributions to the aggregator.

`LoopbackTransport` keeps contributions in process (tests, single-node
development). `HttpTransport` POSTs each contribution as JSON to the
configured aggregation endpoint with aiohttp.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp

from sentinel.errors import FederationError

logger = logging.getLogger(__name__)

PacketHandler = Callable[[str, Dict[str, Any]], Awaitable[None]]


@dataclass
class TransportConfig:
    """Configuration for transport layers."""
    protocol: str = "loopback"
    endpoint: Optional[str] = None
    timeout_seconds: float = 30.0


class BaseTransport:
    """Abstract base class for transport implementations."""

    def __init__(self, config: TransportConfig):
        self.config = config
        self._handler: Optional[PacketHandler] = None
        self._running = False

    def register_handler(self, handler: PacketHandler) -> None:
        """Register an async callback taking (topic, payload)."""
        self._handler = handler

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    async def send(self, topic: str, payload: Dict[str, Any]) -> None:
        """
        Send a payload to the configured destination.

        Raises:
            FederationError: if delivery fails.
        """
        raise NotImplementedError

    async def _dispatch(self, topic: str, payload: Dict[str, Any]) -> None:
        if self._handler is not None:
            await self._handler(topic, payload)


class LoopbackTransport(BaseTransport):
    """
    In-process transport that records each payload and routes it back to the
    registered handler.
    """

    def __init__(self, config: Optional[TransportConfig] = None):
        super().__init__(config or TransportConfig())
        self.sent: List[Tuple[str, Dict[str, Any]]] = []

    async def send(self, topic: str, payload: Dict[str, Any]) -> None:
        self.sent.append((topic, payload))
        await self._dispatch(topic, payload)


class HttpTransport(BaseTransport):
    """POSTs payloads as JSON to ``config.endpoint``."""

    def __init__(self, config: TransportConfig):
        super().__init__(config)
        if not config.endpoint:
            raise ValueError("HttpTransport requires an endpoint")
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> None:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def start(self) -> None:
        await self._ensure_session()
        await super().start()

    async def stop(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        await super().stop()

    async def send(self, topic: str, payload: Dict[str, Any]) -> None:
        await self._ensure_session()
        try:
            async with self._session.post(
                self.config.endpoint,
                json={"topic": topic, "payload": payload},
            ) as resp:
                if resp.status >= 400:
                    raise FederationError(f"Aggregator rejected contribution: HTTP {resp.status}")
        except aiohttp.ClientError as e:
            raise FederationError(f"Aggregator unreachable: {e}") from e
        except asyncio.TimeoutError as e:
            raise FederationError(f"Aggregator timed out after {self.config.timeout_seconds}s") from e


def build_transport(config: TransportConfig) -> BaseTransport:
    """
    Build a transport instance from configuration.

    Falls back to LoopbackTransport for unsupported protocols.
    """
    protocol = (config.protocol or "").lower()
    if protocol in {"http", "https"}:
        return HttpTransport(config)
    if protocol not in {"loopback", "local"}:
        logger.warning(f"Unknown transport protocol '{config.protocol}', using loopback")
    return LoopbackTransport(config)
