"""Upstream side of the reverse proxy: egress rotation and request forwarding."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

import httpx
from loguru import logger

from marketsync.core.config import Settings, settings as default_settings

from .client import DEFAULT_HEADERS, Namespace

ROUTING_PARAM = "path"


class EgressRotator:
    """Hands out configured egress proxies in round-robin order."""

    def __init__(self, proxies: Iterable[str] = ()) -> None:
        self._proxies = [proxy for proxy in proxies if proxy]
        self._index = 0

    def next(self) -> str | None:
        if not self._proxies:
            return None
        proxy = self._proxies[self._index % len(self._proxies)]
        self._index = (self._index + 1) % len(self._proxies)
        return proxy

    def __len__(self) -> int:
        return len(self._proxies)


class ProxyForwarder:
    """Forwards ``/proxy/{namespace}/{path}`` requests to the matching upstream.

    One ``httpx.AsyncClient`` is kept per egress proxy. When an explicit
    transport is supplied every request goes through it instead.
    """

    def __init__(
        self,
        *,
        config: Settings | None = None,
        rotator: EgressRotator | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = config or default_settings
        self.rotator = rotator or EgressRotator(self.settings.egress_proxies)
        self._transport = transport
        self._clients: dict[str | None, httpx.AsyncClient] = {}

    def target_url(self, namespace: str, path: str) -> str:
        """Resolve the upstream URL; raises ``ValueError`` for unknown namespaces."""

        base = self.settings.namespace_base_url(Namespace(namespace).value)
        return f"{base}/{path.lstrip('/')}"

    @staticmethod
    def forward_params(params: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
        return [(key, value) for key, value in params if key != ROUTING_PARAM]

    def _client_for(self, egress: str | None) -> httpx.AsyncClient:
        key = None if self._transport is not None else egress
        client = self._clients.get(key)
        if client is None:
            kwargs: dict[str, Any] = {
                "timeout": self.settings.request_timeout_seconds,
                "headers": DEFAULT_HEADERS,
            }
            if self._transport is not None:
                kwargs["transport"] = self._transport
            elif egress:
                kwargs["proxy"] = egress
            client = httpx.AsyncClient(**kwargs)
            self._clients[key] = client
        return client

    async def forward(
        self,
        namespace: str,
        path: str,
        params: Iterable[tuple[str, str]] | Mapping[str, str] = (),
    ) -> httpx.Response:
        url = self.target_url(namespace, path)
        items = params.items() if isinstance(params, Mapping) else params
        query = self.forward_params(items)
        egress = self.rotator.next()
        logger.info("Proxying {} via {}", url, egress or "direct")
        return await self._client_for(egress).get(url, params=query)

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
