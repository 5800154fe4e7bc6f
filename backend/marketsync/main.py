from __future__ import annotations

import math
from functools import lru_cache

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from loguru import logger

from upstream.client import parse_retry_after
from upstream.proxy import ProxyForwarder

from . import schemas
from .core.config import settings

app = FastAPI(title="MarketSync Proxy", version="0.1.0", debug=settings.debug)


@lru_cache
def get_forwarder() -> ProxyForwarder:
    return ProxyForwarder(config=settings)


def _forwarder() -> ProxyForwarder:
    """Provide the shared upstream forwarder."""

    return get_forwarder()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    """Close pooled upstream connections."""

    if get_forwarder.cache_info().currsize:
        await get_forwarder().aclose()


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


@app.get("/proxy/{namespace}/{path:path}", tags=["proxy"])
async def proxy(
    namespace: str,
    path: str,
    request: Request,
    forwarder: ProxyForwarder = Depends(_forwarder),
) -> Response:
    """Forward a GET to the upstream namespace, keeping every query parameter but ``path``."""

    try:
        target = forwarder.target_url(namespace, path)
    except ValueError:
        body = schemas.ProxyError(error=f"Unknown service: {namespace}")
        return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))

    try:
        upstream = await forwarder.forward(namespace, path, request.query_params.multi_items())
    except httpx.HTTPError as exc:
        logger.exception("Proxy request to {} failed", target)
        body = schemas.ProxyError(error="Proxy request failed", url=target, message=str(exc))
        return JSONResponse(status_code=502, content=body.model_dump(exclude_none=True))

    if upstream.status_code == 429:
        retry_after = parse_retry_after(upstream.headers.get("Retry-After"))
        body = schemas.RateLimited(retry_after=retry_after, url=target)
        return JSONResponse(
            status_code=429,
            content=body.model_dump(exclude_none=True),
            headers={"Retry-After": str(math.ceil(retry_after))},
        )

    if not upstream.is_success:
        logger.warning("Upstream returned {} for {}", upstream.status_code, target)
        body = schemas.ProxyError(error=f"API returned {upstream.status_code}", url=target)
        return JSONResponse(status_code=upstream.status_code, content=body.model_dump(exclude_none=True))

    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.headers.get("content-type", "application/json"),
    )
