"""HTTP and SSE endpoints over a price query."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from .facade import PriceQueryFacade

logger = logging.getLogger(__name__)


def create_prices_router(query: PriceQueryFacade) -> APIRouter:
    """Create the prices router bound to one PriceQueryFacade.

    This factory pattern lets us inject the query without globals.
    """
    router = APIRouter(prefix="/api", tags=["prices"])

    @router.get("/prices")
    async def get_prices() -> dict:
        """Current quotes and loading / error / staleness flags.

        A paused query answers from what it already has.
        """
        if not query.active:
            return query.state.to_dict()
        return (await query.ensure_fresh()).to_dict()

    @router.post("/prices/refresh")
    async def refresh_prices(ticker: str | None = None) -> dict:
        """Drop cached quotes (all, or one ticker) and fetch immediately."""
        return (await query.refresh(ticker)).to_dict()

    @router.get("/stream/prices")
    async def stream_prices(request: Request) -> StreamingResponse:
        """SSE endpoint for live quote state.

        Emits the full state whenever it changes:

            data: {"quotes": {"BTC": {...}}, "is_loading": false, ...}

        Includes a retry directive so the browser auto-reconnects on
        disconnection (EventSource built-in behavior).
        """
        return StreamingResponse(
            _generate_events(query, request),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
            },
        )

    return router


async def _generate_events(
    query: PriceQueryFacade,
    request: Request,
    interval: float = 1.0,
) -> AsyncGenerator[str, None]:
    """Yield an SSE event each time the query's version changes.

    Checks every ``interval`` seconds. Stops when the client disconnects.
    """
    yield "retry: 1000\n\n"

    last_version = -1
    client_ip = request.client.host if request.client else "unknown"
    logger.info("SSE client connected: %s", client_ip)

    try:
        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s", client_ip)
                break

            current_version = query.version
            if current_version != last_version:
                last_version = current_version
                yield f"data: {json.dumps(query.state.to_dict())}\n\n"

            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s", client_ip)
