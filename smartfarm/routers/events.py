from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
import asyncio

from smartfarm.routers.devices import get_gateway
from smartfarm.services.gateway import Gateway
from smartfarm.services.realtime import RealtimeClient, RealtimeHub, format_sse

router = APIRouter(prefix="/api/v1/events", tags=["events"])

KEEPALIVE_SECONDS = 15

async def _event_stream(hub: RealtimeHub, client: RealtimeClient, request: Request):
    try:
        while True:
            try:
                message = await asyncio.wait_for(client.queue.get(), timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    break
                yield ": keepalive\n\n"
                continue
            yield format_sse(message)
    finally:
        hub.disconnect(client)

@router.get("/sse")
async def sse(request: Request, gateway: Gateway = Depends(get_gateway)):
    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    client = gateway.realtime.connect()
    return StreamingResponse(
        _event_stream(gateway.realtime, client, request),
        media_type="text/event-stream",
        headers=headers,
    )
