"""Event streaming endpoint.

- GET /events?topic=... - Server-sent events for one topic

Each event is sent with its per-topic sequence number as the SSE ``id``,
its ``kind`` as the SSE event name, and its JSON form as data.
"""

from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from rc_configurator.events.bus import Subscription
from rc_configurator.events.models import BaseEvent
from rc_configurator.services import Services
from web.deps import get_services

router = APIRouter()


def format_sse(event: BaseEvent) -> str:
    """Render one event as a server-sent events message."""
    kind = getattr(event, "kind", "message")
    return f"id: {event.sequence}\nevent: {kind}\ndata: {event.model_dump_json()}\n\n"


async def stream_events(
    subscription: Subscription, limit: int | None = None
) -> AsyncIterator[str]:
    """Yield SSE messages until the subscription ends or ``limit`` is reached.

    The subscription is closed when the stream ends, including when the
    client disconnects.
    """
    sent = 0
    try:
        if limit is not None and limit <= 0:
            return
        async for event in subscription:
            yield format_sse(event)
            sent += 1
            if limit is not None and sent >= limit:
                return
    finally:
        subscription.close()


@router.get("")
async def stream_events_endpoint(
    topic: str = Query(..., min_length=1, description="Topic to subscribe to"),
    limit: int | None = Query(None, ge=0, description="Stop after this many events"),
    services: Services = Depends(get_services),
) -> StreamingResponse:
    """Stream events published on ``topic`` from now on."""
    subscription = services.subscribe_events(topic)
    return StreamingResponse(
        stream_events(subscription, limit),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
