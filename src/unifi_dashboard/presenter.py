"""Turns search events into a newline-delimited JSON stream."""

import logging
from typing import AsyncGenerator, AsyncIterator

from pydantic import BaseModel

from unifi_dashboard.search.events import ErrorEvent

logger = logging.getLogger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"


def render_event(event: BaseModel) -> str:
    return event.model_dump_json() + "\n"


async def ndjson_stream(events: AsyncGenerator[BaseModel, None]) -> AsyncIterator[str]:
    """Yield one line per event as soon as it is produced.

    When the client goes away Starlette stops iterating and this generator is
    closed, which closes *events* and cancels whatever produces them.
    """
    try:
        async for event in events:
            yield render_event(event)
    except Exception as e:
        logger.exception(f"Event stream failed: {e}")
        yield render_event(ErrorEvent(error="Search failed"))
    finally:
        await events.aclose()
