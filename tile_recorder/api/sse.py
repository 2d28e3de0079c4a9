from __future__ import annotations

import asyncio
import json
from typing import AsyncGenerator, Dict, Optional

from starlette.responses import StreamingResponse

KEEPALIVE_SECONDS = 15.0


def _format_sse(event: Dict, name: Optional[str] = None) -> bytes:
    # Data is JSON; the optional event name lets EventSource clients use addEventListener.
    payload = json.dumps(event, ensure_ascii=False)
    prefix = f"event: {name}\n" if name else ""
    return f"{prefix}data: {payload}\n\n".encode("utf-8")


async def queue_events(queue: asyncio.Queue, keepalive: float = KEEPALIVE_SECONDS) -> AsyncGenerator[bytes, None]:
    """Yield SSE frames for every broker message, with comment keep-alives in between."""

    while True:
        try:
            message = await asyncio.wait_for(queue.get(), timeout=keepalive)
        except asyncio.TimeoutError:
            yield b": keep-alive\n\n"
            continue
        yield _format_sse(message, message.get("event"))


def sse_response(generator: AsyncGenerator[bytes, None]) -> StreamingResponse:
    """Wrap an async generator of SSE frames into a StreamingResponse."""

    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
