import asyncio
import logging
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from buildify.builder import BuilderSession, status_payload
from buildify.sandbox.reconciler import SandboxReconciler, SandboxStatus
from buildify.sandbox.vercel_runtime import probe
from buildify.sse import KEEPALIVE, SSE_HEADERS, emit_event, sse_format, status_events
from buildify.api.deps import require_session


logger = logging.getLogger("buildify.api.preview")

router = APIRouter(prefix="/api/preview", tags=["preview"])

KEEPALIVE_SECONDS = 15.0


async def preview_stream(
    session_id: str, reconciler: SandboxReconciler, keepalive_seconds: float = KEEPALIVE_SECONDS
) -> AsyncGenerator[str, None]:
    """Current status first, then every transition until the reconciler closes."""
    queue: asyncio.Queue[SandboxStatus] = asyncio.Queue()
    unsubscribe = reconciler.subscribe(queue.put_nowait)
    try:
        for chunk in status_events(session_id, reconciler.status):
            yield chunk
        while not reconciler.closed:
            try:
                status = await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield KEEPALIVE
                continue
            for chunk in status_events(session_id, status):
                yield chunk
        yield sse_format(emit_event(session_id, "preview_closed"))
    finally:
        unsubscribe()


@router.get("/events")
async def preview_events(session: BuilderSession = Depends(require_session)):
    """SSE stream of the active session's preview status."""
    session_id = session.session_id

    async def event_generator() -> AsyncGenerator[str, None]:
        try:
            async for chunk in preview_stream(session_id, session.reconciler):
                yield chunk
        except Exception as e:
            logger.error("preview_events[%s] error: %s", session_id, e)
            yield sse_format(emit_event(session_id, "preview_failed", error=str(e)))

    return StreamingResponse(event_generator(), headers=SSE_HEADERS)


@router.post("/retry")
async def retry_preview(session: BuilderSession = Depends(require_session)) -> dict[str, Any]:
    session.retry()
    return status_payload(session.reconciler.status)


@router.get("/probe")
async def probe_url(url: str) -> dict[str, Any]:
    """Server-side status probe of a served preview URL."""
    status_code = await probe(url)
    return {"ok": status_code is not None, "status": status_code}
