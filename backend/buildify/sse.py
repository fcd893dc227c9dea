import json
import time
from typing import Any

from buildify.sandbox.reconciler import SandboxState, SandboxStatus


SSE_HEADERS: dict[str, str] = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

KEEPALIVE = ": keep-alive\n\n"


def sse_format(event: dict[str, Any]) -> str:
    return f"data: {json.dumps(event)}\n\n"


def emit_event(
    session_id: str, event_type: str, data: Any = None, error: Any = None
) -> dict[str, Any]:
    return {
        "event_type": event_type,
        "session_id": session_id,
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S+00:00", time.gmtime()),
        "data": data,
        "error": error,
    }


def status_events(session_id: str, status: SandboxStatus) -> list[str]:
    """Render a reconciler status as SSE chunks: always a status event, plus ready/failed."""
    payload = {**status.model_dump(mode="json"), "phase": status.phase}
    chunks = [sse_format(emit_event(session_id, "preview_status", data=payload))]
    if status.state == SandboxState.SERVING:
        chunks.append(
            sse_format(
                emit_event(
                    session_id,
                    "preview_ready",
                    data={"url": status.served_url, "source": payload["ready_source"]},
                )
            )
        )
    elif status.state == SandboxState.FAILED:
        chunks.append(
            sse_format(
                emit_event(
                    session_id,
                    "preview_failed",
                    data={"kind": payload["error_kind"]},
                    error=status.error,
                )
            )
        )
    return chunks
