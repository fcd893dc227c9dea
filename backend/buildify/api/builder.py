import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from openai import APIError
from pydantic import BaseModel

from buildify.builder import BuilderSession, ChatMessage
from buildify.config import Settings
from buildify.llm.client import BuildifyLLM, UnknownTemplateError
from buildify.sandbox.boot import SharedBoot
from buildify.sandbox.reconciler import SandboxReconciler
from buildify.api.deps import (
    SessionHolder,
    get_app_settings,
    get_holder,
    get_llm,
    get_shared_boot,
    require_session,
)


logger = logging.getLogger("buildify.api.builder")

router = APIRouter(prefix="/api/builder", tags=["builder"])


class StartRequest(BaseModel):
    """Payload to start a new build session from a project description."""

    prompt: str


class MessageRequest(BaseModel):
    content: str


@router.post("")
async def start_session(
    req: StartRequest,
    settings: Settings = Depends(get_app_settings),
    boot: SharedBoot = Depends(get_shared_boot),
    llm: BuildifyLLM = Depends(get_llm),
    sessions: SessionHolder = Depends(get_holder),
) -> dict[str, Any]:
    """Replace the active session with a new one seeded from `prompt`.

    The preview starts in the background; follow it on /api/preview/events.
    """
    if not req.prompt.strip():
        raise HTTPException(status_code=400, detail="prompt is required")
    session = BuilderSession(SandboxReconciler(boot, settings.preview), llm)
    await sessions.replace(session)
    logger.info("start_session[%s] prompt_len=%d", session.session_id, len(req.prompt))
    try:
        return await session.start(req.prompt)
    except UnknownTemplateError:
        await sessions.close()
        raise HTTPException(status_code=403, detail="You cant access this")
    except APIError as e:
        await sessions.close()
        logger.error("start_session[%s] upstream error: %s", session.session_id, e)
        raise HTTPException(status_code=502, detail=str(e))


@router.get("")
async def get_session(session: BuilderSession = Depends(require_session)) -> dict[str, Any]:
    return session.snapshot()


@router.post("/messages")
async def send_message(
    req: MessageRequest, session: BuilderSession = Depends(require_session)
) -> dict[str, Any]:
    try:
        return await session.send_message(req.content)
    except APIError as e:
        logger.error("send_message[%s] upstream error: %s", session.session_id, e)
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/responses")
async def apply_response(
    req: MessageRequest, session: BuilderSession = Depends(require_session)
) -> dict[str, Any]:
    """Apply a raw model response as if the model had just sent it."""
    session.messages.append(ChatMessage(role="assistant", content=req.content))
    session.add_response(req.content)
    session.sync()
    return session.snapshot()


@router.get("/files")
async def read_file(path: str, session: BuilderSession = Depends(require_session)) -> dict[str, Any]:
    content = session.read_file(path)
    if content is None:
        raise HTTPException(status_code=404, detail=f"File not found: {path}")
    return {"path": path, "content": content}


@router.delete("")
async def close_session(sessions: SessionHolder = Depends(get_holder)) -> dict[str, Any]:
    return {"ok": True, "closed": await sessions.close()}
