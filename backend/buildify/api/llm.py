import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from openai import APIError
from pydantic import BaseModel

from buildify.builder import ChatMessage
from buildify.llm.client import BuildifyLLM, TemplateResponse, UnknownTemplateError
from buildify.api.deps import get_llm


logger = logging.getLogger("buildify.api.llm")

router = APIRouter(tags=["llm"])


class TemplateRequest(BaseModel):
    prompt: str


class ChatRequest(BaseModel):
    messages: list[ChatMessage]


@router.post("/template")
async def template(req: TemplateRequest, llm: BuildifyLLM = Depends(get_llm)) -> TemplateResponse:
    """Pick the starter template for a prompt and return its seed prompts."""
    try:
        return await llm.choose_template(req.prompt)
    except UnknownTemplateError as e:
        logger.warning("template rejected: %s", e)
        raise HTTPException(status_code=403, detail="You cant access this")
    except APIError as e:
        logger.error("template request failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/chat")
async def chat(req: ChatRequest, llm: BuildifyLLM = Depends(get_llm)) -> dict[str, Any]:
    try:
        text = await llm.chat([m.model_dump() for m in req.messages])
    except APIError as e:
        logger.error("chat request failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e))
    return {"response": text}
