import logging
from typing import Any

from openai import AsyncOpenAI
from pydantic import BaseModel

from buildify.config import LLMSettings
from buildify.llm.prompts import (
    BASE_PROMPT,
    NODE_TEMPLATE,
    REACT_TEMPLATE,
    TEMPLATE_SYSTEM_PROMPT,
    artifact_intro,
    get_system_prompt,
)


logger = logging.getLogger("buildify.llm")


class UnknownTemplateError(Exception):
    """The model answered the template question with something other than node/react."""

    def __init__(self, answer: str | None):
        super().__init__(f"Unrecognized project template: {answer!r}")
        self.answer = answer


class TemplateResponse(BaseModel):
    """Seed material for a new project.

    `prompts` are sent to the model as the first user messages; `ui_prompts[0]`
    is the template itself, parsed into the initial steps.
    """

    prompts: list[str]
    ui_prompts: list[str]


def template_for(answer: str | None) -> TemplateResponse:
    answer = (answer or "").strip().strip(".'\"").lower()
    if answer == "react":
        return TemplateResponse(
            prompts=[BASE_PROMPT, artifact_intro(REACT_TEMPLATE)],
            ui_prompts=[REACT_TEMPLATE],
        )
    if answer == "node":
        return TemplateResponse(prompts=[artifact_intro(REACT_TEMPLATE)], ui_prompts=[NODE_TEMPLATE])
    raise UnknownTemplateError(answer)


class BuildifyLLM:
    """The two upstream exchanges: pick a template, continue the conversation."""

    def __init__(self, settings: LLMSettings | None = None, client: AsyncOpenAI | None = None):
        self.settings = settings or LLMSettings()
        self.client = client or AsyncOpenAI(api_key=self.settings.api_key, base_url=self.settings.base_url)

    async def choose_template(self, prompt: str) -> TemplateResponse:
        response = await self.client.chat.completions.create(
            model=self.settings.template_model or self.settings.model,
            messages=[
                {"role": "user", "content": prompt},
                {"role": "system", "content": TEMPLATE_SYSTEM_PROMPT},
            ],
        )
        answer = response.choices[0].message.content if response.choices else None
        logger.info("template answer=%r", answer)
        return template_for(answer)

    async def chat(self, messages: list[dict[str, Any]]) -> str:
        response = await self.client.chat.completions.create(
            model=self.settings.model,
            messages=[{"role": "system", "content": get_system_prompt()}, *messages],
            max_tokens=self.settings.max_tokens,
        )
        content = response.choices[0].message.content if response.choices else None
        logger.info("chat reply len=%d messages=%d", len(content or ""), len(messages))
        return content or ""
