import asyncio
import logging
import time
import uuid
from typing import Any, Literal

from pydantic import BaseModel

from buildify.file_tree import FileTree, apply_steps
from buildify.llm.client import BuildifyLLM
from buildify.sandbox.reconciler import SandboxReconciler, SandboxStatus
from buildify.steps import Step, StepStatus, parse_steps


logger = logging.getLogger("buildify.builder")


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class StepConflict(BaseModel):
    step_id: int | None
    path: str | None
    error: str


def make_session_id() -> str:
    return f"session_{int(time.time()*1000)}_{uuid.uuid4().hex[:8]}"


def status_payload(status: SandboxStatus) -> dict[str, Any]:
    return {**status.model_dump(mode="json"), "phase": status.phase}


class BuilderSession:
    """State of one project being built: conversation, steps, tree and preview.

    Steps only ever reach the tree through `sync()`, which folds the pending ones
    in arrival order and hands the result to the sandbox reconciler.
    """

    def __init__(self, reconciler: SandboxReconciler, llm: BuildifyLLM | None = None):
        self.session_id = make_session_id()
        self.reconciler = reconciler
        self.llm = llm
        self.steps: list[Step] = []
        self.messages: list[ChatMessage] = []
        self.tree = FileTree()
        self.conflicts: list[StepConflict] = []
        self.prompt: str | None = None
        self.template_set = False
        self._reconcile_task: asyncio.Task | None = None
        self._closed = False

    def add_response(self, text: str) -> list[Step]:
        """Parse a model response and queue its steps as pending."""
        offset = len(self.steps)
        parsed = [
            step.model_copy(update={"id": offset + i + 1, "status": StepStatus.PENDING})
            for i, step in enumerate(parse_steps(text))
        ]
        self.steps.extend(parsed)
        logger.info("queued %d step(s), %d total", len(parsed), len(self.steps))
        return parsed

    def sync(self) -> bool:
        """Fold pending steps into the tree; returns True if the tree changed."""
        pending = [s for s in self.steps if s.status == StepStatus.PENDING]
        if not pending:
            return False
        before = self.tree.model_dump()
        _, errors = apply_steps(self.tree, pending)
        rejected = {err.step_id: err for err in errors}
        for step in pending:
            err = rejected.get(step.id)
            if err is None:
                step.status = StepStatus.COMPLETED
                continue
            step.status = StepStatus.REJECTED
            self.conflicts.append(StepConflict(step_id=step.id, path=step.path, error=str(err)))
        changed = self.tree.model_dump() != before
        if changed:
            self.schedule_reconcile()
        return changed

    def schedule_reconcile(self) -> asyncio.Task | None:
        if self._closed or self.tree.is_empty():
            return None
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("no running loop, preview update deferred")
            return None
        self._reconcile_task = asyncio.ensure_future(self.reconciler.reconcile(self.tree))
        return self._reconcile_task

    def retry(self) -> asyncio.Task | None:
        """Kick off a manual retry of a failed preview in the background."""
        if self._closed:
            return None
        self._reconcile_task = asyncio.ensure_future(self.reconciler.retry())
        return self._reconcile_task

    async def wait_idle(self) -> SandboxStatus:
        """Wait for the most recently scheduled preview pass to settle."""
        task = self._reconcile_task
        if task is not None:
            await asyncio.shield(task)
        return self.reconciler.status

    def _require_llm(self) -> BuildifyLLM:
        if self.llm is None:
            raise RuntimeError("no language model configured for this session")
        return self.llm

    async def start(self, prompt: str) -> dict[str, Any]:
        """Seed the project from a template, then ask the model for the first build."""
        llm = self._require_llm()
        self.prompt = prompt.strip()
        template = await llm.choose_template(self.prompt)
        self.template_set = True
        if template.ui_prompts:
            self.add_response(template.ui_prompts[0])
            self.sync()

        seed = [ChatMessage(role="user", content=c) for c in [*template.prompts, self.prompt]]
        reply = await llm.chat([m.model_dump() for m in seed])
        self.messages = [*seed, ChatMessage(role="assistant", content=reply)]
        self.add_response(reply)
        self.sync()
        return self.snapshot()

    async def send_message(self, text: str) -> dict[str, Any]:
        llm = self._require_llm()
        message = ChatMessage(role="user", content=text)
        reply = await llm.chat([m.model_dump() for m in [*self.messages, message]])
        self.messages.extend([message, ChatMessage(role="assistant", content=reply)])
        self.add_response(reply)
        self.sync()
        return self.snapshot()

    def read_file(self, path: str) -> str | None:
        node = self.tree.get(path)
        if node is None or node.content is None:
            return None
        return node.content

    def snapshot(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "prompt": self.prompt,
            "template_set": self.template_set,
            "steps": [s.model_dump(mode="json") for s in self.steps],
            "files": [r.model_dump(mode="json") for r in self.tree.roots],
            "conflicts": [c.model_dump() for c in self.conflicts],
            "status": status_payload(self.reconciler.status),
        }

    def close(self) -> None:
        self._closed = True
        self.reconciler.close()
        if self._reconcile_task is not None and not self._reconcile_task.done():
            self._reconcile_task.cancel()
