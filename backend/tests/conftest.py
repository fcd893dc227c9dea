"""
Pytest configuration for the Buildify backend test suite.

Provides in-memory stand-ins for the sandbox contract and the language model.
"""
import asyncio

import pytest

from buildify.config import PreviewSettings
from buildify.file_tree import build_tree
from buildify.llm.client import template_for
from buildify.sandbox.boot import SharedBoot
from buildify.sandbox.reconciler import SandboxReconciler
from buildify.steps import parse_steps


PACKAGE_JSON = '{"name": "demo", "scripts": {"dev": "vite"}}'


class FakeProcess:
    """Process handle whose output and exit are driven by the test."""

    def __init__(self, chunks=(), exit_code=0, running=False):
        self.chunks = list(chunks)
        self.exit_code = exit_code
        self.killed = False
        self._exited = asyncio.Event()
        if not running:
            self._exited.set()

    async def output(self):
        for chunk in self.chunks:
            await asyncio.sleep(0)
            yield chunk
        await self._exited.wait()

    async def wait(self):
        await self._exited.wait()
        return self.exit_code

    def exit(self, code=0):
        self.exit_code = code
        self._exited.set()

    async def kill(self):
        self.killed = True
        self.exit(-9)


class FakeSession:
    def __init__(self):
        self.mounts = []
        self.spawned = []
        self.handles = []
        self.callbacks = []
        self.mount_error = None
        self.stopped = False
        # command line -> factory returning the next FakeProcess
        self.scripts = {
            "npm install": lambda: FakeProcess(["added 10 packages\n"]),
            "npm run dev": lambda: FakeProcess(["> vite\n"], running=True),
        }

    async def mount(self, descriptor):
        await asyncio.sleep(0)
        if self.mount_error is not None:
            raise self.mount_error
        self.mounts.append(descriptor)

    async def spawn(self, command, args):
        line = " ".join([command, *args])
        self.spawned.append(line)
        handle = self.scripts[line]()
        self.handles.append(handle)
        return handle

    def on_server_ready(self, callback):
        self.callbacks.append(callback)

    def notify_ready(self, port, url):
        for callback in list(self.callbacks):
            callback(port, url)

    async def stop(self):
        self.stopped = True


class FakeRuntime:
    def __init__(self, failures=0):
        self.failures = failures
        self.boots = 0
        self.session = FakeSession()

    async def boot(self):
        self.boots += 1
        await asyncio.sleep(0.01)
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("sandbox unavailable")
        return self.session


class FakeLLM:
    """Answers the template question and replays canned chat replies."""

    def __init__(self, answer="react", replies=()):
        self.answer = answer
        self.replies = list(replies)
        self.calls = []

    async def choose_template(self, prompt):
        return template_for(self.answer)

    async def chat(self, messages):
        self.calls.append(messages)
        return self.replies.pop(0) if self.replies else ""


async def wait_for_state(reconciler, state, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while reconciler.status.state != state:
        if loop.time() > deadline:
            raise AssertionError(f"state stayed {reconciler.status.state.value}, wanted {state.value}")
        await asyncio.sleep(0.005)


def tree_from(markup):
    return build_tree(parse_steps(markup))


def project_markup(app="console.log(1)", manifest=PACKAGE_JSON):
    parts = [f'<file path="src/index.js">{app}</file>']
    if manifest is not None:
        parts.append(f'<file path="package.json">{manifest}</file>')
    return "\n".join(parts)


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def fast_settings():
    return PreviewSettings(ready_timeout_seconds=0.3, default_url="http://localhost:5173")


@pytest.fixture
def reconciler(runtime, fast_settings):
    rec = SandboxReconciler(SharedBoot(runtime), fast_settings)
    yield rec
    rec.close()
