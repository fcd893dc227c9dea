import asyncio
import logging
import shlex
from typing import Any, AsyncIterator

import httpx
from vercel.sandbox import AsyncSandbox as Sandbox

from buildify.config import SandboxSettings
from buildify.mount import MountDescriptor, flatten_descriptor
from buildify.sandbox.contract import ServerReadyCallback


logger = logging.getLogger("buildify.sandbox.vercel")

WRITE_CHUNK_SIZE = 64
WRITE_RETRIES = 3


class VercelProcess:
    """Detached sandbox command exposed as a streamed-output process handle."""

    def __init__(self, cmd: Any):
        self._cmd = cmd
        self._exit_code: int | None = None

    async def output(self) -> AsyncIterator[str]:
        async for line in self._cmd.logs():
            yield line.data or ""

    async def wait(self) -> int:
        if self._exit_code is None:
            done = await self._cmd.wait()
            self._exit_code = int(done.exit_code)
        return self._exit_code

    async def kill(self) -> None:
        if not self.exited:
            await self._cmd.kill()

    @property
    def exited(self) -> bool:
        return self._exit_code is not None


class VercelSandboxSession:
    def __init__(self, sandbox: Sandbox, settings: SandboxSettings):
        self.sandbox = sandbox
        self.settings = settings
        self._ready_callbacks: list[ServerReadyCallback] = []
        self._watchers: set[asyncio.Task] = set()

    @property
    def cwd(self) -> str:
        return self.sandbox.sandbox.cwd

    def on_server_ready(self, callback: ServerReadyCallback) -> None:
        self._ready_callbacks.append(callback)

    async def mount(self, descriptor: MountDescriptor) -> None:
        files, empty_dirs = flatten_descriptor(descriptor)
        if empty_dirs:
            quoted = " ".join(shlex.quote(d) for d in empty_dirs)
            await self.sandbox.run_command("bash", ["-lc", f"cd {self.cwd} && mkdir -p {quoted}"])

        payload = [{"path": path, "content": content.encode("utf-8")} for path, content in files.items()]
        # Chunked with backoff: rapid remounts can hit transient 5xx
        for i in range(0, len(payload), WRITE_CHUNK_SIZE):
            chunk = payload[i : i + WRITE_CHUNK_SIZE]
            attempt = 0
            while True:
                try:
                    await self.sandbox.write_files(chunk)
                    break
                except Exception as e:
                    attempt += 1
                    if attempt > WRITE_RETRIES:
                        raise
                    logger.warning("retrying file sync (%d/%d) due to error: %s", attempt, WRITE_RETRIES, e)
                    await asyncio.sleep(0.25 * (2 ** (attempt - 1)))
        logger.info("mounted %d file(s) into sandbox %s", len(payload), self.sandbox.sandbox_id)

    async def spawn(self, command: str, args: list[str]) -> VercelProcess:
        line = shlex.join([command, *args])
        cmd = await self.sandbox.run_command_detached("bash", ["-lc", f"cd {self.cwd} && {line}"])
        process = VercelProcess(cmd)
        if self._ready_callbacks:
            task = asyncio.ensure_future(self._watch_port(process))
            self._watchers.add(task)
            task.add_done_callback(self._watchers.discard)
        return process

    async def _watch_port(self, process: VercelProcess) -> None:
        """Poll the exposed port while `process` runs; notify once it answers."""
        port = self.settings.port
        try:
            url = self.sandbox.domain(port)
        except Exception as e:
            logger.debug("no public domain for port %s: %s", port, e)
            return
        async with httpx.AsyncClient(follow_redirects=True, timeout=5.0) as client:
            while not process.exited:
                status = await probe(url, client)
                if status is not None and status < 500:
                    for callback in list(self._ready_callbacks):
                        callback(port, url)
                    return
                await asyncio.sleep(self.settings.ready_poll_interval_seconds)

    async def stop(self) -> None:
        for task in list(self._watchers):
            task.cancel()
        try:
            await self.sandbox.stop()
        finally:
            await self.sandbox.client.aclose()


class VercelSandboxRuntime:
    def __init__(self, settings: SandboxSettings | None = None):
        self.settings = settings or SandboxSettings()

    async def boot(self) -> VercelSandboxSession:
        sandbox = await Sandbox.create(
            timeout=self.settings.timeout_ms,
            runtime=self.settings.runtime,
            ports=[self.settings.port],
        )
        logger.info("sandbox %s created (runtime=%s)", sandbox.sandbox_id, self.settings.runtime)
        return VercelSandboxSession(sandbox, self.settings)


async def probe(url: str, client: httpx.AsyncClient | None = None) -> int | None:
    """Return the HTTP status of `url`, or None when unreachable.

    HEAD first to avoid downloading the body; some servers reject HEAD, so fall
    back to a streamed GET that only reads the status line.
    """
    owned = client is None
    client = client or httpx.AsyncClient(follow_redirects=True, timeout=8.0)
    try:
        try:
            resp = await client.request("HEAD", url)
            if resp.status_code != 405:
                return int(resp.status_code)
        except httpx.HTTPError:
            pass
        try:
            async with client.stream("GET", url) as resp2:
                return int(resp2.status_code)
        except httpx.HTTPError:
            return None
    finally:
        if owned:
            await client.aclose()
