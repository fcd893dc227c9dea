"""Capabilities the preview pipeline needs from an execution sandbox.

Any runtime that can boot a session, mount a descriptor, spawn a process with
streamed output and an exit code, and report when a server starts listening
satisfies this contract.
"""

from typing import AsyncIterator, Callable, Protocol

from buildify.mount import MountDescriptor


ServerReadyCallback = Callable[[int, str], None]


class ProcessHandle(Protocol):
    def output(self) -> AsyncIterator[str]:
        """Stream output chunks until the process exits."""
        ...

    async def wait(self) -> int:
        """Resolve with the exit code."""
        ...

    async def kill(self) -> None:
        """Terminate the process if it is still running."""
        ...


class SandboxSession(Protocol):
    async def mount(self, descriptor: MountDescriptor) -> None: ...

    async def spawn(self, command: str, args: list[str]) -> ProcessHandle: ...

    def on_server_ready(self, callback: ServerReadyCallback) -> None: ...

    async def stop(self) -> None:
        """Release the sandbox; only called on teardown."""
        ...


class SandboxRuntime(Protocol):
    async def boot(self) -> SandboxSession: ...
