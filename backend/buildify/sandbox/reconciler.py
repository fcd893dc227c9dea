import asyncio
import logging
import re
from enum import Enum
from typing import Callable

from pydantic import BaseModel

from buildify.config import PreviewSettings
from buildify.file_tree import FileTree
from buildify.mount import MountDescriptor, changed_paths, project_tree, read_file
from buildify.sandbox.boot import SharedBoot
from buildify.sandbox.contract import ProcessHandle, SandboxSession


logger = logging.getLogger("buildify.sandbox.reconciler")


class SandboxState(str, Enum):
    UNINITIALIZED = "uninitialized"
    BOOTING = "booting"
    READY = "ready"
    MOUNTING = "mounting"
    INSTALLING = "installing"
    STARTING = "starting"
    SERVING = "serving"
    FAILED = "failed"


class ErrorKind(str, Enum):
    BOOT_FAILED = "boot_failed"
    MOUNT_FAILED = "mount_failed"
    MISSING_MANIFEST = "missing_manifest"
    INSTALL_FAILED = "install_failed"
    START_FAILED = "start_failed"


class ReadySource(str, Enum):
    NOTIFICATION = "notification"
    OUTPUT = "output"
    TIMEOUT = "timeout"


class SandboxStatus(BaseModel):
    state: SandboxState = SandboxState.UNINITIALIZED
    served_url: str | None = None
    ready_source: ReadySource | None = None
    error_kind: ErrorKind | None = None
    error: str | None = None

    @property
    def phase(self) -> str:
        """Collapse the state into what a caller can act on: serving, failed or in-progress."""
        if self.state == SandboxState.SERVING:
            return "serving"
        if self.state == SandboxState.FAILED:
            return "failed"
        return "in-progress"


class SandboxError(Exception):
    kind: ErrorKind = ErrorKind.START_FAILED

    def __init__(self, message: str, kind: ErrorKind | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class MissingManifestError(SandboxError):
    kind = ErrorKind.MISSING_MANIFEST

    def __init__(self, manifest_path: str):
        super().__init__(f"{manifest_path} file not found in the project files")
        self.manifest_path = manifest_path


class ProcessFailedError(SandboxError):
    def __init__(self, command: str, exit_code: int, output: str, kind: ErrorKind):
        super().__init__(f"{command} failed with exit code {exit_code}\nOutput: {output}")
        self.command = command
        self.exit_code = exit_code
        self.output = output
        self.kind = kind


_ANSI = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
_URL = re.compile(r"https?://[^\s]+")


def detect_local_url(chunk: str) -> str | None:
    """Find a dev server's 'Local: http://...' announcement in a chunk of output."""
    for line in _ANSI.sub("", chunk).splitlines():
        if "Local:" in line:
            m = _URL.search(line)
            if m:
                return m.group(0)
    return None


StatusListener = Callable[[SandboxStatus], None]


class SandboxReconciler:
    """Drives one sandbox from boot to a served preview of the current tree.

    Passes are serialized: a new tree waits for the running pass, and when several
    trees queue up only the latest one is processed. While Starting, the ready
    notification, the output scan and the timeout race; the first one to report
    wins and later reports are ignored.
    """

    def __init__(self, boot: SharedBoot, settings: PreviewSettings | None = None):
        self._boot = boot
        self.settings = settings or PreviewSettings()
        self._status = SandboxStatus()
        self._listeners: list[StatusListener] = []
        self._lock = asyncio.Lock()
        self._generation = 0
        self._closed = False

        self._latest: MountDescriptor | None = None
        self._mounted: MountDescriptor | None = None
        self._failed: MountDescriptor | None = None
        self._installed_manifest: str | None = None
        self._hooked: SandboxSession | None = None
        self._server: ProcessHandle | None = None
        self._served_url: str | None = None
        self._ready_source: ReadySource | None = None
        self._ready: asyncio.Future[tuple[ReadySource, str]] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._output: list[str] = []
        self._teardown: asyncio.Task | None = None

    @property
    def status(self) -> SandboxStatus:
        return self._status

    @property
    def closed(self) -> bool:
        return self._closed

    def recent_output(self) -> str:
        return "".join(self._output)

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # state helpers

    def _stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    def _transition(self, state: SandboxState, **fields) -> None:
        if self._closed:
            return
        previous = self._status.state
        self._status = SandboxStatus(state=state, **fields)
        if previous != state:
            logger.info("sandbox %s -> %s", previous.value, state.value)
        for listener in list(self._listeners):
            try:
                listener(self._status)
            except Exception:
                logger.exception("status listener failed")

    def _fail(self, kind: ErrorKind, message: str, descriptor: MountDescriptor | None = None) -> None:
        logger.warning("sandbox failed (%s): %s", kind.value, message.splitlines()[0] if message else "")
        self._failed = descriptor
        self._transition(SandboxState.FAILED, error_kind=kind, error=message)

    def _record_output(self, chunk: str) -> None:
        logger.debug("sandbox output: %s", chunk.rstrip())
        self._output.append(chunk)
        total = sum(len(c) for c in self._output)
        while self._output and total > self.settings.max_output_chars:
            total -= len(self._output.pop(0))

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # readiness

    def _on_server_ready(self, port: int, url: str) -> None:
        logger.info("server ready on port %s: %s", port, url)
        self._signal(ReadySource.NOTIFICATION, url)

    def _signal(self, source: ReadySource, url: str) -> None:
        waiter = self._ready
        if waiter is None or waiter.done() or self._status.state != SandboxState.STARTING:
            logger.debug("ignoring %s readiness signal (%s)", source.value, url)
            return
        waiter.set_result((source, url))

    # pipeline

    async def boot(self) -> SandboxSession | None:
        """Boot (or attach to the shared boot of) the sandbox without mounting anything."""
        async with self._lock:
            return await self._ensure_booted()

    async def _ensure_booted(self) -> SandboxSession | None:
        session = self._boot.session
        if session is None:
            generation = self._generation
            self._transition(SandboxState.BOOTING)
            try:
                session = await self._boot.get()
            except Exception as e:
                if not self._stale(generation):
                    self._fail(ErrorKind.BOOT_FAILED, str(e) or e.__class__.__name__)
                return None
            if self._stale(generation):
                return None
        if session is not self._hooked:
            session.on_server_ready(self._on_server_ready)
            self._hooked = session
        if self._status.state in (SandboxState.UNINITIALIZED, SandboxState.BOOTING) or (
            self._status.state == SandboxState.FAILED and self._status.error_kind == ErrorKind.BOOT_FAILED
        ):
            self._transition(SandboxState.READY)
        return session

    async def reconcile(self, tree: FileTree) -> SandboxStatus:
        """Project `tree` into the sandbox and bring the preview up to date."""
        return await self._reconcile(project_tree(tree))

    async def _reconcile(self, descriptor: MountDescriptor) -> SandboxStatus:
        self._latest = descriptor
        async with self._lock:
            if self._closed or self._latest is not descriptor:
                return self._status
            if not descriptor:
                return self._status
            if self._status.state == SandboxState.FAILED and self._failed == descriptor:
                # same input as the failed pass; only retry() repeats it
                return self._status
            session = await self._ensure_booted()
            if session is None:
                return self._status
            if self._status.state == SandboxState.FAILED:
                self._transition(SandboxState.READY)
            await self._run(session, descriptor)
        return self._status

    async def retry(self) -> SandboxStatus:
        """Leave Failed and repeat the pipeline from mount (or from boot)."""
        async with self._lock:
            if self._closed or self._status.state != SandboxState.FAILED:
                return self._status
            self._failed = None
            self._mounted = None
            self._installed_manifest = None
            if self._status.error_kind != ErrorKind.BOOT_FAILED:
                self._transition(SandboxState.READY)
            latest = self._latest
        if latest:
            return await self._reconcile(latest)
        await self.boot()
        return self._status

    async def _run(self, session: SandboxSession, descriptor: MountDescriptor) -> None:
        if self._status.state == SandboxState.SERVING and self._mounted == descriptor:
            return
        generation = self._generation

        self._transition(SandboxState.MOUNTING)
        logger.info("mounting %d changed file(s)", len(changed_paths(self._mounted, descriptor)))
        try:
            await session.mount(descriptor)
        except Exception as e:
            if not self._stale(generation):
                self._fail(ErrorKind.MOUNT_FAILED, f"Failed to mount files: {e}", descriptor)
            return
        if self._stale(generation):
            return
        self._mounted = descriptor

        manifest_path = self.settings.manifest_path
        manifest = read_file(descriptor, manifest_path)
        if manifest is None:
            err = MissingManifestError(manifest_path)
            self._fail(err.kind, str(err), descriptor)
            return

        if manifest != self._installed_manifest:
            self._transition(SandboxState.INSTALLING)
            try:
                await self._run_to_exit(session, self.settings.install_command, ErrorKind.INSTALL_FAILED)
            except SandboxError as e:
                if not self._stale(generation):
                    self._fail(e.kind, str(e), descriptor)
                return
            except Exception as e:
                if not self._stale(generation):
                    self._fail(ErrorKind.INSTALL_FAILED, f"Dependency install error: {e}", descriptor)
                return
            if self._stale(generation):
                return
            self._installed_manifest = manifest

        if self._server is not None and self._served_url:
            # dev server is still up and picks the new files up by itself
            self._transition(SandboxState.SERVING, served_url=self._served_url, ready_source=self._ready_source)
            return

        await self._start(session, descriptor, generation)

    async def _run_to_exit(self, session: SandboxSession, argv: list[str], kind: ErrorKind) -> str:
        command = " ".join(argv)
        logger.info("running %s", command)
        handle = await session.spawn(argv[0], argv[1:])
        chunks: list[str] = []

        async def pump() -> None:
            async for chunk in handle.output():
                chunks.append(chunk)
                self._record_output(chunk)

        pump_task = self._track(pump())
        try:
            exit_code = await handle.wait()
            await pump_task
        except asyncio.CancelledError:
            raise
        except Exception as e:
            pump_task.cancel()
            raise SandboxError(f"Failed to run {command}: {e}", kind) from e
        output = "".join(chunks)
        if exit_code != 0:
            raise ProcessFailedError(command, exit_code, output, kind)
        return output

    async def _start(self, session: SandboxSession, descriptor: MountDescriptor, generation: int) -> None:
        loop = asyncio.get_running_loop()
        self._transition(SandboxState.STARTING)
        waiter: asyncio.Future[tuple[ReadySource, str]] = loop.create_future()
        self._ready = waiter

        argv = self.settings.start_command
        command = " ".join(argv)
        logger.info("starting %s", command)
        try:
            handle = await session.spawn(argv[0], argv[1:])
        except Exception as e:
            if not self._stale(generation):
                self._fail(ErrorKind.START_FAILED, f"Failed to start {command}: {e}", descriptor)
            return
        self._server = handle

        async def scan() -> None:
            try:
                async for chunk in handle.output():
                    self._record_output(chunk)
                    url = detect_local_url(chunk)
                    if url:
                        self._signal(ReadySource.OUTPUT, url)
            except Exception as e:
                logger.warning("lost dev server output stream: %s", e)

        self._track(scan())
        exit_task = self._track(handle.wait())
        self._timer = loop.call_later(
            self.settings.ready_timeout_seconds,
            self._signal,
            ReadySource.TIMEOUT,
            self.settings.default_url,
        )
        try:
            await asyncio.wait({waiter, exit_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if self._stale(generation):
            return

        if waiter.done() and not waiter.cancelled():
            source, url = waiter.result()
            if source == ReadySource.TIMEOUT:
                logger.warning("no readiness signal after %ss, assuming %s", self.settings.ready_timeout_seconds, url)
            self._served_url = url
            self._ready_source = source
            exit_task.add_done_callback(lambda t: self._server_exited(handle, t))
            self._transition(SandboxState.SERVING, served_url=url, ready_source=source)
            return

        self._server = None
        error = exit_task.exception()
        if error is not None:
            self._fail(ErrorKind.START_FAILED, f"Failed to run {command}: {error}", descriptor)
            return
        exit_code = exit_task.result()
        self._fail(
            ErrorKind.START_FAILED,
            f"{command} exited with code {exit_code} before the server was ready\nOutput: {self.recent_output()}",
            descriptor,
        )

    def _server_exited(self, handle: ProcessHandle, task: asyncio.Task) -> None:
        if handle is not self._server:
            return
        code = None if task.cancelled() or task.exception() else task.result()
        logger.warning("dev server exited with code %s", code)
        # the next tree change starts a new one
        self._server = None
        self._served_url = None

    def close(self) -> None:
        """End the session: pending results are ignored and no transition happens after this."""
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._ready is not None and not self._ready.done():
            self._ready.cancel()
        for task in list(self._tasks):
            task.cancel()
        self._listeners.clear()

        # the sandbox outlives this session; its dev server must not
        server, self._server = self._server, None
        self._served_url = None
        if server is not None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("no running loop, dev server left running")
                return
            self._teardown = loop.create_task(self._kill(server))

    async def _kill(self, handle: ProcessHandle) -> None:
        try:
            await handle.kill()
            logger.info("dev server stopped")
        except Exception as e:
            logger.warning("failed to stop dev server: %s", e)

    async def wait_closed(self) -> None:
        """Wait until the dev server of a closed reconciler has been stopped."""
        if self._teardown is not None:
            await self._teardown
