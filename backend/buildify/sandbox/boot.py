import asyncio
import logging

from buildify.sandbox.contract import SandboxRuntime, SandboxSession


logger = logging.getLogger("buildify.sandbox.boot")


class SharedBoot:
    """One-shot sandbox boot shared by every caller holding this handle.

    The first caller starts the boot; callers arriving while it is in flight
    await the same task. A failed boot is forgotten so the next call retries.
    """

    def __init__(self, runtime: SandboxRuntime):
        self._runtime = runtime
        self._session: SandboxSession | None = None
        self._task: asyncio.Task[SandboxSession] | None = None

    @property
    def session(self) -> SandboxSession | None:
        return self._session

    async def get(self) -> SandboxSession:
        if self._session is not None:
            return self._session
        if self._task is None:
            logger.info("booting sandbox")
            self._task = asyncio.ensure_future(self._runtime.boot())
        task = self._task
        try:
            # shield: one cancelled waiter must not cancel the shared boot
            session = await asyncio.shield(task)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._task is task:
                self._task = None
            logger.warning("sandbox boot failed: %s", e)
            raise
        self._session = session
        return session

    async def shutdown(self) -> None:
        session, self._session = self._session, None
        self._task = None
        if session is not None:
            logger.info("stopping sandbox")
            await session.stop()
