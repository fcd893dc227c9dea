import logging

from fastapi import Depends, HTTPException

from buildify.builder import BuilderSession
from buildify.config import Settings, get_settings
from buildify.llm.client import BuildifyLLM
from buildify.sandbox.boot import SharedBoot
from buildify.sandbox.vercel_runtime import VercelSandboxRuntime


logger = logging.getLogger("buildify.api.deps")

_shared_boot: SharedBoot | None = None
_llm: BuildifyLLM | None = None


class SessionHolder:
    """The single active build session of this process."""

    def __init__(self):
        self.current: BuilderSession | None = None

    async def replace(self, session: BuilderSession) -> None:
        await self.close()
        self.current = session

    async def close(self) -> bool:
        session, self.current = self.current, None
        if session is None:
            return False
        logger.info("closing session %s", session.session_id)
        session.close()
        await session.reconciler.wait_closed()
        return True


holder = SessionHolder()


def get_app_settings() -> Settings:
    return get_settings()


def get_shared_boot(settings: Settings = Depends(get_app_settings)) -> SharedBoot:
    global _shared_boot
    if _shared_boot is None:
        _shared_boot = SharedBoot(VercelSandboxRuntime(settings.sandbox))
    return _shared_boot


def get_llm(settings: Settings = Depends(get_app_settings)) -> BuildifyLLM:
    global _llm
    if _llm is None:
        _llm = BuildifyLLM(settings.llm)
    return _llm


def get_holder() -> SessionHolder:
    return holder


def require_session(sessions: SessionHolder = Depends(get_holder)) -> BuilderSession:
    if sessions.current is None:
        raise HTTPException(status_code=409, detail="No active build session")
    return sessions.current


async def shutdown() -> None:
    """Close the active session and stop the sandbox if one was booted."""
    await holder.close()
    if _shared_boot is not None:
        try:
            await _shared_boot.shutdown()
        except Exception as e:
            logger.warning("failed to stop sandbox: %s", e)
