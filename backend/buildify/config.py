import os
import shlex
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel


current_dir = os.path.dirname(os.path.abspath(__file__))
root_dir = os.path.dirname(current_dir)
# backend/.env, never overriding the real environment
load_dotenv(os.path.join(root_dir, ".env"), override=False)


class PreviewSettings(BaseModel):
    """How the sandbox turns a mounted tree into a served preview."""

    install_command: list[str] = ["npm", "install"]
    start_command: list[str] = ["npm", "run", "dev"]
    manifest_path: str = "package.json"
    ready_timeout_seconds: float = 30.0
    default_url: str = "http://localhost:5173"
    max_output_chars: int = 20_000


class SandboxSettings(BaseModel):
    runtime: str = "node22"
    port: int = 5173
    timeout_ms: int = 600_000
    ready_poll_interval_seconds: float = 1.0


class LLMSettings(BaseModel):
    api_key: str | None = None
    base_url: str | None = None
    model: str = "openai/gpt-4.1"
    template_model: str | None = None
    max_tokens: int = 8000


class Settings(BaseModel):
    preview: PreviewSettings = PreviewSettings()
    sandbox: SandboxSettings = SandboxSettings()
    llm: LLMSettings = LLMSettings()


def _command(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    return shlex.split(raw) if raw else list(default)


def load_settings() -> Settings:
    """Build settings from the environment, falling back to the defaults above."""
    preview_defaults = PreviewSettings()
    sandbox_defaults = SandboxSettings()
    llm_defaults = LLMSettings()
    preview = PreviewSettings(
        install_command=_command("BUILDIFY_INSTALL_COMMAND", preview_defaults.install_command),
        start_command=_command("BUILDIFY_START_COMMAND", preview_defaults.start_command),
        manifest_path=os.getenv("BUILDIFY_MANIFEST_PATH", preview_defaults.manifest_path),
        ready_timeout_seconds=float(
            os.getenv("BUILDIFY_READY_TIMEOUT_SECONDS", str(preview_defaults.ready_timeout_seconds))
        ),
        default_url=os.getenv("BUILDIFY_DEFAULT_URL", preview_defaults.default_url),
    )
    sandbox = SandboxSettings(
        runtime=os.getenv("SANDBOX_RUNTIME", sandbox_defaults.runtime),
        port=int(os.getenv("SANDBOX_APP_PORT", str(sandbox_defaults.port))),
        timeout_ms=int(os.getenv("SANDBOX_TIMEOUT_MS", str(sandbox_defaults.timeout_ms))),
    )
    llm = LLMSettings(
        api_key=os.getenv("AI_GATEWAY_API_KEY") or os.getenv("VERCEL_OIDC_TOKEN") or os.getenv("OPENAI_API_KEY"),
        base_url=os.getenv("AI_GATEWAY_BASE_URL") or os.getenv("OPENAI_BASE_URL") or "https://ai-gateway.vercel.sh/v1",
        model=os.getenv("BUILDIFY_MODEL", llm_defaults.model),
        template_model=os.getenv("BUILDIFY_TEMPLATE_MODEL") or None,
        max_tokens=int(os.getenv("BUILDIFY_MAX_TOKENS", str(llm_defaults.max_tokens))),
    )
    return Settings(preview=preview, sandbox=sandbox, llm=llm)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
