import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Loads backend/.env before anything reads the environment
from buildify.config import get_settings
from buildify.api import deps
from buildify.api.builder import router as builder_router
from buildify.api.llm import router as llm_router
from buildify.api.preview import router as preview_router


# Basic logger for server diagnostics (inherits uvicorn handlers)
logger = logging.getLogger("buildify.server")
if not logger.handlers:
    logger.setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info(
        "buildify starting (runtime=%s port=%s model=%s)",
        settings.sandbox.runtime,
        settings.sandbox.port,
        settings.llm.model,
    )
    yield
    await deps.shutdown()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(llm_router)
app.include_router(builder_router)
app.include_router(preview_router)


@app.get("/")
def read_root():
    return {"Hello": "Buildify"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8081)
