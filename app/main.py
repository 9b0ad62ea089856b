import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from app.config import Settings, load_settings
from app.db.nurse_source import NurseSource
from app.services.llm_client import LLMClient

# Routers
from app.api.routers.core import router as core_router
from app.api.routers.match import router as match_router

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(settings: Optional[Settings] = None, *, llm_client: Optional[LLMClient] = None) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the nurse source once at startup and release it on shutdown."""
        source = NurseSource(settings)
        source.init()
        client = llm_client or LLMClient.from_settings(settings)
        app.state.nurse_source = source
        app.state.llm_client = client
        if client.is_configured:
            logger.info("Azure OpenAI configured (%s): %s", client.variant, client.describe_endpoint())
        else:
            logger.warning("Azure OpenAI not configured; /match will use mock ranking")
        try:
            yield
        finally:
            source.close()

    app = FastAPI(title="LLM Nurse Matching", version="0.1", lifespan=lifespan)
    app.state.settings = settings

    app.include_router(core_router)
    app.include_router(match_router)
    return app


_settings = load_settings()
configure_logging(_settings.log_level)
app = create_app(_settings)
