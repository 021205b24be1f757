"""
AI Editor Server - Main FastAPI Application
"""

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .config import settings
from .api import auth_router, topics_router, messages_router, completion_router
from .chat.orchestrator import CompletionOrchestrator
from .core.logging_config import setup_logging
from .llm.factory import create_llm_provider_from_settings
from .middleware import RequestLoggingMiddleware
from .storage import ConversationStore, LocalStorage, init_user_storage

# Logger will be initialized after setup_logging() is called
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    setup_logging(settings)

    storage = LocalStorage(settings.local_storage_path)
    init_user_storage(storage)
    store = ConversationStore(storage)
    app.state.conversation_store = store

    provider = create_llm_provider_from_settings(settings)
    if provider is None:
        logger.warning("No LLM API key configured; completions will report an error")
    else:
        logger.info(f"Completion provider: {provider.name}, model={provider.model}")
    app.state.orchestrator = CompletionOrchestrator(
        provider, store, token_timeout=settings.llm_token_timeout_seconds
    )

    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Storage path: {settings.local_storage_path}")
    logger.info(f"Log level: {settings.log_level.upper()}")
    yield
    logger.info(f"Shutting down {settings.app_name}")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Topic conversations with streamed LLM completions",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.log_api_requests:
    app.add_middleware(RequestLoggingMiddleware)

app.include_router(auth_router)
app.include_router(topics_router)
app.include_router(messages_router)
app.include_router(completion_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "ai_editor.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
