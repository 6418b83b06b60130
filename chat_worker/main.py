"""FastAPI main application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, settings
from .api import conversations, websocket
from .models.conversation import HealthResponse
from .services.connection_registry import ConnectionRegistry, SessionFactory
from .services.process_runner import ProcessRunner
from .services.session_controller import EventSender, SessionController
from .services.transcript_store import TranscriptStore
from .utils.logger import init_app_logger


# Initialize logger
logger = init_app_logger(settings)


def build_store(config: Settings) -> TranscriptStore:
    return TranscriptStore(
        history_dir=config.history_dir,
        default_title=config.default_title,
        title_max_length=config.title_max_length,
        default_working_directory=config.default_working_directory
    )


def build_session_factory(config: Settings, store: TranscriptStore) -> SessionFactory:
    """Each connection gets its own runner; the store is shared."""

    def factory(connection_id: str, send: EventSender) -> SessionController:
        runner = ProcessRunner(
            command=config.get_assistant_command(),
            grace_period=config.terminate_grace_period,
            chunk_size=config.output_chunk_size,
            honor_partial_output=config.honor_partial_output
        )
        return SessionController(
            connection_id=connection_id,
            store=store,
            runner=runner,
            send=send,
            response_timeout=config.response_timeout,
            default_working_directory=config.default_working_directory
        )

    return factory


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    Args:
        app: FastAPI application instance
    """
    # Startup
    logger.info("=" * 70)
    logger.info("Starting Chat Worker...")
    logger.info("=" * 70)

    logger.info("")
    logger.info("📡 Server Configuration:")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")
    logger.info(f"  Debug: {settings.debug}")
    logger.info(f"  Log Level: {settings.log_level}")
    logger.info(f"  Log File: {settings.log_file}")

    logger.info("")
    logger.info("🤖 Assistant Configuration:")
    logger.info(f"  Command: {' '.join(settings.get_assistant_command())}")
    logger.info(f"  Timeout: {settings.response_timeout}s")
    logger.info(f"  History Dir: {settings.history_dir}")

    store = build_store(settings)
    registry = ConnectionRegistry(build_session_factory(settings, store))

    # Set dependencies in API modules
    conversations.store = store
    websocket.registry = registry

    logger.info("")
    logger.info("=" * 70)
    logger.info("✅ Chat Worker started successfully!")
    logger.info(f"📍 Access at: http://{settings.host}:{settings.port}")
    logger.info(f"🔌 WebSocket: ws://{settings.host}:{settings.port}/ws")
    logger.info("=" * 70)

    yield

    # Shutdown
    logger.info("Shutting down Chat Worker...")
    await registry.shutdown()
    logger.info("✅ Chat Worker shut down successfully")


# Create FastAPI application
app = FastAPI(
    title="Chat Worker",
    description="Conversations with a command-line assistant over WebSocket",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(conversations.router)
app.include_router(websocket.router)


@app.get("/health", response_model=HealthResponse)
async def health():
    """
    Simple health check endpoint.

    Returns:
        Health status
    """
    return conversations.health_payload()


def run() -> None:
    """Start the server with uvicorn."""
    import uvicorn

    uvicorn.run(
        "chat_worker.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )


if __name__ == "__main__":
    run()
