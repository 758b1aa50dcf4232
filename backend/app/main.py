"""Presence Relay backend application.

This is the main entry point for the relay service. Logged-in clients keep a
persistent WebSocket open and exchange presence and typing signals grouped
into named conversations.

Modules:
    - realtime: Connection registry, conversation membership, message dispatch
    - auth: Bearer token issuance and identity attachment
    - users: In-memory user directory and its HTTP endpoints
    - client: Reconnecting client session for Python consumers
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.auth.middleware import IdentityMiddleware
from app.auth.service import TokenService
from app.config import RelayConfig, get_config
from app.realtime.dispatcher import MessageDispatcher
from app.realtime.membership import ConversationMembershipIndex
from app.realtime.registry import ConnectionRegistry
from app.realtime.router import create_router
from app.users.router import router as users_router
from app.users.service import UserDirectory

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence per-connection chatter from the server and HTTP client libraries.
for _noisy in ("websockets", "websockets.client", "httpx", "httpcore"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    config: RelayConfig = app.state.config

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in relay.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    logger.info(
        f"Relay listening on ws://{config.server.host}:{config.server.port}"
        f"{config.realtime.ws_path}"
    )

    yield  # Application runs here

    # Shutdown
    registry: ConnectionRegistry = app.state.registry
    logger.info(
        "Application shutdown complete (%d connections open)", registry.connection_count
    )


def create_app(config: Optional[RelayConfig] = None) -> FastAPI:
    """Build the FastAPI application and its explicitly owned relay state."""
    config = config or get_config()

    app = FastAPI(
        title="Presence Relay API",
        description="Real-time presence and typing relay over WebSockets",
        version="0.1.0",
        lifespan=lifespan,
    )

    registry = ConnectionRegistry()
    membership = ConversationMembershipIndex(registry)
    token_service = TokenService(config.auth)

    app.state.config = config
    app.state.registry = registry
    app.state.membership = membership
    app.state.dispatcher = MessageDispatcher(
        registry, membership, max_message_bytes=config.realtime.max_message_bytes
    )
    app.state.token_service = token_service
    app.state.user_directory = UserDirectory()

    app.add_middleware(
        IdentityMiddleware,
        token_service=token_service,
        reject_invalid_tokens=config.auth.reject_invalid_tokens,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register all routers
    app.include_router(create_router(config.realtime.ws_path))
    app.include_router(users_router)

    @app.get("/api/health")
    async def health(request: Request) -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object with the number of open relay connections.
        """
        return {
            "status": "ok",
            "message": "Service is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "connections": request.app.state.registry.connection_count,
        }

    return app


app = create_app()
