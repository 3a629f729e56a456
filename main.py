import inspect
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from openai import AsyncOpenAI

from routes.realtime_ws import router as realtime_router
from routes.session_route import router as session_router
from services.market.tool_session import ToolSessionManager, UserToolSession
from services.realtime.assistant import ChatAssistant
from services.realtime.ws_session import ChatGateway
from utils.settings import Settings

from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file if present

logger = logging.getLogger(__name__)


def _tool_session_factory(settings: Settings):
    def factory(user_id: str) -> UserToolSession:
        return UserToolSession(
            user_id,
            settings.market_mcp_url,
            api_key=settings.market_mcp_api_key,
            profile=settings.market_mcp_profile,
        )

    return factory


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager to initialize:
      - the OpenAI async client used by the chat assistant
      - the per-user market tool session manager
      - the chat gateway that owns websocket connections
    and attach them to `app.state`.
    """
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    openai_api_key = os.getenv("OPENAI_API_KEY")
    if not openai_api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable is not set")

    try:
        openai_client = AsyncOpenAI()
    except Exception as exc:
        raise RuntimeError("Failed to initialize OpenAI Async client") from exc

    tool_sessions = ToolSessionManager(_tool_session_factory(settings))
    assistant = ChatAssistant(
        openai_client,
        model=settings.assistant_model,
        max_output_tokens=settings.assistant_max_output_tokens,
        max_tool_rounds=settings.assistant_max_tool_rounds,
    )

    app.state.settings = settings
    app.state.openai_client = openai_client
    app.state.tool_sessions = tool_sessions
    app.state.gateway = ChatGateway(tool_sessions, assistant)
    logger.info("Chat gateway ready (model %s)", settings.assistant_model)

    try:
        yield
    finally:
        await app.state.gateway.close()
        await tool_sessions.cleanup()

        # Gracefully close the OpenAI client if it exposes a close/aclose method.
        client = getattr(app.state, "openai_client", None)
        if client is not None:
            aclose = getattr(client, "aclose", None) or getattr(client, "close", None)
            if aclose is not None:
                try:
                    result = aclose()
                    if inspect.isawaitable(result):
                        await result
                except Exception as exc:
                    # Shutdown errors must not mask the original exit reason.
                    logger.debug("Error closing OpenAI client: %s", exc)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application instance.
    """
    app = FastAPI(lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check reporting gateway and OpenAI client presence.
        """
        gateway = getattr(request.app.state, "gateway", None)
        has_openai = getattr(request.app.state, "openai_client", None) is not None
        return {
            "ok": True,
            "gateway_ready": gateway is not None,
            "connections": len(gateway.store) if gateway is not None else 0,
            "openai_available": has_openai,
        }

    # Register application routers
    app.include_router(realtime_router)
    app.include_router(session_router)

    return app


app = create_app()
