from contextlib import asynccontextmanager
import asyncio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from support_agent.application.container import AgentContainer
from support_agent.application.dispatcher import TurnDispatcher
from support_agent.domain.errors import ChatEngineError, user_message_for
from support_agent.infrastructure.observability.logging import setup_logging
from .route.agent import router
from .schema.requests import ErrorResponse

logger = structlog.get_logger(__name__)


def create_app(container: AgentContainer) -> FastAPI:
    """Build the HTTP surface around an already constructed container"""

    settings = container.settings
    setup_logging(settings.log_level, settings.log_format, settings.service_name)

    async def sweep_sessions():
        while True:
            await asyncio.sleep(settings.session_sweep_interval_seconds)
            try:
                container.sweep_sessions()
            except Exception:
                logger.exception("Session sweep failed")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Agent server started", service=container.settings.service_name)
        sweeper = asyncio.create_task(sweep_sessions())
        yield
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        container.shutdown()

    app = FastAPI(title="Support Agent", lifespan=lifespan)
    app.state.container = container
    app.state.dispatcher = TurnDispatcher(container)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ChatEngineError)
    async def chat_engine_error_handler(request: Request, exc: ChatEngineError):
        logger.error("Request failed", path=request.url.path, **exc.to_dict())
        return JSONResponse(
            status_code=503 if exc.retryable or exc.code == "RETRY_EXHAUSTED" else 500,
            content=ErrorResponse(
                code=exc.code,
                message=user_message_for(exc),
                retryable=exc.retryable,
            ).model_dump(),
        )

    app.include_router(router)
    return app
