from typing import Optional
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from langchain_core.language_models import BaseChatModel

from assistant.application.services import build_services
from assistant.application.websocket import ws_server
from assistant.domain.errors import AssistantError
from assistant.infrastructure.config.settings import AssistantSettings, get_settings
from assistant.infrastructure.observability.logging import setup_logging
from .route import agent

logger = structlog.get_logger(__name__)

_STATUS_BY_CODE = {
    "VALIDATION_ERROR": 400,
    "INVALID_MESSAGE": 400,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "BACKEND_UNAVAILABLE": 503,
    "COMPLETION_TIMEOUT": 504,
}


def create_app(
    settings: Optional[AssistantSettings] = None,
    chat_model: Optional[BaseChatModel] = None,
    email_http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Build the HTTP/WebSocket application"""

    settings = settings or get_settings()
    services = build_services(settings, chat_model=chat_model, email_http_client=email_http_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await services.start()
        logger.info("Assistant server started", environment=settings.environment)
        yield
        await services.stop()
        logger.info("Assistant server shutdown")

    app = FastAPI(title="Personal Assistant", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AssistantError)
    async def assistant_error_handler(request: Request, exc: AssistantError) -> JSONResponse:
        return JSONResponse(
            status_code=_STATUS_BY_CODE.get(exc.code, 500),
            content={"error": exc.message, "code": exc.code},
        )

    app.include_router(agent.router)
    app.include_router(ws_server.router)
    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
