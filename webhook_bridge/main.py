"""FastAPI application entry point.

Startup sequence: config → model registry → task detectors → webhook client.
"""

from contextlib import asynccontextmanager

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from webhook_bridge.api.openai_response import create_error_response
from webhook_bridge.api.routes import BearerAuthError, router
from webhook_bridge.core.config import Config
from webhook_bridge.core.model_repository import ModelRepository
from webhook_bridge.core.task_detector import default_task_detector
from webhook_bridge.core.webhook_client import WebhookClient

load_dotenv()

logger = structlog.get_logger(__name__)


def create_app(
    config: Config | None = None,
    model_repository: ModelRepository | None = None,
    webhook_client: WebhookClient | None = None,
) -> FastAPI:
    """Build the app. Collaborators not passed in are created at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("startup.begin")

        app.state.config = config or Config()
        cfg = app.state.config
        logger.info("startup.config_loaded", file_upload_mode=cfg.file_upload_mode,
                    timeout_ms=cfg.webhook_timeout_ms,
                    task_detection=cfg.enable_task_detection)

        app.state.model_repository = model_repository or ModelRepository.from_file(cfg.models_config)
        logger.info("startup.models_loaded", count=len(app.state.model_repository.list_models()))

        app.state.webhook_client = webhook_client or WebhookClient(cfg, default_task_detector())

        logger.info("startup.complete")
        yield
        if webhook_client is None:
            await app.state.webhook_client.aclose()
        logger.info("shutdown.complete")

    app = FastAPI(
        title="Webhook Bridge",
        description="OpenAI-compatible chat completions backed by workflow webhooks",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg', 'invalid request')}" if field else "Invalid request"
        return JSONResponse(
            status_code=400,
            content=create_error_response(message, "invalid_request_error"),
        )

    @app.exception_handler(BearerAuthError)
    async def auth_error_handler(request: Request, exc: BearerAuthError):
        return JSONResponse(
            status_code=401,
            content=create_error_response("Unauthorized", "authentication_error"),
        )

    app.include_router(router)
    return app


app = create_app()
