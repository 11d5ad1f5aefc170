"""
FastAPI application for the runbook engine.
Provides REST API endpoints for runbook definitions, executions and AI generation.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import config
from errors import (
    APIError, AuthError, ConcurrencyLimitError, EngineError, ExecutionNotFoundError,
    ResourceNotFoundError, RunbookNotFoundError, ValidationError
)
from runbooks.ai_executor import AIOperationExecutor
from runbooks.orchestrator import RunbookOrchestrator
from api.routes import router

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS_CODES = [
    (AuthError, 401),
    (ValidationError, 400),
    (RunbookNotFoundError, 404),
    (ExecutionNotFoundError, 404),
    (ResourceNotFoundError, 404),
    (ConcurrencyLimitError, 429),
    (APIError, 502),
]


def status_code_for(error: EngineError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return status_code
    return 500


def create_app(orchestrator: Optional[RunbookOrchestrator] = None,
               ai_executor: Optional[AIOperationExecutor] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Components not passed in are built on startup from the configuration.

    Args:
        orchestrator: Orchestrator serving execution requests
        ai_executor: Executor serving ``POST /api/generate``
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "orchestrator", None) is None:
            app.state.orchestrator = RunbookOrchestrator()
        if getattr(app.state, "ai_executor", None) is None:
            app.state.ai_executor = app.state.orchestrator.step_runner.ai_executor
        logger.info("Runbook engine ready")
        yield
        app.state.orchestrator.dispatcher.shutdown(wait=False)

    app = FastAPI(
        title="Runbook Engine API",
        description="Sequential multi-step workflow execution for AI operations and HTTP calls",
        version="1.0.0",
        lifespan=lifespan
    )

    app.state.orchestrator = orchestrator
    app.state.ai_executor = ai_executor or (orchestrator.step_runner.ai_executor if orchestrator else None)

    if config.api_server.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.api_server.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE"],
            allow_headers=["Authorization", "Content-Type", "x-internal-user-id", "x-internal-token"],
        )

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, error: EngineError):
        status_code = status_code_for(error)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {error}")
        content = {"error": error.message}
        if isinstance(error, APIError) and error.details.get("details"):
            content["details"] = error.details["details"]
        return JSONResponse(status_code=status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, error: RequestValidationError):
        errors = error.errors()
        message = errors[0].get("msg") if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"error": message})

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    app.include_router(router)

    return app


# Create the FastAPI app instance
app = create_app()
