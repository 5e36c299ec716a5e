"""FastAPI application for the team migration API."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from .. import __version__
from ..migration.engine import MigrationEngine
from ..migration.errors import AlreadyRunning, InvalidTransition, NotFound, NotMapped
from ..store.base import MappingNotFoundError, StoreError
from .routes import health_router, router


def error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={'error': error, 'message': message}
    )


def create_app(engine: MigrationEngine) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine: Engine owning the store, connectors and orchestrator

    Returns:
        Configured FastAPI application instance
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info('Team migration API starting')
        yield
        if engine.orchestrator.cancel_migration():
            logger.info('Waiting for the running migration to stop')
            await engine.orchestrator.wait_for_completion()
        engine.close()
        logger.info('Team migration API stopped')

    app = FastAPI(
        title='GitHub Migrator',
        description='Team migration orchestrator API',
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine

    @app.exception_handler(AlreadyRunning)
    async def already_running_handler(request: Request, exc: AlreadyRunning) -> JSONResponse:
        """A run is in progress -> 409."""
        return error_response(409, 'already_running', str(exc))

    @app.exception_handler(InvalidTransition)
    async def invalid_transition_handler(
        request: Request, exc: InvalidTransition
    ) -> JSONResponse:
        return error_response(409, 'invalid_transition', str(exc))

    @app.exception_handler(NotMapped)
    async def not_mapped_handler(request: Request, exc: NotMapped) -> JSONResponse:
        """Single-team run on an unmapped team -> 400."""
        return error_response(400, 'not_mapped', str(exc))

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
        return error_response(404, 'not_found', str(exc))

    @app.exception_handler(MappingNotFoundError)
    async def mapping_not_found_handler(
        request: Request, exc: MappingNotFoundError
    ) -> JSONResponse:
        return error_response(404, 'not_found', str(exc))

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        """Mapping store unavailable -> 503."""
        logger.error(f'Mapping store error on {request.method} {request.url.path}: {exc}')
        return error_response(503, 'service_unavailable', str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed request -> 422."""
        fields = '; '.join(
            f'{".".join(str(loc) for loc in e["loc"])}: {e["msg"]}' for e in exc.errors()
        )
        return error_response(422, 'validation_error', fields or 'Validation failed')

    @app.exception_handler(PydanticValidationError)
    async def pydantic_validation_handler(
        request: Request, exc: PydanticValidationError
    ) -> JSONResponse:
        fields = '; '.join(
            f'{".".join(str(loc) for loc in e["loc"])}: {e["msg"]}' for e in exc.errors()
        )
        return error_response(422, 'validation_error', fields or 'Validation failed')

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return error_response(422, 'validation_error', str(exc))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions -> 500."""
        logger.exception(f'Unhandled exception on {request.method} {request.url.path}: {exc}')
        return error_response(500, 'internal_error', 'An unexpected error occurred')

    app.include_router(health_router)
    app.include_router(router)
    return app


def serve(engine: MigrationEngine, host: str, port: int, log_level: str = 'info') -> None:
    """Run the API with uvicorn until interrupted."""
    uvicorn.run(create_app(engine), host=host, port=port, log_level=log_level.lower())
