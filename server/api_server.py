"""FastAPI application entry point for the localrag retrieval API."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from server.core.AppContext import AppContext
from server.routers.HealthRouter import router as health_router
from server.routers.SearchRouter import router as search_router
from server.routers.StatusRouter import router as status_router
from server.routers.TopicsRouter import router as topics_router
from shared.errors import LocalRagError
from shared.helper.constants import APP_DISPLAY_NAME, APP_NAME, DEFAULT_HOST, DEFAULT_PORT
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


def create_app(context: AppContext | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        context (AppContext | None): Prebuilt services. If None, the lifespan
            builds them from the environment.

    Returns:
        FastAPI: The application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # when the app starts
        app.state.logging = logging
        ctx = context or AppContext.build(HelperConfig(logger=logging))
        app.state.context = ctx
        logging.info("Starting %s core services...", APP_DISPLAY_NAME)
        await ctx.start()
        logging.info("%s core services started.", APP_DISPLAY_NAME)

        # while the app is running...
        yield

        # when the app shuts down
        await ctx.close()

    app = FastAPI(
        title=APP_NAME,
        description=(
            "Local retrieval API over topic-scoped document collections. "
            "Documents from watched folders are chunked, embedded and stored per topic; "
            "GET /search runs vector, keyword or hybrid retrieval against one topic."
        ),
        version=app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(search_router)
    app.include_router(topics_router)
    app.include_router(status_router)

    @app.exception_handler(LocalRagError)
    async def handle_core_error(request: Request, exc: LocalRagError) -> JSONResponse:
        if exc.status_code >= 500:
            logging.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logging.debug("%s %s rejected (%d): %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": f"Invalid request: {exc.errors()}"})

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": message})

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logging.error("Request handler error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return app


app = create_app()


def main() -> None:
    import uvicorn

    host = os.getenv("APP_HOST", DEFAULT_HOST)
    port = int(os.getenv("APP_PORT", DEFAULT_PORT))
    logging.info(
        "Starting %s API Server v%s from root dir: %s on %s:%d...",
        APP_DISPLAY_NAME,
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
        host,
        port,
    )
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
