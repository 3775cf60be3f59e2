from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response

from metricbridge.apps.api.metricbridge_api import routers
from metricbridge.apps.api.metricbridge_api.ioc import Container, build_container
from metricbridge.apps.api.metricbridge_api.middleware import ErrorMiddleware
from metricbridge.apps.api.metricbridge_api.routers import api_router_v1
from metricbridge.packages.common.metricbridge_common.config import Settings, settings
from metricbridge.packages.common.metricbridge_common.logging.logger import setup_logging
from metricbridge.packages.common.metricbridge_common.monitoring import (
    PrometheusMiddleware,
    metrics_response,
)
from metricbridge.packages.federation.errors import ErrorKind
from metricbridge.packages.federation.registry import load_catalog_file

logger = logging.getLogger(__name__)


def custom_generate_unique_id(route: APIRoute) -> str:
    if len(route.tags) == 0:
        return route.name
    return f"{route.tags[0]}-{route.name}"


def _load_catalog(container: Container) -> None:
    catalog_path = container.config.catalog.path()
    if not catalog_path:
        logger.info("No CATALOG_PATH configured; starting with an empty catalog")
        return
    catalog = load_catalog_file(catalog_path)
    container.query_service().refresh_catalog(catalog)
    logger.info(
        "Loaded catalog from %s (%d tables, %d metrics)",
        catalog_path,
        len(catalog.tables),
        len(catalog.metrics),
    )


def create_app(container: Container | None = None, settings_obj: Settings = settings) -> FastAPI:
    container = container or build_container(settings_obj)
    container.wire(packages=[routers])

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager to handle startup and shutdown events."""
        setup_logging(
            service_name=settings_obj.PROJECT_NAME,
            level=settings_obj.LOG_LEVEL,
            log_dir=settings_obj.LOG_DIR,
            log_file=settings_obj.LOG_FILE,
        )
        logger.info("Starting %s in %s environment", settings_obj.PROJECT_NAME, settings_obj.ENVIRONMENT)
        _load_catalog(container)
        yield
        container.query_service().close()

    app = FastAPI(
        title=settings_obj.PROJECT_NAME,
        generate_unique_id_function=custom_generate_unique_id,
        lifespan=lifespan,
    )
    app.state.container = container

    # Starlette executes middleware in reverse order of addition (last added runs first).
    app.add_middleware(ErrorMiddleware)
    app.add_middleware(PrometheusMiddleware, service_name="metricbridge_api")

    if settings_obj.CORS_ENABLED:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST"],
            allow_headers=["Content-Type"],
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": ErrorKind.VALIDATION.value, "message": str(exc.errors())},
        )

    app.include_router(api_router_v1, prefix=settings_obj.API_V1_STR)

    @app.get("/health")
    def health() -> dict:
        registry = container.registry()
        return {
            "status": "ok",
            "tables": len(registry.table_names()),
            "metrics": len(registry.metric_names()),
        }

    @app.get("/metrics")
    def metrics() -> Response:
        return metrics_response()

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "metricbridge.apps.api.metricbridge_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.UVICORN_RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
        factory=False,
    )
