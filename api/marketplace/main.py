from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from marketplace.api.router import api_router
from marketplace.core.config import get_settings
from marketplace.core.telemetry import configure_api_logging, setup_api_telemetry, shutdown_api_telemetry
from marketplace.services.repository import PostgresDocumentStore, get_repository

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    repository = get_repository()
    if settings.database_auto_migrate and isinstance(repository, PostgresDocumentStore):
        await repository.ensure_schema()
        logger.info("document store schema ensured")
    try:
        yield
    finally:
        shutdown_api_telemetry(app, tracer_provider)
        await get_repository().close()
        get_repository.cache_clear()


configure_api_logging(settings)
app = FastAPI(title=settings.app_name, lifespan=lifespan)
tracer_provider = setup_api_telemetry(app, settings)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("marketplace.main:app", host="0.0.0.0", port=8000)
