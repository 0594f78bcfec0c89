from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from app.api.v1.router import api_router
from app.core.config import settings
from app.core.container import build_services
from app.core.logging import configure_logging

logger = logging.getLogger(__name__)

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = build_services(settings)
    await services.prepare()
    app.state.services = services
    logger.info("Media API ready prefix=%s env=%s", settings.api_prefix, settings.app_env)
    try:
        yield
    finally:
        await services.close()


app = FastAPI(
    title=settings.app_name,
    default_response_class=ORJSONResponse,
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def invalid_body(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    logger.debug("Rejected request body path=%s errors=%s", request.url.path, exc.errors())
    return ORJSONResponse(status_code=400, content={"detail": "Invalid request body"})


app.include_router(api_router, prefix=settings.api_prefix)

Instrumentator().instrument(app).expose(app)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
