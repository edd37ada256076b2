from __future__ import annotations

import uuid
from time import monotonic

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from taskboard.config import Settings
from taskboard.db import Database
from taskboard.errors import BoardError
from taskboard.logging import get_logger, set_correlation_id, setup_logging
from taskboard.metrics import runtime_metrics
from taskboard.routers.board import router as board_router
from taskboard.routers.columns import router as columns_router
from taskboard.routers.projects import router as projects_router
from taskboard.routers.system import router as system_router
from taskboard.routers.tasks import router as tasks_router

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

_PLACEHOLDER_SECRETS = {"dev-secret-change-me", "replace_with_strong_random_secret"}


def _is_test_db(settings: Settings) -> bool:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  return "test" in db_name or settings.database_url.startswith("sqlite")


def create_app(settings: Settings | None = None, database: Database | None = None) -> FastAPI:
  settings = settings or Settings()
  setup_logging(settings)
  db = database or Database.from_settings(settings)

  app = FastAPI(
    title="Taskboard API",
    version="0.1.0",
    docs_url="/docs" if settings.api_docs_enabled else None,
    redoc_url="/redoc" if settings.api_docs_enabled else None,
    openapi_url="/openapi.json" if settings.api_docs_enabled else None,
  )
  app.state.settings = settings
  app.state.db = db

  @app.exception_handler(BoardError)
  async def _board_error_handler(_, exc: BoardError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.as_detail()})

  app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list(),
    allow_origin_regex=settings.cors_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
  )
  app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_host_list())

  app.include_router(projects_router)
  app.include_router(columns_router)
  app.include_router(tasks_router)
  app.include_router(board_router)
  app.include_router(system_router)

  @app.middleware("http")
  async def _request_metrics_middleware(request: Request, call_next):
    correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
    set_correlation_id(correlation_id)
    structlog.contextvars.clear_contextvars()
    start = monotonic()
    response = await call_next(request)
    elapsed_ms = (monotonic() - start) * 1000.0
    runtime_metrics.observe_request(response.status_code, elapsed_ms)
    if response.status_code >= 500:
      logger.error("request_failed", method=request.method, path=request.url.path, status=response.status_code)
    response.headers[CORRELATION_HEADER] = correlation_id
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    return response

  @app.get("/health")
  async def health() -> dict:
    return {"ok": True}

  @app.get("/version")
  async def version() -> dict:
    return {"version": settings.app_version, "buildSha": settings.build_sha}

  @app.on_event("startup")
  async def _startup() -> None:
    if _is_test_db(settings):
      return
    if not settings.app_secret or settings.app_secret.strip().lower() in _PLACEHOLDER_SECRETS:
      raise RuntimeError("APP_SECRET is required and must not be a placeholder")
    logger.info("api_started", version=settings.app_version, build_sha=settings.build_sha)

  @app.on_event("shutdown")
  async def _shutdown() -> None:
    await db.dispose()

  return app
