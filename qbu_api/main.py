from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from qbu_api.core.config import settings
from qbu_api.core.errors import install_error_handlers
from qbu_api.db import engine
from qbu_api.db.capabilities import SchemaCapabilities
from qbu_api.models.base import Base
import qbu_api.models  # noqa: F401  (Base.metadata にテーブルを登録)

from qbu_api.routes.admin_config import router as admin_config_router
from qbu_api.routes.admin_orders import router as admin_orders_router
from qbu_api.routes.admin_roles import router as admin_roles_router
from qbu_api.routes.admin_tickets import router as admin_tickets_router
from qbu_api.routes.pricing import router as pricing_router
from qbu_api.routes.print_orders import router as print_orders_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "qbu-api"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ============================================================
    # DB table creation (DEV ONLY)
    # - In production, prefer Alembic migrations.
    # - Guarded so a transient DB outage doesn't prevent app startup.
    # ============================================================
    if settings.RUN_CREATE_ALL:
        try:
            Base.metadata.create_all(bind=engine)
            logger.info("DB tables ensured via create_all (RUN_CREATE_ALL=1).")
        except SQLAlchemyError:
            logger.exception("Base.metadata.create_all failed; continuing startup without it.")

    # print_orders の列を 1 回だけ確認（古いスキーマでも注文を受けられるように）
    app.state.schema_capabilities = SchemaCapabilities.detect(engine)
    yield


# FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

install_error_handlers(app)


# ============================================================
# CORS
# - dev の localhost と、本番の FRONTEND_URL / CORS_EXTRA_ORIGINS
# ============================================================
def cors_origins() -> list[str]:
    origins = {"http://localhost:3000", "http://127.0.0.1:3000"}
    for raw in (settings.FRONTEND_URL or "", settings.CORS_EXTRA_ORIGINS):
        origins.update(o.strip().rstrip("/") for o in raw.split(",") if o.strip())
    return sorted(origins)


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

API_PREFIX = "/api/v1"


def _service_info() -> dict[str, str]:
    return {"service": SERVICE_NAME, "version": settings.APP_VERSION}


# ========================================
# Root / Health（監視用）
# ========================================
@app.api_route("/", methods=["GET", "HEAD"], status_code=status.HTTP_200_OK)
def root():
    return {"status": "ok", **_service_info()}


@app.api_route("/health", methods=["GET", "HEAD"], status_code=status.HTTP_200_OK)
def health_check():
    """DB に SELECT 1 が通るかだけ見る（落ちていても 200 で返す）"""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("health check: database unreachable", exc_info=True)
        return {"status": "error", "database": "disconnected", **_service_info()}

    return {"status": "ok", "database": "connected", **_service_info()}


# Routers
for r in (
    print_orders_router,
    pricing_router,
    admin_config_router,
    admin_tickets_router,
    admin_orders_router,
    admin_roles_router,
):
    app.include_router(r, prefix=API_PREFIX)
