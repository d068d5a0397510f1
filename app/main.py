from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routers.admin_orders import router as admin_orders_router
from app.api.routers.orders import router as orders_router
from app.api.routers.orders import shop_router as shop_orders_router
from app.api.routers.payments import router as payments_router
from app.api.routers.pricing import router as pricing_router
from app.core.config import get_settings
from app.core.logging import setup_logging
from app.core.trace import TRACE_HEADER, TraceMiddleware
from app.db.base import create_schema, init_models
from app.db.session import async_engine, close_engines
from app.http_problem_handlers import register_exception_handlers

logger = logging.getLogger("campus")

settings = get_settings()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    setup_logging(settings.LOG_LEVEL, sql_echo=settings.SQL_ECHO)
    init_models()
    if settings.AUTO_CREATE_SCHEMA:
        await create_schema(async_engine)
        logger.info("schema ensured (create_all)")
    logger.info("campus-escrow started env=%s", settings.ENV)
    yield
    await close_engines()


app = FastAPI(
    title="Campus Escrow",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(TraceMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[TRACE_HEADER],
)

register_exception_handlers(app)

# ===========================
#        订单生命周期
# ===========================
app.include_router(orders_router)
app.include_router(shop_orders_router)
app.include_router(payments_router)

# ===========================
#        运费报价
# ===========================
app.include_router(pricing_router)

# ===========================
#        管理员
# ===========================
app.include_router(admin_orders_router)


@app.get("/health")
async def health():
    return {"status": "ok", "env": settings.ENV}
