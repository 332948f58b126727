# src/main.py
"""
Aplicação Principal - Caixa API
===============================
Abertura, movimentação e fechamento de caixa por terminal.
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from src.api.admin import router as admin_router
from src.core import models
from src.core.config import config
from src.core.database import engine, check_database_health
from src.core.exceptions import (
    CashRegisterError,
    ImmutableRecord,
    InvalidAmount,
    InvalidMovementType,
    NoOpenSession,
    NonMonotonicTimestamp,
    SessionAlreadyOpen,
    SessionNotFound,
    SessionNotOpen,
    StorageUnavailable,
)
from src.core.middleware.correlation import CorrelationIdMiddleware

logging.basicConfig(
    level=config.LOG_LEVEL.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"

# Erro de domínio → status HTTP
ERROR_STATUS = {
    InvalidAmount: 422,
    SessionAlreadyOpen: 409,
    SessionNotOpen: 409,
    InvalidMovementType: 422,
    NonMonotonicTimestamp: 409,
    SessionNotFound: 404,
    NoOpenSession: 404,
    StorageUnavailable: 503,
    ImmutableRecord: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gerencia ciclo de vida da aplicação"""

    logger.info("=" * 60)
    logger.info("🚀 INICIANDO CAIXA API")
    logger.info("=" * 60)

    # STARTUP
    logger.info("📊 Criando tabelas do banco de dados...")
    models.Base.metadata.create_all(bind=engine)

    logger.info(f"🌍 Ambiente: {config.ENVIRONMENT}")
    logger.info(f"🔐 Debug Mode: {config.DEBUG}")
    logger.info("✅ APLICAÇÃO PRONTA!")
    logger.info("=" * 60)

    yield

    # SHUTDOWN
    logger.info("=" * 60)
    logger.info("🛑 DESLIGANDO APLICAÇÃO")
    logger.info("✅ APLICAÇÃO DESLIGADA COM SUCESSO")
    logger.info("=" * 60)


# ✅ CRIA APLICAÇÃO
app = FastAPI(
    title="Caixa API",
    description="Livro-caixa por terminal: abertura, movimentações, fechamento e conciliação",
    version=APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(CorrelationIdMiddleware)

# ═══════════════════════════════════════════════════════════
# CORS
# ═══════════════════════════════════════════════════════════

if config.is_development:
    logger.info("🟢 MODO DESENVOLVIMENTO: CORS permissivo")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    logger.info("🔴 CORS restrito às origens configuradas")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-Operator-Id", "x-correlation-id"],
        expose_headers=["x-correlation-id"],
        max_age=3600,
    )


# ═══════════════════════════════════════════════════════════
# TRATAMENTO DE ERROS
# ═══════════════════════════════════════════════════════════

@app.exception_handler(CashRegisterError)
async def cash_register_error_handler(request: Request, exc: CashRegisterError):
    """Converte erros de domínio em {"error", "message", "details"}"""
    status_code = ERROR_STATUS.get(type(exc), 400)

    correlation_id = getattr(request.state, "correlation_id", "unknown")
    if status_code >= 500:
        logger.error(f"❌ [{correlation_id}] {exc.code}: {exc.message}")
    else:
        logger.warning(f"⚠️ [{correlation_id}] {exc.code}: {exc.message}")

    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Erros HTTP da própria API (401, 404 de rota, ...) no mesmo formato
HTTP_ERROR_CODES = {
    401: "UNAUTHORIZED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "UNPROCESSABLE_ENTITY",
}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    logger.warning(f"⚠️ [{correlation_id}] HTTP {exc.status_code}: {exc.detail} ({request.url.path})")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
            "message": exc.detail,
            "details": {"path": request.url.path},
        },
        headers=getattr(exc, "headers", None),
    )


# ═══════════════════════════════════════════════════════════
# ROTAS
# ═══════════════════════════════════════════════════════════

app.include_router(admin_router)


@app.get("/")
async def root():
    """Endpoint raiz"""
    return {
        "name": "Caixa API",
        "version": APP_VERSION,
        "status": "operational",
        "environment": config.ENVIRONMENT
    }


@app.get("/health", tags=["Health"])
def health_check():
    """Health check com conectividade do banco"""
    database = check_database_health()
    content = {
        "status": "healthy" if database["healthy"] else "degraded",
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": database["checks"],
    }
    return JSONResponse(status_code=200 if database["healthy"] else 503, content=content)


__all__ = ["app"]
