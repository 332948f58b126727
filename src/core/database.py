"""
Database Layer
==============

Características:
- ✅ Connection pooling por ambiente
- ✅ Circuit breaker pattern
- ✅ Falhas de infraestrutura traduzidas em StorageUnavailable
- ✅ Rollback em erro

Nenhuma operação é retentada automaticamente: a falha sobe para o chamador.
"""

import logging
import time
from contextlib import contextmanager
from functools import wraps
from typing import Annotated

from fastapi import Depends
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, NullPool, StaticPool

from src.core.config import config
from src.core.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════
# CONFIGURAÇÕES
# ═══════════════════════════════════════════════════════════

class DatabaseConfig:
    """Configurações centralizadas do banco de dados"""

    # Pool de Conexões - Produção
    PRODUCTION_POOL_SIZE = 20
    PRODUCTION_MAX_OVERFLOW = 20
    PRODUCTION_POOL_TIMEOUT = 10  # Timeout de 10s
    PRODUCTION_POOL_RECYCLE = 1800  # Recicla a cada 30min

    # Pool de Conexões - Desenvolvimento
    DEV_POOL_SIZE = 5
    DEV_MAX_OVERFLOW = 10
    DEV_POOL_TIMEOUT = 30
    DEV_POOL_RECYCLE = 3600

    # Circuit Breaker
    CIRCUIT_BREAKER_THRESHOLD = 5  # Falhas consecutivas para abrir
    CIRCUIT_BREAKER_TIMEOUT = 30  # Segundos em estado aberto
    CIRCUIT_BREAKER_HALF_OPEN_CALLS = 3  # Sucessos em half-open para fechar


# Erros de conectividade; IntegrityError e afins NÃO entram aqui
STORAGE_ERRORS = (OperationalError, DisconnectionError, InterfaceError, PoolTimeoutError)


# ═══════════════════════════════════════════════════════════
# CIRCUIT BREAKER PATTERN
# ═══════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Implementação do padrão Circuit Breaker para proteção do banco

    Estados:
    - CLOSED: Funcionando normalmente
    - OPEN: Muitas falhas, bloqueando chamadas
    - HALF_OPEN: Testando recuperação
    """

    def __init__(self, threshold: int, timeout: int):
        self.threshold = threshold
        self.timeout = timeout
        self.failures = 0
        self.last_failure_time = None
        self.state = "CLOSED"
        self.half_open_calls = 0

    def before_call(self):
        """Falha imediatamente enquanto o circuito estiver aberto"""
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.timeout:
                self.state = "HALF_OPEN"
                self.half_open_calls = 0
                logger.info("🟡 Circuit Breaker: HALF_OPEN - Testando recuperação")
            else:
                raise StorageUnavailable()

    def on_success(self):
        """Chamada bem-sucedida"""
        if self.state == "HALF_OPEN":
            self.half_open_calls += 1
            if self.half_open_calls >= DatabaseConfig.CIRCUIT_BREAKER_HALF_OPEN_CALLS:
                self.state = "CLOSED"
                self.failures = 0
                logger.info("✅ Circuit Breaker: CLOSED - Sistema recuperado")
        else:
            self.failures = 0

    def on_failure(self):
        """Chamada falhou"""
        self.failures += 1
        self.last_failure_time = time.time()

        if self.state == "HALF_OPEN" or self.failures >= self.threshold:
            self.state = "OPEN"
            logger.error(
                f"🔴 Circuit Breaker: OPEN - {self.failures} falhas consecutivas. "
                f"Bloqueando chamadas por {self.timeout}s"
            )

    def reset(self):
        self.failures = 0
        self.last_failure_time = None
        self.state = "CLOSED"
        self.half_open_calls = 0


# Instância global do circuit breaker
db_circuit_breaker = CircuitBreaker(
    threshold=DatabaseConfig.CIRCUIT_BREAKER_THRESHOLD,
    timeout=DatabaseConfig.CIRCUIT_BREAKER_TIMEOUT
)


def storage_guard(func):
    """
    Decorator para métodos de serviço que tocam o banco.

    Traduz falhas de conectividade em StorageUnavailable (com rollback da
    sessão) e alimenta o circuit breaker. Não retenta.
    """

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        db_circuit_breaker.before_call()
        try:
            result = func(self, *args, **kwargs)
        except STORAGE_ERRORS as e:
            db_circuit_breaker.on_failure()
            logger.error(f"❌ Banco indisponível em {func.__name__}: {e}", exc_info=True)
            try:
                self.db.rollback()
            except STORAGE_ERRORS:
                logger.warning("⚠️ Rollback falhou: conexão já perdida")
            raise StorageUnavailable() from e
        db_circuit_breaker.on_success()
        return result

    return wrapper


# ═══════════════════════════════════════════════════════════
# ENGINE CONFIGURATION
# ═══════════════════════════════════════════════════════════

def get_engine_config(database_url: str = config.DATABASE_URL) -> dict:
    """
    Retorna configuração do engine baseada no ambiente

    Returns:
        dict: Configuração do SQLAlchemy engine
    """

    if database_url.startswith("sqlite"):
        engine_options = {
            "connect_args": {"check_same_thread": False},
            "echo": config.DEBUG,
        }
        # Banco em memória precisa de uma única conexão compartilhada
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine_options["poolclass"] = StaticPool
        return engine_options

    if config.is_production:
        return {
            "poolclass": QueuePool,
            "pool_size": DatabaseConfig.PRODUCTION_POOL_SIZE,
            "max_overflow": DatabaseConfig.PRODUCTION_MAX_OVERFLOW,
            "pool_timeout": DatabaseConfig.PRODUCTION_POOL_TIMEOUT,
            "pool_recycle": DatabaseConfig.PRODUCTION_POOL_RECYCLE,
            "pool_pre_ping": True,
            "echo": False,
            "connect_args": {
                "connect_timeout": 10,
                "options": "-c statement_timeout=30000",  # 30s query timeout
                "application_name": "cash_register_api",
            },
            "execution_options": {
                "isolation_level": "READ COMMITTED"
            }
        }
    elif config.is_test:
        return {
            "poolclass": NullPool,
            "echo": False,
        }
    else:
        return {
            "poolclass": QueuePool,
            "pool_size": DatabaseConfig.DEV_POOL_SIZE,
            "max_overflow": DatabaseConfig.DEV_MAX_OVERFLOW,
            "pool_timeout": DatabaseConfig.DEV_POOL_TIMEOUT,
            "pool_recycle": DatabaseConfig.DEV_POOL_RECYCLE,
            "pool_pre_ping": True,
            "echo": config.DEBUG,
        }


def build_engine(database_url: str = config.DATABASE_URL) -> Engine:
    """Cria o engine já com os listeners de conexão"""
    new_engine = create_engine(database_url, **get_engine_config(database_url))

    if database_url.startswith("sqlite"):
        event.listen(new_engine, "connect", _enable_sqlite_foreign_keys)

    return new_engine


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """SQLite só valida FKs com o pragma ligado em cada conexão"""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


engine = build_engine()


# ═══════════════════════════════════════════════════════════
# SESSION MAKER
# ═══════════════════════════════════════════════════════════

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False
)


# ═══════════════════════════════════════════════════════════
# DATABASE DEPENDENCIES
# ═══════════════════════════════════════════════════════════

def get_db():
    """
    Dependency para obter uma sessão do banco

    Features:
    - ✅ Rollback em erro
    - ✅ Logging de exceções
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"❌ Erro na sessão: {e}", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


get_db_manager = contextmanager(get_db)

GetDBDep = Annotated[Session, Depends(get_db)]


# ═══════════════════════════════════════════════════════════
# HEALTH CHECK
# ═══════════════════════════════════════════════════════════

def check_database_health() -> dict:
    """
    Verifica saúde do banco de dados

    Returns:
        dict: Status de saúde detalhado
    """
    health_status = {
        "healthy": True,
        "timestamp": time.time(),
        "checks": {}
    }

    started = time.perf_counter()
    try:
        with get_db_manager() as db:
            db.execute(text("SELECT 1")).scalar()
        health_status["checks"]["connection"] = {
            "status": "healthy",
            "latency_ms": round((time.perf_counter() - started) * 1000, 2)
        }
    except STORAGE_ERRORS as e:
        health_status["healthy"] = False
        health_status["checks"]["connection"] = {
            "status": "unhealthy",
            "error": str(e)
        }

    health_status["checks"]["circuit_breaker"] = {
        "state": db_circuit_breaker.state,
        "failures": db_circuit_breaker.failures
    }

    if db_circuit_breaker.state == "OPEN":
        health_status["healthy"] = False

    return health_status
