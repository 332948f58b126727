"""
Fixtures compartilhadas
=======================
Banco SQLite em memória (StaticPool) recriado a cada teste.
"""

import os

# Precisa estar definido antes de importar src.core.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from src.api.admin.services.cash_register_service import CashRegisterService
from src.core import models
from src.core.database import SessionLocal, db_circuit_breaker, engine
from src.core.utils.locks import TillLockRegistry

OPERATOR = "op-ana"
TILL_ID = 1


class FakeClock:
    """Relógio controlado pelos testes"""

    def __init__(self, start: datetime = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


# ═══════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def reset_circuit_breaker():
    db_circuit_breaker.reset()
    yield
    db_circuit_breaker.reset()


@pytest.fixture
def db():
    """Sessão sobre um banco recém-criado"""
    models.Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()
    models.Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(db, clock):
    return CashRegisterService(db, clock=clock, locks=TillLockRegistry())


@pytest.fixture
def open_session(service):
    """Caixa aberto com R$ 100,00"""
    return service.open_register(TILL_ID, Decimal("100.00"), OPERATOR, notes="Turno da manhã")


@pytest.fixture
def client():
    """TestClient com o ciclo de vida da aplicação (create_all no startup)"""
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client

    models.Base.metadata.drop_all(bind=engine)
