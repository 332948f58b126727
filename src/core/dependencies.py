# src/core/dependencies.py

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Query

from src.api.admin.services.cash_register_service import CashRegisterService
from src.core.config import config
from src.core.database import GetDBDep
from src.core.models import OPERATOR_ID_LENGTH


def get_cash_register_service(db: GetDBDep) -> CashRegisterService:
    return CashRegisterService(db)


def get_operator_id(
        operator_id: Annotated[str | None, Header(alias="X-Operator-Id")] = None
) -> str:
    """
    Identidade do operador, repassada pelo serviço de autenticação.

    A autenticação em si acontece fora desta API; aqui só exigimos que o
    cabeçalho esteja presente nos comandos.
    """
    if not operator_id or not operator_id.strip():
        raise HTTPException(
            status_code=401,
            detail="Operador não identificado (cabeçalho X-Operator-Id ausente)."
        )
    operator_id = operator_id.strip()
    if len(operator_id) > OPERATOR_ID_LENGTH:
        raise HTTPException(
            status_code=422,
            detail=f"Identificador do operador excede {OPERATOR_ID_LENGTH} caracteres."
        )
    return operator_id


@dataclass
class PageParams:
    page: int
    size: int


def get_page_params(
        page: Annotated[int, Query(ge=1)] = 1,
        size: Annotated[int, Query(ge=1)] = config.DEFAULT_PAGE_SIZE,
) -> PageParams:
    # Tamanho acima do limite é reduzido, não recusado
    return PageParams(page=page, size=min(size, config.MAX_PAGE_SIZE))


# ✅ Type annotations para usar com Depends()
GetCashRegisterServiceDep = Annotated[CashRegisterService, Depends(get_cash_register_service)]
GetOperatorDep = Annotated[str, Depends(get_operator_id)]
GetPageParamsDep = Annotated[PageParams, Depends(get_page_params)]
