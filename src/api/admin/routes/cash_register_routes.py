import logging

from fastapi import APIRouter, status

from src.api.admin.schemas.cash_movement import CashMovementCreate, CashMovementOut, CashMovementRecordedOut
from src.api.admin.schemas.cash_register import (
    CloseRegisterOut,
    CloseRegisterRequest,
    OpenRegisterRequest,
    RegisterSessionOut,
)
from src.api.admin.services.cash_register_service import CashRegisterService
from src.api.schemas.shared.pagination import PaginatedResponse
from src.core.dependencies import GetCashRegisterServiceDep, GetOperatorDep, GetPageParamsDep
from src.core.exceptions import NoOpenSession, SessionNotFound

logger = logging.getLogger(__name__)

# Cria o roteador para as rotas de caixa
router = APIRouter(prefix="/tills/{till_id}/cash-register", tags=["Caixa"])


def _snapshot(service: CashRegisterService, session) -> RegisterSessionOut:
    return RegisterSessionOut.from_summary(service.summarize(session))


def _ensure_same_till(service: CashRegisterService, till_id: int, session_id: int):
    """Sessão de outro terminal responde 404"""
    try:
        session = service.get_session(session_id)
    except SessionNotFound:
        # Sessão inexistente: o próprio comando responde SESSION_NOT_OPEN
        return
    if session.till_id != till_id:
        raise SessionNotFound(session_id)


# 🔄 Buscar caixa aberto
@router.get("/current", response_model=RegisterSessionOut, summary="Obtém a sessão aberta do terminal")
def get_current_session(till_id: int, service: GetCashRegisterServiceDep):
    """
    Retorna a sessão atualmente aberta para o terminal, com saldo corrente
    e totais de entradas e saídas. 404 se o caixa estiver fechado.
    """
    session = service.get_current_session(till_id)
    if not session:
        raise NoOpenSession(till_id)
    return _snapshot(service, session)


# 📦 Abrir o caixa
@router.post(
    "/open",
    response_model=RegisterSessionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Abre o caixa do terminal",
)
def open_register(
        till_id: int,
        data: OpenRegisterRequest,
        service: GetCashRegisterServiceDep,
        operator_id: GetOperatorDep,
):
    session = service.open_register(
        till_id=till_id,
        opening_balance=data.opening_balance,
        operator_id=operator_id,
        notes=data.notes,
    )
    return _snapshot(service, session)


# 💰 Lançar movimentação
@router.post(
    "/{session_id}/movements",
    response_model=CashMovementRecordedOut,
    status_code=status.HTTP_201_CREATED,
    summary="Registra uma movimentação na sessão aberta",
)
def add_movement(
        till_id: int,
        session_id: int,
        data: CashMovementCreate,
        service: GetCashRegisterServiceDep,
        operator_id: GetOperatorDep,
):
    """
    Para venda, suprimento, sangria, despesa e estorno informe o valor
    positivo: o sinal é aplicado pelo tipo. Ajuste aceita valor com sinal.
    """
    _ensure_same_till(service, till_id, session_id)

    result = service.add_movement(
        session_id=session_id,
        movement_type=data.type,
        amount=data.amount,
        description=data.description,
        operator_id=operator_id,
        notes=data.notes,
    )
    return CashMovementRecordedOut(
        movement=CashMovementOut.model_validate(result.movement),
        running_balance=result.running_balance,
        session=_snapshot(service, result.session),
    )


# 🧾 Fechar o caixa
@router.post("/{session_id}/close", response_model=CloseRegisterOut, summary="Fecha o caixa com o valor contado")
def close_register(
        till_id: int,
        session_id: int,
        data: CloseRegisterRequest,
        service: GetCashRegisterServiceDep,
        operator_id: GetOperatorDep,
):
    _ensure_same_till(service, till_id, session_id)

    result = service.close_register(
        session_id=session_id,
        closing_balance=data.closing_balance,
        operator_id=operator_id,
        notes=data.notes,
    )
    return CloseRegisterOut(
        session=_snapshot(service, result.session),
        expected_balance=result.expected_balance,
        discrepancy=result.discrepancy,
        is_balanced=result.reconciliation.is_balanced,
    )


# 📜 Movimentações da sessão
@router.get(
    "/{session_id}/movements",
    response_model=PaginatedResponse[CashMovementOut],
    summary="Lista as movimentações da sessão, mais recentes primeiro",
)
def list_movements(
        till_id: int,
        session_id: int,
        service: GetCashRegisterServiceDep,
        pagination: GetPageParamsDep,
):
    result = service.list_movements(session_id, page=pagination.page, size=pagination.size, till_id=till_id)
    return PaginatedResponse[CashMovementOut](
        items=[CashMovementOut.model_validate(m) for m in result.items],
        total_items=result.total_items,
        total_pages=result.total_pages,
        page=result.page,
        size=result.size,
    )


# 🔍 Sessão (qualquer status)
@router.get("/{session_id}", response_model=RegisterSessionOut, summary="Obtém uma sessão de caixa")
def get_session(till_id: int, session_id: int, service: GetCashRegisterServiceDep):
    session = service.get_session(session_id, till_id=till_id)
    return _snapshot(service, session)


# 🗂️ Histórico de sessões
@router.get(
    "",
    response_model=PaginatedResponse[RegisterSessionOut],
    summary="Histórico de sessões do terminal, mais recentes primeiro",
)
def list_sessions(till_id: int, service: GetCashRegisterServiceDep, pagination: GetPageParamsDep):
    result = service.list_sessions(till_id, page=pagination.page, size=pagination.size)
    return PaginatedResponse[RegisterSessionOut](
        items=[_snapshot(service, s) for s in result.items],
        total_items=result.total_items,
        total_pages=result.total_pages,
        page=result.page,
        size=result.size,
    )
