from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from src.api.schemas.shared.base import AppBaseModel, MoneyInput
from src.core.utils.enums import SessionStatus


# --- Entrada (o que o frontend envia) ---

class OpenRegisterRequest(AppBaseModel):
    # Negativo é recusado pelo caixa com INVALID_AMOUNT
    opening_balance: MoneyInput
    notes: Optional[str] = Field(None, max_length=500)


class CloseRegisterRequest(AppBaseModel):
    closing_balance: MoneyInput  # Valor contado fisicamente
    notes: Optional[str] = Field(None, max_length=500)


# --- Saída (o que o backend retorna) ---

class RegisterSessionOut(AppBaseModel):
    id: int
    till_id: int
    status: SessionStatus

    opening_balance: Decimal
    closing_balance: Optional[Decimal] = None
    expected_balance: Optional[Decimal] = None
    discrepancy: Optional[Decimal] = None

    # Calculados a partir do livro-caixa
    running_balance: Decimal
    total_in: Decimal
    total_out: Decimal

    opened_at: datetime
    closed_at: Optional[datetime] = None
    opened_by: str
    closed_by: Optional[str] = None
    notes: Optional[str] = None
    closing_notes: Optional[str] = None

    @classmethod
    def from_summary(cls, summary) -> "RegisterSessionOut":
        """Monta o snapshot a partir de um SessionSummary do serviço"""
        session = summary.session
        return cls(
            id=session.id,
            till_id=session.till_id,
            status=session.status,
            opening_balance=session.opening_balance,
            closing_balance=session.closing_balance,
            expected_balance=session.expected_balance,
            discrepancy=session.discrepancy,
            running_balance=summary.running_balance,
            total_in=summary.total_in,
            total_out=summary.total_out,
            opened_at=session.opened_at,
            closed_at=session.closed_at,
            opened_by=session.opened_by,
            closed_by=session.closed_by,
            notes=session.notes,
            closing_notes=session.closing_notes,
        )


class CloseRegisterOut(AppBaseModel):
    session: RegisterSessionOut
    expected_balance: Decimal
    discrepancy: Decimal
    is_balanced: bool
