# src/api/admin/schemas/cash_movement.py

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from src.api.admin.schemas.cash_register import RegisterSessionOut
from src.api.schemas.shared.base import AppBaseModel, MoneyInput
from src.core.utils.enums import MovementType


# Schema para a criação de movimento (o que o frontend envia)
class CashMovementCreate(AppBaseModel):
    type: MovementType
    # Magnitude positiva para tipos de sinal fixo; ajuste aceita sinal
    amount: MoneyInput
    description: str = Field(..., min_length=3, max_length=255)
    notes: Optional[str] = Field(None, max_length=500)


# Schema para o retorno de movimento
class CashMovementOut(AppBaseModel):
    id: int
    session_id: int
    sequence: int
    type: MovementType
    amount: Decimal  # Já com o sinal do tipo
    description: str
    notes: Optional[str] = None
    created_at: datetime
    recorded_by: str


class CashMovementRecordedOut(AppBaseModel):
    movement: CashMovementOut
    running_balance: Decimal
    session: RegisterSessionOut
