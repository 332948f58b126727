# src/api/admin/services/cash_ledger.py
"""
Livro-caixa (movement ledger)
=============================

Sequência ordenada e somente-inserção das movimentações de uma sessão.

- Cada lançamento recebe a próxima posição (``sequence``) da sessão e um
  horário estritamente crescente.
- O saldo corrente é sempre a soma de todos os valores da sessão.
- O sinal de cada tipo é fixo e validado aqui, num único lugar.

O ledger não faz commit: quem chama (o caixa) decide a transação.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.core.exceptions import InvalidAmount, NonMonotonicTimestamp
from src.core.models import CashMovement, RegisterSession
from src.core.utils.enums import MovementType, SYSTEM_MOVEMENT_TYPES
from src.core.utils.money import MAX_AMOUNT, MAX_BALANCE, ZERO, has_sub_cents, to_money
from src.core.utils.time_utils import as_utc, now_utc

logger = logging.getLogger(__name__)

CLOCK_STEP = timedelta(microseconds=1)


def parse_amount(amount) -> Decimal:
    """
    Converte a entrada em Decimal ou levanta InvalidAmount.

    Não arredonda: mais de 2 casas decimais é erro, assim como valores
    acima de MAX_AMOUNT.
    """
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation:
        raise InvalidAmount(amount, "não é um valor numérico válido")

    if not value.is_finite():
        raise InvalidAmount(amount, "não é um valor numérico válido")

    if abs(value) > MAX_AMOUNT:
        raise InvalidAmount(amount, f"o valor excede o limite de {MAX_AMOUNT}")

    if has_sub_cents(value):
        raise InvalidAmount(amount, "use no máximo 2 casas decimais")

    return to_money(value)


def signed_amount(movement_type: MovementType, amount) -> Decimal:
    """
    Aplica o sinal do tipo ao valor digitado pelo operador.

    Tipos de sinal fixo recebem a magnitude (> 0): uma sangria de 20.00 vira
    -20.00. Ajuste recebe o valor já com sinal e não pode ser zero.
    """
    value = parse_amount(amount)

    if value == ZERO:
        raise InvalidAmount(amount, "o valor não pode ser zero")

    sign = movement_type.sign
    if sign == 0:
        return value

    if value < ZERO:
        raise InvalidAmount(
            amount,
            f"informe um valor positivo; o sinal de '{movement_type.value}' é definido pelo tipo",
        )

    return value * sign


def check_sign(movement_type: MovementType, amount: Decimal):
    """Invariante de sinal do livro-caixa, aplicado a todo lançamento"""
    sign = movement_type.sign

    if movement_type == MovementType.OPENING:
        if amount < ZERO:
            raise InvalidAmount(amount, "o saldo de abertura não pode ser negativo")
        return

    if movement_type == MovementType.CLOSING:
        return

    if amount == ZERO:
        raise InvalidAmount(amount, "o valor não pode ser zero")

    if sign > 0 and amount < ZERO:
        raise InvalidAmount(amount, f"'{movement_type.value}' deve ser positivo")

    if sign < 0 and amount > ZERO:
        raise InvalidAmount(amount, f"'{movement_type.value}' deve ser negativo")


@dataclass
class Page:
    items: list = field(default_factory=list)
    total_items: int = 0
    page: int = 1
    size: int = 20

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_items / self.size) if self.size else 0


class MovementLedger:
    """Livro-caixa das sessões de caixa"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = now_utc):
        self.db = db
        self.clock = clock

    # ========== ESCRITA ==========

    def append(
            self,
            session: RegisterSession,
            movement_type: MovementType,
            amount: Decimal,
            description: str,
            recorded_by: str,
            notes: Optional[str] = None,
            at: Optional[datetime] = None,
    ) -> CashMovement:
        """
        Acrescenta um lançamento à sessão.

        O chamador já deve ter travado a linha da sessão. Toda validação
        acontece antes de qualquer mudança de estado.

        Raises:
            InvalidAmount: sinal incompatível com o tipo ou saldo acima de MAX_BALANCE
            NonMonotonicTimestamp: ``at`` explícito não posterior ao último lançamento
        """
        amount = to_money(amount)
        check_sign(movement_type, amount)

        if movement_type != MovementType.CLOSING:
            balance = self.running_balance(session.id) + amount
            if abs(balance) > MAX_BALANCE:
                raise InvalidAmount(amount, f"o saldo do caixa excederia o limite de {MAX_BALANCE}")

        last_timestamp = self.last_timestamp(session.id)
        timestamp = self._next_timestamp(session.id, last_timestamp, at)

        session.last_sequence = (session.last_sequence or 0) + 1

        movement = CashMovement(
            session_id=session.id,
            sequence=session.last_sequence,
            type=movement_type,
            amount=amount,
            description=description,
            notes=notes,
            created_at=timestamp,
            recorded_by=recorded_by,
        )
        self.db.add(movement)
        self.db.flush()

        logger.debug(
            f"📒 Lançamento #{movement.sequence} na sessão {session.id}: "
            f"{movement_type.value} {amount}"
        )
        return movement

    def _next_timestamp(
            self,
            session_id: int,
            last_timestamp: Optional[datetime],
            at: Optional[datetime],
    ) -> datetime:
        if at is not None:
            at = as_utc(at)
            if last_timestamp is not None and at <= last_timestamp:
                raise NonMonotonicTimestamp(session_id, at, last_timestamp)
            return at

        timestamp = as_utc(self.clock())
        if last_timestamp is not None and timestamp <= last_timestamp:
            # Relógio não avançou (resolução ou ajuste): mantém a ordem estrita
            timestamp = last_timestamp + CLOCK_STEP
        return timestamp

    # ========== LEITURA ==========

    def last_timestamp(self, session_id: int) -> Optional[datetime]:
        return self.db.execute(
            select(CashMovement.created_at)
            .where(CashMovement.session_id == session_id)
            .order_by(CashMovement.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()

    def running_balance(self, session_id: int) -> Decimal:
        """Soma de todos os lançamentos da sessão"""
        return self.sum_amounts(session_id)

    def sum_amounts(
            self,
            session_id: int,
            exclude_types: Iterable[MovementType] = (),
    ) -> Decimal:
        query = select(func.coalesce(func.sum(CashMovement.amount), 0)).where(
            CashMovement.session_id == session_id
        )
        exclude_types = list(exclude_types)
        if exclude_types:
            query = query.where(CashMovement.type.not_in(exclude_types))

        return to_money(self.db.execute(query).scalar())

    def totals(self, session_id: int) -> tuple[Decimal, Decimal]:
        """
        Totais de entradas e saídas operacionais (sem abertura/fechamento).

        Returns:
            (total_in, total_out), ambos positivos
        """
        base = (
            CashMovement.session_id == session_id,
            CashMovement.type.not_in(list(SYSTEM_MOVEMENT_TYPES)),
        )

        total_in = self.db.execute(
            select(func.coalesce(func.sum(CashMovement.amount), 0))
            .where(*base, CashMovement.amount > 0)
        ).scalar()

        total_out = self.db.execute(
            select(func.coalesce(func.sum(CashMovement.amount), 0))
            .where(*base, CashMovement.amount < 0)
        ).scalar()

        return to_money(total_in), abs(to_money(total_out))

    def list_movements(self, session_id: int, page: int = 1, size: int = 20) -> Page:
        """
        Página de lançamentos, do mais recente para o mais antigo.

        Paginação por offset, sem estado: a mesma página pode ser pedida de novo.
        """
        page = max(page, 1)
        size = max(size, 1)

        total_items = self.db.execute(
            select(func.count(CashMovement.id)).where(CashMovement.session_id == session_id)
        ).scalar_one()

        items = self.db.execute(
            select(CashMovement)
            .where(CashMovement.session_id == session_id)
            .order_by(CashMovement.sequence.desc())
            .offset((page - 1) * size)
            .limit(size)
        ).scalars().all()

        return Page(items=list(items), total_items=total_items, page=page, size=size)
