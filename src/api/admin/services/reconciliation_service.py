# src/api/admin/services/reconciliation_service.py
"""
Conciliação de fechamento
=========================

Compara o saldo esperado pelo livro-caixa com o valor contado pelo
operador. A diferença é registrada, nunca impede o fechamento.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from src.api.admin.services.cash_ledger import MovementLedger
from src.core.models import RegisterSession
from src.core.utils.enums import SYSTEM_MOVEMENT_TYPES
from src.core.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reconciliation:
    opening_balance: Decimal
    expected_balance: Decimal
    closing_balance: Decimal
    discrepancy: Decimal

    @property
    def is_balanced(self) -> bool:
        return self.discrepancy == ZERO


class ReconciliationService:

    def __init__(self, ledger: MovementLedger):
        self.ledger = ledger

    def expected_balance(self, session: RegisterSession) -> Decimal:
        """Saldo de abertura + todos os lançamentos operacionais"""
        operational = self.ledger.sum_amounts(session.id, exclude_types=SYSTEM_MOVEMENT_TYPES)
        return to_money(session.opening_balance) + operational

    @staticmethod
    def discrepancy(closing_balance: Decimal, expected_balance: Decimal) -> Decimal:
        """Positivo = sobra no caixa, negativo = falta"""
        return to_money(closing_balance) - to_money(expected_balance)

    def reconcile(self, session: RegisterSession, closing_balance: Decimal) -> Reconciliation:
        expected = self.expected_balance(session)
        result = Reconciliation(
            opening_balance=to_money(session.opening_balance),
            expected_balance=expected,
            closing_balance=to_money(closing_balance),
            discrepancy=self.discrepancy(closing_balance, expected),
        )

        if not result.is_balanced:
            kind = "sobra" if result.discrepancy > ZERO else "falta"
            logger.warning(
                f"⚠️ Diferença de caixa na sessão {session.id} (terminal {session.till_id}): "
                f"{kind} de {abs(result.discrepancy)} "
                f"(esperado {result.expected_balance}, contado {result.closing_balance})"
            )

        return result
