# src/api/admin/services/cash_register_service.py
"""
Caixa (register session state machine)
======================================

Ciclo de vida de um terminal: FECHADO → ABERTO → FECHADO.

- Abertura cria a sessão e o lançamento de abertura
- Movimentações só entram em sessão aberta
- Fechamento concilia e grava o lançamento de fechamento

Cada comando roda numa única transação: valida contra o estado atual,
acrescenta ao livro-caixa e faz commit. Nada é retentado.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.api.admin.services.cash_ledger import MovementLedger, Page, parse_amount, signed_amount
from src.api.admin.services.reconciliation_service import Reconciliation, ReconciliationService
from src.core.database import storage_guard
from src.core.exceptions import (
    InvalidAmount,
    InvalidMovementType,
    SessionAlreadyOpen,
    SessionNotFound,
    SessionNotOpen,
)
from src.core.models import CashMovement, RegisterSession
from src.core.utils.enums import MovementType, SessionStatus
from src.core.utils.locks import TillLockRegistry, till_locks
from src.core.utils.money import ZERO
from src.core.utils.time_utils import as_utc, now_utc

logger = logging.getLogger(__name__)

OPENING_DESCRIPTION = "Abertura de caixa"
CLOSING_DESCRIPTION = "Fechamento de caixa"


@dataclass
class MovementResult:
    movement: CashMovement
    session: RegisterSession
    running_balance: Decimal


@dataclass
class CloseResult:
    session: RegisterSession
    expected_balance: Decimal
    discrepancy: Decimal
    reconciliation: Reconciliation


@dataclass
class SessionSummary:
    session: RegisterSession
    running_balance: Decimal
    total_in: Decimal
    total_out: Decimal


class CashRegisterService:
    """Service para abertura, movimentação e fechamento de caixa"""

    def __init__(
            self,
            db: Session,
            clock: Callable[[], datetime] = now_utc,
            locks: TillLockRegistry = till_locks,
    ):
        self.db = db
        self.clock = clock
        self.locks = locks
        self.ledger = MovementLedger(db, clock=clock)
        self.reconciliation = ReconciliationService(self.ledger)

    # ========== ABERTURA ==========

    @storage_guard
    def open_register(
            self,
            till_id: int,
            opening_balance,
            operator_id: str,
            notes: Optional[str] = None,
    ) -> RegisterSession:
        """
        Abre o caixa do terminal.

        Raises:
            InvalidAmount: saldo de abertura negativo ou inválido
            SessionAlreadyOpen: o terminal já tem uma sessão aberta
        """
        amount = parse_amount(opening_balance)
        if amount < ZERO:
            raise InvalidAmount(opening_balance, "o saldo de abertura não pode ser negativo")

        with self.locks.hold(till_id):
            existing = self._find_open_session(till_id)
            if existing:
                logger.warning(
                    f"⚠️ Abertura recusada: terminal {till_id} já tem a sessão {existing.id} aberta"
                )
                raise SessionAlreadyOpen(till_id, existing.id)

            opened_at = as_utc(self.clock())
            session = RegisterSession(
                till_id=till_id,
                status=SessionStatus.OPEN,
                opening_balance=amount,
                opened_at=opened_at,
                opened_by=operator_id,
                notes=notes,
                last_sequence=0,
            )

            try:
                self.db.add(session)
                self.db.flush()

                self.ledger.append(
                    session,
                    MovementType.OPENING,
                    amount,
                    OPENING_DESCRIPTION,
                    recorded_by=operator_id,
                    at=opened_at,
                )
                self.db.commit()
            except IntegrityError:
                # Outra requisição abriu o mesmo terminal entre a checagem e o insert
                self.db.rollback()
                logger.warning(f"⚠️ Abertura concorrente detectada no terminal {till_id}")
                raise SessionAlreadyOpen(till_id)
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            f"✅ Caixa aberto: sessão {session.id}, terminal {till_id}, "
            f"saldo inicial {amount}, operador {operator_id}"
        )
        return session

    # ========== MOVIMENTAÇÕES ==========

    @storage_guard
    def add_movement(
            self,
            session_id: int,
            movement_type,
            amount,
            description: str,
            operator_id: str,
            notes: Optional[str] = None,
    ) -> MovementResult:
        """
        Lança uma movimentação numa sessão aberta.

        Raises:
            InvalidMovementType: tipo desconhecido, OPENING ou CLOSING
            SessionNotOpen: sessão fechada ou inexistente
            InvalidAmount: valor zero ou com sinal incompatível com o tipo
        """
        try:
            movement_type = MovementType(movement_type)
        except ValueError:
            raise InvalidMovementType(movement_type)

        if movement_type.is_system_generated:
            logger.warning(f"⚠️ Tipo reservado '{movement_type.value}' enviado para a sessão {session_id}")
            raise InvalidMovementType(movement_type)

        till_id = self._till_of(session_id)
        if till_id is None:
            raise SessionNotOpen(session_id)

        with self.locks.hold(till_id):
            try:
                session = self._lock_open_session(session_id)
                value = signed_amount(movement_type, amount)

                movement = self.ledger.append(
                    session,
                    movement_type,
                    value,
                    description,
                    recorded_by=operator_id,
                    notes=notes,
                )
                running_balance = self.ledger.running_balance(session.id)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            f"💰 Movimentação #{movement.sequence} ({movement_type.value} {value}) "
            f"na sessão {session_id}. Saldo: {running_balance}"
        )
        return MovementResult(movement=movement, session=session, running_balance=running_balance)

    # ========== FECHAMENTO ==========

    @storage_guard
    def close_register(
            self,
            session_id: int,
            closing_balance,
            operator_id: str,
            notes: Optional[str] = None,
    ) -> CloseResult:
        """
        Fecha o caixa com o valor contado pelo operador.

        A diferença para o saldo esperado é registrada e não impede o
        fechamento.

        Raises:
            SessionNotOpen: sessão fechada ou inexistente
            InvalidAmount: valor contado negativo ou inválido
        """
        till_id = self._till_of(session_id)
        if till_id is None:
            raise SessionNotOpen(session_id)

        with self.locks.hold(till_id):
            try:
                session = self._lock_open_session(session_id)

                counted = parse_amount(closing_balance)
                if counted < ZERO:
                    raise InvalidAmount(closing_balance, "o valor contado não pode ser negativo")

                running_before = self.ledger.running_balance(session.id)
                reconciliation = self.reconciliation.reconcile(session, counted)

                closing = self.ledger.append(
                    session,
                    MovementType.CLOSING,
                    counted - running_before,
                    CLOSING_DESCRIPTION,
                    recorded_by=operator_id,
                    notes=notes,
                )

                session.status = SessionStatus.CLOSED
                session.closing_balance = counted
                session.closed_at = closing.created_at
                session.closed_by = operator_id
                session.closing_notes = notes
                session.expected_balance = reconciliation.expected_balance
                session.discrepancy = reconciliation.discrepancy

                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            f"🔒 Caixa fechado: sessão {session.id}, terminal {till_id}, "
            f"contado {counted}, esperado {reconciliation.expected_balance}, "
            f"diferença {reconciliation.discrepancy}"
        )
        return CloseResult(
            session=session,
            expected_balance=reconciliation.expected_balance,
            discrepancy=reconciliation.discrepancy,
            reconciliation=reconciliation,
        )

    # ========== CONSULTAS ==========

    @storage_guard
    def get_current_session(self, till_id: int) -> Optional[RegisterSession]:
        """Sessão aberta do terminal, ou None"""
        return self._find_open_session(till_id)

    @storage_guard
    def get_session(self, session_id: int, till_id: Optional[int] = None) -> RegisterSession:
        """
        Sessão em qualquer status (leitura para auditoria).

        Com ``till_id``, a sessão precisa pertencer ao terminal.
        """
        session = self.db.get(RegisterSession, session_id)
        if session is None or (till_id is not None and session.till_id != till_id):
            raise SessionNotFound(session_id)
        return session

    @storage_guard
    def list_movements(
            self,
            session_id: int,
            page: int = 1,
            size: int = 20,
            till_id: Optional[int] = None,
    ) -> Page:
        self.get_session(session_id, till_id=till_id)
        return self.ledger.list_movements(session_id, page=page, size=size)

    @storage_guard
    def list_sessions(self, till_id: int, page: int = 1, size: int = 20) -> Page:
        """Histórico de sessões do terminal, da mais recente para a mais antiga"""
        page = max(page, 1)
        size = max(size, 1)

        total_items = self.db.execute(
            select(func.count(RegisterSession.id)).where(RegisterSession.till_id == till_id)
        ).scalar_one()

        items = self.db.execute(
            select(RegisterSession)
            .where(RegisterSession.till_id == till_id)
            .order_by(RegisterSession.opened_at.desc(), RegisterSession.id.desc())
            .offset((page - 1) * size)
            .limit(size)
        ).scalars().all()

        return Page(items=list(items), total_items=total_items, page=page, size=size)

    @storage_guard
    def summarize(self, session: RegisterSession) -> SessionSummary:
        """Saldo corrente e totais de entradas/saídas da sessão"""
        total_in, total_out = self.ledger.totals(session.id)
        return SessionSummary(
            session=session,
            running_balance=self.ledger.running_balance(session.id),
            total_in=total_in,
            total_out=total_out,
        )

    # ========== AUXILIARES ==========

    def _find_open_session(self, till_id: int) -> Optional[RegisterSession]:
        return self.db.execute(
            select(RegisterSession).where(
                RegisterSession.till_id == till_id,
                RegisterSession.status == SessionStatus.OPEN,
            )
        ).scalar_one_or_none()

    def _till_of(self, session_id: int) -> Optional[int]:
        return self.db.execute(
            select(RegisterSession.till_id).where(RegisterSession.id == session_id)
        ).scalar_one_or_none()

    def _lock_open_session(self, session_id: int) -> RegisterSession:
        """
        Carrega a sessão com SELECT ... FOR UPDATE e confere o status.

        ``populate_existing`` sobrescreve a cópia da identity map com o que
        está no banco agora.
        """
        session = self.db.execute(
            select(RegisterSession)
            .where(RegisterSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if session is None or session.status != SessionStatus.OPEN:
            logger.warning(f"⚠️ Comando recusado: sessão {session_id} não está aberta")
            raise SessionNotOpen(session_id)

        return session
