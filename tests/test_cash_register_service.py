"""
Testes do Caixa
===============
Abertura, movimentações, fechamento e imutabilidade do livro-caixa.
"""

import logging
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from src.api.admin.services.cash_register_service import CashRegisterService
from src.core import models
from src.core.exceptions import (
    ImmutableRecord,
    InvalidAmount,
    InvalidMovementType,
    SessionAlreadyOpen,
    SessionNotFound,
    SessionNotOpen,
)
from src.core.utils.enums import MovementType, SessionStatus
from src.core.utils.locks import TillLockRegistry
from src.core.utils.money import MAX_AMOUNT, MAX_BALANCE

from tests.conftest import OPERATOR, TILL_ID


def count_movements(db, session_id: int) -> int:
    return db.execute(
        select(func.count(models.CashMovement.id)).where(models.CashMovement.session_id == session_id)
    ).scalar_one()


# ═══════════════════════════════════════════════════════════
# ABERTURA
# ═══════════════════════════════════════════════════════════

class TestOpenRegister:
    """Abertura de caixa"""

    def test_open_creates_session_and_opening_movement(self, service, db):
        session = service.open_register(TILL_ID, Decimal("100.00"), OPERATOR, notes="Troco inicial")

        assert session.status == SessionStatus.OPEN
        assert session.opening_balance == Decimal("100.00")
        assert session.opened_by == OPERATOR
        assert session.notes == "Troco inicial"
        assert session.closing_balance is None
        assert session.closed_at is None

        movements = service.list_movements(session.id).items
        assert len(movements) == 1
        assert movements[0].type == MovementType.OPENING
        assert movements[0].amount == Decimal("100.00")
        assert movements[0].sequence == 1
        assert movements[0].created_at == session.opened_at

    def test_open_with_zero_balance(self, service):
        session = service.open_register(TILL_ID, Decimal("0.00"), OPERATOR)

        assert session.opening_balance == Decimal("0.00")
        assert service.summarize(session).running_balance == Decimal("0.00")

    def test_negative_opening_balance_is_rejected(self, service, db):
        with pytest.raises(InvalidAmount):
            service.open_register(TILL_ID, Decimal("-1.00"), OPERATOR)

        assert service.get_current_session(TILL_ID) is None
        assert db.execute(select(func.count(models.RegisterSession.id))).scalar_one() == 0

    @pytest.mark.parametrize("amount", [Decimal("1E+30"), Decimal("10000000000.00"), Decimal("0.005")])
    def test_opening_balance_out_of_range_or_with_sub_cents_is_rejected(self, service, db, amount):
        with pytest.raises(InvalidAmount):
            service.open_register(TILL_ID, amount, OPERATOR)

        assert service.get_current_session(TILL_ID) is None
        assert db.execute(select(func.count(models.RegisterSession.id))).scalar_one() == 0

    def test_second_open_on_same_till_fails(self, service, open_session):
        with pytest.raises(SessionAlreadyOpen) as exc_info:
            service.open_register(TILL_ID, Decimal("50.00"), "op-bruno")

        assert exc_info.value.session_id == open_session.id
        assert service.get_current_session(TILL_ID).id == open_session.id

    def test_other_till_opens_independently(self, service, open_session):
        other = service.open_register(2, Decimal("80.00"), "op-bruno")

        assert other.id != open_session.id
        assert service.get_current_session(2).id == other.id

    def test_reopen_after_close_creates_new_session(self, service, open_session):
        service.close_register(open_session.id, Decimal("100.00"), OPERATOR)

        new_session = service.open_register(TILL_ID, Decimal("100.00"), OPERATOR)

        assert new_session.id != open_session.id
        assert service.get_session(open_session.id).status == SessionStatus.CLOSED


# ═══════════════════════════════════════════════════════════
# MOVIMENTAÇÕES
# ═══════════════════════════════════════════════════════════

class TestAddMovement:
    """Lançamentos numa sessão aberta"""

    def test_running_balance_after_each_movement(self, service, open_session):
        steps = [
            (MovementType.SALE, "42.50", Decimal("142.50")),
            (MovementType.DEPOSIT, "50.00", Decimal("192.50")),
            (MovementType.WITHDRAWAL, "30.00", Decimal("162.50")),
            (MovementType.EXPENSE, "12.50", Decimal("150.00")),
            (MovementType.REFUND, "10.00", Decimal("140.00")),
            (MovementType.ADJUSTMENT, "-0.75", Decimal("139.25")),
        ]

        for movement_type, amount, expected in steps:
            result = service.add_movement(open_session.id, movement_type, amount, "Lançamento", OPERATOR)
            assert result.running_balance == expected

    def test_withdrawal_is_stored_negative(self, service, open_session):
        result = service.add_movement(
            open_session.id, MovementType.WITHDRAWAL, Decimal("20.00"), "Sangria para cofre", OPERATOR,
            notes="Envelope 12",
        )

        assert result.movement.amount == Decimal("-20.00")
        assert result.movement.notes == "Envelope 12"
        assert result.movement.recorded_by == OPERATOR
        assert result.movement.sequence == 2

    def test_type_accepts_plain_string(self, service, open_session):
        result = service.add_movement(open_session.id, "sale", "9.90", "Venda balcão", OPERATOR)

        assert result.movement.type == MovementType.SALE

    @pytest.mark.parametrize("movement_type", [MovementType.OPENING, MovementType.CLOSING, "bogus"])
    def test_system_or_unknown_types_are_rejected(self, service, db, open_session, movement_type):
        with pytest.raises(InvalidMovementType):
            service.add_movement(open_session.id, movement_type, Decimal("10.00"), "Tentativa", OPERATOR)

        assert count_movements(db, open_session.id) == 1

    @pytest.mark.parametrize("movement_type, amount", [
        (MovementType.SALE, "0"),
        (MovementType.ADJUSTMENT, "0.00"),
        (MovementType.EXPENSE, "-15.00"),
    ])
    def test_invalid_amounts_are_rejected(self, service, db, open_session, movement_type, amount):
        with pytest.raises(InvalidAmount):
            service.add_movement(open_session.id, movement_type, amount, "Lançamento", OPERATOR)

        assert count_movements(db, open_session.id) == 1

    @pytest.mark.parametrize("amount", [Decimal("1E+30"), Decimal("10000000000.00"), Decimal("1.005")])
    def test_amount_out_of_range_or_with_sub_cents_is_rejected(self, service, db, open_session, amount):
        with pytest.raises(InvalidAmount):
            service.add_movement(open_session.id, MovementType.SALE, amount, "Venda", OPERATOR)

        assert count_movements(db, open_session.id) == 1
        assert service.summarize(open_session).running_balance == Decimal("100.00")

    def test_running_balance_limit(self, service, db, open_session):
        with patch("src.api.admin.services.cash_ledger.MAX_BALANCE", Decimal("150.00")):
            service.add_movement(open_session.id, MovementType.DEPOSIT, Decimal("50.00"), "Suprimento", OPERATOR)

            with pytest.raises(InvalidAmount, match="saldo"):
                service.add_movement(open_session.id, MovementType.SALE, Decimal("0.01"), "Venda", OPERATOR)

            # O fechamento não é barrado pelo limite
            closed = service.close_register(open_session.id, Decimal("0.00"), OPERATOR)

        assert count_movements(db, open_session.id) == 3
        assert closed.discrepancy == Decimal("-150.00")

    def test_movement_on_closed_session_fails(self, service, db, open_session):
        service.close_register(open_session.id, Decimal("100.00"), OPERATOR)
        before = count_movements(db, open_session.id)

        with pytest.raises(SessionNotOpen):
            service.add_movement(open_session.id, MovementType.SALE, Decimal("10.00"), "Venda", OPERATOR)

        assert count_movements(db, open_session.id) == before

    def test_movement_on_unknown_session_fails(self, service):
        with pytest.raises(SessionNotOpen):
            service.add_movement(999, MovementType.SALE, Decimal("10.00"), "Venda", OPERATOR)

    def test_failed_movement_does_not_consume_sequence(self, service, open_session):
        with pytest.raises(InvalidAmount):
            service.add_movement(open_session.id, MovementType.SALE, Decimal("0"), "Venda", OPERATOR)

        result = service.add_movement(open_session.id, MovementType.SALE, Decimal("1.00"), "Venda", OPERATOR)

        assert result.movement.sequence == 2


# ═══════════════════════════════════════════════════════════
# FECHAMENTO
# ═══════════════════════════════════════════════════════════

class TestCloseRegister:
    """Fechamento e conciliação"""

    def test_close_at_expected_balance(self, service, open_session):
        service.add_movement(open_session.id, MovementType.DEPOSIT, Decimal("50.00"), "Suprimento", OPERATOR)
        result = service.add_movement(
            open_session.id, MovementType.WITHDRAWAL, Decimal("20.00"), "Sangria", OPERATOR
        )
        assert result.running_balance == Decimal("130.00")

        closed = service.close_register(open_session.id, Decimal("130.00"), "op-bruno", notes="Sem ocorrências")

        assert closed.expected_balance == Decimal("130.00")
        assert closed.discrepancy == Decimal("0.00")
        assert closed.reconciliation.is_balanced

        session = closed.session
        assert session.status == SessionStatus.CLOSED
        assert session.closing_balance == Decimal("130.00")
        assert session.expected_balance == Decimal("130.00")
        assert session.discrepancy == Decimal("0.00")
        assert session.closed_by == "op-bruno"
        assert session.closing_notes == "Sem ocorrências"
        assert session.notes == "Turno da manhã"

        closing = service.list_movements(session.id).items[0]
        assert closing.type == MovementType.CLOSING
        assert closing.amount == Decimal("0.00")
        assert closing.sequence == 4
        assert session.closed_at == closing.created_at

    def test_close_with_shortage_still_closes(self, service, open_session, caplog):
        service.add_movement(open_session.id, MovementType.SALE, Decimal("30.00"), "Venda", OPERATOR)

        with caplog.at_level(logging.WARNING):
            closed = service.close_register(open_session.id, Decimal("120.00"), OPERATOR)

        assert closed.session.status == SessionStatus.CLOSED
        assert closed.expected_balance == Decimal("130.00")
        assert closed.discrepancy == Decimal("-10.00")
        assert not closed.reconciliation.is_balanced
        assert "falta" in caplog.text

        closing = service.list_movements(open_session.id).items[0]
        assert closing.amount == Decimal("-10.00")
        assert service.summarize(closed.session).running_balance == Decimal("120.00")

    def test_close_after_negative_running_balance(self, service):
        session = service.open_register(TILL_ID, Decimal("0.00"), OPERATOR)
        result = service.add_movement(session.id, MovementType.EXPENSE, Decimal("15.00"), "Gelo", OPERATOR)
        assert result.running_balance == Decimal("-15.00")

        closed = service.close_register(session.id, Decimal("0.00"), OPERATOR)

        assert closed.expected_balance == Decimal("-15.00")
        assert closed.discrepancy == Decimal("15.00")
        assert service.list_movements(session.id).items[0].amount == Decimal("15.00")

    def test_close_of_largest_balances_fits_the_columns(self, service):
        session = service.open_register(TILL_ID, MAX_AMOUNT, OPERATOR)
        service.add_movement(session.id, MovementType.DEPOSIT, MAX_AMOUNT, "Suprimento", OPERATOR)

        closed = service.close_register(session.id, Decimal("0.00"), OPERATOR)

        assert closed.expected_balance == Decimal("19999999999.98")
        assert closed.discrepancy == Decimal("-19999999999.98")
        assert closed.session.status == SessionStatus.CLOSED
        assert service.list_movements(session.id).items[0].amount == Decimal("-19999999999.98")

        columns = models.RegisterSession.__table__.c
        for column, value in [
            (columns.expected_balance, closed.expected_balance),
            (columns.discrepancy, closed.discrepancy),
            (models.CashMovement.__table__.c.amount, closed.discrepancy),
        ]:
            integer_digits = column.type.precision - column.type.scale
            assert abs(value) < Decimal(10) ** integer_digits

        assert MAX_BALANCE + MAX_AMOUNT < Decimal(10) ** (columns.discrepancy.type.precision - 2)

    def test_negative_closing_balance_is_rejected(self, service, db, open_session):
        with pytest.raises(InvalidAmount):
            service.close_register(open_session.id, Decimal("-5.00"), OPERATOR)

        assert service.get_session(open_session.id).status == SessionStatus.OPEN
        assert count_movements(db, open_session.id) == 1

    def test_closing_twice_fails(self, service, open_session):
        service.close_register(open_session.id, Decimal("100.00"), OPERATOR)

        with pytest.raises(SessionNotOpen):
            service.close_register(open_session.id, Decimal("100.00"), OPERATOR)

    def test_close_unknown_session(self, service):
        with pytest.raises(SessionNotOpen):
            service.close_register(999, Decimal("0.00"), OPERATOR)

    def test_closed_session_is_no_longer_current(self, service, open_session):
        service.close_register(open_session.id, Decimal("100.00"), OPERATOR)

        assert service.get_current_session(TILL_ID) is None


# ═══════════════════════════════════════════════════════════
# CONSULTAS
# ═══════════════════════════════════════════════════════════

class TestQueries:
    """Leituras para auditoria"""

    def test_get_session_unknown(self, service):
        with pytest.raises(SessionNotFound):
            service.get_session(999)

    def test_get_session_from_other_till(self, service, open_session):
        with pytest.raises(SessionNotFound):
            service.get_session(open_session.id, till_id=2)

    def test_list_movements_unknown_session(self, service):
        with pytest.raises(SessionNotFound):
            service.list_movements(999)

    def test_list_sessions_most_recent_first(self, service, clock):
        first = service.open_register(TILL_ID, Decimal("10.00"), OPERATOR)
        service.close_register(first.id, Decimal("10.00"), OPERATOR)
        clock.advance(hours=8)
        second = service.open_register(TILL_ID, Decimal("20.00"), OPERATOR)
        service.open_register(2, Decimal("30.00"), OPERATOR)

        page = service.list_sessions(TILL_ID, page=1, size=10)

        assert [s.id for s in page.items] == [second.id, first.id]
        assert page.total_items == 2
        assert page.total_pages == 1

    def test_summarize(self, service, open_session):
        service.add_movement(open_session.id, MovementType.SALE, Decimal("50.00"), "Venda", OPERATOR)
        service.add_movement(open_session.id, MovementType.WITHDRAWAL, Decimal("20.00"), "Sangria", OPERATOR)

        summary = service.summarize(open_session)

        assert summary.running_balance == Decimal("130.00")
        assert summary.total_in == Decimal("50.00")
        assert summary.total_out == Decimal("20.00")


# ═══════════════════════════════════════════════════════════
# IMUTABILIDADE
# ═══════════════════════════════════════════════════════════

class TestImmutability:
    """O livro-caixa é somente inserção"""

    def test_movement_cannot_be_updated(self, service, db, open_session):
        result = service.add_movement(open_session.id, MovementType.SALE, Decimal("10.00"), "Venda", OPERATOR)

        result.movement.amount = Decimal("999.00")
        with pytest.raises(ImmutableRecord):
            db.commit()
        db.rollback()

        stored = service.list_movements(open_session.id).items[0]
        assert stored.amount == Decimal("10.00")

    def test_movement_cannot_be_deleted(self, service, db, open_session):
        movement = service.list_movements(open_session.id).items[0]

        db.delete(movement)
        with pytest.raises(ImmutableRecord):
            db.commit()
        db.rollback()

        assert count_movements(db, open_session.id) == 1

    def test_opening_balance_cannot_change(self, db, open_session):
        open_session.opening_balance = Decimal("500.00")

        with pytest.raises(ImmutableRecord):
            db.commit()
        db.rollback()

    def test_closed_session_cannot_be_edited(self, service, db, open_session):
        closed = service.close_register(open_session.id, Decimal("100.00"), OPERATOR).session

        closed.closing_notes = "Editado depois"
        with pytest.raises(ImmutableRecord):
            db.commit()
        db.rollback()

    def test_session_cannot_be_deleted(self, db, open_session):
        db.delete(open_session)

        with pytest.raises(ImmutableRecord):
            db.commit()
        db.rollback()


@pytest.mark.integration
class TestCashRegisterFlow:
    """Fluxo completo de um turno"""

    def test_full_shift(self, db, clock):
        service = CashRegisterService(db, clock=clock, locks=TillLockRegistry())

        # 1. Abre o caixa
        session = service.open_register(TILL_ID, "150.00", OPERATOR)

        # 2. Vendas e movimentações ao longo do turno
        for minutes, movement_type, amount in [
            (5, MovementType.SALE, "32.00"),
            (12, MovementType.SALE, "18.50"),
            (40, MovementType.EXPENSE, "25.00"),
            (55, MovementType.WITHDRAWAL, "100.00"),
            (70, MovementType.REFUND, "18.50"),
        ]:
            clock.advance(minutes=minutes)
            service.add_movement(session.id, movement_type, amount, "Movimento do turno", OPERATOR)

        # 3. Fecha com sobra de 1 real
        closed = service.close_register(session.id, "58.00", OPERATOR)

        assert closed.expected_balance == Decimal("57.00")
        assert closed.discrepancy == Decimal("1.00")

        # 4. Livro completo: abertura primeiro, um único fechamento por último
        movements = list(reversed(service.list_movements(session.id, size=50).items))
        assert movements[0].type == MovementType.OPENING
        assert movements[-1].type == MovementType.CLOSING
        assert [m.type for m in movements].count(MovementType.CLOSING) == 1
        assert [m.sequence for m in movements] == list(range(1, 8))
        assert all(a.created_at < b.created_at for a, b in zip(movements, movements[1:]))
