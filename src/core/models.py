from __future__ import annotations
from decimal import Decimal

from datetime import datetime
from typing import Optional, List

from sqlalchemy import DateTime, Index, UniqueConstraint, CheckConstraint, TypeDecorator, text
from sqlalchemy import Integer, ForeignKey, String, Enum, Numeric, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from src.core.utils.time_utils import as_utc, now_utc
from src.core.immutability import register_immutability_listeners
from src.core.utils.enums import SessionStatus, MovementType


class Base(DeclarativeBase):
    pass


class UTCDateTime(TypeDecorator):
    """DateTime que sempre volta do banco com timezone UTC (SQLite perde o tz)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return as_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return as_utc(value)


def _enum_values(enum_cls):
    # Persiste o valor ("open") e não o nome ("OPEN") do enum
    return [member.value for member in enum_cls]


# Valores monetários: moeda única, 2 casas decimais
Money = Numeric(18, 2)

# Identificador do operador (cabeçalho X-Operator-Id)
OPERATOR_ID_LENGTH = 64


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=now_utc,
        index=True
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=now_utc,
        onupdate=now_utc
    )


class RegisterSession(Base, TimestampMixin):
    """
    Sessão de caixa (abertura/fechamento) de um terminal físico.

    Apenas uma sessão com status 'open' pode existir por terminal; o índice
    parcial abaixo garante isso no próprio banco.
    """

    __tablename__ = "register_sessions"
    __table_args__ = (
        Index(
            "uq_register_sessions_one_open_per_till",
            "till_id",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
        CheckConstraint("opening_balance >= 0", name="ck_register_sessions_opening_balance"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    till_id: Mapped[int] = mapped_column(Integer, index=True)

    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus, name="register_session_status", native_enum=False,
             values_callable=_enum_values, validate_strings=True),
        default=SessionStatus.OPEN,
        index=True,
    )

    opening_balance: Mapped[Decimal] = mapped_column(Money)
    closing_balance: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    # Calculados uma única vez no fechamento (conciliação)
    expected_balance: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    discrepancy: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    opened_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=now_utc)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Identidade do operador vem do serviço de autenticação externo
    opened_by: Mapped[str] = mapped_column(String(OPERATOR_ID_LENGTH))
    closed_by: Mapped[Optional[str]] = mapped_column(String(OPERATOR_ID_LENGTH), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    closing_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Contador da última posição atribuída a uma movimentação desta sessão
    last_sequence: Mapped[int] = mapped_column(Integer, default=0)

    movements: Mapped[List["CashMovement"]] = relationship(
        "CashMovement",
        back_populates="session",
        order_by="CashMovement.sequence",
        passive_deletes="all",
        lazy="select",
    )

    @property
    def is_open(self) -> bool:
        return self.status == SessionStatus.OPEN

    def __repr__(self) -> str:
        return f"<RegisterSession id={self.id} till={self.till_id} status={self.status.value}>"


class CashMovement(Base):
    """
    Lançamento do livro-caixa. Somente inserção: nunca atualizado nem removido.
    """

    __tablename__ = "cash_movements"
    __table_args__ = (
        UniqueConstraint("session_id", "sequence", name="uq_cash_movements_session_sequence"),
        Index("ix_cash_movements_session_created", "session_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("register_sessions.id"), index=True)
    sequence: Mapped[int] = mapped_column(Integer)

    type: Mapped[MovementType] = mapped_column(
        Enum(MovementType, name="cash_movement_type", native_enum=False,
             values_callable=_enum_values, validate_strings=True),
    )
    amount: Mapped[Decimal] = mapped_column(Money)
    description: Mapped[str] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=now_utc,
    )
    recorded_by: Mapped[str] = mapped_column(String(OPERATOR_ID_LENGTH))

    session: Mapped["RegisterSession"] = relationship(back_populates="movements")

    def __repr__(self) -> str:
        return (
            f"<CashMovement id={self.id} session={self.session_id} "
            f"seq={self.sequence} type={self.type.value} amount={self.amount}>"
        )


register_immutability_listeners(movement_cls=CashMovement, session_cls=RegisterSession)
