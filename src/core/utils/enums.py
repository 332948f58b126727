import enum


class SessionStatus(str, enum.Enum):  # Herdar de 'str' facilita a serialização
    OPEN = "open"
    CLOSED = "closed"


class MovementType(str, enum.Enum):
    OPENING = "opening"
    SALE = "sale"
    DEPOSIT = "deposit"  # Suprimento
    WITHDRAWAL = "withdrawal"  # Sangria
    EXPENSE = "expense"
    REFUND = "refund"
    CLOSING = "closing"
    ADJUSTMENT = "adjustment"

    @property
    def is_system_generated(self) -> bool:
        """Abertura e fechamento só são criados pelo próprio caixa"""
        return self in SYSTEM_MOVEMENT_TYPES

    @property
    def sign(self) -> int:
        """
        Sinal fixo do tipo: 1 (entrada), -1 (saída), 0 (livre).

        OPENING é positivo; ADJUSTMENT e CLOSING aceitam qualquer sinal.
        """
        return MOVEMENT_SIGNS[self]


SYSTEM_MOVEMENT_TYPES = frozenset({MovementType.OPENING, MovementType.CLOSING})

MOVEMENT_SIGNS = {
    MovementType.OPENING: 1,
    MovementType.SALE: 1,
    MovementType.DEPOSIT: 1,
    MovementType.WITHDRAWAL: -1,
    MovementType.EXPENSE: -1,
    MovementType.REFUND: -1,
    MovementType.ADJUSTMENT: 0,
    MovementType.CLOSING: 0,
}
