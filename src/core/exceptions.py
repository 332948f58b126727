"""
Erros de domínio do caixa
=========================

Cada tipo de erro carrega um ``code`` estável. O núcleo devolve erros
estruturados; a tradução para texto legível fica na camada HTTP
(ver ``src/main.py``).
"""

from decimal import Decimal
from typing import Any, Optional


class CashRegisterError(Exception):
    """Base de todos os erros do caixa."""

    code: str = "CASH_REGISTER_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": {k: _jsonable(v) for k, v in self.details.items()},
        }


class InvalidAmount(CashRegisterError):
    """Valor negativo, zero onde não permitido, ou sinal incompatível com o tipo."""

    code = "INVALID_AMOUNT"

    def __init__(self, amount: Any, reason: str):
        super().__init__(f"Valor inválido ({amount}): {reason}", amount=amount, reason=reason)
        self.amount = amount
        self.reason = reason


class SessionAlreadyOpen(CashRegisterError):
    code = "SESSION_ALREADY_OPEN"

    def __init__(self, till_id: int, session_id: Optional[int] = None):
        super().__init__(
            f"Já existe um caixa aberto para o terminal {till_id}.",
            till_id=till_id,
            session_id=session_id,
        )
        self.till_id = till_id
        self.session_id = session_id


class SessionNotOpen(CashRegisterError):
    """Sessão fechada ou inexistente."""

    code = "SESSION_NOT_OPEN"

    def __init__(self, session_id: int):
        super().__init__(
            f"A sessão de caixa {session_id} não está aberta.",
            session_id=session_id,
        )
        self.session_id = session_id


class SessionNotFound(CashRegisterError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: int):
        super().__init__(
            f"Sessão de caixa {session_id} não encontrada.",
            session_id=session_id,
        )
        self.session_id = session_id


class NoOpenSession(CashRegisterError):
    """Nenhum caixa aberto no terminal."""

    code = "NO_OPEN_SESSION"

    def __init__(self, till_id: int):
        super().__init__(
            f"Nenhum caixa aberto para o terminal {till_id}.",
            till_id=till_id,
        )
        self.till_id = till_id


class InvalidMovementType(CashRegisterError):
    """Tipo desconhecido ou reservado ao sistema (abertura/fechamento)."""

    code = "INVALID_MOVEMENT_TYPE"

    def __init__(self, movement_type: Any):
        value = getattr(movement_type, "value", movement_type)
        super().__init__(
            f"O tipo de movimentação '{value}' não pode ser lançado pelo operador.",
            movement_type=value,
        )
        self.movement_type = movement_type


class NonMonotonicTimestamp(CashRegisterError):
    code = "NON_MONOTONIC_TIMESTAMP"

    def __init__(self, session_id: int, timestamp, last_timestamp):
        super().__init__(
            "O horário informado não é posterior à última movimentação da sessão.",
            session_id=session_id,
            timestamp=timestamp,
            last_timestamp=last_timestamp,
        )
        self.session_id = session_id
        self.timestamp = timestamp
        self.last_timestamp = last_timestamp


class ImmutableRecord(CashRegisterError):
    """Movimentações gravadas e sessões fechadas não podem ser alteradas."""

    code = "IMMUTABLE_RECORD"

    def __init__(self, entity: str, entity_id: Optional[int], operation: str):
        super().__init__(
            f"{entity} {entity_id} é imutável ({operation} bloqueado).",
            entity=entity,
            entity_id=entity_id,
            operation=operation,
        )
        self.entity = entity
        self.entity_id = entity_id
        self.operation = operation


class StorageUnavailable(CashRegisterError):
    """Falha de infraestrutura do banco. Nunca é engolida nem retentada indefinidamente."""

    code = "STORAGE_UNAVAILABLE"

    def __init__(self, reason: str = "Banco de dados temporariamente indisponível."):
        super().__init__(reason)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value
