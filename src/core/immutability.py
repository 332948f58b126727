"""
Guardas de imutabilidade (ORM)
==============================

O livro-caixa é somente inserção. Estes listeners bloqueiam, antes do
flush chegar ao banco:

- qualquer UPDATE ou DELETE de uma movimentação já gravada;
- alteração do saldo de abertura de uma sessão;
- qualquer alteração de uma sessão já fechada.

A violação levanta ``ImmutableRecord`` e a transação inteira é desfeita
pelo chamador.
"""

import logging

from sqlalchemy import event, inspect

from src.core.exceptions import ImmutableRecord
from src.core.utils.enums import SessionStatus

logger = logging.getLogger(__name__)


def _changed_columns(target) -> list[str]:
    """Colunas com mudança líquida pendente no objeto."""
    state = inspect(target)
    return [
        attr.key
        for attr in state.mapper.column_attrs
        if state.attrs[attr.key].history.has_changes()
    ]


def _check_movement_update(mapper, connection, target):
    changed = _changed_columns(target)
    if not changed:
        return

    logger.error(
        f"🚫 Alteração bloqueada na movimentação {target.id} (campos: {', '.join(changed)})"
    )
    raise ImmutableRecord("CashMovement", target.id, "UPDATE")


def _check_movement_delete(mapper, connection, target):
    logger.error(f"🚫 Remoção bloqueada na movimentação {target.id}")
    raise ImmutableRecord("CashMovement", target.id, "DELETE")


def _check_session_update(mapper, connection, target):
    changed = _changed_columns(target)
    if not changed:
        return

    if "opening_balance" in changed:
        logger.error(f"🚫 Tentativa de alterar o saldo de abertura da sessão {target.id}")
        raise ImmutableRecord("RegisterSession", target.id, "UPDATE opening_balance")

    status_history = inspect(target).attrs.status.history
    previous_status = status_history.deleted[0] if status_history.deleted else target.status
    if previous_status == SessionStatus.CLOSED:
        logger.error(f"🚫 Tentativa de alterar a sessão fechada {target.id}")
        raise ImmutableRecord("RegisterSession", target.id, "UPDATE closed session")


def _check_session_delete(mapper, connection, target):
    logger.error(f"🚫 Remoção bloqueada na sessão {target.id}")
    raise ImmutableRecord("RegisterSession", target.id, "DELETE")


def register_immutability_listeners(movement_cls, session_cls):
    """
    Registra os listeners nos modelos. Idempotente.
    """
    listeners = [
        (movement_cls, "before_update", _check_movement_update),
        (movement_cls, "before_delete", _check_movement_delete),
        (session_cls, "before_update", _check_session_update),
        (session_cls, "before_delete", _check_session_delete),
    ]

    for cls, identifier, fn in listeners:
        if not event.contains(cls, identifier, fn):
            event.listen(cls, identifier, fn)
