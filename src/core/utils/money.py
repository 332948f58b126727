from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

# Maior valor aceito num único lançamento (12 dígitos, 2 decimais)
MAX_AMOUNT = Decimal("9999999999.99")

# Limite do saldo corrente de uma sessão. A coluna Numeric(18, 2) comporta
# o saldo mais um fechamento/diferença de valor máximo.
MAX_BALANCE = Decimal("99999999999999.99")


def to_money(value) -> Decimal:
    """
    Converte para Decimal com 2 casas.

    Floats passam por str() antes, para não carregar o erro binário
    (Decimal(0.1) != Decimal("0.1")).
    """
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Valor monetário inválido: {value!r}")
    if not value.is_finite():
        raise ValueError(f"Valor monetário inválido: {value!r}")
    try:
        return value.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Valor monetário fora do limite: {value!r}")


def has_sub_cents(value: Decimal) -> bool:
    """True se o valor tiver mais de 2 casas decimais significativas"""
    return value != value.quantize(CENTS, rounding=ROUND_HALF_UP)
