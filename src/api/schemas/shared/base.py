# src/api/schemas/shared/base.py

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field


class AppBaseModel(BaseModel):
    """
    Base dos schemas da API.

    from_attributes=True permite validar direto a partir dos modelos ORM;
    extra='ignore' descarta atributos do ORM que o schema não declara.
    """
    model_config = ConfigDict(
        from_attributes=True,
        extra='ignore'
    )


# Valor monetário na entrada: no máximo 2 casas decimais
MoneyInput = Annotated[Decimal, Field(max_digits=12, decimal_places=2)]
