"""
Base commune des modèles exposés (REST et WebSocket).
- Clés JSON en camelCase (messageId, orderId, paymentType...), attributs Python en snake_case.
- Montants en Decimal côté Python, sérialisés en nombre côté JSON.
"""
from decimal import Decimal
from typing import Annotated, Any, Dict

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel


Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
