from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, field_serializer
from pydantic.alias_generators import to_camel

from app.db.models import OrderStatus, UserStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UserOut(CamelModel):
    id: str
    username: str
    email: str
    status: UserStatus
    created_at: datetime
    updated_at: datetime


class OrderOut(CamelModel):
    id: str
    customer_id: str
    amount: Decimal
    currency: str
    status: OrderStatus
    created_at: datetime
    updated_at: datetime

    @field_serializer("amount")
    def _amount_as_number(self, amount: Decimal) -> float:
        return float(amount)


# Request bodies keep every field optional: presence and emptiness are checked
# by the services so that missing fields surface as a domain validation error.
class CreateUserRequest(CamelModel):
    username: str | None = None
    email: str | None = None


class UpdateEmailRequest(CamelModel):
    email: str | None = None


class CreateOrderRequest(CamelModel):
    customer_id: str | None = None
    amount: Any = None
    currency: str | None = None


def dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)
