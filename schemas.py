from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models import Transaction, TransactionType, User


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class TrimmedCamelModel(CamelModel):
    model_config = ConfigDict(str_strip_whitespace=True)


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_naive_utc)]


# Keeps amount_cents inside a signed 64-bit INTEGER column.
MAX_AMOUNT = Decimal("1000000000000000")


def amount_to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


def cents_to_amount(cents: int) -> float:
    return cents / 100


class RegisterIn(CamelModel):
    full_name: str = ""
    email: str = ""
    password: str = ""


class LoginIn(CamelModel):
    email: str = ""
    password: str = ""


class UpdateAccountIn(CamelModel):
    full_name: str = ""
    email: str = ""


class ChangePasswordIn(CamelModel):
    old_password: str = ""
    new_password: str = ""


class RefreshTokenIn(CamelModel):
    refresh_token: Optional[str] = None


class TransactionIn(TrimmedCamelModel):
    description: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, lt=MAX_AMOUNT, decimal_places=2)
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    date: Optional[UtcDatetime] = None
    receipt_url: str = Field(default="", max_length=2048)


class TransactionUpdateIn(TrimmedCamelModel):
    description: Optional[str] = Field(default=None, min_length=1)
    amount: Optional[Decimal] = Field(
        default=None, gt=0, lt=MAX_AMOUNT, decimal_places=2
    )
    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    date: Optional[UtcDatetime] = None
    receipt_url: Optional[str] = Field(default=None, max_length=2048)


class UserOut(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    email: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def dump(cls, user: User) -> dict:
        return cls.model_validate(user).model_dump(mode="json", by_alias=True)


class TransactionOut(CamelModel):
    id: int
    user: int
    description: str
    amount: float
    type: TransactionType
    category: str
    date: datetime
    receipt_url: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def dump(cls, txn: Transaction) -> dict:
        return cls(
            id=txn.id,
            user=txn.user_id,
            description=txn.description,
            amount=cents_to_amount(txn.amount_cents),
            type=txn.type,
            category=txn.category,
            date=txn.date,
            receipt_url=txn.receipt_url or "",
            created_at=txn.created_at,
            updated_at=txn.updated_at,
        ).model_dump(mode="json", by_alias=True)
