import datetime as dt
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError,
    ValidatorFunctionWrapHandler,
    WrapValidator,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from models import BudgetPeriod, TransactionType
from periods import DateWindow, resolve_window

# keeps cents inside a signed 64-bit column
MAX_AMOUNT = Decimal("999999999999.99")
MIN_PASSWORD_LENGTH = 6


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _coerce_date(value: object) -> object:
    # accept full ISO timestamps and keep the calendar day
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        return value.split("T", 1)[0]
    return value


Day = Annotated[Optional[dt.date], BeforeValidator(_coerce_date)]


Amount = Annotated[Decimal, Field(gt=0, le=MAX_AMOUNT)]


def _required_text(value: Optional[str], label: str) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError(f"{label} is required")
    return value


def _normalize_email(value: object, handler: ValidatorFunctionWrapHandler) -> str:
    if isinstance(value, str):
        value = value.strip()
    try:
        email = handler(value)
    except ValidationError:
        raise ValueError("Please provide a valid email address") from None
    return email.lower()


Email = Annotated[EmailStr, WrapValidator(_normalize_email)]


class RegisterIn(ApiModel):
    email: Email
    password: str

    @field_validator("password")
    @classmethod
    def _password_strength(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )
        return value


class LoginIn(ApiModel):
    email: Email
    password: str = Field(..., min_length=1)


class CategoryIn(ApiModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=50)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return _required_text(value, "Name")


class ExpenseIn(ApiModel):
    amount: Amount
    description: str = Field(..., min_length=1, max_length=500)
    date: Day = None
    type: TransactionType = TransactionType.expense
    category_id: int

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        return _required_text(value, "Description")


class ExpenseUpdate(ApiModel):
    amount: Optional[Amount] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    date: Day = None
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: Optional[str]) -> Optional[str]:
        return _required_text(value, "Description")


class BudgetIn(ApiModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount: Amount
    period: BudgetPeriod = BudgetPeriod.monthly
    category_id: Optional[int] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return _required_text(value, "Name")


class BudgetUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    amount: Optional[Amount] = None
    period: Optional[BudgetPeriod] = None
    category_id: Optional[int] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: Optional[str]) -> Optional[str]:
        return _required_text(value, "Name")


class CategoryFilters(ApiModel):
    type: Optional[TransactionType] = None


class WindowFilters(ApiModel):
    start_date: Day = None
    end_date: Day = None

    @model_validator(mode="after")
    def _check_window(self) -> "WindowFilters":
        resolve_window(self.start_date, self.end_date)
        return self

    @property
    def window(self) -> DateWindow:
        return DateWindow(self.start_date, self.end_date)


class ExpenseFilters(WindowFilters):
    category_id: Optional[int] = None
    type: Optional[TransactionType] = None


class AnalyticsFilters(WindowFilters):
    type: Optional[TransactionType] = None
    months: int = Field(default=6, ge=1, le=120)
    limit: int = Field(default=5, ge=1, le=100)
