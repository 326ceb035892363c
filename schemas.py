import datetime as dt
from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import AccountType, TransactionStatus, TransactionType, UserRole

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class RegisterIn(BaseModel):
    family_name: str = Field(..., min_length=1, max_length=120)
    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6, max_length=128)


class LoginIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class MemberIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6, max_length=128)
    role: UserRole = UserRole.member


class TransactionIn(BaseModel):
    amount: Decimal = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=200)
    date: date
    type: TransactionType
    category_id: Optional[int] = None
    account_id: Optional[int] = None
    status: TransactionStatus = TransactionStatus.confirmed
    is_installment: bool = False
    total_installments: Optional[int] = None
    first_installment_date: Optional[dt.date] = None


class TransactionUpdate(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    date: Optional[dt.date] = None
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    status: Optional[TransactionStatus] = None


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    limit: Optional[Decimal] = None
    closing_day: Optional[int] = None
    due_day: Optional[int] = None
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=16)
    balance: Decimal = Decimal("0")


class AccountUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[AccountType] = None
    limit: Optional[Decimal] = None
    closing_day: Optional[int] = None
    due_day: Optional[int] = None
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=16)
    balance: Optional[Decimal] = None


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType = TransactionType.expense
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=9)
    rules: list[str] = Field(default_factory=list)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[TransactionType] = None
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=9)
    rules: Optional[list[str]] = None


class BudgetIn(BaseModel):
    month: str = Field(..., pattern=MONTH_PATTERN)
    category_id: int
    limit: Decimal = Field(..., gt=0)


class BillPaymentIn(BaseModel):
    month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)
    from_account_id: Optional[int] = None


class ChatIn(BaseModel):
    content: str = Field(..., min_length=1, max_length=500)


class WebhookTransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: str = Field(..., min_length=1)
    user_id: int


class Insight(BaseModel):
    id: str
    type: Literal["warning", "success", "info", "danger"]
    icon: str
    title: str
    message: str
    percentage: Optional[float] = None
    value: Optional[float] = None
