import datetime as dt
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "INCOME"
    expense = "EXPENSE"


class TransactionStatus(str, Enum):
    pending = "PENDING"
    confirmed = "CONFIRMED"
    cancelled = "CANCELLED"


class TransactionSource(str, Enum):
    manual = "MANUAL"
    email = "EMAIL"
    bill_payment = "BILL_PAYMENT"


class AccountType(str, Enum):
    cash = "CASH"
    bank = "BANK"
    credit_card = "CREDIT_CARD"


class UserRole(str, Enum):
    admin = "ADMIN"
    member = "MEMBER"


def _value_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda cls: [member.value for member in cls],
    )


TRANSACTION_TYPE_ENUM = _value_enum(TransactionType, "transactiontype")
TRANSACTION_STATUS_ENUM = _value_enum(TransactionStatus, "transactionstatus")
TRANSACTION_SOURCE_ENUM = _value_enum(TransactionSource, "transactionsource")
ACCOUNT_TYPE_ENUM = _value_enum(AccountType, "accounttype")
USER_ROLE_ENUM = _value_enum(UserRole, "userrole")


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Family(Base, TimestampMixin):
    __tablename__ = "families"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)

    users: Mapped[list["User"]] = relationship("User", back_populates="family")


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("families.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        USER_ROLE_ENUM, nullable=False, default=UserRole.member
    )
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_login_date: Mapped[Optional[date]] = mapped_column(Date)

    family: Mapped["Family"] = relationship("Family", back_populates="users")
    achievements: Mapped[list["Achievement"]] = relationship(
        "Achievement", back_populates="user", order_by="Achievement.earned_at"
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("families.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(ACCOUNT_TYPE_ENUM, nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    limit_cents: Mapped[Optional[int]] = mapped_column(Integer)
    closing_day: Mapped[Optional[int]] = mapped_column(Integer)
    due_day: Mapped[Optional[int]] = mapped_column(Integer)
    color: Mapped[str] = mapped_column(String(9), nullable=False, default="#6366f1")
    icon: Mapped[Optional[str]] = mapped_column(String(16))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )

    @property
    def is_credit_card(self) -> bool:
        return self.type == AccountType.credit_card

    __table_args__ = (
        CheckConstraint(
            "closing_day IS NULL OR (closing_day BETWEEN 1 AND 31)",
            name="ck_account_closing_day_range",
        ),
        CheckConstraint(
            "due_day IS NULL OR (due_day BETWEEN 1 AND 31)",
            name="ck_account_due_day_range",
        ),
        Index("ix_accounts_family", "family_id"),
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("families.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        TRANSACTION_TYPE_ENUM, nullable=False, default=TransactionType.expense
    )
    color: Mapped[str] = mapped_column(String(9), nullable=False, default="#6366f1")
    icon: Mapped[str] = mapped_column(String(16), nullable=False, default="📦")
    rules_json: Mapped[Optional[str]] = mapped_column(Text)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint(
            "family_id", "name", "type", name="uq_category_family_name_type"
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("families.id"), nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    type: Mapped[TransactionType] = mapped_column(TRANSACTION_TYPE_ENUM, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        TRANSACTION_STATUS_ENUM, nullable=False, default=TransactionStatus.confirmed
    )
    source: Mapped[TransactionSource] = mapped_column(
        TRANSACTION_SOURCE_ENUM, nullable=False, default=TransactionSource.manual
    )
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    billing_month: Mapped[Optional[dt.date]] = mapped_column(Date)
    is_installment: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    installment_group_id: Mapped[Optional[str]] = mapped_column(String(32))
    installment_number: Mapped[Optional[int]] = mapped_column(Integer)
    total_installments: Mapped[Optional[int]] = mapped_column(Integer)

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    account: Mapped[Optional["Account"]] = relationship(
        "Account", back_populates="transactions"
    )
    user: Mapped[Optional["User"]] = relationship("User")

    __table_args__ = (
        Index("ix_transactions_family_date", "family_id", "date"),
        Index("ix_transactions_family_status_date", "family_id", "status", "date"),
        Index("ix_transactions_installment_group", "installment_group_id"),
        Index("ix_transactions_account_billing", "account_id", "billing_month"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("families.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        CheckConstraint("limit_cents > 0", name="ck_budget_limit_positive"),
        UniqueConstraint(
            "family_id", "category_id", "month", name="uq_budget_family_category_month"
        ),
        Index("ix_budget_family_month", "family_id", "month"),
    )


class ChatMessage(Base, TimestampMixin):
    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("families.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    response: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("ix_chat_messages_user_created", "user_id", "created_at"),)


class Achievement(Base):
    __tablename__ = "achievements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(80), nullable=False)
    icon: Mapped[str] = mapped_column(String(16), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="achievements")

    __table_args__ = (
        UniqueConstraint("user_id", "type", name="uq_achievement_user_type"),
    )
