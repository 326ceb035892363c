from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, joinedload, selectinload

from rapidfuzz.distance import Levenshtein

from auth import hash_password, verify_password
from email_parser import ParsedEmail, parse_email, suggest_category
from gamification import GamificationService, registration_action
from insights import UNCATEGORIZED, BudgetLine, LedgerEntry, generate_insights
from installments import split_amount, resolve_billing_month, split_installments
from models import (
    Account,
    AccountType,
    Budget,
    Category,
    Family,
    Transaction,
    TransactionSource,
    TransactionStatus,
    TransactionType,
    User,
    UserRole,
)
from money import format_amount, to_cents
from periods import (
    Period,
    add_months,
    days_in_month,
    local_today,
    month_key,
    month_period,
    month_start,
    parse_month,
)
from schemas import (
    AccountIn,
    AccountUpdate,
    BudgetIn,
    CategoryIn,
    CategoryUpdate,
    Insight,
    MemberIn,
    RegisterIn,
    TransactionIn,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY_NAME = "Outros"
DEFAULT_DUE_DAY = 10

ALLOWED_STATUS_TRANSITIONS: dict[TransactionStatus, set[TransactionStatus]] = {
    TransactionStatus.pending: {TransactionStatus.confirmed, TransactionStatus.cancelled},
    TransactionStatus.confirmed: {TransactionStatus.cancelled},
    TransactionStatus.cancelled: set(),
}


class NotFound(ValueError):
    pass


class CategoryNotFound(NotFound):
    pass


class CategoryAmbiguous(ValueError):
    pass


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    status: Optional[TransactionStatus] = None
    period: Optional[Period] = None
    installment_group_id: Optional[str] = None


@dataclass
class InstallmentPurchase:
    group_id: str
    per_installment_cents: int
    transactions: list[Transaction] = field(default_factory=list)

    @property
    def message(self) -> str:
        return (
            f"Compra parcelada criada: {len(self.transactions)}x de "
            f"R$ {format_amount(self.per_installment_cents)}"
        )


def _sum_cents(transactions: list[Transaction]) -> int:
    return sum(t.amount_cents for t in transactions)


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )

    def register(self, data: RegisterIn) -> User:
        if self._by_email(data.email):
            raise ValueError("Email already in use")
        family = Family(name=data.family_name.strip())
        self.session.add(family)
        self.session.flush()
        user = User(
            family_id=family.id,
            name=data.name.strip(),
            email=data.email.strip().lower(),
            password_hash=hash_password(data.password),
            role=UserRole.admin,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"family_registered: family_id={family.id} user_id={user.id}")
        return user

    def authenticate(self, email: str, password: str) -> Optional[User]:
        user = self._by_email(email)
        if not user or not verify_password(password, user.password_hash):
            return None
        return user

    def add_member(self, family_id: int, data: MemberIn) -> User:
        if self._by_email(data.email):
            raise ValueError("Email already in use")
        user = User(
            family_id=family_id,
            name=data.name.strip(),
            email=data.email.strip().lower(),
            password_hash=hash_password(data.password),
            role=data.role,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def family(self, family_id: int) -> Family:
        family = self.session.scalar(
            select(Family)
            .options(selectinload(Family.users))
            .where(Family.id == family_id)
        )
        if not family:
            raise NotFound("Family not found")
        return family


class CategoryService:
    def __init__(self, session: Session, family_id: int) -> None:
        self.session = session
        self.family_id = family_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.family_id == self.family_id)
            .order_by(Category.name)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.family_id != self.family_id:
            raise NotFound("Category not found")
        return category

    def _ensure_unique(
        self, name: str, txn_type: TransactionType, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Category).where(
            Category.family_id == self.family_id,
            Category.type == txn_type,
            func.lower(Category.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValueError("A category with this name already exists for this type")

    def create(self, data: CategoryIn) -> Category:
        self._ensure_unique(data.name, data.type)
        category = Category(
            family_id=self.family_id,
            name=data.name.strip(),
            type=data.type,
            icon=data.icon or "📦",
            color=data.color or "#6366f1",
            rules_json=json.dumps(data.rules),
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        name = data.name if data.name is not None else category.name
        txn_type = data.type or category.type
        if data.name is not None or data.type is not None:
            self._ensure_unique(name, txn_type, exclude_id=category.id)
        category.name = name.strip()
        category.type = txn_type
        if data.icon:
            category.icon = data.icon
        if data.color:
            category.color = data.color
        if data.rules is not None:
            category.rules_json = json.dumps(data.rules)
        self.session.commit()
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        self.session.execute(
            update(Transaction)
            .where(
                Transaction.family_id == self.family_id,
                Transaction.category_id == category.id,
            )
            .values(category_id=None)
        )
        self.session.execute(
            delete(Budget).where(Budget.category_id == category.id)
        )
        self.session.delete(category)
        self.session.commit()

    def resolve(
        self, name: str, txn_type: TransactionType = TransactionType.expense
    ) -> Category:
        """Find a category by name without ever creating one.

        Exact case-insensitive matches win; otherwise a single category within
        one edit of ``name`` is accepted. Several equally close candidates raise
        ``CategoryAmbiguous`` and no candidate raises ``CategoryNotFound``.
        """
        clean = name.strip()
        input_lower = clean.lower()
        if not input_lower:
            raise CategoryNotFound("Category name is empty")
        exact = self.session.scalar(
            select(Category).where(
                Category.family_id == self.family_id,
                Category.type == txn_type,
                func.lower(Category.name) == input_lower,
            )
        )
        if exact:
            return exact

        categories = self.session.scalars(
            select(Category).where(
                Category.family_id == self.family_id, Category.type == txn_type
            )
        ).all()
        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in categories:
            dist = int(Levenshtein.distance(input_lower, category.name.strip().lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)

        if best_distance is None or best_distance > 1:
            raise CategoryNotFound(f"Category '{clean}' not found")
        if len(best) > 1:
            options = ", ".join(sorted({c.name for c in best}))
            raise CategoryAmbiguous(f"Category '{clean}' is ambiguous; matches: {options}")
        return best[0]

    def keyword_rules(self) -> dict[str, list[str]]:
        rules: dict[str, list[str]] = {}
        for category in self.list_all():
            if category.type != TransactionType.expense or not category.rules_json:
                continue
            try:
                keywords = json.loads(category.rules_json)
            except json.JSONDecodeError:
                logger.warning(f"category_rules_invalid: category_id={category.id}")
                continue
            if keywords:
                rules[category.name] = [str(k) for k in keywords]
        return rules

    def suggest(self, text: str) -> Optional[str]:
        suggestion = suggest_category(text, self.keyword_rules()) or suggest_category(
            text
        )
        return suggestion.category if suggestion else None


class AccountService:
    def __init__(self, session: Session, family_id: int) -> None:
        self.session = session
        self.family_id = family_id

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.family_id != self.family_id:
            raise NotFound("Account not found")
        return account

    def list_all(self, today: Optional[date] = None) -> list[dict[str, object]]:
        """Accounts newest first; credit cards carry their current limit usage."""
        today = today or local_today()
        stmt = (
            select(Account)
            .where(Account.family_id == self.family_id)
            .order_by(Account.created_at.desc(), Account.id.desc())
        )
        rows: list[dict[str, object]] = []
        for account in self.session.scalars(stmt).all():
            row: dict[str, object] = {"account": account}
            if account.is_credit_card:
                row.update(self.credit_usage(account, today))
            rows.append(row)
        return rows

    @staticmethod
    def _validate_credit_card(
        limit_cents: Optional[int], closing_day: Optional[int], due_day: Optional[int]
    ) -> None:
        if limit_cents is None or closing_day is None or due_day is None:
            raise ValueError("Credit cards require limit, closing_day and due_day")
        if not 1 <= closing_day <= 31 or not 1 <= due_day <= 31:
            raise ValueError("Closing and due day must be between 1 and 31")
        if limit_cents <= 0:
            raise ValueError("Limit must be greater than zero")

    def create(self, data: AccountIn) -> Account:
        is_card = data.type == AccountType.credit_card
        limit_cents = to_cents(data.limit) if data.limit is not None else None
        if is_card:
            self._validate_credit_card(limit_cents, data.closing_day, data.due_day)
        default_icon = {
            AccountType.credit_card: "💳",
            AccountType.bank: "🏦",
            AccountType.cash: "💵",
        }[data.type]
        account = Account(
            family_id=self.family_id,
            name=data.name.strip(),
            type=data.type,
            balance_cents=to_cents(data.balance),
            limit_cents=limit_cents if is_card else None,
            closing_day=data.closing_day if is_card else None,
            due_day=data.due_day if is_card else None,
            color=data.color or "#6366f1",
            icon=data.icon or default_icon,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountUpdate) -> Account:
        account = self.get(account_id)
        fields = data.model_fields_set
        if data.name:
            account.name = data.name.strip()
        if data.type:
            account.type = data.type
        if "limit" in fields:
            account.limit_cents = to_cents(data.limit) if data.limit is not None else None
        if "closing_day" in fields:
            account.closing_day = data.closing_day
        if "due_day" in fields:
            account.due_day = data.due_day
        if data.color:
            account.color = data.color
        if data.icon:
            account.icon = data.icon
        if data.balance is not None:
            account.balance_cents = to_cents(data.balance)
        if account.is_credit_card:
            self._validate_credit_card(
                account.limit_cents, account.closing_day, account.due_day
            )
        self.session.commit()
        return account

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.account_id == account.id)
            .values(account_id=None)
        )
        self.session.delete(account)
        self.session.commit()

    def credit_usage(self, account: Account, today: date) -> dict[str, object]:
        """Limit usage of the statement month that contains ``today``."""
        used = int(
            self.session.execute(
                select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                    Transaction.account_id == account.id,
                    Transaction.type == TransactionType.expense,
                    Transaction.status == TransactionStatus.confirmed,
                    Transaction.billing_month == month_start(today),
                )
            ).scalar_one()
            or 0
        )
        limit_cents = account.limit_cents or 0
        return {
            "used_limit_cents": used,
            "available_limit_cents": limit_cents - used,
            "utilization_percent": (used * 100 / limit_cents) if limit_cents else 0.0,
        }


class TransactionService:
    def __init__(
        self, session: Session, family_id: int, user_id: Optional[int] = None
    ) -> None:
        self.session = session
        self.family_id = family_id
        self.user_id = user_id

    def _category(
        self, category_id: Optional[int], txn_type: TransactionType
    ) -> Optional[Category]:
        if category_id is None:
            return None
        category = CategoryService(self.session, self.family_id).get(category_id)
        if category.type != txn_type:
            raise ValueError("Category type mismatch")
        return category

    def _account(self, account_id: Optional[int]) -> Optional[Account]:
        if account_id is None:
            return None
        return AccountService(self.session, self.family_id).get(account_id)

    @staticmethod
    def _closing_day(account: Optional[Account], txn_type: TransactionType) -> Optional[int]:
        if (
            account is not None
            and account.is_credit_card
            and account.closing_day
            and txn_type == TransactionType.expense
        ):
            return account.closing_day
        return None

    def _reward(self, txn_type: TransactionType, categorized: bool) -> None:
        if self.user_id is None:
            return
        gamification = GamificationService(self.session, self.family_id)
        gamification.award_points(self.user_id, registration_action(txn_type))
        if categorized:
            gamification.award_points(self.user_id, "CATEGORIZE")
        gamification.check_and_award_medals(self.user_id)

    def create(
        self,
        data: TransactionIn,
        *,
        source: TransactionSource = TransactionSource.manual,
    ) -> Union[Transaction, InstallmentPurchase]:
        if data.is_installment:
            return self.create_installment_purchase(data, source=source)
        amount_cents = to_cents(data.amount)
        if amount_cents <= 0:
            raise ValueError("Amount must be greater than zero")
        category = self._category(data.category_id, data.type)
        account = self._account(data.account_id)
        closing_day = self._closing_day(account, data.type)

        txn = Transaction(
            family_id=self.family_id,
            user_id=self.user_id,
            amount_cents=amount_cents,
            description=data.description.strip(),
            date=data.date,
            type=data.type,
            status=data.status,
            source=source,
            category_id=category.id if category else None,
            account_id=account.id if account else None,
            billing_month=(
                resolve_billing_month(data.date, closing_day)
                if closing_day is not None
                else None
            ),
            is_installment=False,
        )
        self.session.add(txn)
        self.session.flush()
        self._reward(data.type, categorized=category is not None)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def create_installment_purchase(
        self,
        data: TransactionIn,
        *,
        source: TransactionSource = TransactionSource.manual,
    ) -> InstallmentPurchase:
        category = self._category(data.category_id, data.type)
        account = self._account(data.account_id)
        total_cents = to_cents(data.amount)
        drafts = split_installments(
            total_cents,
            data.total_installments or 0,
            data.first_installment_date or data.date,
            credit_closing_day=self._closing_day(account, data.type),
        )
        per_installment, _ = split_amount(total_cents, len(drafts))
        purchase = InstallmentPurchase(
            group_id=drafts[0].group_id, per_installment_cents=per_installment
        )
        description = data.description.strip()
        for draft in drafts:
            txn = Transaction(
                family_id=self.family_id,
                user_id=self.user_id,
                amount_cents=draft.amount_cents,
                description=f"{description} ({draft.installment_number}/{draft.total_installments})",
                date=draft.date,
                type=data.type,
                status=data.status,
                source=source,
                category_id=category.id if category else None,
                account_id=account.id if account else None,
                billing_month=draft.billing_month,
                is_installment=True,
                installment_group_id=draft.group_id,
                installment_number=draft.installment_number,
                total_installments=draft.total_installments,
            )
            self.session.add(txn)
            purchase.transactions.append(txn)
        self.session.flush()
        self._reward(data.type, categorized=False)
        self.session.commit()
        for txn in purchase.transactions:
            self.session.refresh(txn)
        logger.info(
            f"installment_purchase_created: family_id={self.family_id} "
            f"group_id={purchase.group_id} count={len(drafts)} total_cents={total_cents}"
        )
        return purchase

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.account))
            .where(
                Transaction.family_id == self.family_id,
                Transaction.id == transaction_id,
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def list(self, filters: TransactionFilters, limit: int = 100) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.account))
            .where(Transaction.family_id == self.family_id)
        )
        if filters.installment_group_id:
            stmt = stmt.where(
                Transaction.installment_group_id == filters.installment_group_id
            ).order_by(Transaction.installment_number)
            return list(self.session.scalars(stmt).all())
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.status:
            stmt = stmt.where(Transaction.status == filters.status)
        if filters.period:
            stmt = stmt.where(
                Transaction.date.between(filters.period.start, filters.period.end)
            )
        stmt = stmt.order_by(Transaction.date.desc(), Transaction.id.desc()).limit(limit)
        return list(self.session.scalars(stmt).all())

    def installment_group(self, group_id: str) -> list[Transaction]:
        items = self.list(TransactionFilters(installment_group_id=group_id))
        if not items:
            raise NotFound("Installment group not found")
        return items

    @staticmethod
    def _apply_status(txn: Transaction, status: TransactionStatus) -> None:
        if txn.status == status:
            return
        if status not in ALLOWED_STATUS_TRANSITIONS[txn.status]:
            raise ValueError(
                f"Cannot change status from {txn.status.value} to {status.value}"
            )
        txn.status = status

    def set_status(self, transaction_id: int, status: TransactionStatus) -> Transaction:
        txn = self.get(transaction_id)
        self._apply_status(txn, status)
        self.session.commit()
        return txn

    def update(
        self,
        transaction_id: int,
        data: TransactionUpdate,
        today: Optional[date] = None,
    ) -> Transaction:
        today = today or local_today()
        txn = self.get(transaction_id)
        fields = data.model_fields_set

        if data.amount is not None:
            if txn.is_installment:
                raise ValueError("Installment amounts cannot be edited individually")
            txn.amount_cents = to_cents(data.amount)
        type_changed = data.type is not None and data.type != txn.type
        if type_changed:
            if txn.is_installment:
                raise ValueError("Installment type cannot be changed")
            txn.type = data.type
        if "category_id" in fields:
            category = self._category(data.category_id, txn.type)
            txn.category_id = category.id if category else None
        elif txn.category is not None and txn.category.type != txn.type:
            raise ValueError("Category type mismatch")
        if data.description:
            description = data.description.strip()
            if txn.is_installment:
                description = (
                    f"{description} ({txn.installment_number}/{txn.total_installments})"
                )
            txn.description = description
        if data.date is not None:
            txn.date = data.date
        if type_changed or data.date is not None:
            closing_day = self._closing_day(txn.account, txn.type)
            txn.billing_month = (
                resolve_billing_month(txn.date, closing_day)
                if closing_day is not None
                else None
            )
        if data.status is not None:
            self._apply_status(txn, data.status)

        if txn.is_installment and txn.installment_group_id:
            self._propagate_to_future_siblings(txn, data, today)

        self.session.commit()
        self.session.refresh(txn)
        return txn

    def _propagate_to_future_siblings(
        self, txn: Transaction, data: TransactionUpdate, today: date
    ) -> None:
        fields = data.model_fields_set
        if not data.description and "category_id" not in fields:
            return
        siblings = self.session.scalars(
            select(Transaction).where(
                Transaction.family_id == self.family_id,
                Transaction.installment_group_id == txn.installment_group_id,
                Transaction.id != txn.id,
                Transaction.date > today,
                Transaction.status != TransactionStatus.cancelled,
            )
        ).all()
        for sibling in siblings:
            if data.description:
                sibling.description = (
                    f"{data.description.strip()} "
                    f"({sibling.installment_number}/{sibling.total_installments})"
                )
            if "category_id" in fields:
                sibling.category_id = txn.category_id

    def cancel_installment_group(self, group_id: str, from_number: int = 1) -> int:
        self.installment_group(group_id)
        result = self.session.execute(
            update(Transaction)
            .where(
                Transaction.family_id == self.family_id,
                Transaction.installment_group_id == group_id,
                Transaction.installment_number >= from_number,
            )
            .values(status=TransactionStatus.cancelled)
        )
        self.session.commit()
        logger.info(
            f"installments_cancelled: family_id={self.family_id} group_id={group_id} "
            f"from_number={from_number} count={result.rowcount}"
        )
        return int(result.rowcount or 0)

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        if txn.is_installment and txn.installment_group_id:
            self.cancel_installment_group(txn.installment_group_id)
            return
        self.session.delete(txn)
        self.session.commit()

    def confirmed_between(self, start: date, end: date) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.family_id == self.family_id,
                Transaction.status == TransactionStatus.confirmed,
                Transaction.date.between(start, end),
            )
            .order_by(Transaction.date, Transaction.id)
        )
        return list(self.session.scalars(stmt).all())


class BillService:
    def __init__(
        self, session: Session, family_id: int, user_id: Optional[int] = None
    ) -> None:
        self.session = session
        self.family_id = family_id
        self.user_id = user_id

    def _credit_card(self, account_id: int) -> Account:
        account = AccountService(self.session, self.family_id).get(account_id)
        if not account.is_credit_card:
            raise ValueError("This account is not a credit card")
        return account

    def _bill_transactions(
        self, account: Account, billing_month: date
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.account_id == account.id,
                Transaction.type == TransactionType.expense,
                Transaction.billing_month == billing_month,
                Transaction.status != TransactionStatus.cancelled,
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    @staticmethod
    def due_date(account: Account, billing_month: date) -> date:
        due_day = account.due_day or DEFAULT_DUE_DAY
        last_day = days_in_month(billing_month.year, billing_month.month)
        return billing_month.replace(day=min(due_day, last_day))

    def bill(
        self, account_id: int, month: Optional[str] = None, today: Optional[date] = None
    ) -> dict[str, object]:
        today = today or local_today()
        account = self._credit_card(account_id)
        billing_month = parse_month(month) if month else month_start(today)
        transactions = self._bill_transactions(account, billing_month)
        paid = [t for t in transactions if t.status == TransactionStatus.confirmed]
        pending = [t for t in transactions if t.status == TransactionStatus.pending]
        due = self.due_date(account, billing_month)
        return {
            "account": account,
            "billing_month": month_key(billing_month),
            "due_date": due,
            "is_overdue": due < today and bool(pending),
            "total_bill_cents": _sum_cents(transactions),
            "total_paid_cents": _sum_cents(paid),
            "total_pending_cents": _sum_cents(pending),
            "transaction_count": len(transactions),
            "transactions": transactions,
        }

    def pay(
        self,
        account_id: int,
        month: Optional[str] = None,
        from_account_id: Optional[int] = None,
        today: Optional[date] = None,
    ) -> dict[str, object]:
        today = today or local_today()
        account = self._credit_card(account_id)
        billing_month = parse_month(month) if month else month_start(today)
        pending = [
            t
            for t in self._bill_transactions(account, billing_month)
            if t.status == TransactionStatus.pending
        ]
        total = _sum_cents(pending)
        for txn in pending:
            txn.status = TransactionStatus.confirmed

        if from_account_id is not None and total > 0:
            paying_account = AccountService(self.session, self.family_id).get(
                from_account_id
            )
            self.session.add(
                Transaction(
                    family_id=self.family_id,
                    user_id=self.user_id,
                    amount_cents=total,
                    description=(
                        f"Pagamento fatura {account.name} - "
                        f"{billing_month.month:02d}/{billing_month.year}"
                    ),
                    date=today,
                    type=TransactionType.expense,
                    status=TransactionStatus.confirmed,
                    source=TransactionSource.bill_payment,
                    account_id=paying_account.id,
                )
            )
        self.session.commit()
        logger.info(
            f"bill_paid: account_id={account.id} month={month_key(billing_month)} "
            f"count={len(pending)} total_cents={total}"
        )
        return {
            "success": True,
            "message": f"Fatura paga! Total: R$ {format_amount(total)}",
            "paid_amount_cents": total,
            "transactions_paid": len(pending),
        }


class BudgetService:
    def __init__(self, session: Session, family_id: int) -> None:
        self.session = session
        self.family_id = family_id

    def upsert(self, data: BudgetIn) -> Budget:
        category = CategoryService(self.session, self.family_id).get(data.category_id)
        if category.type != TransactionType.expense:
            raise ValueError("Budgets can only be set for expense categories")
        limit_cents = to_cents(data.limit)
        if limit_cents <= 0:
            raise ValueError("Budget limit must be greater than zero")
        budget = self.session.scalar(
            select(Budget).where(
                Budget.family_id == self.family_id,
                Budget.category_id == category.id,
                Budget.month == data.month,
            )
        )
        if budget:
            budget.limit_cents = limit_cents
        else:
            budget = Budget(
                family_id=self.family_id,
                category_id=category.id,
                month=data.month,
                limit_cents=limit_cents,
            )
            self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.family_id != self.family_id:
            raise NotFound("Budget not found")
        self.session.delete(budget)
        self.session.commit()

    def for_month(self, month: str) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.family_id == self.family_id, Budget.month == month)
            .order_by(Budget.id)
        )
        return list(self.session.scalars(stmt).all())

    def budget_lines(self, month: str) -> list[BudgetLine]:
        return [
            BudgetLine(
                category_id=b.category_id,
                category_name=b.category.name,
                limit_cents=b.limit_cents,
            )
            for b in self.for_month(month)
        ]

    def spent_by_category(self, month: str) -> dict[int, int]:
        period = month_period(parse_month(month))
        rows = self.session.execute(
            select(Transaction.category_id, func.sum(Transaction.amount_cents))
            .where(
                Transaction.family_id == self.family_id,
                Transaction.type == TransactionType.expense,
                Transaction.status == TransactionStatus.confirmed,
                Transaction.category_id.is_not(None),
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.category_id)
        ).all()
        return {category_id: int(total or 0) for category_id, total in rows}

    def list_for_month(self, month: str) -> list[dict[str, object]]:
        spent = self.spent_by_category(month)
        progress = []
        for budget in self.for_month(month):
            spent_cents = spent.get(budget.category_id, 0)
            progress.append(
                {
                    "id": budget.id,
                    "month": budget.month,
                    "category_id": budget.category_id,
                    "category": budget.category.name,
                    "limit_cents": budget.limit_cents,
                    "spent_cents": spent_cents,
                    "remaining_cents": budget.limit_cents - spent_cents,
                    "percentage": spent_cents * 100 / budget.limit_cents,
                }
            )
        return progress


class DashboardService:
    TREND_MONTHS = 6
    FORECAST_MONTHS = 6

    def __init__(self, session: Session, family_id: int) -> None:
        self.session = session
        self.family_id = family_id

    def summary(self, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        current = month_period(today)
        txns = TransactionService(self.session, self.family_id)
        transactions = txns.confirmed_between(current.start, current.end)

        expenses_list = [t for t in transactions if t.type == TransactionType.expense]
        income = _sum_cents(
            [t for t in transactions if t.type == TransactionType.income]
        )
        expenses = _sum_cents(expenses_list)

        breakdown: dict[str, dict[str, object]] = {}
        for txn in expenses_list:
            name = txn.category.name if txn.category else UNCATEGORIZED
            entry = breakdown.setdefault(
                name,
                {
                    "name": name,
                    "total_cents": 0,
                    "color": txn.category.color if txn.category else "#6366f1",
                    "icon": txn.category.icon if txn.category else "📦",
                },
            )
            entry["total_cents"] += txn.amount_cents

        trend_start = add_months(current.start, -(self.TREND_MONTHS - 1))
        history = txns.confirmed_between(trend_start, current.end)
        monthly_trend = []
        for offset in range(self.TREND_MONTHS - 1, -1, -1):
            key = month_key(add_months(current.start, -offset))
            month_txns = [t for t in history if month_key(t.date) == key]
            m_income = _sum_cents(
                [t for t in month_txns if t.type == TransactionType.income]
            )
            m_expenses = _sum_cents(
                [t for t in month_txns if t.type == TransactionType.expense]
            )
            monthly_trend.append(
                {
                    "month": key,
                    "income_cents": m_income,
                    "expenses_cents": m_expenses,
                    "balance_cents": m_income - m_expenses,
                }
            )

        forecast_end = month_period(add_months(current.start, self.FORECAST_MONTHS)).end
        upcoming = [
            t
            for t in txns.confirmed_between(add_months(current.start, 1), forecast_end)
            if t.is_installment
        ]
        future_installments = []
        for offset in range(1, self.FORECAST_MONTHS + 1):
            key = month_key(add_months(current.start, offset))
            total = _sum_cents([t for t in upcoming if month_key(t.date) == key])
            if total > 0:
                future_installments.append({"month": key, "amount_cents": total})

        daily_burn = expenses / max(today.day, 1)
        projected_expenses = daily_burn * days_in_month(today.year, today.month)

        pending_count = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.family_id == self.family_id,
                Transaction.status == TransactionStatus.pending,
            )
        ).scalar_one()

        return {
            "month": current.slug,
            "income_cents": income,
            "expenses_cents": expenses,
            "balance_cents": income - expenses,
            "category_breakdown": sorted(
                breakdown.values(), key=lambda c: c["total_cents"], reverse=True
            ),
            "monthly_trend": monthly_trend,
            "projected_balance_cents": round(income - projected_expenses),
            "future_installments": future_installments,
            "current_month_installments_cents": _sum_cents(
                [t for t in expenses_list if t.is_installment]
            ),
            "pending_count": pending_count,
            "transaction_count": len(transactions),
        }


class InsightsService:
    def __init__(self, session: Session, family_id: int) -> None:
        self.session = session
        self.family_id = family_id

    @staticmethod
    def _entries(transactions: list[Transaction]) -> list[LedgerEntry]:
        return [
            LedgerEntry(
                type=t.type,
                amount_cents=t.amount_cents,
                category_id=t.category_id,
                category_name=t.category.name if t.category else None,
            )
            for t in transactions
        ]

    def generate(self, today: Optional[date] = None) -> list[Insight]:
        today = today or local_today()
        current = month_period(today)
        previous = month_period(add_months(current.start, -1))
        txns = TransactionService(self.session, self.family_id)
        budgets = BudgetService(self.session, self.family_id)
        return generate_insights(
            self._entries(txns.confirmed_between(current.start, current.end)),
            self._entries(txns.confirmed_between(previous.start, previous.end)),
            budgets.budget_lines(current.slug),
            today,
        )


class IngestService:
    def __init__(self, session: Session, family_id: int, user_id: int) -> None:
        self.session = session
        self.family_id = family_id
        self.user_id = user_id

    def _category_for(self, establishment: str) -> Category:
        categories = CategoryService(self.session, self.family_id)
        name = categories.suggest(establishment) or DEFAULT_CATEGORY_NAME
        try:
            return categories.resolve(name, TransactionType.expense)
        except CategoryNotFound:
            return categories.create(CategoryIn(name=name, type=TransactionType.expense))

    def ingest_email(
        self, content: str, today: Optional[date] = None
    ) -> tuple[Transaction, ParsedEmail]:
        today = today or local_today()
        parsed = parse_email(content, today=today)
        if not parsed:
            raise ValueError("No transaction found in the e-mail content")
        best = parsed[0]
        category = self._category_for(best.establishment)
        txn = TransactionService(self.session, self.family_id, self.user_id).create(
            TransactionIn(
                amount=Decimal(best.amount_cents) / 100,
                description=best.establishment[:200] or "E-mail",
                date=best.date,
                type=TransactionType.expense,
                category_id=category.id,
            ),
            source=TransactionSource.email,
        )
        logger.info(
            f"email_ingested: family_id={self.family_id} transaction_id={txn.id} "
            f"confidence={best.confidence}"
        )
        return txn, best
