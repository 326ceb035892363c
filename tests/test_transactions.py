from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from models import (
    AccountType,
    Family,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
    UserRole,
)
from periods import month_period
from schemas import AccountIn, CategoryIn, TransactionIn, TransactionUpdate
from services import (
    AccountService,
    BillService,
    CategoryService,
    InstallmentPurchase,
    NotFound,
    TransactionFilters,
    TransactionService,
)


def _seed(session: Session, email: str = "ana@example.com") -> User:
    family = Family(name="Silva")
    session.add(family)
    session.flush()
    user = User(
        family_id=family.id,
        name="Ana",
        email=email,
        password_hash="x",
        role=UserRole.admin,
    )
    session.add(user)
    session.commit()
    return user


def _card(session: Session, family_id: int, closing_day: int = 10):
    return AccountService(session, family_id).create(
        AccountIn(
            name="Nubank",
            type=AccountType.credit_card,
            limit=Decimal("5000"),
            closing_day=closing_day,
            due_day=17,
        )
    )


def _expense(**overrides) -> TransactionIn:
    values = {
        "amount": Decimal("100.00"),
        "description": "Notebook",
        "date": date(2024, 3, 15),
        "type": TransactionType.expense,
    }
    values.update(overrides)
    return TransactionIn(**values)


def test_single_card_expense_gets_billing_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _seed(session)
        card = _card(session, user.family_id)
        txn = TransactionService(session, user.family_id, user.id).create(
            _expense(account_id=card.id)
        )
        assert txn.amount_cents == 10000
        assert txn.billing_month == date(2024, 4, 1)
        assert txn.status == TransactionStatus.confirmed
        assert not txn.is_installment


def test_installment_purchase_persists_every_installment() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _seed(session)
        card = _card(session, user.family_id)
        result = TransactionService(session, user.family_id, user.id).create(
            _expense(account_id=card.id, is_installment=True, total_installments=3)
        )

        assert isinstance(result, InstallmentPurchase)
        assert result.message == "Compra parcelada criada: 3x de R$ 33.33"
        items = TransactionService(session, user.family_id).installment_group(
            result.group_id
        )
        assert [t.amount_cents for t in items] == [3333, 3333, 3334]
        assert [t.description for t in items] == [
            "Notebook (1/3)",
            "Notebook (2/3)",
            "Notebook (3/3)",
        ]
        assert [t.date for t in items] == [
            date(2024, 3, 15),
            date(2024, 4, 15),
            date(2024, 5, 15),
        ]
        assert [t.billing_month for t in items] == [
            date(2024, 4, 1),
            date(2024, 5, 1),
            date(2024, 6, 1),
        ]
        assert all(t.is_installment and t.total_installments == 3 for t in items)


def test_installments_start_on_first_installment_date() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _seed(session)
        purchase = TransactionService(session, user.family_id).create_installment_purchase(
            _expense(
                is_installment=True,
                total_installments=2,
                first_installment_date=date(2024, 1, 31),
            )
        )
        assert [t.date for t in purchase.transactions] == [
            date(2024, 1, 31),
            date(2024, 2, 29),
        ]
        assert all(t.billing_month is None for t in purchase.transactions)


@pytest.mark.parametrize("count", [None, 1, 37])
def test_invalid_installment_count_persists_nothing(count) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _seed(session)
        with pytest.raises(ValueError):
            TransactionService(session, user.family_id).create(
                _expense(is_installment=True, total_installments=count)
            )
        assert session.scalar(select(func.count(Transaction.id))) == 0


def test_cancel_installment_group_from_number() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _seed(session)
        service = TransactionService(session, user.family_id)
        purchase = service.create_installment_purchase(
            _expense(is_installment=True, total_installments=4)
        )

        assert service.cancel_installment_group(purchase.group_id, 3) == 2
        statuses = [t.status for t in service.installment_group(purchase.group_id)]
        assert statuses == [
            TransactionStatus.confirmed,
            TransactionStatus.confirmed,
            TransactionStatus.cancelled,
            TransactionStatus.cancelled,
        ]

        with pytest.raises(NotFound):
            service.cancel_installment_group("missing")


def test_delete_plain_removes_and_installment_cancels_group() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _seed(session)
        service = TransactionService(session, user.family_id)
        plain = service.create(_expense())
        purchase = service.create_installment_purchase(
            _expense(is_installment=True, total_installments=3)
        )

        service.delete(plain.id)
        with pytest.raises(NotFound):
            service.get(plain.id)

        service.delete(purchase.transactions[1].id)
        items = service.installment_group(purchase.group_id)
        assert len(items) == 3
        assert all(t.status == TransactionStatus.cancelled for t in items)


def test_status_transitions() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _seed(session)
        service = TransactionService(session, user.family_id)
        txn = service.create(_expense(status=TransactionStatus.pending))

        assert service.set_status(txn.id, TransactionStatus.confirmed).status == (
            TransactionStatus.confirmed
        )
        assert service.set_status(txn.id, TransactionStatus.confirmed).status == (
            TransactionStatus.confirmed
        )
        service.set_status(txn.id, TransactionStatus.cancelled)
        with pytest.raises(ValueError):
            service.set_status(txn.id, TransactionStatus.confirmed)
        with pytest.raises(ValueError):
            service.set_status(txn.id, TransactionStatus.pending)


def test_installment_amount_cannot_be_edited() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _seed(session)
        service = TransactionService(session, user.family_id)
        purchase = service.create_installment_purchase(
            _expense(is_installment=True, total_installments=2)
        )
        with pytest.raises(ValueError):
            service.update(
                purchase.transactions[0].id, TransactionUpdate(amount=Decimal("10"))
            )

        plain = service.create(_expense())
        updated = service.update(plain.id, TransactionUpdate(amount=Decimal("12.345")))
        assert updated.amount_cents == 1235


def test_changing_type_recomputes_billing_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _seed(session)
        card = _card(session, user.family_id)
        service = TransactionService(session, user.family_id, user.id)
        txn = service.create(
            _expense(
                account_id=card.id,
                amount=Decimal("50"),
                type=TransactionType.income,
            )
        )
        assert txn.billing_month is None

        txn = service.update(txn.id, TransactionUpdate(type=TransactionType.expense))
        assert txn.billing_month == date(2024, 4, 1)
        bill = BillService(session, user.family_id).bill(
            card.id, "2024-04", today=date(2024, 3, 20)
        )
        assert bill["total_bill_cents"] == 5000

        txn = service.update(txn.id, TransactionUpdate(type=TransactionType.income))
        assert txn.billing_month is None

        txn = service.update(
            txn.id,
            TransactionUpdate(type=TransactionType.expense, date=date(2024, 3, 5)),
        )
        assert txn.billing_month == date(2024, 3, 1)


def test_installment_edits_propagate_to_future_installments() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _seed(session)
        food = CategoryService(session, user.family_id).create(CategoryIn(name="Casa"))
        service = TransactionService(session, user.family_id)
        purchase = service.create_installment_purchase(
            _expense(
                date=date(2024, 1, 10), is_installment=True, total_installments=3
            )
        )

        service.update(
            purchase.transactions[0].id,
            TransactionUpdate(description="Sofá", category_id=food.id),
            today=date(2024, 2, 15),
        )

        items = service.installment_group(purchase.group_id)
        assert [t.description for t in items] == [
            "Sofá (1/3)",
            "Notebook (2/3)",
            "Sofá (3/3)",
        ]
        assert [t.category_id for t in items] == [food.id, None, food.id]


def test_category_must_match_type_and_family() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _seed(session)
        other = _seed(session, email="bob@example.com")
        salary = CategoryService(session, user.family_id).create(
            CategoryIn(name="Salário", type=TransactionType.income)
        )
        foreign = CategoryService(session, other.family_id).create(CategoryIn(name="Casa"))
        service = TransactionService(session, user.family_id)

        with pytest.raises(ValueError):
            service.create(_expense(category_id=salary.id))
        with pytest.raises(NotFound):
            service.create(_expense(category_id=foreign.id))


def test_registering_awards_points() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _seed(session)
        food = CategoryService(session, user.family_id).create(
            CategoryIn(name="Alimentação")
        )
        TransactionService(session, user.family_id, user.id).create(
            _expense(category_id=food.id)
        )
        session.refresh(user)
        assert user.points == 15


def test_list_filters_and_family_scope() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _seed(session)
        other = _seed(session, email="bob@example.com")
        service = TransactionService(session, user.family_id)
        service.create(_expense(date=date(2024, 3, 1)))
        service.create(
            _expense(
                date=date(2024, 3, 20),
                type=TransactionType.income,
                description="Salário",
            )
        )
        service.create(_expense(date=date(2024, 2, 20), status=TransactionStatus.pending))
        TransactionService(session, other.family_id).create(_expense())

        everything = service.list(TransactionFilters())
        assert len(everything) == 3
        assert everything[0].date == date(2024, 3, 20)

        march = service.list(TransactionFilters(period=month_period(date(2024, 3, 1))))
        assert len(march) == 2
        incomes = service.list(TransactionFilters(type=TransactionType.income))
        assert [t.description for t in incomes] == ["Salário"]
        pending = service.list(TransactionFilters(status=TransactionStatus.pending))
        assert [t.date for t in pending] == [date(2024, 2, 20)]
