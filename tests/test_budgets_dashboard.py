from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Family, TransactionStatus, TransactionType
from schemas import BudgetIn, CategoryIn, TransactionIn
from services import (
    BudgetService,
    CategoryService,
    DashboardService,
    InsightsService,
    NotFound,
    TransactionService,
)

TODAY = date(2024, 3, 15)


def _family(session: Session) -> int:
    family = Family(name="Costa")
    session.add(family)
    session.commit()
    return family.id


def _txn(service: TransactionService, amount: str, day: date, **extra):
    values = {
        "amount": Decimal(amount),
        "description": extra.pop("description", "Lançamento"),
        "date": day,
        "type": extra.pop("type", TransactionType.expense),
    }
    values.update(extra)
    return service.create(TransactionIn(**values))


def _populate(session: Session, family_id: int) -> dict[str, int]:
    categories = CategoryService(session, family_id)
    mercado = categories.create(CategoryIn(name="Mercado"))
    lazer = categories.create(CategoryIn(name="Lazer"))
    salario = categories.create(CategoryIn(name="Salário", type=TransactionType.income))
    service = TransactionService(session, family_id)
    _txn(service, "5000", date(2024, 3, 5), type=TransactionType.income, category_id=salario.id)
    _txn(service, "1000", date(2024, 3, 2), category_id=mercado.id)
    _txn(service, "500", date(2024, 3, 3), category_id=lazer.id)
    _txn(service, "200", date(2024, 3, 4), status=TransactionStatus.pending)
    _txn(service, "800", date(2024, 2, 10), category_id=mercado.id)
    _txn(
        service,
        "300",
        date(2024, 3, 10),
        is_installment=True,
        total_installments=3,
        description="Cadeira",
    )
    return {"mercado": mercado.id, "lazer": lazer.id, "salario": salario.id}


def test_budget_upsert_replaces_limit() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family_id = _family(session)
        ids = _populate(session, family_id)
        budgets = BudgetService(session, family_id)

        first = budgets.upsert(
            BudgetIn(month="2024-03", category_id=ids["mercado"], limit=Decimal("1200"))
        )
        second = budgets.upsert(
            BudgetIn(month="2024-03", category_id=ids["mercado"], limit=Decimal("1500"))
        )
        assert first.id == second.id
        assert second.limit_cents == 150000

        with pytest.raises(ValueError):
            budgets.upsert(
                BudgetIn(month="2024-03", category_id=ids["salario"], limit=Decimal("10"))
            )


def test_budget_progress_uses_confirmed_month_spending() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family_id = _family(session)
        ids = _populate(session, family_id)
        budgets = BudgetService(session, family_id)
        budgets.upsert(
            BudgetIn(month="2024-03", category_id=ids["mercado"], limit=Decimal("1500"))
        )

        [line] = budgets.list_for_month("2024-03")
        assert line["category"] == "Mercado"
        assert line["spent_cents"] == 100000
        assert line["remaining_cents"] == 50000
        assert round(line["percentage"], 2) == 66.67

        lines = budgets.budget_lines("2024-03")
        assert [(b.category_name, b.limit_cents) for b in lines] == [("Mercado", 150000)]


def test_budget_delete_is_family_scoped() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family_id = _family(session)
        ids = _populate(session, family_id)
        budget = BudgetService(session, family_id).upsert(
            BudgetIn(month="2024-03", category_id=ids["lazer"], limit=Decimal("100"))
        )
        with pytest.raises(NotFound):
            BudgetService(session, _family(session)).delete(budget.id)
        BudgetService(session, family_id).delete(budget.id)
        assert BudgetService(session, family_id).for_month("2024-03") == []


def test_dashboard_summary() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family_id = _family(session)
        _populate(session, family_id)

        summary = DashboardService(session, family_id).summary(TODAY)

        assert summary["month"] == "2024-03"
        assert summary["income_cents"] == 500000
        assert summary["expenses_cents"] == 160000
        assert summary["balance_cents"] == 340000
        assert [
            (c["name"], c["total_cents"]) for c in summary["category_breakdown"]
        ] == [("Mercado", 100000), ("Lazer", 50000), ("Sem Categoria", 10000)]
        assert summary["future_installments"] == [
            {"month": "2024-04", "amount_cents": 10000},
            {"month": "2024-05", "amount_cents": 10000},
        ]
        assert summary["current_month_installments_cents"] == 10000
        assert summary["pending_count"] == 1
        assert summary["transaction_count"] == 4
        assert summary["projected_balance_cents"] == 169333

        trend = summary["monthly_trend"]
        assert [m["month"] for m in trend] == [
            "2023-10",
            "2023-11",
            "2023-12",
            "2024-01",
            "2024-02",
            "2024-03",
        ]
        assert trend[-2]["expenses_cents"] == 80000
        assert trend[-1]["balance_cents"] == 340000


def test_insights_service_feeds_generator() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family_id = _family(session)
        ids = _populate(session, family_id)
        BudgetService(session, family_id).upsert(
            BudgetIn(month="2024-03", category_id=ids["mercado"], limit=Decimal("1100"))
        )

        insights = InsightsService(session, family_id).generate(TODAY)
        by_id = {i.id: i for i in insights}

        assert by_id["spending-increase"].type == "danger"
        assert by_id["positive-projection"].type == "info"
        assert by_id[f"budget-alert-{ids['mercado']}"].type == "danger"
        assert by_id["savings-rate"].type == "success"
