"""Rule-based monthly insights for the family "CFO" feed.

Everything here is a pure function of already fetched data: the caller loads
the confirmed transactions of the reference month and of the month before,
plus the budgets of the reference month, and gets back the insights in rule
order. Amounts are integer cents.
"""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Sequence

from models import TransactionType
from money import format_amount
from periods import days_in_month
from schemas import Insight

UNCATEGORIZED = "Sem Categoria"

SPENDING_INCREASE_PCT = 15
SPENDING_DECREASE_PCT = -10
CATEGORY_SPIKE_PCT = 20
BUDGET_DANGER_PCT = 90
BUDGET_WARNING_PCT = 70
INCOME_GROWTH_FACTOR = (11, 10)
HIGH_SAVINGS_PCT = 20
LOW_SAVINGS_PCT = 5


@dataclass(frozen=True)
class LedgerEntry:
    type: TransactionType
    amount_cents: int
    category_id: Optional[int] = None
    category_name: Optional[str] = None


@dataclass(frozen=True)
class BudgetLine:
    category_id: int
    category_name: str
    limit_cents: int


def _total(entries: Iterable[LedgerEntry], txn_type: TransactionType) -> int:
    return sum(e.amount_cents for e in entries if e.type == txn_type)


def _change_pct(current: float, previous: float) -> float:
    return (current - previous) * 100 / previous


def _spending_trend(current_expenses: int, previous_expenses: int) -> list[Insight]:
    if previous_expenses <= 0:
        return []
    change = _change_pct(current_expenses, previous_expenses)
    if change > SPENDING_INCREASE_PCT:
        return [
            Insight(
                id="spending-increase",
                type="danger",
                icon="📈",
                title="Gastos em Alta",
                message=(
                    f"Seus gastos aumentaram {change:.0f}% em relação ao mês "
                    "passado. Atenção!"
                ),
                percentage=round(change, 2),
            )
        ]
    if change < SPENDING_DECREASE_PCT:
        return [
            Insight(
                id="spending-decrease",
                type="success",
                icon="📉",
                title="Economia Detectada!",
                message=(
                    f"Parabéns! Seus gastos diminuíram {abs(change):.0f}% em "
                    "relação ao mês passado."
                ),
                percentage=round(change, 2),
            )
        ]
    return []


def _balance_projection(income: int, expenses: int, reference_date: date) -> Insight:
    month_length = days_in_month(reference_date.year, reference_date.month)
    daily_burn = expenses / max(reference_date.day, 1)
    projected_balance = income - daily_burn * month_length
    value = round(projected_balance / 100, 2)
    if projected_balance < 0:
        return Insight(
            id="negative-projection",
            type="warning",
            icon="⚠️",
            title="Projeção Negativa",
            message=(
                "Se o ritmo atual de gastos continuar, você terminará o mês com "
                f"um déficit de R$ {format_amount(abs(projected_balance))}."
            ),
            value=value,
        )
    return Insight(
        id="positive-projection",
        type="info",
        icon="💰",
        title="Projeção do Mês",
        message=(
            f"Projeção de sobra de R$ {format_amount(projected_balance)} até o "
            "final do mês."
        ),
        value=value,
    )


def _category_spikes(
    current: Sequence[LedgerEntry], previous: Sequence[LedgerEntry]
) -> list[Insight]:
    totals: dict[str, list[int]] = {}
    for index, entries in ((0, current), (1, previous)):
        for entry in entries:
            if entry.type != TransactionType.expense:
                continue
            name = entry.category_name or UNCATEGORIZED
            totals.setdefault(name, [0, 0])[index] += entry.amount_cents

    insights: list[Insight] = []
    for name, (current_total, previous_total) in totals.items():
        if previous_total <= 0:
            continue
        change = _change_pct(current_total, previous_total)
        if change > CATEGORY_SPIKE_PCT:
            insights.append(
                Insight(
                    id=f"category-spike-{name}",
                    type="warning",
                    icon="🔥",
                    title=f"{name} em Alta",
                    message=f"Seus gastos com {name} aumentaram {change:.0f}% este mês.",
                    percentage=round(change, 2),
                )
            )
    return insights


def _budget_alerts(
    current: Sequence[LedgerEntry], budgets: Sequence[BudgetLine]
) -> list[Insight]:
    insights: list[Insight] = []
    for budget in budgets:
        if budget.limit_cents <= 0:
            continue
        spent = sum(
            e.amount_cents
            for e in current
            if e.type == TransactionType.expense and e.category_id == budget.category_id
        )
        percentage = spent * 100 / budget.limit_cents
        if percentage >= BUDGET_DANGER_PCT:
            insights.append(
                Insight(
                    id=f"budget-alert-{budget.category_id}",
                    type="danger",
                    icon="🚨",
                    title=f"Orçamento {budget.category_name}",
                    message=(
                        f"Você já usou {percentage:.0f}% do orçamento de "
                        f"{budget.category_name} (R$ {format_amount(spent)} de "
                        f"R$ {format_amount(budget.limit_cents)})."
                    ),
                    percentage=round(percentage, 2),
                )
            )
        elif percentage >= BUDGET_WARNING_PCT:
            insights.append(
                Insight(
                    id=f"budget-warn-{budget.category_id}",
                    type="warning",
                    icon="⚡",
                    title=f"Orçamento {budget.category_name}",
                    message=(
                        f"{percentage:.0f}% do orçamento de {budget.category_name} "
                        "já foi utilizado."
                    ),
                    percentage=round(percentage, 2),
                )
            )
    return insights


def _income_growth(current_income: int, previous_income: int) -> list[Insight]:
    numerator, denominator = INCOME_GROWTH_FACTOR
    if previous_income <= 0 or current_income * denominator <= previous_income * numerator:
        return []
    change = _change_pct(current_income, previous_income)
    return [
        Insight(
            id="income-increase",
            type="success",
            icon="🎉",
            title="Receita Crescendo",
            message=f"Sua receita aumentou {change:.0f}%!",
            percentage=round(change, 2),
        )
    ]


def _savings_rate(income: int, expenses: int) -> list[Insight]:
    if income <= 0:
        return []
    rate = (income - expenses) * 100 / income
    if rate > HIGH_SAVINGS_PCT:
        return [
            Insight(
                id="savings-rate",
                type="success",
                icon="🏆",
                title="Taxa de Poupança",
                message=(
                    f"Excelente! Você está poupando {rate:.0f}% da sua renda este mês."
                ),
                percentage=round(rate, 2),
            )
        ]
    if 0 < rate < LOW_SAVINGS_PCT:
        return [
            Insight(
                id="low-savings",
                type="warning",
                icon="💡",
                title="Margem Apertada",
                message=(
                    f"Sua taxa de poupança é de apenas {rate:.0f}%. Tente reduzir "
                    "despesas não essenciais."
                ),
                percentage=round(rate, 2),
            )
        ]
    return []


def generate_insights(
    current: Sequence[LedgerEntry],
    previous: Sequence[LedgerEntry],
    budgets: Sequence[BudgetLine],
    reference_date: date,
) -> list[Insight]:
    current_expenses = _total(current, TransactionType.expense)
    previous_expenses = _total(previous, TransactionType.expense)
    current_income = _total(current, TransactionType.income)
    previous_income = _total(previous, TransactionType.income)

    insights: list[Insight] = []
    insights += _spending_trend(current_expenses, previous_expenses)
    insights.append(
        _balance_projection(current_income, current_expenses, reference_date)
    )
    insights += _category_spikes(current, previous)
    insights += _budget_alerts(current, budgets)
    insights += _income_growth(current_income, previous_income)
    insights += _savings_rate(current_income, current_expenses)
    return insights
