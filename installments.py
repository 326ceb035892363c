import uuid
from dataclasses import dataclass
from datetime import date
from typing import Optional

from periods import add_months, month_start

MIN_INSTALLMENTS = 2
MAX_INSTALLMENTS = 36


class InstallmentValidationError(ValueError):
    pass


@dataclass(frozen=True)
class InstallmentDraft:
    amount_cents: int
    date: date
    installment_number: int
    total_installments: int
    group_id: str
    billing_month: Optional[date] = None

    @property
    def is_last(self) -> bool:
        return self.installment_number == self.total_installments


def resolve_billing_month(transaction_date: date, closing_day: int) -> date:
    """Return the first day of the card statement month ``transaction_date`` lands on.

    Purchases up to and including the closing day belong to the statement of
    their own month; later purchases roll into the next one. ``closing_day`` is
    compared as-is: a closing day past the end of a short month (31 in
    February) means every purchase of that month stays in it.
    """
    if transaction_date.day <= closing_day:
        return month_start(transaction_date)
    return add_months(month_start(transaction_date), 1)


def split_amount(total_cents: int, installment_count: int) -> tuple[int, int]:
    """Return ``(per_installment, remainder)`` in cents, truncating downwards."""
    per_installment = total_cents // installment_count
    remainder = total_cents - per_installment * installment_count
    return per_installment, remainder


def split_installments(
    total_cents: int,
    installment_count: int,
    first_installment_date: date,
    credit_closing_day: Optional[int] = None,
) -> list[InstallmentDraft]:
    if total_cents <= 0:
        raise InstallmentValidationError("Amount must be greater than zero")
    if installment_count < MIN_INSTALLMENTS:
        raise InstallmentValidationError(
            f"An installment purchase needs at least {MIN_INSTALLMENTS} installments"
        )
    if installment_count > MAX_INSTALLMENTS:
        raise InstallmentValidationError(
            f"Maximum number of installments is {MAX_INSTALLMENTS}"
        )
    if total_cents < installment_count:
        raise InstallmentValidationError(
            "Amount is too small for the number of installments"
        )

    per_installment, remainder = split_amount(total_cents, installment_count)
    group_id = uuid.uuid4().hex

    drafts: list[InstallmentDraft] = []
    for number in range(1, installment_count + 1):
        amount = per_installment
        if number == installment_count:
            # the last installment absorbs the rounding remainder
            amount += remainder
        installment_date = add_months(first_installment_date, number - 1)
        billing_month = None
        if credit_closing_day is not None:
            billing_month = resolve_billing_month(installment_date, credit_closing_day)
        drafts.append(
            InstallmentDraft(
                amount_cents=amount,
                date=installment_date,
                installment_number=number,
                total_installments=installment_count,
                group_id=group_id,
                billing_month=billing_month,
            )
        )
    return drafts
