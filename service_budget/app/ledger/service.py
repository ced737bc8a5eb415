"""
Budget ledger service.

Owns per-user scoping of budget data and keeps each budget's derived totals
consistent with its incomes and expenses on demand.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from shared.errors import InvalidRangeError, NotFoundError, ValidationError
from shared.logging import get_logger
from .models import (
    AMOUNT_DECIMAL_PLACES, AMOUNT_MAX_DIGITS, ZERO, Budget, BudgetTotals, Category, Expense, Income, utcnow,
)

BUDGET_NOT_FOUND = "Budget not found"
UPDATABLE_FIELDS = ("start_date", "end_date", "currency")


class BudgetStore(Protocol):
    """Persistence collaborator used by the ledger."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def health_check(self) -> bool: ...

    async def insert_budget(self, budget: Budget) -> Budget: ...

    async def fetch_budgets_for_user(self, user_id: str) -> List[Budget]: ...

    async def fetch_budget(self, budget_id: str, user_id: str) -> Optional[Budget]: ...

    async def update_budget_fields(self, budget_id: str, user_id: str,
                                   fields: Dict[str, Any]) -> Optional[Budget]: ...

    async def delete_budget(self, budget_id: str, user_id: str) -> bool: ...

    async def fetch_incomes(self, budget_id: str) -> List[Income]: ...

    async def fetch_expenses(self, budget_id: str) -> List[Expense]: ...

    async def update_budget_totals(self, budget_id: str, totals: BudgetTotals) -> Optional[Budget]: ...

    async def insert_income(self, income: Income) -> Income: ...

    async def insert_expense(self, expense: Expense) -> Expense: ...

    async def fetch_category(self, category_id: str) -> Optional[Category]: ...

    async def fetch_categories(self) -> List[Category]: ...


def compute_totals(incomes: Iterable[Income], expenses: Iterable[Expense]) -> BudgetTotals:
    """Fold income and expense amounts into budget totals."""
    return BudgetTotals(
        total_incomes=sum((income.amount for income in incomes), ZERO),
        total_expenses=sum((expense.amount for expense in expenses), ZERO),
    )


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalize_currency(currency: str) -> str:
    code = currency.strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError("currency must be a 3-letter ISO 4217 code", details={"currency": currency})
    return code


def _check_range(start_date: datetime, end_date: datetime) -> None:
    if start_date > end_date:
        raise InvalidRangeError(details={
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
        })


def _check_amount(amount: Decimal) -> Decimal:
    # Must fit NUMERIC(14, 2): at most 12 integer digits and 2 decimal places
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError("amount must be a number", details={"amount": str(amount)}) from e

    if not value.is_finite() or value <= ZERO:
        raise ValidationError("amount must be a positive number", details={"amount": str(value)})
    if value.normalize().as_tuple().exponent < -AMOUNT_DECIMAL_PLACES:
        raise ValidationError("amount must have at most 2 decimal places", details={"amount": str(value)})
    if value.adjusted() >= AMOUNT_MAX_DIGITS - AMOUNT_DECIMAL_PLACES:
        raise ValidationError("amount is too large", details={"amount": str(value)})
    return value


class BudgetLedgerService:
    """CRUD and recalculation over budgets owned by a user."""

    def __init__(
        self,
        store: BudgetStore,
        *,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.store = store
        self.clock = clock
        self.id_factory = id_factory
        self.logger = get_logger("budget.ledger")

    async def create_budget(self, user_id: str, start_date: datetime, end_date: datetime,
                            currency: str) -> Budget:
        """Create a budget with all derived totals at zero."""
        start_date, end_date = _as_utc(start_date), _as_utc(end_date)
        _check_range(start_date, end_date)

        now = self.clock()
        budget = Budget(
            id=self.id_factory(),
            user_id=user_id,
            start_date=start_date,
            end_date=end_date,
            currency=_normalize_currency(currency),
            total_incomes=ZERO,
            total_expenses=ZERO,
            available_money=ZERO,
            created_at=now,
            updated_at=now,
        )
        created = await self.store.insert_budget(budget)

        self.logger.info("Budget created", budget_id=created.id, currency=created.currency)
        return created

    async def list_budgets_by_user(self, user_id: str) -> List[Budget]:
        """List a user's budgets, newest first, with incomes and categorized expenses."""
        return await self.store.fetch_budgets_for_user(user_id)

    async def get_budget(self, budget_id: str, user_id: str) -> Budget:
        """Get one of the user's budgets with incomes and categorized expenses."""
        budget = await self.store.fetch_budget(budget_id, user_id)
        if budget is None:
            raise NotFoundError(BUDGET_NOT_FOUND, details={"budget_id": budget_id})
        return budget

    async def update_budget(self, budget_id: str, user_id: str, *,
                            start_date: Optional[datetime] = None,
                            end_date: Optional[datetime] = None,
                            currency: Optional[str] = None) -> Budget:
        """Update the supplied fields only. Derived totals are never touched here."""
        fields: Dict[str, Any] = {}
        if start_date is not None:
            fields["start_date"] = _as_utc(start_date)
        if end_date is not None:
            fields["end_date"] = _as_utc(end_date)
        if currency is not None:
            fields["currency"] = _normalize_currency(currency)

        if not fields:
            return await self.get_budget(budget_id, user_id)

        if "start_date" in fields and "end_date" in fields:
            _check_range(fields["start_date"], fields["end_date"])
        elif "start_date" in fields or "end_date" in fields:
            current = await self.get_budget(budget_id, user_id)
            _check_range(
                fields.get("start_date", _as_utc(current.start_date)),
                fields.get("end_date", _as_utc(current.end_date)),
            )

        fields["updated_at"] = self.clock()
        updated = await self.store.update_budget_fields(budget_id, user_id, fields)
        if updated is None:
            raise NotFoundError(BUDGET_NOT_FOUND, details={"budget_id": budget_id})

        self.logger.info("Budget updated", budget_id=budget_id, fields=sorted(fields))
        return updated

    async def delete_budget(self, budget_id: str, user_id: str) -> None:
        """Permanently delete one of the user's budgets."""
        deleted = await self.store.delete_budget(budget_id, user_id)
        if not deleted:
            raise NotFoundError(BUDGET_NOT_FOUND, details={"budget_id": budget_id})

        self.logger.info("Budget deleted", budget_id=budget_id)

    async def recalculate_budget(self, budget_id: str) -> Budget:
        """Recompute and persist a budget's derived totals.

        Not owner-scoped: callers resolve ownership first. Re-running with
        unchanged incomes and expenses yields the same totals.
        """
        incomes = await self.store.fetch_incomes(budget_id)
        expenses = await self.store.fetch_expenses(budget_id)
        totals = compute_totals(incomes, expenses)

        updated = await self.store.update_budget_totals(budget_id, totals)
        if updated is None:
            raise NotFoundError(BUDGET_NOT_FOUND, details={"budget_id": budget_id})

        self.logger.info(
            "Budget recalculated",
            budget_id=budget_id,
            incomes=len(incomes),
            expenses=len(expenses),
            total_incomes=str(totals.total_incomes),
            total_expenses=str(totals.total_expenses),
            available_money=str(totals.available_money),
        )
        return updated

    async def add_income(self, budget_id: str, user_id: str, amount: Decimal, *,
                         description: Optional[str] = None,
                         received_at: Optional[datetime] = None) -> Budget:
        """Record an income on one of the user's budgets and recalculate it."""
        await self.get_budget(budget_id, user_id)

        now = self.clock()
        income = Income(
            id=self.id_factory(),
            budget_id=budget_id,
            amount=_check_amount(amount),
            description=description,
            received_at=_as_utc(received_at) if received_at else now,
            created_at=now,
        )
        await self.store.insert_income(income)
        self.logger.info("Income recorded", budget_id=budget_id, income_id=income.id)

        return await self.recalculate_budget(budget_id)

    async def add_expense(self, budget_id: str, user_id: str, category_id: str, amount: Decimal, *,
                          description: Optional[str] = None,
                          spent_at: Optional[datetime] = None) -> Budget:
        """Record an expense on one of the user's budgets and recalculate it."""
        await self.get_budget(budget_id, user_id)

        category = await self.store.fetch_category(category_id)
        if category is None:
            raise ValidationError("Unknown category", details={"category_id": category_id})

        now = self.clock()
        expense = Expense(
            id=self.id_factory(),
            budget_id=budget_id,
            category_id=category.id,
            amount=_check_amount(amount),
            description=description,
            spent_at=_as_utc(spent_at) if spent_at else now,
            created_at=now,
            category=category,
        )
        await self.store.insert_expense(expense)
        self.logger.info("Expense recorded", budget_id=budget_id, expense_id=expense.id)

        return await self.recalculate_budget(budget_id)

    async def list_categories(self) -> List[Category]:
        """List the categories expenses can be filed under."""
        return await self.store.fetch_categories()
