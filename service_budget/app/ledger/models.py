"""
Budget ledger data models.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

ZERO = Decimal("0")
# Amounts are stored as NUMERIC(14, 2)
AMOUNT_MAX_DIGITS = 14
AMOUNT_DECIMAL_PLACES = 2


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Category:
    """Expense category."""
    id: str
    name: str


@dataclass
class Income:
    """Money coming into a budget."""
    id: str
    budget_id: str
    amount: Decimal
    description: Optional[str] = None
    received_at: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Expense:
    """Money spent against a budget."""
    id: str
    budget_id: str
    category_id: str
    amount: Decimal
    description: Optional[str] = None
    spent_at: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)
    category: Optional[Category] = None


@dataclass
class Budget:
    """A user's budget for a period.

    ``total_incomes``, ``total_expenses`` and ``available_money`` are cached
    aggregates over the child records. They only change when the budget is
    recalculated.
    """
    id: str
    user_id: str
    start_date: datetime
    end_date: datetime
    currency: str
    total_incomes: Decimal = ZERO
    total_expenses: Decimal = ZERO
    available_money: Decimal = ZERO
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    incomes: List[Income] = field(default_factory=list)
    expenses: List[Expense] = field(default_factory=list)


@dataclass(frozen=True)
class BudgetTotals:
    """Result of folding a budget's incomes and expenses."""
    total_incomes: Decimal
    total_expenses: Decimal

    @property
    def available_money(self) -> Decimal:
        return self.total_incomes - self.total_expenses


class BudgetCreateRequest(BaseModel):
    """Request model for creating a budget."""
    start_date: datetime = Field(..., description="Start of the budget period")
    end_date: datetime = Field(..., description="End of the budget period")
    currency: str = Field(..., min_length=3, max_length=3, description="ISO 4217 currency code")


class BudgetUpdateRequest(BaseModel):
    """Request model for updating a budget. Omitted fields are left unchanged."""
    start_date: Optional[datetime] = Field(None, description="Start of the budget period")
    end_date: Optional[datetime] = Field(None, description="End of the budget period")
    currency: Optional[str] = Field(None, min_length=3, max_length=3, description="ISO 4217 currency code")


class IncomeCreateRequest(BaseModel):
    """Request model for recording an income."""
    amount: Decimal = Field(..., gt=0, max_digits=AMOUNT_MAX_DIGITS, decimal_places=AMOUNT_DECIMAL_PLACES)
    description: Optional[str] = Field(None, max_length=500)
    received_at: Optional[datetime] = None


class ExpenseCreateRequest(BaseModel):
    """Request model for recording an expense."""
    category_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, max_digits=AMOUNT_MAX_DIGITS, decimal_places=AMOUNT_DECIMAL_PLACES)
    description: Optional[str] = Field(None, max_length=500)
    spent_at: Optional[datetime] = None


class CategoryResponse(BaseModel):
    id: str
    name: str


class IncomeResponse(BaseModel):
    id: str
    budget_id: str
    amount: float
    description: Optional[str]
    received_at: datetime
    created_at: datetime

    @classmethod
    def from_income(cls, income: Income) -> "IncomeResponse":
        return cls(
            id=income.id,
            budget_id=income.budget_id,
            amount=float(income.amount),
            description=income.description,
            received_at=income.received_at,
            created_at=income.created_at,
        )


class ExpenseResponse(BaseModel):
    id: str
    budget_id: str
    category_id: str
    amount: float
    description: Optional[str]
    spent_at: datetime
    created_at: datetime
    category: Optional[CategoryResponse] = None

    @classmethod
    def from_expense(cls, expense: Expense) -> "ExpenseResponse":
        category = None
        if expense.category is not None:
            category = CategoryResponse(id=expense.category.id, name=expense.category.name)
        return cls(
            id=expense.id,
            budget_id=expense.budget_id,
            category_id=expense.category_id,
            amount=float(expense.amount),
            description=expense.description,
            spent_at=expense.spent_at,
            created_at=expense.created_at,
            category=category,
        )


class BudgetResponse(BaseModel):
    """Response model for budget operations."""
    id: str
    user_id: str
    start_date: datetime
    end_date: datetime
    currency: str
    total_incomes: float
    total_expenses: float
    available_money: float
    created_at: datetime
    updated_at: datetime
    incomes: List[IncomeResponse] = Field(default_factory=list)
    expenses: List[ExpenseResponse] = Field(default_factory=list)

    @classmethod
    def from_budget(cls, budget: Budget) -> "BudgetResponse":
        return cls(
            id=budget.id,
            user_id=budget.user_id,
            start_date=budget.start_date,
            end_date=budget.end_date,
            currency=budget.currency,
            total_incomes=float(budget.total_incomes),
            total_expenses=float(budget.total_expenses),
            available_money=float(budget.available_money),
            created_at=budget.created_at,
            updated_at=budget.updated_at,
            incomes=[IncomeResponse.from_income(i) for i in budget.incomes],
            expenses=[ExpenseResponse.from_expense(e) for e in budget.expenses],
        )


class BudgetListResponse(BaseModel):
    """Response model for listing budgets."""
    budgets: List[BudgetResponse]
    total_count: int
