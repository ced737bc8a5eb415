"""
PostgreSQL persistence layer for the Budget service.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from shared.errors import StorageError
from shared.logging import get_logger
from ..ledger.models import Budget, BudgetTotals, Category, Expense, Income

DEFAULT_CATEGORIES = (
    ("groceries", "Groceries"),
    ("housing", "Housing"),
    ("transport", "Transport"),
    ("bills", "Bills"),
    ("entertainment", "Entertainment"),
    ("health", "Health"),
    ("other", "Other"),
)

UPDATABLE_COLUMNS = frozenset({"start_date", "end_date", "currency", "updated_at"})

STORAGE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

EXPENSE_SELECT = """
    SELECT e.*, c.name AS category_name
    FROM expenses e
    LEFT JOIN categories c ON c.id = e.category_id
"""


class PostgreSQLBudgetStore:
    """PostgreSQL persistence layer for budgets, incomes and expenses.

    Driver and connection errors are raised as ``StorageError``; nothing is
    retried here.
    """

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10,
                 command_timeout: float = 30.0):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("budget.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )
        except STORAGE_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise StorageError("Failed to connect to PostgreSQL", details={"error": str(e)}) from e

        await self._create_tables()
        self.logger.info("PostgreSQL persistence started")

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a pooled connection, translating driver errors."""
        if self.pool is None:
            raise StorageError("Persistence layer not started", details={"operation": operation})

        try:
            async with self.pool.acquire() as conn:
                yield conn
        except STORAGE_ERRORS as e:
            self.logger.error("Storage operation failed", operation=operation, error=str(e))
            raise StorageError(details={"operation": operation, "error": str(e)}) from e

    async def _create_tables(self):
        """Create database tables and seed the shared categories."""
        async with self._connection("create_tables") as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS categories (
                    id VARCHAR(64) PRIMARY KEY,
                    name VARCHAR(100) NOT NULL UNIQUE,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS budgets (
                    id VARCHAR(64) PRIMARY KEY,
                    user_id VARCHAR(255) NOT NULL,
                    start_date TIMESTAMP WITH TIME ZONE NOT NULL,
                    end_date TIMESTAMP WITH TIME ZONE NOT NULL,
                    currency CHAR(3) NOT NULL,
                    total_incomes NUMERIC(14, 2) NOT NULL DEFAULT 0,
                    total_expenses NUMERIC(14, 2) NOT NULL DEFAULT 0,
                    available_money NUMERIC(14, 2) NOT NULL DEFAULT 0,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS incomes (
                    id VARCHAR(64) PRIMARY KEY,
                    budget_id VARCHAR(64) NOT NULL REFERENCES budgets(id) ON DELETE CASCADE,
                    amount NUMERIC(14, 2) NOT NULL,
                    description TEXT,
                    received_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS expenses (
                    id VARCHAR(64) PRIMARY KEY,
                    budget_id VARCHAR(64) NOT NULL REFERENCES budgets(id) ON DELETE CASCADE,
                    category_id VARCHAR(64) NOT NULL REFERENCES categories(id),
                    amount NUMERIC(14, 2) NOT NULL,
                    description TEXT,
                    spent_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_budgets_user_created ON budgets(user_id, created_at DESC);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_incomes_budget ON incomes(budget_id);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_expenses_budget ON expenses(budget_id);
            """)

            await conn.executemany("""
                INSERT INTO categories (id, name) VALUES ($1, $2)
                ON CONFLICT DO NOTHING
            """, DEFAULT_CATEGORIES)

    async def insert_budget(self, budget: Budget) -> Budget:
        """Insert a new budget row."""
        async with self._connection("insert_budget") as conn:
            row = await conn.fetchrow("""
                INSERT INTO budgets (
                    id, user_id, start_date, end_date, currency,
                    total_incomes, total_expenses, available_money, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                RETURNING *
            """,
                budget.id, budget.user_id, budget.start_date, budget.end_date, budget.currency,
                budget.total_incomes, budget.total_expenses, budget.available_money,
                budget.created_at, budget.updated_at
            )

        return self._row_to_budget(row)

    async def fetch_budgets_for_user(self, user_id: str) -> List[Budget]:
        """Load a user's budgets, newest first, with their incomes and expenses."""
        async with self._connection("fetch_budgets_for_user") as conn:
            rows = await conn.fetch("""
                SELECT * FROM budgets
                WHERE user_id = $1
                ORDER BY created_at DESC
            """, user_id)

            budgets = [self._row_to_budget(row) for row in rows]
            await self._attach_children(conn, budgets)

        return budgets

    async def fetch_budget(self, budget_id: str, user_id: str) -> Optional[Budget]:
        """Load one budget owned by ``user_id`` with its incomes and expenses."""
        async with self._connection("fetch_budget") as conn:
            row = await conn.fetchrow("""
                SELECT * FROM budgets WHERE id = $1 AND user_id = $2
            """, budget_id, user_id)

            if not row:
                return None

            budget = self._row_to_budget(row)
            await self._attach_children(conn, [budget])

        return budget

    async def update_budget_fields(self, budget_id: str, user_id: str,
                                   fields: Dict[str, Any]) -> Optional[Budget]:
        """Update plain budget columns on a budget owned by ``user_id``."""
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns not updatable: {sorted(unknown)}")

        columns = sorted(fields)
        assignments = ", ".join(f"{column} = ${index}" for index, column in enumerate(columns, start=3))

        async with self._connection("update_budget_fields") as conn:
            row = await conn.fetchrow(
                f"UPDATE budgets SET {assignments} WHERE id = $1 AND user_id = $2 RETURNING *",
                budget_id, user_id, *[fields[column] for column in columns]
            )

        return self._row_to_budget(row) if row else None

    async def delete_budget(self, budget_id: str, user_id: str) -> bool:
        """Delete a budget owned by ``user_id``. Children go with it (ON DELETE CASCADE)."""
        async with self._connection("delete_budget") as conn:
            result = await conn.execute("""
                DELETE FROM budgets WHERE id = $1 AND user_id = $2
            """, budget_id, user_id)

        return result == "DELETE 1"

    async def fetch_incomes(self, budget_id: str) -> List[Income]:
        """Load every income of a budget."""
        async with self._connection("fetch_incomes") as conn:
            rows = await conn.fetch("""
                SELECT * FROM incomes WHERE budget_id = $1 ORDER BY received_at DESC
            """, budget_id)

        return [self._row_to_income(row) for row in rows]

    async def fetch_expenses(self, budget_id: str) -> List[Expense]:
        """Load every expense of a budget with its category."""
        async with self._connection("fetch_expenses") as conn:
            rows = await conn.fetch(
                EXPENSE_SELECT + " WHERE e.budget_id = $1 ORDER BY e.spent_at DESC",
                budget_id
            )

        return [self._row_to_expense(row) for row in rows]

    async def update_budget_totals(self, budget_id: str, totals: BudgetTotals) -> Optional[Budget]:
        """Write the three derived totals in a single statement."""
        async with self._connection("update_budget_totals") as conn:
            row = await conn.fetchrow("""
                UPDATE budgets SET
                    total_incomes = $2,
                    total_expenses = $3,
                    available_money = $4,
                    updated_at = NOW()
                WHERE id = $1
                RETURNING *
            """, budget_id, totals.total_incomes, totals.total_expenses, totals.available_money)

        return self._row_to_budget(row) if row else None

    async def insert_income(self, income: Income) -> Income:
        """Insert an income row."""
        async with self._connection("insert_income") as conn:
            row = await conn.fetchrow("""
                INSERT INTO incomes (id, budget_id, amount, description, received_at, created_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING *
            """,
                income.id, income.budget_id, income.amount, income.description,
                income.received_at, income.created_at
            )

        return self._row_to_income(row)

    async def insert_expense(self, expense: Expense) -> Expense:
        """Insert an expense row."""
        async with self._connection("insert_expense") as conn:
            await conn.execute("""
                INSERT INTO expenses (id, budget_id, category_id, amount, description, spent_at, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
            """,
                expense.id, expense.budget_id, expense.category_id, expense.amount,
                expense.description, expense.spent_at, expense.created_at
            )

        return expense

    async def fetch_category(self, category_id: str) -> Optional[Category]:
        """Load a single category."""
        async with self._connection("fetch_category") as conn:
            row = await conn.fetchrow("SELECT id, name FROM categories WHERE id = $1", category_id)

        return Category(id=row['id'], name=row['name']) if row else None

    async def fetch_categories(self) -> List[Category]:
        """Load all categories ordered by name."""
        async with self._connection("fetch_categories") as conn:
            rows = await conn.fetch("SELECT id, name FROM categories ORDER BY name")

        return [Category(id=row['id'], name=row['name']) for row in rows]

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self._connection("health_check") as conn:
                await conn.fetchval("SELECT 1")
                return True
        except StorageError:
            return False

    async def _attach_children(self, conn: asyncpg.Connection, budgets: List[Budget]) -> None:
        """Load incomes and categorized expenses for ``budgets`` in two queries."""
        if not budgets:
            return

        by_id = {budget.id: budget for budget in budgets}
        budget_ids = list(by_id)

        income_rows = await conn.fetch("""
            SELECT * FROM incomes
            WHERE budget_id = ANY($1::varchar[])
            ORDER BY received_at DESC
        """, budget_ids)
        for row in income_rows:
            by_id[row['budget_id']].incomes.append(self._row_to_income(row))

        expense_rows = await conn.fetch(
            EXPENSE_SELECT + " WHERE e.budget_id = ANY($1::varchar[]) ORDER BY e.spent_at DESC",
            budget_ids
        )
        for row in expense_rows:
            by_id[row['budget_id']].expenses.append(self._row_to_expense(row))

    def _row_to_budget(self, row) -> Budget:
        """Convert database row to Budget object."""
        return Budget(
            id=row['id'],
            user_id=row['user_id'],
            start_date=row['start_date'],
            end_date=row['end_date'],
            currency=row['currency'],
            total_incomes=row['total_incomes'],
            total_expenses=row['total_expenses'],
            available_money=row['available_money'],
            created_at=row['created_at'],
            updated_at=row['updated_at']
        )

    def _row_to_income(self, row) -> Income:
        """Convert database row to Income object."""
        return Income(
            id=row['id'],
            budget_id=row['budget_id'],
            amount=row['amount'],
            description=row['description'],
            received_at=row['received_at'],
            created_at=row['created_at']
        )

    def _row_to_expense(self, row) -> Expense:
        """Convert database row (joined with categories) to Expense object."""
        category = None
        if row['category_name'] is not None:
            category = Category(id=row['category_id'], name=row['category_name'])

        return Expense(
            id=row['id'],
            budget_id=row['budget_id'],
            category_id=row['category_id'],
            amount=row['amount'],
            description=row['description'],
            spent_at=row['spent_at'],
            created_at=row['created_at'],
            category=category
        )
