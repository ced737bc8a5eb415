"""
Shared fixtures and fakes for Budget service tests.
"""

import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from jose import jwk, jwt

from shared.config import ServiceConfig
from shared.errors import StorageError, TokenVerificationError
from service_budget.app.ledger.models import (
    Budget, BudgetTotals, Category, Expense, Income, utcnow,
)
from service_budget.app.main import BudgetApiService

USER_POOL_ID = "us-east-1_TestPool"
CLIENT_ID = "budget-test-client"
ISSUER = f"https://cognito-idp.us-east-1.amazonaws.com/{USER_POOL_ID}"


class InMemoryBudgetStore:
    """Dictionary-backed stand-in for ``PostgreSQLBudgetStore``."""

    def __init__(self):
        self.budgets: Dict[str, Budget] = {}
        self.incomes: Dict[str, Income] = {}
        self.expenses: Dict[str, Expense] = {}
        self.categories: Dict[str, Category] = {
            "groceries": Category(id="groceries", name="Groceries"),
            "transport": Category(id="transport", name="Transport"),
        }
        self.started = False
        self.totals_writes: List[str] = []
        self.fail_with: Optional[Exception] = None

    def _check_failure(self):
        if self.fail_with is not None:
            raise self.fail_with

    def _with_children(self, budget: Budget) -> Budget:
        return replace(
            budget,
            incomes=[i for i in self.incomes.values() if i.budget_id == budget.id],
            expenses=[
                replace(e, category=self.categories.get(e.category_id))
                for e in self.expenses.values() if e.budget_id == budget.id
            ],
        )

    def _owned(self, budget_id: str, user_id: str) -> Optional[Budget]:
        budget = self.budgets.get(budget_id)
        if budget is None or budget.user_id != user_id:
            return None
        return budget

    def seed_income(self, budget_id: str, amount, income_id: Optional[str] = None) -> Income:
        income = Income(id=income_id or f"inc-{len(self.incomes) + 1}", budget_id=budget_id, amount=amount)
        self.incomes[income.id] = income
        return income

    def seed_expense(self, budget_id: str, amount, category_id: str = "groceries",
                     expense_id: Optional[str] = None) -> Expense:
        expense = Expense(
            id=expense_id or f"exp-{len(self.expenses) + 1}",
            budget_id=budget_id,
            category_id=category_id,
            amount=amount,
        )
        self.expenses[expense.id] = expense
        return expense

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def health_check(self) -> bool:
        return self.fail_with is None

    async def insert_budget(self, budget: Budget) -> Budget:
        self._check_failure()
        stored = replace(budget, incomes=[], expenses=[])
        self.budgets[stored.id] = stored
        return replace(stored)

    async def fetch_budgets_for_user(self, user_id: str) -> List[Budget]:
        self._check_failure()
        owned = [b for b in self.budgets.values() if b.user_id == user_id]
        owned.sort(key=lambda b: b.created_at, reverse=True)
        return [self._with_children(b) for b in owned]

    async def fetch_budget(self, budget_id: str, user_id: str) -> Optional[Budget]:
        self._check_failure()
        budget = self._owned(budget_id, user_id)
        return self._with_children(budget) if budget else None

    async def update_budget_fields(self, budget_id: str, user_id: str,
                                   fields: Dict[str, Any]) -> Optional[Budget]:
        self._check_failure()
        budget = self._owned(budget_id, user_id)
        if budget is None:
            return None
        updated = replace(budget, **fields)
        self.budgets[budget_id] = updated
        return replace(updated)

    async def delete_budget(self, budget_id: str, user_id: str) -> bool:
        self._check_failure()
        if self._owned(budget_id, user_id) is None:
            return False
        del self.budgets[budget_id]
        self.incomes = {k: v for k, v in self.incomes.items() if v.budget_id != budget_id}
        self.expenses = {k: v for k, v in self.expenses.items() if v.budget_id != budget_id}
        return True

    async def fetch_incomes(self, budget_id: str) -> List[Income]:
        self._check_failure()
        return [i for i in self.incomes.values() if i.budget_id == budget_id]

    async def fetch_expenses(self, budget_id: str) -> List[Expense]:
        self._check_failure()
        return [e for e in self.expenses.values() if e.budget_id == budget_id]

    async def update_budget_totals(self, budget_id: str, totals: BudgetTotals) -> Optional[Budget]:
        self._check_failure()
        budget = self.budgets.get(budget_id)
        if budget is None:
            return None
        updated = replace(
            budget,
            total_incomes=totals.total_incomes,
            total_expenses=totals.total_expenses,
            available_money=totals.available_money,
            updated_at=utcnow(),
        )
        self.budgets[budget_id] = updated
        self.totals_writes.append(budget_id)
        return replace(updated)

    async def insert_income(self, income: Income) -> Income:
        self._check_failure()
        self.incomes[income.id] = income
        return income

    async def insert_expense(self, expense: Expense) -> Expense:
        self._check_failure()
        self.expenses[expense.id] = expense
        return expense

    async def fetch_category(self, category_id: str) -> Optional[Category]:
        self._check_failure()
        return self.categories.get(category_id)

    async def fetch_categories(self) -> List[Category]:
        self._check_failure()
        return sorted(self.categories.values(), key=lambda c: c.name)


class StaticTokenVerifier:
    """Verifier that accepts a fixed set of tokens."""

    def __init__(self, tokens: Optional[Dict[str, Dict[str, Any]]] = None):
        self.tokens = tokens or {}
        self.calls: List[str] = []

    async def verify(self, token: str) -> Dict[str, Any]:
        self.calls.append(token)
        if token not in self.tokens:
            raise TokenVerificationError("Unknown token")
        return dict(self.tokens[token])

    async def close(self) -> None:
        pass


class RSATokenFactory:
    """Signs Cognito-shaped JWTs with a throwaway RSA key."""

    def __init__(self, kid: str = "test-key-1"):
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.private_pem = private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        public_pem = private_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        self.kid = kid
        self.public_jwk = dict(jwk.construct(public_pem, "RS256").to_dict(), kid=kid, use="sig")

    def jwks(self) -> Dict[str, Any]:
        return {"keys": [self.public_jwk]}

    def mint(self, claims: Dict[str, Any], kid: Optional[str] = None) -> str:
        return jwt.encode(claims, self.private_pem, algorithm="RS256", headers={"kid": kid or self.kid})


def cognito_claims(sub: str = "user-a", token_use: str = "id", expires_in: int = 3600,
                   **overrides) -> Dict[str, Any]:
    """Claims shaped like a Cognito id token."""
    now = int(time.time())
    claims = {
        "sub": sub,
        "iss": ISSUER,
        "aud": CLIENT_ID,
        "token_use": token_use,
        "email": f"{sub}@example.com",
        "name": sub.replace("-", " ").title(),
        "auth_time": now,
        "iat": now,
        "exp": now + expires_in,
    }
    claims.update(overrides)
    return claims


class SteppingClock:
    """Clock that advances one minute per call."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(minutes=1)
        return self.current


@pytest.fixture
def store():
    """In-memory budget store."""
    return InMemoryBudgetStore()


@pytest.fixture
def storage_failure():
    """Error the store raises when asked to fail."""
    return StorageError(details={"operation": "test", "error": "connection refused"})


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def token_factory():
    return RSATokenFactory()


@pytest.fixture
def jwks_requests():
    """Records every JWKS request served by ``jwks_client``."""
    return []


@pytest.fixture
def jwks_client(token_factory, jwks_requests):
    """HTTP client whose transport serves the factory's JWKS."""

    def handler(request: httpx.Request) -> httpx.Response:
        jwks_requests.append(str(request.url))
        if request.url.path.endswith("/.well-known/jwks.json"):
            return httpx.Response(200, json=token_factory.jwks())
        return httpx.Response(404)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def static_verifier():
    """Verifier accepting tokens for two users plus an access-class token."""
    return StaticTokenVerifier({
        "token-user-a": cognito_claims("user-a"),
        "token-user-b": cognito_claims("user-b"),
        "token-access": cognito_claims("user-a", token_use="access"),
    })


@pytest.fixture
def service(store, static_verifier):
    """BudgetApiService wired to in-memory collaborators."""
    config = ServiceConfig(service_name="budget", port=8020, env="test", log_level="warning")
    return BudgetApiService(config=config, store=store, verifier=static_verifier)


@pytest.fixture
def client(service):
    """Test client with the service lifespan running."""
    with TestClient(service.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer token-user-a"}


@pytest.fixture
def other_auth_headers():
    return {"Authorization": "Bearer token-user-b"}
