"""
Budget service for the Budget Ledger API.
"""

from typing import List, Optional

from fastapi import Depends, Response

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.logging import set_budget_context
from .auth.authenticator import TokenAuthenticator, TokenVerifier, VerifiedIdentity
from .auth.cognito import CognitoTokenVerifier
from .auth.dependencies import IdentityDependencies
from .ledger.models import (
    BudgetCreateRequest, BudgetUpdateRequest, BudgetResponse, BudgetListResponse,
    CategoryResponse, IncomeCreateRequest, ExpenseCreateRequest,
)
from .ledger.service import BudgetLedgerService, BudgetStore
from .persistence.postgres import PostgreSQLBudgetStore


async def bind_budget_context(budget_id: str) -> None:
    """Tag log events of budget-scoped routes with the budget id."""
    set_budget_context(budget_id)


class BudgetApiService(BaseService):
    """Budget service implementation.

    ``store`` and ``verifier`` default to PostgreSQL and the configured
    Cognito user pool; tests pass their own.
    """

    def __init__(self, config: Optional[ServiceConfig] = None,
                 store: Optional[BudgetStore] = None,
                 verifier: Optional[TokenVerifier] = None):
        super().__init__("budget", 8020, config=config)

        self.store = store or PostgreSQLBudgetStore(
            self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool_size,
            max_size=self.config.postgres_max_pool_size,
            command_timeout=self.config.postgres_command_timeout,
        )
        self._owns_verifier = verifier is None
        self.verifier = verifier or CognitoTokenVerifier(
            self.config.cognito_user_pool_id,
            self.config.cognito_client_id,
            token_use=self.config.cognito_token_use,
            region=self.config.cognito_region,
            cache_ttl=self.config.jwks_cache_ttl,
            http_timeout=self.config.http_timeout,
        )

        self.authenticator = TokenAuthenticator(self.verifier, self.config.cognito_token_use)
        self.identity = IdentityDependencies(self.authenticator, self.metrics)
        self.ledger = BudgetLedgerService(self.store)

        self._setup_budget_routes()

    def _setup_budget_routes(self):
        """Set up budget-specific routes."""
        require_identity = self.identity.require
        optional_identity = self.identity.optional
        budget_scope = [Depends(bind_budget_context)]

        @self.app.get("/")
        async def root(identity: Optional[VerifiedIdentity] = Depends(optional_identity)):
            """Root endpoint."""
            payload = {
                "service": "budget",
                "message": "Budget Ledger API - Budget Service",
                "version": "1.0.0",
                "authenticated": identity is not None,
            }
            if identity is not None:
                payload["user"] = identity.display_name or identity.email
            return payload

        @self.app.get("/me")
        async def me(identity: VerifiedIdentity = Depends(require_identity)):
            """Return the caller's verified identity."""
            return {
                "sub": identity.subject_id,
                "email": identity.email,
                "name": identity.display_name,
                "token_use": identity.token_use,
            }

        @self.app.post("/budgets", response_model=BudgetResponse, status_code=201)
        async def create_budget(request: BudgetCreateRequest,
                                identity: VerifiedIdentity = Depends(require_identity)):
            """Create a budget for the caller."""
            budget = await self.ledger.create_budget(
                identity.subject_id,
                request.start_date,
                request.end_date,
                request.currency,
            )
            self.metrics.record_business_event("budget_created")
            return BudgetResponse.from_budget(budget)

        @self.app.get("/budgets", response_model=BudgetListResponse)
        async def list_budgets(identity: VerifiedIdentity = Depends(require_identity)):
            """List the caller's budgets, newest first."""
            budgets = await self.ledger.list_budgets_by_user(identity.subject_id)
            return BudgetListResponse(
                budgets=[BudgetResponse.from_budget(budget) for budget in budgets],
                total_count=len(budgets),
            )

        @self.app.get("/budgets/{budget_id}", response_model=BudgetResponse, dependencies=budget_scope)
        async def get_budget(budget_id: str, identity: VerifiedIdentity = Depends(require_identity)):
            """Get one of the caller's budgets."""
            budget = await self.ledger.get_budget(budget_id, identity.subject_id)
            return BudgetResponse.from_budget(budget)

        @self.app.patch("/budgets/{budget_id}", response_model=BudgetResponse, dependencies=budget_scope)
        async def update_budget(budget_id: str, request: BudgetUpdateRequest,
                                identity: VerifiedIdentity = Depends(require_identity)):
            """Update the period or currency of one of the caller's budgets."""
            budget = await self.ledger.update_budget(
                budget_id,
                identity.subject_id,
                start_date=request.start_date,
                end_date=request.end_date,
                currency=request.currency,
            )
            return BudgetResponse.from_budget(budget)

        @self.app.delete("/budgets/{budget_id}", status_code=204, dependencies=budget_scope)
        async def delete_budget(budget_id: str, identity: VerifiedIdentity = Depends(require_identity)):
            """Delete one of the caller's budgets."""
            await self.ledger.delete_budget(budget_id, identity.subject_id)
            self.metrics.record_business_event("budget_deleted")
            return Response(status_code=204)

        @self.app.post("/budgets/{budget_id}/recalculate", response_model=BudgetResponse, dependencies=budget_scope)
        async def recalculate_budget(budget_id: str, identity: VerifiedIdentity = Depends(require_identity)):
            """Recompute the derived totals of one of the caller's budgets."""
            await self.ledger.get_budget(budget_id, identity.subject_id)
            with self.metrics.time_operation("budget_recalculation_duration_seconds"):
                budget = await self.ledger.recalculate_budget(budget_id)
            self.metrics.record_business_event("budget_recalculated")
            return BudgetResponse.from_budget(budget)

        @self.app.post("/budgets/{budget_id}/incomes", response_model=BudgetResponse, status_code=201, dependencies=budget_scope)
        async def add_income(budget_id: str, request: IncomeCreateRequest,
                             identity: VerifiedIdentity = Depends(require_identity)):
            """Record an income and return the recalculated budget."""
            budget = await self.ledger.add_income(
                budget_id,
                identity.subject_id,
                request.amount,
                description=request.description,
                received_at=request.received_at,
            )
            self.metrics.record_business_event("income_recorded")
            return BudgetResponse.from_budget(budget)

        @self.app.post("/budgets/{budget_id}/expenses", response_model=BudgetResponse, status_code=201, dependencies=budget_scope)
        async def add_expense(budget_id: str, request: ExpenseCreateRequest,
                              identity: VerifiedIdentity = Depends(require_identity)):
            """Record an expense and return the recalculated budget."""
            budget = await self.ledger.add_expense(
                budget_id,
                identity.subject_id,
                request.category_id,
                request.amount,
                description=request.description,
                spent_at=request.spent_at,
            )
            self.metrics.record_business_event("expense_recorded")
            return BudgetResponse.from_budget(budget)

        @self.app.get("/categories", response_model=List[CategoryResponse])
        async def list_categories(identity: VerifiedIdentity = Depends(require_identity)):
            """List expense categories."""
            categories = await self.ledger.list_categories()
            return [CategoryResponse(id=c.id, name=c.name) for c in categories]

    async def _check_dependencies(self):
        """Check budget service dependencies."""
        try:
            postgres = "ok" if await self.store.health_check() else "error"
        except Exception:
            postgres = "error"

        return {"postgres": postgres}

    async def start(self):
        """Start budget service components."""
        await self.store.start()
        self.logger.info("Budget service started")

    async def stop(self):
        """Stop budget service components."""
        await self.store.stop()
        if self._owns_verifier:
            await self.verifier.close()

        self.logger.info("Budget service stopped")


def create_app():
    """Create budget service application."""
    service = BudgetApiService()
    return service.app


if __name__ == "__main__":
    service = BudgetApiService()
    service.run()
