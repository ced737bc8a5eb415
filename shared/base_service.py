"""
Base service class for Budget Ledger API services.
"""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from typing import Dict, Optional
import time
import os

from shared.config import ServiceConfig, get_config
from shared.logging import configure_logging, get_logger, set_request_id, clear_context
from shared.metrics import get_metrics_collector
from shared.errors import BudgetApiException, ValidationError


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self.logger = get_logger(f"{service_name}.service")
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level, json_logs=self.config.env != "local")

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.start()
            try:
                yield
            finally:
                await self.stop()

        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Budget Ledger API - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=lifespan,
        )

    def _setup_middleware(self):
        """Set up middleware."""

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        # Request timing and correlation middleware
        @self.app.middleware("http")
        async def add_request_timing(request: Request, call_next):
            start_time = time.time()
            request_id = set_request_id(request.headers.get("X-Request-ID"))

            try:
                response = await call_next(request)
            finally:
                duration = time.time() - start_time

            self.metrics.record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=response.status_code,
                duration=duration
            )

            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2)
            )

            response.headers["X-Request-ID"] = request_id
            clear_context()
            return response

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            dependencies = await self._check_dependencies()
            status = "ok" if all(value == "ok" for value in dependencies.values()) else "degraded"
            self.metrics.record_health_check(status)

            return JSONResponse(
                status_code=200 if status == "ok" else 503,
                content={
                    "service": self.service_name,
                    "status": status,
                    "uptime_seconds": self._get_uptime(),
                    "dependencies": dependencies,
                    "version": "1.0.0",
                    "commit": os.getenv("GIT_COMMIT", "unknown")
                }
            )

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(
                content=generate_latest(self.metrics.registry),
                media_type=CONTENT_TYPE_LATEST
            )

        # Error handlers
        @self.app.exception_handler(BudgetApiException)
        async def budget_api_exception_handler(request: Request, exc: BudgetApiException):
            """Handle BudgetApiException."""
            log = self.logger.error if exc.status_code >= 500 else self.logger.warning
            log(
                "Request failed",
                code=exc.code,
                message=exc.message,
                details=exc.details,
                path=request.url.path
            )
            self.metrics.record_error(exc.code)
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response().model_dump()
            )

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            """Render malformed request bodies and parameters as 400 Bad Request."""
            errors = exc.errors()
            message = "Invalid request"
            if errors:
                first = errors[0]
                # Drop the "body"/"query"/"path" prefix from the location
                field = ".".join(str(part) for part in first.get("loc", ())[1:])
                message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))

            error = ValidationError(message, details={"errors": len(errors)})
            return await budget_api_exception_handler(request, error)

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={
                    "error": "Internal Server Error",
                    "message": "Internal server error"
                }
            )

    async def start(self):
        """Start service components. Override in subclasses."""

    async def stop(self):
        """Stop service components. Override in subclasses."""

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
