"""
Account Service API Application Factory
"""

from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError

from .. import __version__
from ..errors import AccountOperationError
from ..logging_config import get_logger, log_action, setup_logging
from ..system import AccountSystem
from .accounts import router as accounts_router
from .activities import router as activities_router
from .responses import error_response, status_for
from .transactions import router as transactions_router


logger = get_logger("accounts.api")


def create_app(system: Optional[AccountSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Wired AccountSystem; built from the environment configuration
            when omitted
    """
    if system is None:
        system = AccountSystem()
        setup_logging(system.config.log_level, log_format=system.config.log_format)

    app = FastAPI(
        title="Account Service API",
        description="Accounts with daily limits, transfer fees and an activity ledger",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.system = system

    @app.exception_handler(AccountOperationError)
    async def handle_account_error(request: Request, exc: AccountOperationError):
        log_action(
            logger, "warning", f"Request rejected: {exc.code}",
            action=request.url.path, extra={"method": request.method, "detail": str(exc)}
        )
        return error_response(status_for(exc.error), exc.code, str(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        message = ", ".join(
            f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
            for error in exc.errors()
        )
        log_action(
            logger, "warning", f"Request validation failed: {message}",
            action=request.url.path, extra={"method": request.method}
        )
        return error_response(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            f"Unhandled error on {request.method} {request.url.path}", exc_info=exc
        )
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", "An internal error occurred."
        )

    # Include routers
    app.include_router(accounts_router, prefix="/api/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/api/transactions", tags=["Transactions"])
    app.include_router(activities_router, prefix="/api/activities", tags=["Activities"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "account_service",
            "version": __version__
        }

    return app
