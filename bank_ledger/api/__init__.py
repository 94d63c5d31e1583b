"""
Bank Ledger API Application Factory
"""

from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .customers import router as customers_router
from .accounts import router as accounts_router
from .transactions import router as transactions_router
from ..errors import ErrorKind, LedgerException
from ..logging_config import get_logger, log_action


logger = get_logger("bank_ledger.api")

HTTP_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_AMOUNT: 400,
    ErrorKind.INSUFFICIENT_FUNDS: 400,
    ErrorKind.BUSINESS_RULE_VIOLATION: 400,
    ErrorKind.DUPLICATE_RESOURCE: 409,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}


async def ledger_exception_handler(request: Request, exc: LedgerException) -> JSONResponse:
    """Render a ledger error as the JSON error body"""
    error = exc.error
    status_code = HTTP_STATUS.get(error.kind, 500)
    if status_code >= 500:
        log_action(logger, "error", f"Request failed: {error.message}",
                   action=request.method, resource=request.url.path)
    body = error.to_dict()
    return JSONResponse(status_code=status_code, content={
        "status": status_code,
        "error_code": body["error_code"],
        "message": body["message"],
        "path": request.url.path,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "details": body["details"],
    })


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Bank Ledger API",
        description="Customers, accounts and an atomic transaction ledger",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LedgerException, ledger_exception_handler)

    # Include routers
    app.include_router(customers_router, prefix="/customers", tags=["Customers"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "bank_ledger_api",
            "version": "1.0.0"
        }

    return app


# Create the app instance for uvicorn
app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "bank_ledger.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
