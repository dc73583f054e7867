"""
Corebank API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import CorebankConfig, get_config
from ..errors import BankingError
from ..logging_config import setup_logging
from .auth import BankingSystem
from .errors import banking_error_handler, internal_error_handler, validation_error_handler
from .accounts import router as accounts_router
from .login import router as login_router
from .transfers import router as transfers_router


def create_app(system: Optional[BankingSystem] = None,
               config: Optional[CorebankConfig] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Prebuilt banking system; built from configuration at startup when omitted
        config: Settings used for logging and for building the system
    """
    config = config or (system.config if system else get_config())
    setup_logging(config.log_level, fmt=config.log_format, log_file=config.log_file)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.banking_system is None
        if owned:
            app.state.banking_system = BankingSystem.from_config(config)
        try:
            yield
        finally:
            if owned:
                app.state.banking_system.close()
                app.state.banking_system = None

    app = FastAPI(
        title="Corebank API",
        description="Accounts, login and atomic transfers between accounts",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.banking_system = system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BankingError, banking_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    # Include routers
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(login_router, prefix="/login", tags=["Login"])
    app.include_router(transfers_router, prefix="/transfers", tags=["Transfers"])

    # Health check endpoint
    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "corebank_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    def get_api_info():
        """Get API information"""
        return {
            "name": "Corebank API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "accounts": "/accounts",
                "login": "/login",
                "transfers": "/transfers",
            }
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the API with uvicorn using configured defaults"""
    import uvicorn

    config = get_config()
    uvicorn.run(
        "corebank.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        workers=config.api_workers,
        log_level=config.log_level.lower()
    )


app = create_app()
