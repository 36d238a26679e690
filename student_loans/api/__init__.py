"""
Student Loans API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_config
from ..exceptions import LoanServiceError
from ..logging_config import log_action, setup_logging
from .dependencies import LoanSystem, logger
from .auth import router as auth_router
from .reservations import router as reservations_router
from .repayments import router as repayments_router
from .admin import router as admin_router


def create_app(system: Optional[LoanSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    config = system.config if system is not None else get_config()
    if system is None:
        system = LoanSystem.from_config(config)

    app = FastAPI(
        title="Student Loans API",
        description="Student loan applications, review and repayments",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.system = system

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LoanServiceError)
    async def loan_service_error_handler(request: Request, exc: LoanServiceError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc), "category": exc.category}
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        log_action(
            logger, "error", f"Unhandled error on {request.method} {request.url.path}",
            action="unhandled_error", resource=request.url.path, exc_info=exc
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "category": "InternalError"}
        )

    # Include routers
    app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
    app.include_router(reservations_router, prefix="/api", tags=["Reservations"])
    app.include_router(repayments_router, prefix="/api", tags=["Repayments"])
    app.include_router(admin_router, prefix="/api", tags=["Admin"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "student_loans_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Student Loans API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": "/api/auth",
                "loan-types": "/api/loan-types",
                "reservations": "/api/reservations",
                "repayments": "/api/repayments",
                "dashboard": "/api/user/dashboard",
                "admin": "/api/admin/dashboard",
            }
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(
        level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file
    )
    uvicorn.run(
        "student_loans.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level="info"
    )


__all__ = ["create_app", "run_server", "LoanSystem"]
