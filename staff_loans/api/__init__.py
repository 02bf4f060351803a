"""
Staff Loans API Application Factory
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .loans import router as loans_router
from .payroll import router as payroll_router
from .approvals import router as approvals_router
from .staff import router as staff_router
from .deps import get_loan_system, set_loan_system


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Staff Loans API",
        description="Staff loan lifecycle, repayment schedules and payroll deductions",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(payroll_router, prefix="/payroll", tags=["Payroll"])
    app.include_router(approvals_router, prefix="/approvals", tags=["Approvals"])
    app.include_router(staff_router, prefix="/staff", tags=["Staff"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "staff_loans_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Staff Loans API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "loans": "/loans",
                "payroll": "/payroll",
                "approvals": "/approvals",
                "staff": "/staff"
            }
        }

    return app


__all__ = ["create_app", "get_loan_system", "set_loan_system"]
