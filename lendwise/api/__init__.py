"""
Lendwise API Application Factory
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import get_config
from ..logging_config import setup_logging
from .loans import router as loans_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    config = get_config()
    setup_logging(config.log_level, config.log_format, config.log_file)

    app = FastAPI(
        title="Lendwise Loan Ledger API",
        description="Informal loan tracking with daily interest accrual and a payment ledger",
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

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "lendwise_api",
            "version": __version__
        }

    return app


def run_server(host: str = None, port: int = None) -> None:
    """Serve the API with uvicorn using configured host and port by default"""
    import uvicorn

    config = get_config()
    uvicorn.run(create_app(), host=host or config.api_host, port=port or config.api_port)


app = create_app()
