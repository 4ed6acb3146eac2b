"""
Billbank API Application Factory
"""

from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .auth import get_banking_system
from .bills import router as bills_router
from .languages import router as languages_router
from .transactions import router as transactions_router
from ..config import get_config
from ..logging_config import correlation_context, setup_logging


CORRELATION_HEADER = "X-Request-Id"


@asynccontextmanager
async def lifespan(app: FastAPI):
    system = app.dependency_overrides.get(get_banking_system, get_banking_system)()
    system.initialize()
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    
    app = FastAPI(
        title="Billbank API",
        description="Bills, currencies and authorization-coded transfers",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    
    @app.middleware("http")
    async def correlate_request(request: Request, call_next):
        """Tag logs of one request with its X-Request-Id, generating one if absent"""
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid4())
        with correlation_context(correlation_id):
            response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
    
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(bills_router, prefix="/bills", tags=["Bills"])
    app.include_router(languages_router, prefix="/languages", tags=["Languages"])
    
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "billbank_api",
            "version": "1.0.0"
        }
    
    return app


def run_server(host: str = None, port: int = None) -> None:
    """Run the API with uvicorn using configured defaults"""
    config = get_config()
    uvicorn.run(
        create_app(),
        host=host or config.api_host,
        port=port or config.api_port,
        log_level=config.log_level.lower()
    )
