"""REST API module for the marketplace.

This module provides HTTP endpoints for:
- Paystack checkout, verification, wallet top-ups and webhooks
- Public storefronts, checkout, reviews and questions
- Escrow status and order fulfilment
- Wallets, withdrawals and payout methods
- Disputes with a live message thread
- Admin oversight of payments, escrow and withdrawals
- System health monitoring
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from asyncpg.exceptions import PostgresError

from database.exceptions import DatabaseError
from errors import MarketplaceError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Database and the auto-release worker are handled in __main__.py
    logger.info("Initializing API...")
    yield
    logger.info("Shutting down API...")

# Create FastAPI app
app = FastAPI(
    title="Marketplace Escrow API",
    description="REST API for the multi-tenant marketplace with escrowed payments",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    """Domain errors carry their own status and code."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and parameters."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = '.'.join(str(part) for part in first.get('loc', ()) if part != 'body')
    message = f"{location}: {first.get('msg')}" if location else str(first.get('msg', 'Invalid request'))
    return JSONResponse(
        status_code=400,
        content={'success': False, 'error': message, 'code': 'VALIDATION_ERROR'}
    )

@app.exception_handler(DatabaseError)
@app.exception_handler(PostgresError)
async def database_error_handler(request: Request, exc: Exception):
    """Storage failures are logged and reported without details."""
    logger.error(f"{request.method} {request.url.path} database error: {exc}")
    return JSONResponse(
        status_code=500,
        content={'success': False, 'error': 'Database error', 'code': 'DATABASE_ERROR'}
    )

# Import and include all routers
from .paystack import router as paystack_router
from .storefront import router as storefront_router
from .escrow import router as escrow_router
from .admin import router as admin_router
from .wallet import router as wallet_router
from .disputes import router as disputes_router
from .system import router as system_router

# Include all routers
app.include_router(paystack_router)
app.include_router(storefront_router)
app.include_router(escrow_router)
app.include_router(admin_router)
app.include_router(wallet_router)
app.include_router(disputes_router)
app.include_router(system_router)
