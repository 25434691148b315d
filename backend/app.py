"""FastAPI backend for EDI claim submission and remittance reconciliation."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from billing import get_billing_store
from config import DB_PATH
from rate_limit import limiter
from routes import claims_router, detection_router, remittances_router

# Configure logging
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup."""
    get_billing_store(DB_PATH)
    logger.info(f"Billing store ready at {DB_PATH}")
    yield


app = FastAPI(
    title="Claims and Remittance Backend",
    description="837P claim submission, 835 remittance posting and payment reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting configuration
# Upload and posting endpoints: 10 requests/minute (parse + ledger writes)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS configuration
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173",
    ).split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API routers
app.include_router(claims_router)
app.include_router(remittances_router)
app.include_router(detection_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
