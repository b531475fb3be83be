"""
CI Compliance Engine - FastAPI Application

Main entry point for the CI Compliance Engine backend.

Architecture:
- Request → Authorization Gate → Validator → Calculation Engine
- → State Machine → Repository + Audit Log (one unit of work)
"""
import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import ci_reports_router, scheduler_router
from .database import init_db

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="CI Compliance Engine",
    description="""
    CI Compliance Engine - Carbon Intensity Reporting for Biofuel Feedstocks

    Suppliers declare lifecycle emissions per feedstock batch; the engine
    computes a carbon intensity score under a regulatory methodology and
    drives the report through third-party verification.

    ## Workflow
    1. **Draft**: supplier enters emissions, CI is recalculated on every change
    2. **Submitted**: inputs frozen, waiting for an auditor
    3. **Under review**: claimed by exactly one auditor
    4. **Verified / Rejected**: decision with a validity window
    5. **Expired**: set by the scheduler once the window elapses

    ## Key Principles
    - Derived values are written only by the calculation engine
    - Every change is audited in the same transaction
    - Concurrent writers are serialized by a version check
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(ci_reports_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "CI Compliance Engine",
        "version": "1.0.0",
        "description": "Carbon intensity reporting and verification",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m app.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
