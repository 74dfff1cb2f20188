'''
LedgerLens API - Main application entry point

Statements are uploaded, parsed by the LLM into transactions, deduplicated
and reconciled against receipts ingested from outside.
'''
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from ledgerlens.core.config import settings
from ledgerlens.core.database import engine, init_db
from ledgerlens.core.logging_config import setup_logging

# Register every model before the first query resolves relationships
from ledgerlens.models import enrichment_log, prompt_draft, statement, transaction, user  # noqa: F401
from ledgerlens.routes import auth
from ledgerlens.routes import functions
from ledgerlens.routes import prompt_tester
from ledgerlens.routes import statements
from ledgerlens.routes import transactions

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.AUTO_CREATE_TABLES:
        logger.info("Creating database tables")
        init_db()
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Bank statement extraction, deduplication and receipt reconciliation",
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure CORS (allows frontend to call API)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(statements.router)
app.include_router(transactions.router)
app.include_router(functions.router)
app.include_router(prompt_tester.router)


# Root endpoint
@app.get("/")
def root():
    """Basic API info."""
    return {
        "app": "LedgerLens",
        "message": "LedgerLens API is running",
        "status": "healthy",
        "version": settings.VERSION,
        "docs": "/docs",
    }


# Health endpoint (deployment monitoring)
@app.get("/health")
def health_check():
    """Checks that the database answers."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        database = "connected"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database = "unavailable"

    return {
        "status": "ok" if database == "connected" else "degraded",
        "database": database,
        "llm_configured": bool(settings.GEMINI_API_KEY),
        "storage": settings.STORAGE_BACKEND,
        "app": "LedgerLens",
    }


# This runs when you execute: uvicorn ledgerlens.main:app --reload (from backend/)
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
