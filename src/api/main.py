"""
Call Backfill API - Main Application

FastAPI application exposing the voice call backfill as a single
request/response operation, plus health checks.

Run with:
    uvicorn src.api.main:app --reload --port 8000

API Documentation available at:
    - Swagger UI: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

import logging
import logging.handlers
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from src.logging_utils import configure_safe_logging, make_formatter

# =============================================================================
# File-based logging (survives stdout/pipe issues)
# =============================================================================
# Backfill runs are long; keep their log even when stdout is gone.
_LOG_FILE = "/tmp/call-backfill-api.log"

load_dotenv(Path(__file__).parent.parent.parent / ".env")
_log_level = configure_safe_logging()

_file_handler = logging.handlers.RotatingFileHandler(
    _LOG_FILE,
    maxBytes=10 * 1024 * 1024,  # 10MB
    backupCount=3,
)
_file_handler.setFormatter(make_formatter())
_file_handler.setLevel(_log_level)
logging.getLogger().addHandler(_file_handler)

# =============================================================================

from fastapi.middleware.cors import CORSMiddleware

from src.api.routers import backfill, health

logger = logging.getLogger(__name__)


app = FastAPI(
    title="Call Backfill API",
    description="""
    Reconciles stored call logs with ElevenLabs voice-agent conversations.

    - **Backfill**: list, normalize and upsert conversations; classify
      booking intent; create deduplicated carrier leads
    - **Health**: API and database checks
    """,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# The dashboard calls this from the browser
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

app.include_router(health.router)
app.include_router(backfill.router)


@app.get("/")
def root():
    """Root endpoint with API information."""
    return {
        "name": "Call Backfill API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
