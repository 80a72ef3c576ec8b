"""FastAPI application for the kidguard moderation service.

Provides REST API endpoints wrapping the kidguard Python package for:
- Text and image moderation at publish time
- Strike and suspension status, and early suspension lift
- Resilient media upload and signed URL resolution
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the kidguard package is importable by adding the project root to sys.path.
_project_root = str(Path(__file__).resolve().parents[3])
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kidguard import __version__
from web.backend.app.routers import media, moderation

app = FastAPI(
    title="kidguard API",
    description=(
        "REST API for kidguard. "
        "Provides endpoints for content moderation, strike and suspension "
        "status, media upload and signed URL resolution."
    ),
    version=__version__,
)

# ---------------------------------------------------------------------------
# CORS middleware (allow all origins for development)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(moderation.router)
app.include_router(media.router)


# ---------------------------------------------------------------------------
# Root and health-check endpoints
# ---------------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root():
    """Return basic API information."""
    return {
        "name": "kidguard API",
        "version": __version__,
        "description": "Content moderation and media REST API",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


@app.get("/health", tags=["meta"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
