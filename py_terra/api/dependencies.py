"""Shared FastAPI dependencies."""

from typing import Optional

from fastapi import Header, HTTPException

from ..config import settings
from ..core.run_ingest import RunIngestService
from ..db.connection import Database, db


def get_database() -> Database:
    """The process-wide database manager."""
    if db.SessionLocal is None:
        raise HTTPException(status_code=503, detail="Database not initialized")
    return db


def get_ingest_service() -> RunIngestService:
    return RunIngestService.from_settings(get_database(), settings)


def current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Authenticated user id, set by the auth layer in front of this service."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()
