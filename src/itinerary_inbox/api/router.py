from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from itinerary_inbox.core.db import engine
from itinerary_inbox.modules.ingestion.api import router as ingestion_router

router = APIRouter()

router.include_router(ingestion_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz/db")
def healthz_db() -> JSONResponse:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:  # noqa: BLE001
        return JSONResponse(status_code=503, content={"ok": False, "error": type(e).__name__})
    return JSONResponse(status_code=200, content={"ok": True})
