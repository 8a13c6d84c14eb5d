from __future__ import annotations
from fastapi import APIRouter
from sqlalchemy import text

from atsqueue.db.database import SessionLocal

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as exc:  # noqa: BLE001
        database = f"error: {type(exc).__name__}"
    finally:
        db.close()
    return {"success": database == "ok", "status": "ok" if database == "ok" else "degraded", "database": database}
