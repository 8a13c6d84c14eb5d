from __future__ import annotations
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from atsqueue.api.deps import require_user
from atsqueue.db.database import get_db
from atsqueue.models.source import Source
from atsqueue.schemas.source import SourceOut, SourcePatch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sources", tags=["sources"])


@router.get("", response_model=list[SourceOut])
def list_sources(provider: str | None = None, _: str = Depends(require_user), db: Session = Depends(get_db)):
    query = db.query(Source)
    if provider:
        query = query.filter(Source.provider == provider)
    return query.order_by(Source.id.asc()).all()


@router.patch("/{source_id}", response_model=SourceOut)
def patch_source(source_id: int, body: SourcePatch, _: str = Depends(require_user), db: Session = Depends(get_db)):
    row = db.query(Source).filter(Source.id == source_id).first()
    if not row:
        raise HTTPException(status_code=404, detail="source not found")
    row.enabled = body.enabled
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("source toggled", extra={"source_id": source_id, "enabled": body.enabled})
    return row
