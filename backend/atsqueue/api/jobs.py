from __future__ import annotations
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from atsqueue.api.deps import require_user
from atsqueue.db.database import get_db
from atsqueue.models.job import Job
from atsqueue.models.status import EnrichmentStatus
from atsqueue.schemas.job import JobOut

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("", response_model=list[JobOut])
def list_jobs(
    q: str | None = None,
    provider: str | None = None,
    company: str | None = None,
    enrichment_status: EnrichmentStatus | None = None,
    execution_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _: str = Depends(require_user),
    db: Session = Depends(get_db),
):
    query = db.query(Job)

    if q:
        like = f"%{q}%"
        query = query.filter((Job.title.ilike(like)) | (Job.company.ilike(like)) | (Job.description.ilike(like)))
    if provider:
        query = query.filter(Job.provider == provider)
    if company:
        query = query.filter(Job.company.ilike(company))
    if enrichment_status is not None:
        query = query.filter(Job.enrichment_status == enrichment_status)
    if execution_id:
        query = query.filter(Job.last_execution_id == execution_id)
    if start:
        query = query.filter(Job.fetched_at >= start)
    if end:
        query = query.filter(Job.fetched_at <= end)

    return query.order_by(Job.fetched_at.desc()).offset(offset).limit(limit).all()


@router.get("/{job_id}", response_model=JobOut)
def get_job(job_id: str, _: str = Depends(require_user), db: Session = Depends(get_db)):
    job = db.get(Job, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="job not found")
    return job
