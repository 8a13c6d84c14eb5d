from __future__ import annotations
import logging

from fastapi import APIRouter, HTTPException

from atsqueue.api.deps import verify_login
from atsqueue.schemas.auth import LoginRequest, TokenResponse
from atsqueue.utils.auth import create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest):
    if not verify_login(req.username, req.password):
        logger.warning("login rejected", extra={"username": req.username})
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_access_token(req.username)
    return TokenResponse(access_token=token)
