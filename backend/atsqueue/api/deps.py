from __future__ import annotations
from functools import lru_cache

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer

from atsqueue.core.config import settings
from atsqueue.db.database import SessionLocal
from atsqueue.services.queue_system import QueueSystem
from atsqueue.utils.auth import verify_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.api_prefix}/auth/login")


def require_user(token: str = Depends(oauth2_scheme)) -> str:
    subject = verify_access_token(token)
    if not subject:
        raise HTTPException(status_code=401, detail="Invalid token")
    return subject


def verify_login(username: str, password: str) -> bool:
    return username == settings.auth_username and password == settings.auth_password


@lru_cache(maxsize=1)
def get_queue_system() -> QueueSystem:
    return QueueSystem(SessionLocal)
