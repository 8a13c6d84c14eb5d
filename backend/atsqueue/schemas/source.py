from __future__ import annotations
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class SourceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    provider: str
    company: str
    params: dict
    enabled: bool
    created_at: datetime


class SourcePatch(BaseModel):
    enabled: bool
