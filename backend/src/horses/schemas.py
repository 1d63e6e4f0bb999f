"""Pydantic schemas for horse endpoints."""

from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class HorseCreate(BaseModel):
    """Request schema for POST /horses. The tenant comes from the request."""
    name: str = Field(..., min_length=1, max_length=200, examples=["Dakota"])
    breed: Optional[str] = Field(default=None, max_length=200, examples=["Quarter Horse"])
    status: str = Field(
        default="IN_CARE",
        pattern="^(IN_CARE|AVAILABLE|ADOPTED|DECEASED)$",
        examples=["IN_CARE"],
    )
    intake_date: Optional[date] = None


class HorseResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    name: str
    breed: Optional[str]
    status: str
    intake_date: Optional[date]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class HorseListResponse(BaseModel):
    horses: List[HorseResponse]
    total: int
