"""Dining table schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from frontdesk.models.restaurant import TableStatus


class TableCreate(BaseModel):
    restaurant_id: int
    table_number: str = Field(..., min_length=1, max_length=20)
    capacity: int = Field(..., ge=1, le=20)
    location_notes: Optional[str] = None


class TableBulkCreate(BaseModel):
    restaurant_id: int
    count: int = Field(..., ge=1, le=50)
    capacity: int = Field(4, ge=1, le=20)


class TableUpdate(BaseModel):
    table_number: Optional[str] = Field(None, min_length=1, max_length=20)
    capacity: Optional[int] = Field(None, ge=1, le=20)
    location_notes: Optional[str] = None


class TableStatusUpdate(BaseModel):
    status: TableStatus


class WalkInRequest(BaseModel):
    party_size: int = Field(..., ge=1, le=100)
    notes: Optional[str] = None


class TableResponse(BaseModel):
    id: int
    restaurant_id: int
    table_number: str
    capacity: int
    status: TableStatus
    location_notes: Optional[str] = None
    version: int
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AvailableTableResponse(BaseModel):
    table_id: int
    table_number: str
    capacity: int

    model_config = {"from_attributes": True}
