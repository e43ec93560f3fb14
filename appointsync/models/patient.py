"""Patient data models."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class Patient(BaseModel):
    """Represents a patient identified by phone number."""
    id: Optional[int] = Field(default=None)
    phone: str = Field(..., description="Canonical 10-digit phone (primary identifier)")
    name: Optional[str] = Field(default=None, description="Patient's name")
    email: Optional[str] = Field(default=None)
    created_at: Optional[datetime] = Field(default=None)
    updated_at: Optional[datetime] = Field(default=None)
