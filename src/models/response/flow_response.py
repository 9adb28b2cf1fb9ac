from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class FlowListItem(BaseModel):
    """
    Minimal flow data returned by the list endpoint
    """
    id: str = Field(..., description="Flow ID")
    name: str = Field(..., description="Flow name")
    created_at: Optional[datetime] = Field(None, description="When the flow was created")
