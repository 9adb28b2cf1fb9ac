from pydantic import BaseModel, Field
from typing import Optional


class ValidationData(BaseModel):
    """
    Result of validating a flow graph before it is allowed to run.
    """
    valid: bool = Field(default=True, description="Whether the flow passed every structural check")
    reason: Optional[str] = Field(default=None, description="First failing check, naming the offending node or edge")
