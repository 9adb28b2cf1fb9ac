from pydantic import BaseModel, Field
from typing import Optional


class ExecutionStats(BaseModel):
    """
    Running totals the execution guard checks before every step.
    """
    step_count: int = Field(default=0, description="Steps completed so far")
    total_delay_ms: int = Field(default=0, description="Delay waited so far, in milliseconds")


class GuardResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None
