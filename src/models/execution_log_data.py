from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone


class ExecutionLogData(BaseModel):
    """
    Audit record of a single node visit within a test run.
    Created as "started" and updated in place to "completed" or "failed".
    """
    id: Optional[str] = None  # MongoDB _id
    test_run_id: str = Field(..., description="Test run this visit belongs to")
    flow_id: str = Field(..., description="Flow ID being executed")
    node_id: str = Field(..., description="Node ID that was visited")
    node_type: str = Field(..., description="Type of node (start, action, delay, condition, end)")
    status: str = Field(default="started", description="Visit status: started, completed, failed")
    message: Optional[str] = Field(None, description="What the step did, or why it failed")
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="When the visit started")
    finished_at: Optional[datetime] = Field(None, description="When the visit completed or failed")
