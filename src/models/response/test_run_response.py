from pydantic import BaseModel, ConfigDict, Field


class StartTestRunResponse(BaseModel):
    """
    Response model returned as soon as a test run has been scheduled.
    Progress is observed by polling the run status and logs.
    """
    testRunId: str = Field(..., description="ID of the created test run")
    status: str = Field(default="started", description="Always 'started' when the run was scheduled")
    message: str = Field(default="Test run started successfully", description="Human-readable message")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "testRunId": "6650c0f1e4b0a1b2c3d4e5f6",
                "status": "started",
                "message": "Test run started successfully"
            }
        }
    )
