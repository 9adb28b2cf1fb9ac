import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils

# Database
from database.flow_db import FlowDB

# Services
from services.flow_validation_service import FlowValidationService
from services.condition_evaluation_service import ConditionEvaluationService
from services.execution_guard_service import ExecutionGuardService
from services.execution_logger_service import ExecutionLoggerService
from services.notifier_service import EmailNotifierService
from services.flow_runner_service import FlowRunnerService
from services.flow_service import FlowService
from services.test_run_service import TestRunService
from services.stale_run_reconciler_service import StaleRunReconcilerService

# APIs
from apis.flow_api import create_flow_api
from apis.test_run_api import create_test_run_api

# Utils
log_util = LogUtil()
environment_utils = EnvironmentUtils(log_util=log_util)

# Database
flow_db = FlowDB(log_util=log_util, environment_utils=environment_utils)

# Services
flow_validation_service = FlowValidationService(log_util=log_util)

email_notifier_service = EmailNotifierService(
    log_util=log_util,
    environment_utils=environment_utils
)

flow_runner_service = FlowRunnerService(
    log_util=log_util,
    flow_db=flow_db,
    notifier=email_notifier_service,
    flow_validation_service=flow_validation_service,
    condition_evaluation_service=ConditionEvaluationService(log_util=log_util),
    execution_guard_service=ExecutionGuardService(),
    execution_logger_service=ExecutionLoggerService(log_util=log_util, flow_db=flow_db),
    email_subject=environment_utils.get_env_variable("EMAIL_SUBJECT")
)

flow_service = FlowService(
    log_util=log_util,
    flow_db=flow_db,
    flow_validation_service=flow_validation_service
)

test_run_service = TestRunService(
    log_util=log_util,
    flow_db=flow_db,
    flow_runner_service=flow_runner_service
)

# Fails runs left "running" by a previous process
stale_run_reconciler_service = StaleRunReconcilerService(
    log_util=log_util,
    flow_db=flow_db,
    check_interval_seconds=environment_utils.get_env_variable("STALE_RUN_CHECK_INTERVAL_SECONDS"),
    grace_seconds=environment_utils.get_env_variable("STALE_RUN_GRACE_SECONDS"),
    is_run_active=flow_runner_service.is_run_active
)

# Define lifespan function
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log_util.info(service_name="AutomationFlowService", message="Application startup complete")

    await stale_run_reconciler_service.start()

    yield

    # Shutdown
    await stale_run_reconciler_service.stop()
    await flow_runner_service.shutdown()

    flow_db.close()
    log_util.info(service_name="AutomationFlowService", message="Application shutdown complete")

# Create FastAPI app
app = FastAPI(
    title="automation flow service",
    description="Email automation flows with background test runs",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in environment_utils.get_env_variable("CORS_ORIGIN").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Flow management APIs
flow_api_router = create_flow_api(
    log_util=log_util,
    flow_service=flow_service
)
app.include_router(flow_api_router)

# Test run APIs
test_run_api_router = create_test_run_api(
    log_util=log_util,
    test_run_service=test_run_service
)
app.include_router(test_run_api_router)

# Health check endpoint
@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "automation_flow_service"}

# Global exception handler for HTTPExceptions
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    log_util.error(service_name="AutomationFlowService", message=f"HTTPException: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error": str(exc),
            "status_code": exc.status_code
        },
        headers={"Content-Type": "application/json"}
    )

# Global exception handler for any unhandled exceptions
@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    log_util.error(service_name="AutomationFlowService", message=f"Exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "status_code": 500
        },
        headers={"Content-Type": "application/json"}
    )

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=environment_utils.get_env_variable("HOST"),
        port=environment_utils.get_env_variable("PORT")
    )
