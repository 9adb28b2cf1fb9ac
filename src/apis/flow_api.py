from fastapi import APIRouter
from fastapi.exceptions import HTTPException
from pydantic import ValidationError

# Utils
from utils.log_utils import LogUtil

# Services
from services.flow_service import FlowService

# Models
from models.request.flow_request import CreateFlowRequest, UpdateFlowRequest

# Exceptions
from exceptions.flow_exception import FlowException

def validation_error_detail(error: ValidationError) -> str:
    """
    First pydantic error as a readable message, e.g. "email: Invalid email format"
    """
    first_error = error.errors()[0]
    message = first_error.get("msg", str(error)).removeprefix("Value error, ")
    location = ".".join(str(part) for part in first_error.get("loc", ()))
    return f"{location}: {message}" if location else message

def create_flow_api(
    log_util: LogUtil,
    flow_service: FlowService
) -> APIRouter:
    router = APIRouter(
        prefix="/automations",
        tags=["automations"],
    )

    @router.post("", status_code=201)
    async def create_flow(flow_data: dict):
        try:
            flow_request = CreateFlowRequest.model_validate(flow_data)
            return await flow_service.create_flow(flow_request=flow_request)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=validation_error_detail(e))
        except FlowException as e:
            log_util.error(service_name="FlowAPI", message=f"Error creating flow: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="FlowAPI", message=f"Error creating flow: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("")
    async def get_flows_list():
        try:
            return await flow_service.get_flows_list()
        except FlowException as e:
            log_util.error(service_name="FlowAPI", message=f"Error getting flows list: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="FlowAPI", message=f"Error getting flows list: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/validate")
    async def validate_flow(flow_data: dict):
        """
        Validate a graph without saving it. Always 200, the verdict is in the body.
        """
        try:
            flow_request = CreateFlowRequest.model_validate(flow_data)
            return flow_service.validate_flow(flow_request=flow_request)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=validation_error_detail(e))
        except Exception as e:
            log_util.error(service_name="FlowAPI", message=f"Error validating flow: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/{flow_id}")
    async def get_flow_detail(flow_id: str):
        try:
            return await flow_service.get_flow_detail(flow_id=flow_id)
        except FlowException as e:
            log_util.error(service_name="FlowAPI", message=f"Error getting flow detail: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="FlowAPI", message=f"Error getting flow detail: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.put("/{flow_id}")
    async def update_flow(flow_id: str, flow_data: dict):
        try:
            flow_request = UpdateFlowRequest.model_validate(flow_data)
            return await flow_service.update_flow(flow_id=flow_id, flow_request=flow_request)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=validation_error_detail(e))
        except FlowException as e:
            log_util.error(service_name="FlowAPI", message=f"Error updating flow: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="FlowAPI", message=f"Error updating flow: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.delete("/{flow_id}")
    async def delete_flow(flow_id: str):
        try:
            await flow_service.delete_flow(flow_id=flow_id)
            return {"message": "Automation deleted successfully"}
        except FlowException as e:
            log_util.error(service_name="FlowAPI", message=f"Error deleting flow: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="FlowAPI", message=f"Error deleting flow: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    return router
