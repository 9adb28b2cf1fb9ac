from typing import List
from datetime import datetime, timezone

# Utils
from utils.log_utils import LogUtil

# Database
from database.flow_db import FlowDB

# Services
from services.flow_validation_service import FlowValidationService

# Models
from models.flow_data import FlowData
from models.validation_data import ValidationData
from models.request.flow_request import CreateFlowRequest, UpdateFlowRequest
from models.response.flow_response import FlowListItem

# Exceptions
from exceptions.flow_exception import (
    FlowException,
    FlowServiceException,
    FlowNotFoundException,
    FlowConflictException,
    FlowValidationException
)

class FlowService:
    def __init__(self, log_util: LogUtil, flow_db: FlowDB, flow_validation_service: FlowValidationService):
        self.log_util = log_util
        self.flow_db = flow_db
        self.flow_validation_service = flow_validation_service

    async def create_flow(self, flow_request: CreateFlowRequest) -> FlowData:
        """
        Create a new flow. Names are unique, nodes must not be empty.
        Graph validity is not required to save, only to run.
        """
        try:
            name = (flow_request.name or "").strip()
            if not name:
                raise FlowValidationException(message="Automation name is required")
            if not flow_request.nodes:
                raise FlowValidationException(message="Nodes are required and must be a non-empty array")

            existing_flow = await self.flow_db.get_flow_by_name(name)
            if existing_flow is not None:
                raise FlowConflictException(message="An automation with this name already exists")

            flow = FlowData(
                name=name,
                nodes=flow_request.nodes,
                edges=flow_request.edges,
                created_at=datetime.now(timezone.utc),
                updated_at=datetime.now(timezone.utc)
            )
            saved_flow = await self.flow_db.create_flow(flow)
            if saved_flow is None:
                raise FlowServiceException(message="Failed to create flow")

            self.log_util.info(
                service_name="FlowService",
                message=f"Flow '{saved_flow.name}' created successfully with ID: {saved_flow.id}"
            )
            return saved_flow

        except FlowException:
            raise
        except Exception as e:
            self.log_util.error(
                service_name="FlowService",
                message=f"Error creating flow: {str(e)}"
            )
            raise FlowServiceException(message=f"Error creating flow: {str(e)}")

    async def get_flows_list(self) -> List[FlowListItem]:
        """
        Get the list of flows, newest first
        """
        try:
            flows = await self.flow_db.get_flows()
            return [FlowListItem(id=flow.id, name=flow.name, created_at=flow.created_at) for flow in flows or []]
        except FlowException:
            raise
        except Exception as e:
            self.log_util.error(
                service_name="FlowService",
                message=f"Error getting flows list: {str(e)}"
            )
            raise FlowServiceException(message=f"Error getting flows list: {str(e)}")

    async def get_flow_detail(self, flow_id: str) -> FlowData:
        try:
            flow = await self.flow_db.get_flow(flow_id)
            if flow is None:
                raise FlowNotFoundException(message="Automation not found")
            return flow
        except FlowException:
            raise
        except Exception as e:
            self.log_util.error(
                service_name="FlowService",
                message=f"Error getting flow detail: {str(e)}"
            )
            raise FlowServiceException(message=f"Error getting flow detail: {str(e)}")

    async def update_flow(self, flow_id: str, flow_request: UpdateFlowRequest) -> FlowData:
        """
        Update an existing flow. Provided nodes/edges replace the stored arrays,
        omitted fields are kept. Runs already in flight keep their own snapshot.
        """
        try:
            existing_flow = await self.flow_db.get_flow(flow_id)
            if existing_flow is None:
                raise FlowNotFoundException(message="Automation not found")

            fields = {}
            if flow_request.name is not None:
                name = flow_request.name.strip()
                if not name:
                    raise FlowValidationException(message="Automation name cannot be empty")
                duplicate = await self.flow_db.get_flow_by_name(name, exclude_flow_id=flow_id)
                if duplicate is not None:
                    raise FlowConflictException(message="An automation with this name already exists")
                fields["name"] = name

            if flow_request.nodes is not None:
                if not flow_request.nodes:
                    raise FlowValidationException(message="Nodes must be a non-empty array")
                fields["nodes"] = [node.model_dump() for node in flow_request.nodes]

            if flow_request.edges is not None:
                fields["edges"] = [edge.model_dump() for edge in flow_request.edges]

            if not fields:
                return existing_flow

            updated_flow = await self.flow_db.update_flow(flow_id, fields)
            if updated_flow is None:
                raise FlowServiceException(message="Failed to update flow")

            self.log_util.info(
                service_name="FlowService",
                message=f"Flow '{updated_flow.name}' updated successfully with ID: {flow_id}"
            )
            return updated_flow

        except FlowException:
            raise
        except Exception as e:
            self.log_util.error(
                service_name="FlowService",
                message=f"Error updating flow: {str(e)}"
            )
            raise FlowServiceException(message=f"Error updating flow: {str(e)}")

    async def delete_flow(self, flow_id: str) -> bool:
        try:
            existing_flow = await self.flow_db.get_flow(flow_id)
            if existing_flow is None:
                raise FlowNotFoundException(message="Automation not found")

            deleted = await self.flow_db.delete_flow(flow_id)
            if not deleted:
                raise FlowServiceException(message="Failed to delete flow")

            self.log_util.info(
                service_name="FlowService",
                message=f"Flow '{existing_flow.name}' deleted with ID: {flow_id}"
            )
            return True

        except FlowException:
            raise
        except Exception as e:
            self.log_util.error(
                service_name="FlowService",
                message=f"Error deleting flow: {str(e)}"
            )
            raise FlowServiceException(message=f"Error deleting flow: {str(e)}")

    def validate_flow(self, flow_request: CreateFlowRequest) -> ValidationData:
        """
        Validate an unsaved graph, e.g. from the editor before saving
        """
        flow = FlowData(name=flow_request.name or "", nodes=flow_request.nodes, edges=flow_request.edges)
        return self.flow_validation_service.validate_flow(flow)
