from pydantic import BaseModel, Field
from typing import Optional, List

from models.flow_data import FlowNode, FlowEdge


class CreateFlowRequest(BaseModel):
    """
    Request model for creating a flow from the editor.
    Name and nodes are checked by the flow service so the caller gets a specific message.
    """
    name: Optional[str] = Field(None, description="Unique flow name")
    nodes: List[FlowNode] = Field(default_factory=list, description="Flow nodes, must not be empty")
    edges: List[FlowEdge] = Field(default_factory=list, description="Flow edges")


class UpdateFlowRequest(BaseModel):
    """
    Request model for updating a flow. Omitted fields keep their stored value,
    provided arrays replace the stored arrays entirely.
    """
    name: Optional[str] = None
    nodes: Optional[List[FlowNode]] = None
    edges: Optional[List[FlowEdge]] = None
