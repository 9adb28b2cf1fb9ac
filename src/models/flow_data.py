from pydantic import BaseModel, Field, Discriminator, ConfigDict, Tag, field_validator
from typing import Optional, List, Dict, Any, Union, Literal, Annotated
from datetime import datetime, timezone

NODE_TYPES = ("start", "action", "delay", "condition", "end")

class FlowNodePosition(BaseModel):
    x: float = 0
    y: float = 0

class ConditionRule(BaseModel):
    model_config = ConfigDict(extra='allow')

    field: str = "email"
    operator: Optional[str] = None  # equals, not_equals, includes, starts_with, ends_with
    value: Optional[str] = ""
    join: Optional[str] = None  # AND / OR, ignored on the first rule

# Node payloads
class EmptyNodeData(BaseModel):
    model_config = ConfigDict(extra='allow')

class ActionNodeData(BaseModel):
    model_config = ConfigDict(extra='allow')

    message: Optional[str] = None

class DelayNodeData(BaseModel):
    model_config = ConfigDict(extra='allow')

    delayType: Optional[str] = None  # "relative" or "absolute"
    relativeValue: Optional[int] = None
    relativeUnit: Optional[str] = None  # "minutes", "hours", "days"
    absoluteDate: Optional[datetime] = None

    @field_validator("relativeValue", "relativeUnit", "absoluteDate", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        # The editor sends "" for fields the user has not filled in yet
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

class ConditionNodeData(BaseModel):
    model_config = ConfigDict(extra='allow')

    rules: List[ConditionRule] = []

# Base FlowNode with common fields
class BaseFlowNode(BaseModel):
    model_config = ConfigDict(extra='allow')  # Allow editor fields like 'measured', 'selected', etc.

    id: str
    type: str
    position: Optional[FlowNodePosition] = None

class StartNode(BaseFlowNode):
    type: Literal["start"]
    data: EmptyNodeData = Field(default_factory=EmptyNodeData)

class ActionNode(BaseFlowNode):
    type: Literal["action"]
    data: ActionNodeData = Field(default_factory=ActionNodeData)

class DelayNode(BaseFlowNode):
    type: Literal["delay"]
    data: DelayNodeData = Field(default_factory=DelayNodeData)

class ConditionNode(BaseFlowNode):
    type: Literal["condition"]
    data: ConditionNodeData = Field(default_factory=ConditionNodeData)

class EndNode(BaseFlowNode):
    type: Literal["end"]
    data: EmptyNodeData = Field(default_factory=EmptyNodeData)

# Any node type the editor may send that this service does not execute
class UnknownNode(BaseFlowNode):
    data: Dict[str, Any] = {}

def _node_discriminator(node: Any) -> str:
    node_type = node.get("type") if isinstance(node, dict) else getattr(node, "type", None)
    return node_type if node_type in NODE_TYPES else "unknown"

# Union of all node types keyed by "type"
FlowNode = Annotated[
    Union[
        Annotated[StartNode, Tag("start")],
        Annotated[ActionNode, Tag("action")],
        Annotated[DelayNode, Tag("delay")],
        Annotated[ConditionNode, Tag("condition")],
        Annotated[EndNode, Tag("end")],
        Annotated[UnknownNode, Tag("unknown")]
    ],
    Discriminator(_node_discriminator)
]

class FlowEdge(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: str
    source: str
    target: str
    label: Optional[str] = None  # "TRUE" / "FALSE" on condition edges
    sourceHandle: Optional[str] = None
    targetHandle: Optional[str] = None

class FlowData(BaseModel):
    id: Optional[str] = None
    name: str
    nodes: List[FlowNode]
    edges: List[FlowEdge] = []
    created_at: Optional[datetime] = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = Field(default_factory=lambda: datetime.now(timezone.utc))

    def get_node(self, node_id: Optional[str]) -> Optional[FlowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_nodes_by_type(self, node_type: str) -> List[FlowNode]:
        return [node for node in self.nodes if node.type == node_type]

    def get_outgoing_edges(self, node_id: str) -> List[FlowEdge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def get_next_node(self, node_id: str) -> Optional[FlowNode]:
        """
        Target of the first outgoing edge, or None when there is no edge
        or the edge points at a node that does not exist.
        """
        outgoing = self.get_outgoing_edges(node_id)
        if not outgoing:
            return None
        return self.get_node(outgoing[0].target)
