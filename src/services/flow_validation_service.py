"""
Flow Validation Service
Proves a flow graph is well formed before any test run may execute it.
"""
from typing import Optional, List, Dict, Set

# Utils
from utils.log_utils import LogUtil
from utils.delay_utils import UNIT_MILLISECONDS

# Models
from models.flow_data import FlowData, FlowEdge, NODE_TYPES
from models.validation_data import ValidationData


class FlowValidationService:
    """
    Checks run in a fixed order and the first failure is reported:
    counts, structure, node content, then reachability and cycles.
    Validation has no side effects and must be repeated before every run,
    since flows can be edited between runs.
    """

    def __init__(self, log_util: Optional[LogUtil] = None):
        self.log_util = log_util

    def validate_flow(self, flow: FlowData) -> ValidationData:
        for check in (self._check_counts, self._check_structure, self._check_node_content, self._check_graph_integrity):
            reason = check(flow)
            if reason:
                if self.log_util:
                    self.log_util.info(
                        service_name="FlowValidationService",
                        message=f"Flow '{flow.name}' failed validation: {reason}"
                    )
                return ValidationData(valid=False, reason=reason)
        return ValidationData(valid=True)

    def _check_counts(self, flow: FlowData) -> Optional[str]:
        if len(flow.get_nodes_by_type("start")) != 1:
            return "Automation must have exactly one Start node"
        if len(flow.get_nodes_by_type("end")) != 1:
            return "Automation must have exactly one End node"
        return None

    def _check_structure(self, flow: FlowData) -> Optional[str]:
        start_node = flow.get_nodes_by_type("start")[0]
        end_node = flow.get_nodes_by_type("end")[0]

        if len(flow.get_outgoing_edges(start_node.id)) != 1:
            return "Start node must have exactly one outgoing edge"

        if flow.get_outgoing_edges(end_node.id):
            return "End node cannot have outgoing edges"

        node_ids: Set[str] = set()
        for node in flow.nodes:
            if node.id in node_ids:
                return f"Node id {node.id} is used by more than one node"
            node_ids.add(node.id)

        for edge in flow.edges:
            if edge.source not in node_ids or edge.target not in node_ids:
                return f"Edge {edge.id} connects a node that does not exist in the automation"

        for node in flow.get_nodes_by_type("condition"):
            labels = [edge.label for edge in flow.get_outgoing_edges(node.id)]
            if len(labels) != 2 or sorted(labels, key=str) != ["FALSE", "TRUE"]:
                return f"Condition node {node.id} must have exactly one TRUE edge and one FALSE edge"

        for node in flow.nodes:
            if node.type != "end" and not flow.get_outgoing_edges(node.id):
                return f"Node {node.id} ({node.type}) is a dead end and must connect to another node"

        return None

    def _check_node_content(self, flow: FlowData) -> Optional[str]:
        for node in flow.nodes:
            if node.type not in NODE_TYPES:
                return f"Node {node.id} has unsupported type '{node.type}'"

            if node.type == "action" and not (node.data.message or "").strip():
                return f"Action node {node.id} is missing an email message"

            if node.type == "delay":
                data = node.data
                if not data.delayType:
                    return f"Delay node {node.id} missing delay type"
                if data.delayType == "relative":
                    if not data.relativeValue or not data.relativeUnit:
                        return f"Delay node {node.id} must have a relative value and unit"
                    if data.relativeValue <= 0:
                        return f"Delay node {node.id} must have a positive relative value"
                    if data.relativeUnit not in UNIT_MILLISECONDS:
                        return f"Delay node {node.id} has unknown unit '{data.relativeUnit}'"
                elif data.delayType == "absolute":
                    if data.absoluteDate is None:
                        return f"Delay node {node.id} must have an absolute target date"
                else:
                    return f"Delay node {node.id} has unknown delay type '{data.delayType}'"

            if node.type == "condition" and not node.data.rules:
                return f"Condition node {node.id} must have at least one rule"

        return None

    def _check_graph_integrity(self, flow: FlowData) -> Optional[str]:
        """
        Depth-first walk from the start node. Meeting a node that is still on
        the walk's stack means a cycle; nodes never visited are unreachable.
        """
        start_node = flow.get_nodes_by_type("start")[0]

        outgoing: Dict[str, List[FlowEdge]] = {node.id: [] for node in flow.nodes}
        for edge in flow.edges:
            outgoing.setdefault(edge.source, []).append(edge)

        visited: Set[str] = {start_node.id}
        on_stack: Set[str] = {start_node.id}
        # Each frame is (node_id, iterator over its outgoing edges)
        stack = [(start_node.id, iter(outgoing.get(start_node.id, [])))]

        while stack:
            node_id, edges = stack[-1]
            edge = next(edges, None)
            if edge is None:
                stack.pop()
                on_stack.discard(node_id)
                continue
            if edge.target in on_stack:
                return "Infinite loop detected in the automation flow"
            if edge.target in visited:
                continue
            visited.add(edge.target)
            on_stack.add(edge.target)
            stack.append((edge.target, iter(outgoing.get(edge.target, []))))

        for node in flow.nodes:
            if node.id not in visited:
                return f"Node {node.id} ({node.type}) is unreachable from the Start node"

        return None
