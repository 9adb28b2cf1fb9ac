"""
Shared fakes for service and API tests: an in-memory FlowDB, a recording
notifier and log util, and helpers that build flow documents.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from bson import ObjectId

from exceptions.flow_exception import DeliveryException, ExecutionLoggingException
from models.execution_log_data import ExecutionLogData
from models.flow_data import FlowData
from models.test_run_data import TestRunData
from services.notifier_service import NotifierService


class RecordingLogUtil:
    """LogUtil stand-in that keeps messages in memory."""

    def __init__(self):
        self.records: List[tuple] = []

    def _record(self, level: str, service_name: str, message: str):
        self.records.append((level, service_name, message))

    def info(self, service_name: str, message: str):
        self._record("info", service_name, message)

    def error(self, service_name: str, message: str):
        self._record("error", service_name, message)

    def warning(self, service_name: str, message: str):
        self._record("warning", service_name, message)

    def debug(self, service_name: str, message: str):
        self._record("debug", service_name, message)

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [message for lvl, _, message in self.records if level is None or lvl == level]


class FakeFlowDB:
    """In-memory FlowDB with the same method surface."""

    def __init__(self):
        self.flows: Dict[str, FlowData] = {}
        self.test_runs: Dict[str, TestRunData] = {}
        self.execution_logs: Dict[str, ExecutionLogData] = {}
        self.fail_log_writes = False
        self.fail_test_run_create = False
        self.step_updates: List[str] = []
        self.closed = False

    # Flows
    async def create_flow(self, flow: FlowData) -> FlowData:
        saved = flow.model_copy(deep=True, update={"id": str(ObjectId())})
        self.flows[saved.id] = saved
        return saved.model_copy(deep=True)

    async def get_flow(self, flow_id: str) -> Optional[FlowData]:
        flow = self.flows.get(flow_id)
        return flow.model_copy(deep=True) if flow else None

    async def get_flow_by_name(self, name: str, exclude_flow_id: Optional[str] = None) -> Optional[FlowData]:
        for flow in self.flows.values():
            if flow.name == name and flow.id != exclude_flow_id:
                return flow.model_copy(deep=True)
        return None

    async def get_flows(self) -> List[FlowData]:
        return sorted(self.flows.values(), key=lambda flow: flow.created_at, reverse=True)

    async def update_flow(self, flow_id: str, fields: Dict[str, Any]) -> Optional[FlowData]:
        flow = self.flows.get(flow_id)
        if flow is None:
            return None
        data = flow.model_dump()
        data.update(fields)
        data["updated_at"] = datetime.now(timezone.utc)
        updated = FlowData.model_validate(data)
        self.flows[flow_id] = updated
        return updated.model_copy(deep=True)

    async def delete_flow(self, flow_id: str) -> bool:
        return self.flows.pop(flow_id, None) is not None

    # Test runs
    async def create_test_run(self, test_run: TestRunData) -> Optional[TestRunData]:
        if self.fail_test_run_create:
            return None
        saved = test_run.model_copy(deep=True, update={"id": str(ObjectId())})
        self.test_runs[saved.id] = saved
        return saved.model_copy(deep=True)

    async def get_test_run(self, test_run_id: str) -> Optional[TestRunData]:
        test_run = self.test_runs.get(test_run_id)
        return test_run.model_copy(deep=True) if test_run else None

    async def update_test_run(self, test_run_id: str, fields: Dict[str, Any]) -> bool:
        test_run = self.test_runs.get(test_run_id)
        if test_run is None:
            return False
        if "current_step_node_id" in fields and len(fields) == 1:
            self.step_updates.append(fields["current_step_node_id"])
        data = test_run.model_dump()
        data.update(fields)
        data["updated_at"] = datetime.now(timezone.utc)
        self.test_runs[test_run_id] = TestRunData.model_validate(data)
        return True

    async def get_test_runs_by_flow(self, flow_id: str) -> List[TestRunData]:
        runs = [run for run in self.test_runs.values() if run.flow_id == flow_id]
        return sorted(runs, key=lambda run: run.created_at, reverse=True)

    async def get_stale_running_test_runs(self, started_before: datetime) -> List[TestRunData]:
        return [
            run.model_copy(deep=True)
            for run in self.test_runs.values()
            if run.status == "running" and run.started_at < started_before
        ]

    # Execution logs
    async def create_execution_log(self, execution_log: ExecutionLogData) -> ExecutionLogData:
        if self.fail_log_writes:
            raise ExecutionLoggingException(message="execution_logs collection unavailable")
        saved = execution_log.model_copy(update={"id": str(ObjectId())})
        self.execution_logs[saved.id] = saved
        return saved

    async def update_execution_log(self, log_id: str, fields: Dict[str, Any]) -> Optional[ExecutionLogData]:
        if self.fail_log_writes:
            raise ExecutionLoggingException(message="execution_logs collection unavailable")
        log = self.execution_logs.get(log_id)
        if log is None:
            return None
        updated = log.model_copy(update=fields)
        self.execution_logs[log_id] = updated
        return updated

    async def get_execution_logs_by_test_run(self, test_run_id: str) -> List[ExecutionLogData]:
        # dicts keep insertion order, so equal start times keep write order
        logs = [log for log in self.execution_logs.values() if log.test_run_id == test_run_id]
        return sorted(logs, key=lambda log: log.started_at)

    def close(self):
        self.closed = True


class FakeNotifier(NotifierService):
    def __init__(self, fail_with: Optional[str] = None):
        self.sent: List[Dict[str, str]] = []
        self.fail_with = fail_with

    async def send(self, to: str, subject: str, body: str) -> Dict[str, Any]:
        if self.fail_with:
            raise DeliveryException(message=self.fail_with)
        self.sent.append({"to": to, "subject": subject, "body": body})
        return {"messageId": f"msg-{len(self.sent)}"}


class RecordingSleep:
    """Async sleep replacement that returns at once and remembers the requested seconds."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


def node(node_id: str, node_type: str, **data) -> Dict[str, Any]:
    return {"id": node_id, "type": node_type, "position": {"x": 0, "y": 0}, "data": data}


def edge(source: str, target: str, label: Optional[str] = None) -> Dict[str, Any]:
    suffix = f"-{label.lower()}" if label else ""
    return {"id": f"e-{source}-{target}{suffix}", "source": source, "target": target, "label": label}


def sample_flow_document(name: str = "Welcome flow") -> Dict[str, Any]:
    """
    start -> action -> condition (email includes "@test") -> TRUE/FALSE -> end
    """
    return {
        "name": name,
        "nodes": [
            node("start", "start"),
            node("action", "action", message="hi"),
            node("condition", "condition", rules=[{"field": "email", "operator": "includes", "value": "@test"}]),
            node("end", "end"),
        ],
        "edges": [
            edge("start", "action"),
            edge("action", "condition"),
            edge("condition", "end", "TRUE"),
            edge("condition", "end", "FALSE"),
        ],
    }


def build_flow(document: Optional[Dict[str, Any]] = None, flow_id: Optional[str] = "flow-1") -> FlowData:
    data = dict(document or sample_flow_document())
    data["id"] = flow_id
    return FlowData.model_validate(data)


@pytest.fixture
def log_util():
    return RecordingLogUtil()


@pytest.fixture
def flow_db():
    return FakeFlowDB()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
