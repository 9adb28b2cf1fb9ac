"""
Flow Runner Service
Executes a validated flow against a single recipient, one node at a time.

Each run is an asyncio task of its own. Delay nodes suspend only that task,
so other runs and incoming requests keep making progress. Progress is never
held only in memory: the current step, every node visit and the final status
are persisted as they happen, and callers observe a run by polling them.
"""
import asyncio
from typing import Optional, Tuple, Dict, Callable, Awaitable, TYPE_CHECKING
from datetime import datetime, timezone

# Utils
from utils.log_utils import LogUtil
from utils.delay_utils import calculate_delay_ms, describe_delay

# Services
from services.condition_evaluation_service import ConditionEvaluationService
from services.execution_guard_service import ExecutionGuardService
from services.execution_logger_service import ExecutionLoggerService
from services.flow_validation_service import FlowValidationService
from services.notifier_service import NotifierService

# Models
from models.flow_data import FlowData, FlowNode
from models.test_run_data import TestRunData, ExecutionSummary
from models.execution_stats_data import ExecutionStats

# Exceptions
from exceptions.flow_exception import (
    FlowServiceException,
    FlowValidationException,
    GuardRejectionException,
    NodeExecutionException
)

if TYPE_CHECKING:
    from database.flow_db import FlowDB


class FlowRunnerService:

    def __init__(
        self,
        log_util: LogUtil,
        flow_db: "FlowDB",
        notifier: NotifierService,
        flow_validation_service: Optional[FlowValidationService] = None,
        condition_evaluation_service: Optional[ConditionEvaluationService] = None,
        execution_guard_service: Optional[ExecutionGuardService] = None,
        execution_logger_service: Optional[ExecutionLoggerService] = None,
        email_subject: str = "Automation Test",
        sleep_func: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        self.log_util = log_util
        self.flow_db = flow_db
        self.notifier = notifier
        self.flow_validation_service = flow_validation_service or FlowValidationService(log_util=log_util)
        self.condition_evaluation_service = condition_evaluation_service or ConditionEvaluationService(log_util=log_util)
        self.execution_guard_service = execution_guard_service or ExecutionGuardService()
        self.execution_logger_service = execution_logger_service or ExecutionLoggerService(log_util=log_util, flow_db=flow_db)
        self.email_subject = email_subject
        self.sleep_func = sleep_func or asyncio.sleep

        # Strong references to in-flight runs, keyed by test run ID
        self._tasks: Dict[str, asyncio.Task] = {}

    async def start_run(self, flow: FlowData, recipient: str) -> str:
        """
        Validate the flow, create its test run and execute it in the background.

        Returns:
            The test run ID, immediately. The run itself continues as its own task.

        Raises:
            FlowValidationException: if the flow is not a valid graph (no run is created)
        """
        validation = self.flow_validation_service.validate_flow(flow)
        if not validation.valid:
            raise FlowValidationException(message=f"Validation Error: {validation.reason}")

        if not flow.id:
            raise FlowServiceException(message="Flow must be saved before it can be tested")

        # The run works on its own copy, later edits of the stored flow do not affect it
        snapshot = flow.model_copy(deep=True)
        start_node = snapshot.get_nodes_by_type("start")[0]

        test_run = await self.flow_db.create_test_run(
            TestRunData(
                flow_id=snapshot.id,
                recipient=recipient,
                status="running",
                current_step_node_id=start_node.id
            )
        )
        if test_run is None:
            raise FlowServiceException(message="Failed to create test run")

        task = asyncio.create_task(
            self.run_flow(flow=snapshot, recipient=recipient, test_run_id=test_run.id),
            name=f"test-run-{test_run.id}"
        )
        self._tasks[test_run.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(test_run.id, None))

        self.log_util.info(
            service_name="FlowRunnerService",
            message=f"Test run {test_run.id} started for flow '{snapshot.name}' ({snapshot.id}) with recipient {recipient}"
        )
        return test_run.id

    def is_run_active(self, test_run_id: str) -> bool:
        return test_run_id in self._tasks

    async def shutdown(self):
        """
        Cancel in-flight runs. Cancelled runs stay "running" until the stale run sweep fails them.
        """
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            self.log_util.warning(
                service_name="FlowRunnerService",
                message=f"Cancelled {len(tasks)} in-flight test run(s) on shutdown"
            )

    async def run_flow(self, flow: FlowData, recipient: str, test_run_id: str) -> ExecutionSummary:
        """
        Walk the flow from its start node until the end node, a guard rejection or a node failure.
        In-run errors end this run only and are never re-raised.
        """
        self.log_util.info(
            service_name="FlowRunnerService",
            message=f"Running flow '{flow.name}' for {recipient} (test run {test_run_id})"
        )

        stats = ExecutionStats()
        last_node_id: Optional[str] = None

        try:
            current_node = flow.get_nodes_by_type("start")[0] if flow.get_nodes_by_type("start") else None
            if current_node is None:
                raise NodeExecutionException(message="Start node not found")

            while current_node is not None:
                guard = self.execution_guard_service.check_execution_limits(stats)
                if not guard.allowed:
                    raise GuardRejectionException(message=guard.reason)

                await self.flow_db.update_test_run(test_run_id, {"current_step_node_id": current_node.id})
                last_node_id = current_node.id

                log_id = await self.execution_logger_service.start_log(
                    test_run_id=test_run_id,
                    flow_id=flow.id or "",
                    node_id=current_node.id,
                    node_type=current_node.type,
                    message=self._start_message(current_node)
                )

                try:
                    success_message, next_node = await self._execute_node(flow, current_node, recipient, stats)
                except Exception as e:
                    await self.execution_logger_service.finish_log(log_id, "failed", str(e) or type(e).__name__)
                    raise

                await self.execution_logger_service.finish_log(log_id, "completed", success_message)
                stats.step_count += 1

                if current_node.type == "end":
                    break
                current_node = next_node

            return await self._complete_run(test_run_id, stats, last_node_id)

        except asyncio.CancelledError:
            self.log_util.warning(
                service_name="FlowRunnerService",
                message=f"Test run {test_run_id} cancelled at node {last_node_id}"
            )
            raise
        except Exception as e:
            return await self._fail_run(test_run_id, stats, str(e) or type(e).__name__)

    def _start_message(self, node: FlowNode) -> str:
        if node.type == "action":
            return "Sending email"
        if node.type == "delay":
            if node.data.delayType == "relative":
                return f"Waiting for {describe_delay(node.data)}"
            return f"Waiting {describe_delay(node.data)}"
        return f"Executing {node.type} node"

    async def _execute_node(
        self,
        flow: FlowData,
        node: FlowNode,
        recipient: str,
        stats: ExecutionStats
    ) -> Tuple[str, Optional[FlowNode]]:
        """
        Returns:
            (success message, next node or None)
        """
        if node.type == "start":
            return "Automation started", flow.get_next_node(node.id)

        if node.type == "action":
            message = node.data.message or "No message provided"
            self.log_util.info(
                service_name="FlowRunnerService",
                message=f"Executing action node {node.id}, sending to {recipient}"
            )
            await self.notifier.send(recipient, self.email_subject, message)
            return f"Email sent successfully to {recipient}", flow.get_next_node(node.id)

        if node.type == "delay":
            delay_ms = calculate_delay_ms(node.data)

            guard = self.execution_guard_service.check_execution_limits(stats, delay_ms)
            if not guard.allowed:
                raise GuardRejectionException(message=guard.reason)

            self.log_util.info(
                service_name="FlowRunnerService",
                message=f"Delay node {node.id} waiting {delay_ms} ms"
            )
            await self.sleep_func(delay_ms / 1000)
            stats.total_delay_ms += delay_ms

            if node.data.delayType == "relative":
                success_message = f"Wait for {describe_delay(node.data)} completed"
            else:
                success_message = f"Wait {describe_delay(node.data)} completed"
            return success_message, flow.get_next_node(node.id)

        if node.type == "condition":
            result = self.condition_evaluation_service.evaluate_condition(node.data.rules, recipient)
            target_label = "TRUE" if result else "FALSE"

            edge = next(
                (e for e in flow.get_outgoing_edges(node.id) if str(e.label).upper() == target_label),
                None
            )
            if edge is None:
                available = [(e.id, e.label) for e in flow.get_outgoing_edges(node.id)]
                self.log_util.error(
                    service_name="FlowRunnerService",
                    message=f"Available edges from condition node {node.id}: {available}"
                )
                raise NodeExecutionException(message=f"{target_label} edge is missing for condition node {node.id}")

            next_node = flow.get_node(edge.target)
            if next_node is None:
                raise NodeExecutionException(message=f"Target node {edge.target} not found for branch {target_label}")

            return f"Condition evaluated to {target_label}", next_node

        if node.type == "end":
            return "Reached end node", None

        self.log_util.warning(
            service_name="FlowRunnerService",
            message=f"Unknown node type: {node.type}, stopping at node {node.id}"
        )
        return f"Node {node.id} completed", None

    async def _complete_run(self, test_run_id: str, stats: ExecutionStats, last_node_id: Optional[str]) -> ExecutionSummary:
        summary = ExecutionSummary(
            total_steps_executed=stats.step_count,
            total_delay_time_ms=stats.total_delay_ms
        )
        await self.flow_db.update_test_run(
            test_run_id,
            {
                "status": "completed",
                "finished_at": datetime.now(timezone.utc),
                "current_step_node_id": last_node_id,
                "summary": summary.model_dump()
            }
        )
        self.log_util.info(
            service_name="FlowRunnerService",
            message=f"Test run {test_run_id} completed successfully after {stats.step_count} step(s)"
        )
        return summary

    async def _fail_run(self, test_run_id: str, stats: ExecutionStats, reason: str) -> ExecutionSummary:
        summary = ExecutionSummary(
            total_steps_executed=stats.step_count,
            total_delay_time_ms=stats.total_delay_ms,
            failure_reason=reason
        )
        await self.flow_db.update_test_run(
            test_run_id,
            {
                "status": "failed",
                "finished_at": datetime.now(timezone.utc),
                "error": reason,
                "summary": summary.model_dump()
            }
        )
        self.log_util.error(
            service_name="FlowRunnerService",
            message=f"Test run {test_run_id} failed: {reason}"
        )
        return summary
