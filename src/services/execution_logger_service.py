"""
Execution Logger Service
Writes the per-step audit trail of a test run. A failed write is logged and
dropped so that a missing audit entry never aborts the run.
"""
from typing import Optional, TYPE_CHECKING
from datetime import datetime, timezone

# Utils
from utils.log_utils import LogUtil

# Models
from models.execution_log_data import ExecutionLogData

if TYPE_CHECKING:
    from database.flow_db import FlowDB


class ExecutionLoggerService:

    def __init__(self, log_util: LogUtil, flow_db: "FlowDB"):
        self.log_util = log_util
        self.flow_db = flow_db

    async def start_log(
        self,
        test_run_id: str,
        flow_id: str,
        node_id: str,
        node_type: str,
        message: Optional[str] = None
    ) -> Optional[str]:
        """
        Create a "started" entry for a node visit.

        Returns:
            The log entry ID used to finish the entry, or None if it could not be written
        """
        try:
            execution_log = ExecutionLogData(
                test_run_id=test_run_id,
                flow_id=flow_id,
                node_id=node_id,
                node_type=node_type,
                status="started",
                message=message,
                started_at=datetime.now(timezone.utc)
            )
            saved_log = await self.flow_db.create_execution_log(execution_log)
            return saved_log.id if saved_log else None
        except Exception as e:
            self.log_util.error(
                service_name="ExecutionLoggerService",
                message=f"Execution logging error for node {node_id} of test run {test_run_id}: {str(e)}"
            )
            return None

    async def finish_log(self, log_id: Optional[str], status: str, message: Optional[str] = None):
        """
        Move an entry to "completed" or "failed" and stamp its finish time.
        """
        if not log_id:
            return

        try:
            await self.flow_db.update_execution_log(
                log_id,
                {
                    "status": status,
                    "message": message,
                    "finished_at": datetime.now(timezone.utc)
                }
            )
        except Exception as e:
            self.log_util.error(
                service_name="ExecutionLoggerService",
                message=f"Execution logging error while finishing log {log_id}: {str(e)}"
            )
