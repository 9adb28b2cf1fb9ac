"""
Stale Run Reconciler Service
Background service that fails test runs left "running" by a process that stopped mid-run.
Runs are never resumed.
"""
import asyncio
import traceback
from typing import Optional, List, Callable, TYPE_CHECKING
from datetime import datetime, timedelta, timezone

from utils.log_utils import LogUtil
from services.execution_guard_service import MAX_TOTAL_DELAY_MS
from models.test_run_data import ExecutionSummary

if TYPE_CHECKING:
    from database.flow_db import FlowDB

STALE_RUN_REASON = "Run interrupted before completion (no progress within the maximum run window)"


class StaleRunReconcilerService:
    """
    A guarded run can wait at most MAX_TOTAL_DELAY_MS in total, so a run still
    "running" after that window plus a grace period has no live task behind it.
    """

    def __init__(
        self,
        log_util: LogUtil,
        flow_db: "FlowDB",
        check_interval_seconds: int = 300,
        grace_seconds: int = 3600,
        is_run_active: Optional[Callable[[str], bool]] = None
    ):
        self.log_util = log_util
        self.flow_db = flow_db
        self.check_interval_seconds = check_interval_seconds
        self.grace_seconds = grace_seconds
        self.is_run_active = is_run_active
        self._running = False
        self._task = None

    async def start(self):
        """
        Start the background reconciliation task.
        """
        if self._running:
            self.log_util.warning(
                service_name="StaleRunReconcilerService",
                message="Reconciler is already running"
            )
            return

        self._running = True
        self._task = asyncio.create_task(self._reconcile_loop())
        self.log_util.info(
            service_name="StaleRunReconcilerService",
            message=f"Stale run reconciler started, checking every {self.check_interval_seconds} seconds"
        )

    async def stop(self):
        """
        Stop the background reconciliation task.
        """
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self.log_util.info(
            service_name="StaleRunReconcilerService",
            message="Stale run reconciler stopped"
        )

    async def _reconcile_loop(self):
        while self._running:
            try:
                await self.reconcile_stale_runs()
                await asyncio.sleep(self.check_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.log_util.error(
                    service_name="StaleRunReconcilerService",
                    message=f"Error in reconcile loop: {str(e)}"
                )
                self.log_util.error(
                    service_name="StaleRunReconcilerService",
                    message=f"Traceback: {traceback.format_exc()}"
                )
                # Wait before retrying to avoid tight error loop
                await asyncio.sleep(self.check_interval_seconds)

    def stale_cutoff(self, now: Optional[datetime] = None) -> datetime:
        current = now or datetime.now(timezone.utc)
        return current - timedelta(milliseconds=MAX_TOTAL_DELAY_MS, seconds=self.grace_seconds)

    async def reconcile_stale_runs(self, now: Optional[datetime] = None) -> List[str]:
        """
        Mark every stale running test run as failed.

        Returns:
            IDs of the test runs that were failed
        """
        stale_runs = await self.flow_db.get_stale_running_test_runs(self.stale_cutoff(now))
        if not stale_runs:
            return []

        self.log_util.info(
            service_name="StaleRunReconcilerService",
            message=f"Found {len(stale_runs)} stale test run(s) to reconcile"
        )

        reconciled: List[str] = []
        for test_run in stale_runs:
            if self.is_run_active and self.is_run_active(test_run.id):
                continue

            summary = test_run.summary or ExecutionSummary()
            summary.failure_reason = STALE_RUN_REASON
            updated = await self.flow_db.update_test_run(
                test_run.id,
                {
                    "status": "failed",
                    "finished_at": now or datetime.now(timezone.utc),
                    "error": STALE_RUN_REASON,
                    "summary": summary.model_dump()
                }
            )
            if updated:
                reconciled.append(test_run.id)
                self.log_util.warning(
                    service_name="StaleRunReconcilerService",
                    message=f"Test run {test_run.id} (flow {test_run.flow_id}) marked as failed: {STALE_RUN_REASON}"
                )
            else:
                self.log_util.error(
                    service_name="StaleRunReconcilerService",
                    message=f"Failed to mark stale test run {test_run.id} as failed"
                )

        return reconciled
