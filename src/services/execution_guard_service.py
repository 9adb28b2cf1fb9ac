"""
Execution Guard Service
Safety limits that stop runaway test runs (too many steps or too much waiting).
"""
from typing import Union

# Models
from models.execution_stats_data import ExecutionStats, GuardResult

MAX_STEPS = 100
MAX_SINGLE_DELAY_MS = 6 * 60 * 60 * 1000  # 6 hours
MAX_TOTAL_DELAY_MS = 24 * 60 * 60 * 1000  # 24 hours


class ExecutionGuardService:
    """
    Decides whether a run may take its next step. Only advises, the caller aborts the run.
    """

    def check_execution_limits(self, stats: Union[ExecutionStats, dict], proposed_delay_ms: int = 0) -> GuardResult:
        if isinstance(stats, dict):
            stats = ExecutionStats.model_validate(stats)

        if stats.step_count >= MAX_STEPS:
            return GuardResult(
                allowed=False,
                reason=f"Execution exceeded maximum limit of {MAX_STEPS} steps"
            )

        if proposed_delay_ms > MAX_SINGLE_DELAY_MS:
            return GuardResult(
                allowed=False,
                reason=f"Single delay of {round(proposed_delay_ms / 3600000)}h exceeds maximum limit of 6h"
            )

        if stats.total_delay_ms + proposed_delay_ms > MAX_TOTAL_DELAY_MS:
            return GuardResult(
                allowed=False,
                reason="Total execution delay exceeds maximum limit of 24 hours"
            )

        return GuardResult(allowed=True)
