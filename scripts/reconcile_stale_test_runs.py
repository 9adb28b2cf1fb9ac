"""
Script to run a single stale test run sweep.

Marks as failed every test run still "running" that started longer ago than the
maximum run window plus the configured grace period. Use it when the service
is not running, e.g. after a crash, to clean up runs that can never finish.
"""

import asyncio
import sys
import os

# Add src directory to path to import modules
script_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(script_dir)
src_dir = os.path.join(project_root, 'src')
sys.path.insert(0, src_dir)

from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils
from database.flow_db import FlowDB
from services.stale_run_reconciler_service import StaleRunReconcilerService


async def reconcile_stale_test_runs():
    log_util = LogUtil()
    environment_utils = EnvironmentUtils(log_util=log_util)
    flow_db = FlowDB(log_util=log_util, environment_utils=environment_utils)

    # No runs are owned by this process, so every stale run is eligible
    reconciler = StaleRunReconcilerService(
        log_util=log_util,
        flow_db=flow_db,
        grace_seconds=environment_utils.get_env_variable("STALE_RUN_GRACE_SECONDS")
    )

    try:
        print(f"Cutoff: runs started before {reconciler.stale_cutoff().isoformat()}")
        reconciled = await reconciler.reconcile_stale_runs()

        print("\n" + "="*60)
        print("RECONCILIATION SUMMARY")
        print("="*60)
        print(f"  Test runs marked as failed: {len(reconciled)}")
        for test_run_id in reconciled:
            print(f"    - {test_run_id}")
        print("="*60)
    finally:
        flow_db.close()


if __name__ == "__main__":
    try:
        asyncio.run(reconcile_stale_test_runs())
        print("\n[SUCCESS] Script completed successfully!")
    except KeyboardInterrupt:
        print("\n[WARNING] Script interrupted by user")
        sys.exit(1)
    except Exception as e:
        print(f"\n[ERROR] Script failed with error: {str(e)}")
        sys.exit(1)
