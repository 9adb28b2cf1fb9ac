"""
Script to import the sample email automation into the flows collection.

start -> send email -> condition (email includes "@test") -> TRUE/FALSE -> end

Safe to run multiple times: nothing is inserted if a flow with the same name exists.
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
from models.flow_data import FlowData
from services.flow_validation_service import FlowValidationService

SAMPLE_FLOW = {
    "name": "Sample Welcome Automation",
    "nodes": [
        {"id": "start-1", "type": "start", "position": {"x": 250, "y": 0}, "data": {}},
        {
            "id": "action-1",
            "type": "action",
            "position": {"x": 250, "y": 120},
            "data": {"message": "Hi! Thanks for signing up, this is a test of the welcome automation."}
        },
        {
            "id": "condition-1",
            "type": "condition",
            "position": {"x": 250, "y": 240},
            "data": {"rules": [{"field": "email", "operator": "includes", "value": "@test"}]}
        },
        {"id": "end-1", "type": "end", "position": {"x": 250, "y": 380}, "data": {}}
    ],
    "edges": [
        {"id": "e-start-action", "source": "start-1", "target": "action-1"},
        {"id": "e-action-condition", "source": "action-1", "target": "condition-1"},
        {"id": "e-condition-end-true", "source": "condition-1", "target": "end-1", "label": "TRUE", "sourceHandle": "true"},
        {"id": "e-condition-end-false", "source": "condition-1", "target": "end-1", "label": "FALSE", "sourceHandle": "false"}
    ]
}


async def import_sample_flow():
    log_util = LogUtil()
    environment_utils = EnvironmentUtils(log_util=log_util)
    flow_db = FlowDB(log_util=log_util, environment_utils=environment_utils)

    try:
        flow = FlowData.model_validate(SAMPLE_FLOW)

        validation = FlowValidationService(log_util=log_util).validate_flow(flow)
        if not validation.valid:
            raise ValueError(f"Sample flow is not valid: {validation.reason}")

        existing_flow = await flow_db.get_flow_by_name(flow.name)
        if existing_flow is not None:
            log_util.info(
                service_name="ImportSampleFlow",
                message=f"Flow '{flow.name}' already exists with ID: {existing_flow.id}"
            )
            print(f"\nFlow '{flow.name}' already exists (ID: {existing_flow.id}), nothing to import.")
            return

        saved_flow = await flow_db.create_flow(flow)
        log_util.info(
            service_name="ImportSampleFlow",
            message=f"Imported flow '{saved_flow.name}' with ID: {saved_flow.id}"
        )

        print("\n" + "="*60)
        print("IMPORT SUMMARY")
        print("="*60)
        print(f"  Flow name: {saved_flow.name}")
        print(f"  Flow ID: {saved_flow.id}")
        print(f"  Nodes: {len(saved_flow.nodes)}")
        print(f"  Edges: {len(saved_flow.edges)}")
        print("="*60)

    except Exception as e:
        log_util.error(
            service_name="ImportSampleFlow",
            message=f"Fatal error during import: {str(e)}"
        )
        raise
    finally:
        flow_db.close()


if __name__ == "__main__":
    try:
        asyncio.run(import_sample_flow())
        print("\n[SUCCESS] Script completed successfully!")
    except KeyboardInterrupt:
        print("\n[WARNING] Script interrupted by user")
        sys.exit(1)
    except Exception as e:
        print(f"\n[ERROR] Script failed with error: {str(e)}")
        sys.exit(1)
