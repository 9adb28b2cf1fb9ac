from motor.motor_asyncio import AsyncIOMotorClient
from bson import ObjectId
from bson.errors import InvalidId
import threading
import asyncio
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
import weakref
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import NetworkTimeout, ServerSelectionTimeoutError, ConnectionFailure

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils

# Exceptions
from exceptions.flow_exception import FlowDBException, ExecutionLoggingException

# Models
from models.flow_data import FlowData
from models.test_run_data import TestRunData
from models.execution_log_data import ExecutionLogData

"""
Database class for flow, test run and execution log operations
"""
class FlowDB:
    def __init__(self, log_util: LogUtil, environment_utils: EnvironmentUtils):

        # Initialize logger
        self.log_util = log_util

        # Initialize environment utils
        self.environment_utils = environment_utils

        # Mongo connection
        self.mongo_uri = self.environment_utils.get_env_variable("MONGO_URI")
        self.db_name = self.environment_utils.get_env_variable("MONGO_DB_NAME")

        # Mongo Connection Pool Configs
        self.max_pool_size = 50
        self.min_pool_size = 0  # Create connections on-demand instead of at startup
        self.max_idle_time_ms = 30000
        self.wait_queue_timeout_ms = 10000
        self.connect_timeout_ms = 10000
        self.server_selection_timeout_ms = 10000
        self.socket_timeout_ms = 10000

        # MongoDB client - initialized lazily on first use, one per event loop
        self._clients = {}  # {loop_id: client_data}

        # Thread-safe initialization lock
        self._client_lock = threading.Lock()

    def _get_client_for_current_loop(self):
        """
        Thread-safe method to get the MongoDB client and collections for the current event loop.
        Returns a dictionary with 'client', 'db', and 'collections' for the current event loop.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise RuntimeError("No event loop available. Database methods must be called from an async context.")

        loop_id = id(loop)

        # Check if we already have a client for this event loop
        if loop_id in self._clients:
            return self._clients[loop_id]

        with self._client_lock:
            # Double-check after acquiring lock (another thread might have created it)
            if loop_id in self._clients:
                return self._clients[loop_id]

            client = AsyncIOMotorClient(
                self.mongo_uri,
                tz_aware=True,
                maxPoolSize=self.max_pool_size,
                minPoolSize=self.min_pool_size,
                maxIdleTimeMS=self.max_idle_time_ms,
                waitQueueTimeoutMS=self.wait_queue_timeout_ms,
                connectTimeoutMS=self.connect_timeout_ms,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                socketTimeoutMS=self.socket_timeout_ms,
                retryWrites=True,
                retryReads=True
            )
            db = client[self.db_name]

            client_data = {
                'client': client,
                'db': db,
                'collections': self._initialize_collections_for_client(db),
                'loop': weakref.ref(loop)  # Weak reference to avoid circular references
            }
            self._clients[loop_id] = client_data

            self.log_util.info(
                service_name="FlowDB",
                message=f"MongoDB client initialized for event loop {loop_id} (lazy initialization)"
            )

            return client_data

    def _initialize_collections_for_client(self, db):
        """
        Initialize MongoDB collections for a given database instance
        """
        return {
            'flows': db.flows,
            'test_runs': db.test_runs,
            'execution_logs': db.execution_logs
        }

    def close(self):
        """
        Close all MongoDB clients and cleanup resources
        """
        with self._client_lock:
            for loop_id, client_data in self._clients.items():
                try:
                    client_data['client'].close()
                except Exception as e:
                    self.log_util.warning(
                        service_name="FlowDB",
                        message=f"Error closing client for loop {loop_id}: {str(e)}"
                    )

            self._clients.clear()

            self.log_util.info(
                service_name="FlowDB",
                message="All MongoDB clients closed"
            )

    def _handle_db_operation(self, operation_name: str, error: Exception) -> None:
        """
        Handle database operation errors with appropriate logging and exception wrapping.

        Args:
            operation_name: Name of the operation that failed
            error: The exception that occurred
        """
        if isinstance(error, (NetworkTimeout, ServerSelectionTimeoutError, ConnectionFailure)):
            self.log_util.error(
                service_name="FlowDB",
                message=f"Database connection error in {operation_name}: {str(error)}"
            )
            raise FlowDBException(
                message=f"Database connection error: {str(error)}",
                status_code=503  # Service Unavailable
            )
        else:
            self.log_util.error(
                service_name="FlowDB",
                message=f"Error in {operation_name}: {str(error)}"
            )
            raise FlowDBException(
                message=f"Database error: {str(error)}",
                status_code=500
            )

    @staticmethod
    def _to_object_id(document_id: str) -> Optional[ObjectId]:
        try:
            return ObjectId(document_id)
        except (InvalidId, TypeError):
            return None

    # Flow CRUD operations
    async def create_flow(self, flow: FlowData) -> Optional[FlowData]:
        """
        Create a new flow
        """
        client_data = self._get_client_for_current_loop()
        try:
            flow_dict = flow.model_dump(exclude={"id"})
            result = await client_data['collections']['flows'].insert_one(flow_dict)
            flow_dict["id"] = str(result.inserted_id)
            return FlowData.model_validate(flow_dict)
        except Exception as e:
            self._handle_db_operation("create_flow", e)

    async def get_flow(self, flow_id: str) -> Optional[FlowData]:
        """
        Get a flow by ID. Malformed IDs are treated as not found.
        """
        object_id = self._to_object_id(flow_id)
        if object_id is None:
            return None

        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flows'].find_one({"_id": object_id})
            if result is None:
                return None
            result["id"] = str(result["_id"])
            return FlowData.model_validate(result)
        except Exception as e:
            self._handle_db_operation("get_flow", e)

    async def get_flow_by_name(self, name: str, exclude_flow_id: Optional[str] = None) -> Optional[FlowData]:
        """
        Get a flow by its (unique) name, optionally ignoring one flow ID
        """
        client_data = self._get_client_for_current_loop()
        try:
            query: Dict[str, Any] = {"name": name}
            exclude_object_id = self._to_object_id(exclude_flow_id) if exclude_flow_id else None
            if exclude_object_id is not None:
                query["_id"] = {"$ne": exclude_object_id}

            result = await client_data['collections']['flows'].find_one(query)
            if result is None:
                return None
            result["id"] = str(result["_id"])
            return FlowData.model_validate(result)
        except Exception as e:
            self._handle_db_operation("get_flow_by_name", e)

    async def get_flows(self) -> List[FlowData]:
        """
        Get all flows, newest first
        """
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['flows'].find({}).sort("created_at", DESCENDING)
            flows: List[FlowData] = []
            async for flow_dict in cursor:
                flow_dict["id"] = str(flow_dict["_id"])
                flows.append(FlowData.model_validate(flow_dict))
            return flows
        except Exception as e:
            self._handle_db_operation("get_flows", e)

    async def update_flow(self, flow_id: str, fields: Dict[str, Any]) -> Optional[FlowData]:
        """
        Update selected fields of a flow

        Args:
            flow_id: Flow ID
            fields: Already-serialized fields to $set (name, nodes, edges)
        """
        object_id = self._to_object_id(flow_id)
        if object_id is None:
            return None

        client_data = self._get_client_for_current_loop()
        try:
            update_fields = dict(fields)
            update_fields["updated_at"] = datetime.now(timezone.utc)
            result = await client_data['collections']['flows'].find_one_and_update(
                {"_id": object_id},
                {"$set": update_fields},
                return_document=ReturnDocument.AFTER
            )
            if result is None:
                return None
            result["id"] = str(result["_id"])
            return FlowData.model_validate(result)
        except Exception as e:
            self._handle_db_operation("update_flow", e)

    async def delete_flow(self, flow_id: str) -> bool:
        """
        Delete a flow
        """
        object_id = self._to_object_id(flow_id)
        if object_id is None:
            return False

        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flows'].delete_one({"_id": object_id})
            return result.deleted_count > 0
        except Exception as e:
            self.log_util.error(service_name="FlowDB", message=f"Error deleting flow: {str(e)}")
            return False

    # Test run operations
    async def create_test_run(self, test_run: TestRunData) -> Optional[TestRunData]:
        """
        Create a new test run record

        Returns:
            Saved TestRunData with ID, or None if save failed
        """
        client_data = self._get_client_for_current_loop()
        try:
            test_run_dict = test_run.model_dump(exclude={"id"})
            result = await client_data['collections']['test_runs'].insert_one(test_run_dict)
            if result.inserted_id is None:
                self.log_util.error(service_name="FlowDB", message="Failed to save test run")
                return None
            test_run_dict["id"] = str(result.inserted_id)
            return TestRunData.model_validate(test_run_dict)
        except Exception as e:
            self.log_util.error(service_name="FlowDB", message=f"Error creating test run: {str(e)}")
            return None

    async def get_test_run(self, test_run_id: str) -> Optional[TestRunData]:
        """
        Get a test run by ID
        """
        object_id = self._to_object_id(test_run_id)
        if object_id is None:
            return None

        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['test_runs'].find_one({"_id": object_id})
            if result is None:
                return None
            result["id"] = str(result["_id"])
            return TestRunData.model_validate(result)
        except Exception as e:
            self._handle_db_operation("get_test_run", e)

    async def update_test_run(self, test_run_id: str, fields: Dict[str, Any]) -> bool:
        """
        Field-level update of a test run

        Returns:
            True if a document was matched, False otherwise
        """
        object_id = self._to_object_id(test_run_id)
        if object_id is None:
            return False

        client_data = self._get_client_for_current_loop()
        try:
            update_fields = dict(fields)
            update_fields["updated_at"] = datetime.now(timezone.utc)
            result = await client_data['collections']['test_runs'].update_one(
                {"_id": object_id},
                {"$set": update_fields}
            )
            return result.matched_count > 0
        except Exception as e:
            self.log_util.error(service_name="FlowDB", message=f"Error updating test run {test_run_id}: {str(e)}")
            return False

    async def get_test_runs_by_flow(self, flow_id: str) -> List[TestRunData]:
        """
        Get all test runs for a flow, newest first
        """
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['test_runs'].find({"flow_id": flow_id}).sort("created_at", DESCENDING)
            test_runs: List[TestRunData] = []
            async for doc in cursor:
                doc["id"] = str(doc["_id"])
                test_runs.append(TestRunData.model_validate(doc))
            return test_runs
        except Exception as e:
            self._handle_db_operation("get_test_runs_by_flow", e)

    async def get_stale_running_test_runs(self, started_before: datetime) -> List[TestRunData]:
        """
        Get test runs still marked "running" that started before the given moment
        """
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['test_runs'].find({
                "status": "running",
                "started_at": {"$lt": started_before}
            })
            results: List[TestRunData] = []
            async for doc in cursor:
                doc["id"] = str(doc["_id"])
                results.append(TestRunData.model_validate(doc))
            return results
        except Exception as e:
            self.log_util.error(service_name="FlowDB", message=f"Error getting stale test runs: {str(e)}")
            return []

    # Execution log operations
    async def create_execution_log(self, execution_log: ExecutionLogData) -> ExecutionLogData:
        """
        Save a new execution log entry.

        Raises:
            ExecutionLoggingException: if the entry could not be written
        """
        client_data = self._get_client_for_current_loop()
        try:
            log_dict = execution_log.model_dump(exclude={"id"})
            result = await client_data['collections']['execution_logs'].insert_one(log_dict)
            log_dict["id"] = str(result.inserted_id)
            return ExecutionLogData.model_validate(log_dict)
        except Exception as e:
            raise ExecutionLoggingException(message=f"Error creating execution log: {str(e)}")

    async def update_execution_log(self, log_id: str, fields: Dict[str, Any]) -> Optional[ExecutionLogData]:
        """
        Update an existing execution log entry in place.

        Raises:
            ExecutionLoggingException: if the entry could not be written
        """
        object_id = self._to_object_id(log_id)
        if object_id is None:
            raise ExecutionLoggingException(message=f"Invalid execution log id: {log_id}")

        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['execution_logs'].find_one_and_update(
                {"_id": object_id},
                {"$set": fields},
                return_document=ReturnDocument.AFTER
            )
            if result is None:
                return None
            result["id"] = str(result["_id"])
            return ExecutionLogData.model_validate(result)
        except Exception as e:
            raise ExecutionLoggingException(message=f"Error updating execution log {log_id}: {str(e)}")

    async def get_execution_logs_by_test_run(self, test_run_id: str) -> List[ExecutionLogData]:
        """
        Get all execution log entries of a test run, ordered by start time
        """
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['execution_logs'].find(
                {"test_run_id": test_run_id}
            ).sort([("started_at", ASCENDING), ("_id", ASCENDING)])
            logs: List[ExecutionLogData] = []
            async for doc in cursor:
                doc["id"] = str(doc["_id"])
                logs.append(ExecutionLogData.model_validate(doc))
            return logs
        except Exception as e:
            self._handle_db_operation("get_execution_logs_by_test_run", e)
