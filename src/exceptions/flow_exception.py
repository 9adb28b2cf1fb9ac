class FlowException(Exception):
    """
    This is the base exception for all flow exceptions
    """
    def __init__(self, message: str, status_code: int):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message, self.status_code)

    def __str__(self) -> str:
        return self.message

class FlowDBException(FlowException):
    """
    This is the exception for all flow database exceptions
    """
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message=self.message, status_code=self.status_code)

class FlowServiceException(FlowException):
    """
    This is the exception for all flow service exceptions
    """
    def __init__(self, message: str):
        self.message = message
        self.status_code = 500
        super().__init__(message=self.message, status_code=self.status_code)

class FlowNotFoundException(FlowException):
    """
    This is the exception when flow is not found
    """
    def __init__(self, message: str):
        self.message = message
        self.status_code = 404
        super().__init__(message=self.message, status_code=self.status_code)

class TestRunNotFoundException(FlowException):
    """
    This is the exception when a test run is not found
    """
    def __init__(self, message: str):
        self.message = message
        self.status_code = 404
        super().__init__(message=self.message, status_code=self.status_code)

class FlowConflictException(FlowException):
    """
    This is the exception when a flow with the same name already exists
    """
    def __init__(self, message: str):
        self.message = message
        self.status_code = 409
        super().__init__(message=self.message, status_code=self.status_code)

class FlowValidationException(FlowException):
    """
    This is the exception for flow validation errors
    """
    def __init__(self, message: str):
        self.message = message
        self.status_code = 400
        super().__init__(message=self.message, status_code=self.status_code)

class GuardRejectionException(FlowException):
    """
    Raised when a run hits one of the execution limits (steps or delay)
    """
    def __init__(self, message: str):
        self.message = message
        self.status_code = 422
        super().__init__(message=self.message, status_code=self.status_code)

class NodeExecutionException(FlowException):
    """
    Raised when a single node cannot be executed (missing edge, bad delay, ...)
    """
    def __init__(self, message: str):
        self.message = message
        self.status_code = 500
        super().__init__(message=self.message, status_code=self.status_code)

class UnknownUnitException(NodeExecutionException):
    """
    Raised for a relative delay unit other than minutes, hours or days
    """
    def __init__(self, unit: str):
        self.unit = unit
        super().__init__(message=f"Unknown time unit: {unit}")

class PastTargetException(NodeExecutionException):
    """
    Raised when an absolute delay points to a moment that already passed
    """
    def __init__(self, message: str = "Target date is in the past"):
        super().__init__(message=message)

class DeliveryException(NodeExecutionException):
    """
    Raised by a notifier when the message could not be delivered
    """
    def __init__(self, message: str):
        super().__init__(message=message)

class ExecutionLoggingException(FlowException):
    """
    Raised by the database layer when an execution log entry cannot be written
    """
    def __init__(self, message: str):
        self.message = message
        self.status_code = 500
        super().__init__(message=self.message, status_code=self.status_code)
