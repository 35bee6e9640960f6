"""Operations layer: envelope-returning entry points for the API and CLI."""

from courier.ops.admin import AdminInterface
from courier.ops.health import HealthProbe, HealthReport, HealthStatus
from courier.ops.jobs import JobOperations
from courier.ops.result import OperationError, OperationResult, PagedResult

__all__ = [
    "AdminInterface",
    "HealthProbe",
    "HealthReport",
    "HealthStatus",
    "JobOperations",
    "OperationError",
    "OperationResult",
    "PagedResult",
]
