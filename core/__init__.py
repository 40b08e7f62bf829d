"""Core application components."""

# Import in correct order to avoid circular dependencies
from core.logger import setup_logger, get_logger, get_job_logger
from core.constants import (
    DatabaseDefaults,
    CacheDefaults,
    LotteryDefaults,
    GradeDefaults,
    JobStatus,
    GradeOrder,
    ResultOrigin,
    AdminRole,
    PinSkipReason,
)
from core.exceptions import (
    ApplicationError,
    ConfigurationError,
    DatabaseError,
    ResultCommitError,
    ServiceError,
    LotteryError,
    LotteryAlreadyRunningError,
    LotteryStateError,
    SnapshotError,
    ValidationError,
    NotFoundError,
    AuthorizationError,
)

__all__ = [
    # Initializer
    'ApplicationInitializer',
    # Logging
    'setup_logger',
    'get_logger',
    'get_job_logger',
    # Constants
    'DatabaseDefaults',
    'CacheDefaults',
    'LotteryDefaults',
    'GradeDefaults',
    'JobStatus',
    'GradeOrder',
    'ResultOrigin',
    'AdminRole',
    'PinSkipReason',
    # Exceptions
    'ApplicationError',
    'ConfigurationError',
    'DatabaseError',
    'ResultCommitError',
    'ServiceError',
    'LotteryError',
    'LotteryAlreadyRunningError',
    'LotteryStateError',
    'SnapshotError',
    'ValidationError',
    'NotFoundError',
    'AuthorizationError',
]

# Import ApplicationInitializer last to avoid circular imports
from core.app_initializer import ApplicationInitializer
