"""Application-wide constants and configuration values."""

from __future__ import annotations

from enum import Enum


# Database constants
class DatabaseDefaults:
    """Default database configuration."""
    POOL_SIZE = 10
    BUSY_TIMEOUT = 5000  # milliseconds


# Cache constants
class CacheDefaults:
    """Default cache configuration for report reads."""
    REPORT_TTL = 30  # seconds
    REPORT_SIZE = 256


# Lottery constants
class LotteryDefaults:
    """Lottery configuration."""
    SEED_RANDOM_BYTES = 32
    SEED_BITS = 63  # fits a signed SQLite INTEGER
    PROGRESS_BATCH = 50  # students between progress messages
    ATTEMPTS = 1
    PREFILL_TOP_CHOICES = 3
    COMMIT_TIMEOUT = 60  # seconds
    COMMIT_RETRIES = 3
    COMMIT_RETRY_DELAY = 2  # seconds, exponential base
    ERROR_MAX_LENGTH = 190
    MIN_REPORTED_RANKS = 10


# Status enums
class JobStatus(str, Enum):
    """Lottery job lifecycle status."""
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class GradeOrder(str, Enum):
    """Order in which grade groups compete for remaining capacity."""
    NONE = "NONE"
    ASCENDING = "ASCENDING"
    DESCENDING = "DESCENDING"


class ResultOrigin(str, Enum):
    """How a lottery result row came to exist."""
    LOTTERY_RANK = "LOTTERY_RANK"
    LOTTERY_PREFILL = "LOTTERY_PREFILL"
    MANUAL_PIN = "MANUAL_PIN"
    MANUAL_POST_HOC = "MANUAL_POST_HOC"


class AdminRole(str, Enum):
    """Admin permission level."""
    FULL = "FULL"
    READ_ONLY = "READ_ONLY"


# Pin skip reasons
class PinSkipReason:
    """Reasons recorded when a manual pin cannot be applied."""
    CAPACITY_EXHAUSTED = "pin rejected — capacity exhausted"
    ALREADY_PINNED = "student already pinned"


# Grade range
class GradeDefaults:
    """School grade bounds."""
    MIN_GRADE = 9
    MAX_GRADE = 12
    SCHOOL_YEAR_START_MONTH = 7
