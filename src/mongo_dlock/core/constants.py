"""Constants and default values for mongo-dlock.

This module centralizes magic numbers and default configuration instances
used throughout the library.
"""

from mongo_dlock.core.config import (
    LockOptions,
    ReaperConfig,
)

# ==================== CLOCK SYNC ====================

DEFAULT_SERVER_TIME_SAMPLES: int = 3  # Sequential serverStatus round trips per estimate
SERVER_STATUS_COMMAND: str = "serverStatus"
SERVER_LOCAL_TIME_FIELD: str = "localTime"

# ==================== THREAD SHUTDOWN ====================

HEARTBEAT_JOIN_TIMEOUT_SECONDS: float = 1.0
REAPER_JOIN_TIMEOUT_SECONDS: float = 5.0

# ==================== LOGGING DEFAULTS ====================

LOG_FILE_MAX_BYTES: int = 10 * 1024 * 1024  # 10MB max per log file
LOG_FILE_BACKUP_COUNT: int = 5  # Number of backup log files to keep

# ==================== DEFAULT CONFIG INSTANCES ====================

DEFAULT_LOCK_OPTIONS = LockOptions()
DEFAULT_REAPER = ReaperConfig()
