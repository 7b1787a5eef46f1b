"""Application constants."""

COMMANDS = (
    "backfill",
    "classify",
    "summarize",
)
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20

DEFAULT_BATCH_SIZE = 1000
DEFAULT_FUZZY_ALLOCATION_PERCENTAGE = 30.0
DEFAULT_MIXED_DRILLING_RATIO = 0.6
DEFAULT_UNKNOWN_DRILLING_RATIO = 0.5

MIGRATION_VERSION = "1.0"
DEFAULT_DEPARTMENT = "Operations"

MAPPING_STATUS_LC = "LC Mapped"
MAPPING_STATUS_INFERRED = "Location Inferred"
MAPPING_STATUS_ERROR = "Error - Default Values"
INTEGRITY_VALID = "Valid"
INTEGRITY_INFERRED = "Inferred"
INTEGRITY_INVALID = "Invalid"

LOG_EVENT_FIELDS = (
    "run_id",
    "stage",
    "event",
    "status",
    "batch",
    "rows_in",
    "rows_out",
    "record_id",
    "error_code",
)
