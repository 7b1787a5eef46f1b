"""Domain errors and failure typing."""


class PipelineError(Exception):
    """Base class for pipeline failures."""

    error_code = "PIPELINE_ERROR"


class ConfigError(PipelineError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class LedgerLoadError(PipelineError):
    """Raised when the cost-allocation ledger cannot be read."""

    error_code = "LEDGER_LOAD_ERROR"


class BackupError(PipelineError):
    """Raised when the pre-mutation snapshot could not be produced."""

    error_code = "BACKUP_ERROR"


class StoreError(PipelineError):
    """Raised when the record store cannot be read or written."""

    error_code = "STORE_ERROR"


class TransientStoreError(StoreError):
    """Write failure worth retrying at the transaction boundary."""

    error_code = "STORE_TRANSIENT"


class BatchWriteError(PipelineError):
    """Raised when a batch transaction failed after all retries."""

    error_code = "BATCH_WRITE_ERROR"
