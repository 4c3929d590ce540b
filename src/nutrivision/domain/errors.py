"""Error types and stable failure reasons surfaced by the core services."""

from dataclasses import dataclass
from enum import Enum


class FailureReason(str, Enum):
    """Why an analysis or correction did not produce a usable draft."""

    NO_ITEMS_DETECTED = "no_items_detected"
    INVALID_IMAGE = "invalid_image"
    TIMEOUT = "timeout"
    MISSING_API_KEY = "missing_api_key"
    INVALID_API_KEY = "invalid_api_key"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    INVALID_RESPONSE = "invalid_response"
    ANALYZER_ERROR = "analyzer_error"


class AnalyzerError(Exception):
    """Raised by analyzer collaborators with a classified reason."""

    def __init__(self, reason: FailureReason, message: str | None = None) -> None:
        super().__init__(message or reason.value)
        self.reason = reason


class AnalysisError(Exception):
    """A correction failed; the prior draft was kept."""

    def __init__(self, reason: FailureReason) -> None:
        super().__init__(reason.value)
        self.reason = reason


class InvalidTransitionError(Exception):
    """An analysis job operation was issued from the wrong state."""


class AnalysisBusyError(InvalidTransitionError):
    """An analysis job already has a call in flight."""


class InvariantViolation(AssertionError):
    """A caller handed the log store data that breaks its invariants."""


class DuplicateLogError(InvariantViolation):
    """A log with the same id is already stored."""


class LogNotFoundError(KeyError):
    """No log with the requested id exists."""


class SyncOperation(str, Enum):
    """Remote operations whose failures are reported as sync notices."""

    UPSERT = "upsert"
    DELETE = "delete"
    FETCH = "fetch"
    SETTINGS = "settings"


@dataclass(frozen=True)
class SyncFailure:
    """Non-fatal notice that a remote operation failed while local succeeded."""

    operation: SyncOperation
    log_id: str | None
    message: str
