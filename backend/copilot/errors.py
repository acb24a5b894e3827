"""Error taxonomy shared by the analysis pipeline and its services."""


class CopilotError(RuntimeError):
    """Base class for all pipeline errors."""


class AnalysisError(CopilotError):
    """Raised when a transcript could not be turned into a validated analysis."""


class ConfigurationError(AnalysisError):
    """Raised when no model credential is configured and mock mode is off."""


class TransientProviderError(AnalysisError):
    """Raised for network, timeout, or rate-limit failures of the model provider."""


class SchemaValidationError(AnalysisError):
    """Raised when model output fails structural or semantic validation."""

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Analysis failed validation at '{field}': {reason}")


class PersistenceError(CopilotError):
    """Raised when a read or write against the database fails."""


class SessionNotFoundError(CopilotError):
    """Raised when a therapy session id is unknown (or not visible to the caller)."""


class SessionBusyError(CopilotError):
    """Raised when a session is already being analysed by another worker."""


class BatchNotFoundError(CopilotError):
    """Raised when a batch job id is unknown."""


class BatchValidationError(CopilotError):
    """Raised when a batch submission is empty or exceeds the size cap."""


class BatchStateError(CopilotError):
    """Raised when a batch job is asked to make an illegal state transition."""


class CacheError(CopilotError):
    """Raised inside cache backends; always suppressed by the cache facade."""
