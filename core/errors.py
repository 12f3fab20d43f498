class IntelligenceError(Exception):
    """Base exception class for the mcpgen intelligence layer."""
    pass

class ConfigurationError(IntelligenceError):
    """Raised when a provider, model or configuration file is invalid."""
    pass

class NetworkError(IntelligenceError):
    """Raised when a provider or the cache store cannot be reached."""
    pass

class MalformedResponseError(IntelligenceError):
    """Raised when provider output cannot be parsed into the expected shape."""
    pass

class CacheCorruptionError(IntelligenceError):
    """Raised when a stored cache entry fails to deserialize."""
    pass

class BudgetExceededError(IntelligenceError):
    """Raised when the pre-flight cost estimate exceeds the configured ceiling."""

    def __init__(self, estimated_cost: float, max_cost: float):
        self.estimated_cost = estimated_cost
        self.max_cost = max_cost
        super().__init__(
            f"Estimated cost ${estimated_cost:.4f} exceeds budget of ${max_cost:.4f}"
        )
