class DomainError(Exception):
    code: str = "domain_error"
    status: int = 400

    def __init__(self, message: str = "", *, code: str | None = None, status: int | None = None):
        super().__init__(message or self.__class__.__name__)
        if code: self.code = code
        if status: self.status = status

class NotFound(DomainError):
    code = "not_found"
    status = 404

class Conflict(DomainError):
    code = "conflict"
    status = 409

class AlreadyRunning(Conflict):
    code = "already_running"

class ConfigurationError(DomainError):
    """Terminal: a required setting (API key, URL) is missing. Never retried."""
    code = "configuration_error"
    status = 500

class ProviderError(DomainError):
    code = "provider_error"
    status = 502

class RateLimited(ProviderError):
    code = "rate_limited"
    status = 429

    def __init__(self, message: str = "", *, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after

class QuotaExceeded(ProviderError):
    code = "quota_exceeded"
    status = 402

class JobCancelled(DomainError):
    code = "cancelled"
    status = 409
