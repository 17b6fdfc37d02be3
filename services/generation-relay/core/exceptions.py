from typing import Optional


class RelayError(Exception):
    """
    Base class for all application-specific exceptions.
    Captures the original exception for debugging if needed.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


# --- Caller Exceptions (retry is useless) ---


class ValidationException(RelayError):
    """
    Raised when the input image or request is malformed.
    Never reaches the network. Maps to HTTP 400.
    """

    pass


class ConfigurationError(RelayError):
    """
    Raised when the deployment is missing a credential or a provider
    status table is incomplete. Fatal until the deployment is fixed.
    """

    pass


class ProductNotFoundError(RelayError):
    pass


# --- Provider Exceptions ---


class ProviderError(RelayError):
    """
    Raised when the remote generation provider (Tripo/Meshy/OpenRouter) fails.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        suggestion: Optional[str] = None,
        trace_id: Optional[str] = None,
        provider: Optional[str] = None,
        original_error: Optional[Exception] = None,
        task_id: Optional[str] = None,
    ):
        super().__init__(message, original_error)
        self.code = code
        self.suggestion = suggestion
        self.trace_id = trace_id
        self.provider = provider
        # Set once the provider has accepted the job, so the caller can resume it
        self.task_id = task_id


class ProviderRejection(ProviderError):
    """
    The provider answered with a structured error (bad key, no credits,
    unsupported file...). Sending the same request again will not help.
    """

    retryable = False


class ProviderTransportError(ProviderError):
    """
    Network failure, provider 5xx or a response we could not make sense of.
    Likely retryable.
    """

    retryable = True
