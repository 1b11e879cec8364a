"""
Error taxonomy.

Request-level errors ('ValidationError', 'NotFoundError') abort a request
before any side effect and carry the HTTP status the API layer renders.

Provider-level errors ('ProviderError' and subclasses) never escape the
orchestration boundary: the orchestrator records them as the content of the
affected assistant turn and reports them as an 'error' event for that provider
only. 'code' is the stable machine-readable identifier of each category.
"""


class BranchingChatError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BranchingChatError):
    """Malformed request: missing prompt, unknown provider, malformed branch id."""

    status_code = 400


class NotFoundError(BranchingChatError):
    """Missing conversation or turn."""

    status_code = 404


class StorageError(BranchingChatError):
    """The backing store failed to read or write."""

    status_code = 500


class ProviderError(Exception):
    """A failure isolated to one provider's session."""

    code: str = "unknown"

    def __init__(self, provider: str, message: str):
        super().__init__(message)
        self.provider = provider
        self.message = message


class CredentialMissingError(ProviderError):
    code = "credential_missing"

    def __init__(self, provider: str):
        super().__init__(provider, "credential not configured")


class InvalidProviderError(ProviderError):
    code = "invalid_provider"

    def __init__(self, provider: str):
        super().__init__(provider, f"invalid provider '{provider}'")


class ProviderTransportError(ProviderError):
    code = "provider_transport"


class ProviderRateLimitError(ProviderError):
    code = "provider_rate_limit"


class UnknownProviderError(ProviderError):
    code = "unknown"
