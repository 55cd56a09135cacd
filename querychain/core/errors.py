"""
Application errors for clean API error handling.

Every pipeline failure is a QueryChainError subclass with a machine-readable
``kind`` and a human-readable ``detail``; the API layer maps kinds to HTTP
status codes. Use ServiceUnavailableError when a dependency (document store,
embeddings, LLM) is misconfigured so the API can return 503.
"""


class QueryChainError(Exception):
    """Base class for pipeline failures."""

    kind = "internal_error"

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class ServiceUnavailableError(QueryChainError):
    """Raised when a required service (e.g. document store, LLM API key) is unavailable or misconfigured."""

    kind = "service_unavailable"


class UpstreamError(QueryChainError):
    """Transport failure or non-success response from the completion or embedding endpoint."""

    kind = "upstream_error"

    def __init__(self, detail: str, status: int | None = None, body: str = "") -> None:
        self.status = status
        self.body = body
        super().__init__(detail)


class ContentBlockedError(UpstreamError):
    """The model declined to answer (safety block)."""

    kind = "content_blocked"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Model request blocked: {reason}")


class MalformedModelOutputError(QueryChainError):
    """Structured model output could not be parsed or has the wrong shape."""

    kind = "malformed_model_output"


class DimensionMismatchError(QueryChainError):
    kind = "dimension_mismatch"

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Embedding dimensions mismatch: {actual} vs {expected}")


class AccessDeniedError(QueryChainError):
    kind = "access_denied"

    def __init__(self, role: str, collection_name: str) -> None:
        self.role = role
        self.collection_name = collection_name
        super().__init__(f"Role '{role}' has no access to '{collection_name}'")


class SecurityRejectedError(QueryChainError):
    """A filter or mutation failed the safety check; ``reason`` says why."""

    kind = "security_rejected"

    def __init__(self, reason: str, stage: str = "query") -> None:
        self.reason = reason
        self.stage = stage
        super().__init__(f"{stage.capitalize()} blocked by security: {reason}")


class DatabaseError(QueryChainError):
    kind = "database_error"
