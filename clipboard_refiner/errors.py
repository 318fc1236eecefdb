"""Domain exceptions for rewrite backends and CLI diagnostics.

Responsibilities:
- Define the closed set of rewrite failure kinds shared by every backend.
- Render human-readable messages for each failure kind.
- Carry stage-scoped diagnostics for CLI and configuration failures.

Key types:
- `ErrorKind`: tagged failure categories.
- `RewriteError`: failure value delivered through backend results.
- `RefinerStageError`: actionable CLI/config failure with an optional hint.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories surfaced by backends and the orchestrator."""

    INVALID_API_KEY = "invalid_api_key"
    INVALID_ENDPOINT = "invalid_endpoint"
    NETWORK = "network"
    TIMEOUT = "timeout"
    INVALID_RESPONSE = "invalid_response"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CANCELLED = "cancelled"
    STREAMING_ERROR = "streaming_error"
    LOCAL_MODEL_UNAVAILABLE = "local_model_unavailable"


class RewriteError(RuntimeError):
    """Raised or delivered when a rewrite request fails."""

    def __init__(
        self,
        kind: ErrorKind,
        detail: str | None = None,
        *,
        status_code: int | None = None,
    ) -> None:
        """Initialize failure metadata and its user-facing message."""

        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        super().__init__(self._render_message())

    def _render_message(self) -> str:
        """Build the user-facing message for this failure kind."""

        kind = self.kind
        if kind is ErrorKind.INVALID_API_KEY:
            return "Invalid or missing API key. Please check your settings."
        if kind is ErrorKind.INVALID_ENDPOINT:
            return "Invalid endpoint URL."
        if kind is ErrorKind.NETWORK:
            return f"Network error: {self.detail or 'request failed'}"
        if kind is ErrorKind.TIMEOUT:
            return "Network error: the request timed out."
        if kind is ErrorKind.INVALID_RESPONSE:
            return "Invalid response from the API."
        if kind is ErrorKind.RATE_LIMITED:
            return "Rate limited. Please try again later."
        if kind is ErrorKind.SERVER_ERROR:
            if self.detail:
                return f"Server error ({self.status_code}): {self.detail}"
            return f"Server error: {self.status_code}"
        if kind is ErrorKind.CANCELLED:
            return "Request was cancelled."
        if kind is ErrorKind.STREAMING_ERROR:
            return f"Streaming error: {self.detail}"
        return f"Local model unavailable: {self.detail}"

    @property
    def message(self) -> str:
        """Return the user-facing message."""

        return str(self)

    @classmethod
    def invalid_api_key(cls) -> RewriteError:
        return cls(ErrorKind.INVALID_API_KEY)

    @classmethod
    def network(cls, detail: str) -> RewriteError:
        return cls(ErrorKind.NETWORK, detail)

    @classmethod
    def timeout(cls) -> RewriteError:
        return cls(ErrorKind.TIMEOUT)

    @classmethod
    def invalid_response(cls) -> RewriteError:
        return cls(ErrorKind.INVALID_RESPONSE)

    @classmethod
    def rate_limited(cls) -> RewriteError:
        return cls(ErrorKind.RATE_LIMITED)

    @classmethod
    def server_error(cls, status_code: int, detail: str | None = None) -> RewriteError:
        return cls(ErrorKind.SERVER_ERROR, detail, status_code=status_code)

    @classmethod
    def cancelled(cls) -> RewriteError:
        return cls(ErrorKind.CANCELLED)

    @classmethod
    def streaming(cls, detail: str) -> RewriteError:
        return cls(ErrorKind.STREAMING_ERROR, detail)

    @classmethod
    def local_unavailable(cls, detail: str) -> RewriteError:
        return cls(ErrorKind.LOCAL_MODEL_UNAVAILABLE, detail)


class RefinerStageError(RuntimeError):
    """Raised when a specific CLI or configuration stage fails."""

    def __init__(
        self,
        *,
        stage: str,
        detail: str,
        hint: str | None = None,
    ) -> None:
        """Initialize a stage-scoped error."""

        super().__init__(detail)
        self.stage = stage
        self.detail = detail
        self.hint = hint
