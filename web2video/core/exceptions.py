"""Exception hierarchy for retrieval, extraction and the HTTP layer."""


class Web2VideoError(Exception):
    """Base class for all web2video errors."""


class ConfigurationError(Web2VideoError):
    """Raised when the retrieval configuration cannot be used as given."""


# ---------------------------------------------------------------------------
# Tier errors: one failed attempt, recorded by the orchestrator and retried
# ---------------------------------------------------------------------------


class TierError(Web2VideoError):
    """A single tier attempt failed. `reason` ends up in the attempt history."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class TransportError(TierError):
    """Network failure, timeout, redirect overflow or a 5xx the site didn't mean as a block."""


class BlockedResponse(TierError):
    """The transport succeeded but the target refused the request."""

    def __init__(self, status_code: int, reason: str | None = None):
        self.status_code = status_code
        super().__init__(reason or f"Request blocked with status {status_code}")


class SolverProtocolError(TierError):
    """The challenge solver answered with a non-"ok" envelope."""


class UnimplementedTierError(TierError):
    """The tier exists in configuration but has no implementation."""


class ExtractionWarning(Web2VideoError):
    """One heuristic failed on a fragment. Logged, never propagated."""

    def __init__(self, heuristic: str, cause: BaseException):
        self.heuristic = heuristic
        self.cause = cause
        super().__init__(f"{heuristic} heuristic failed: {cause}")


# ---------------------------------------------------------------------------
# HTTP layer
# ---------------------------------------------------------------------------


class APIError(Web2VideoError):
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class BadRequestError(APIError):
    status_code = 400
