from datetime import datetime, UTC


class ReconError(Exception):
    """Base class for reconciliation engine errors."""


class OracleError(ReconError):
    """The structured-extraction service call itself failed (network, auth, rate limit)."""


class MalformedResponseError(ReconError):
    """The service answered, but no usable JSON value could be read from the text."""


class TruncatedResponseError(ReconError):
    """The service stopped early because it hit its output-length ceiling."""

    def __init__(self, message: str, finish_reason: str | None = None):
        super().__init__(message)
        self.finish_reason = finish_reason


class NoAttributesExtractedError(ReconError):
    """Every extraction category failed for a document."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = list(errors or [])


def _make_error_payload(
    stage: str, err: Exception | str, extra: dict | None = None
) -> dict:
    msg = str(err)
    base = {
        "status": "error",
        "error": msg,
        "stage": stage,
        "timestamp": datetime.now(UTC)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z"),
    }
    if isinstance(err, ReconError):
        base["error_type"] = type(err).__name__
    if extra:
        base.update(extra)
    return base
