from __future__ import annotations


class StatusCheckError(Exception):
    """Base class for failures raised while querying an external service."""


class Unreachable(StatusCheckError):
    """Network failure, timeout or non-2xx answer from a service."""

    def __init__(self, url: str, reason: str, *, status_code: int | None = None) -> None:
        self.url = url
        self.reason = reason
        self.status_code = status_code
        if status_code is not None:
            super().__init__(f"{url}: HTTP {status_code} {reason}".strip())
        else:
            super().__init__(f"{url}: {reason}")


class MalformedResponse(StatusCheckError):
    """The service answered but the payload lacks the expected shape."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"{source}: {reason}")
