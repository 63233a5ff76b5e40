from __future__ import annotations

from typing import Any


class SoundtrackError(Exception):
    """Base class for every failure surfaced to callers of the service."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, Any]:
        return {}


class ValidationError(SoundtrackError):
    """Caller input is missing or malformed. Raised before any I/O."""

    kind = "validation"


class ConfigError(SoundtrackError):
    """A credential or endpoint required for the call is not configured."""

    kind = "config"


class UpstreamError(SoundtrackError):
    """Transport-level failure: non-2xx response or network exception."""

    kind = "upstream"

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def details(self) -> dict[str, Any]:
        return {"status": self.status_code, "body": self.body}


class ProviderError(SoundtrackError):
    """Well-formed response that carries an application-level failure."""

    kind = "provider"

    def __init__(self, message: str, code: int | str | None = None, status: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.status = status

    def details(self) -> dict[str, Any]:
        return {"code": self.code, "status": self.status}


class ParseError(SoundtrackError):
    """Response body could not be coerced to the expected structure."""

    kind = "parse"

    def __init__(self, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw

    def details(self) -> dict[str, Any]:
        return {"raw": self.raw}


class TimeoutExceededError(SoundtrackError, TimeoutError):
    """Wall-clock or attempt budget exhausted."""

    kind = "timeout"

    def __init__(self, message: str, last_status: str | None = None) -> None:
        super().__init__(message)
        self.last_status = last_status

    def details(self) -> dict[str, Any]:
        return {"last_status": self.last_status}
