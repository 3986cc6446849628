"""
Upstream result types shared by the origin client, coalescer and responder.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Type, Union

from shared.errors import (
    BadRequestError,
    InternalError,
    NotFoundError,
    ReflectorException,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)


class FailureKind(Enum):
    """Failure taxonomy for reflector requests."""

    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    UNREACHABLE = "unreachable"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    UPSTREAM_ERROR = "upstream_error"
    BAD_RESPONSE = "bad_response"
    INTERNAL = "internal"


_EXCEPTIONS: Dict[FailureKind, Type[ReflectorException]] = {
    FailureKind.BAD_REQUEST: BadRequestError,
    FailureKind.NOT_FOUND: NotFoundError,
    FailureKind.UNREACHABLE: UpstreamUnavailableError,
    FailureKind.UPSTREAM_TIMEOUT: UpstreamTimeoutError,
    FailureKind.UPSTREAM_ERROR: UpstreamUnavailableError,
    FailureKind.BAD_RESPONSE: UpstreamUnavailableError,
    FailureKind.INTERNAL: InternalError,
}


@dataclass(frozen=True)
class Success:
    """A well-formed 2xx origin response."""

    status: int
    body: bytes
    content_type: str

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """A request that could not be served from the origin or the cache."""

    kind: FailureKind
    detail: str = ""
    status: Optional[int] = None

    @property
    def ok(self) -> bool:
        return False

    def to_exception(self) -> ReflectorException:
        """Build the shared error matching this failure."""
        if self.kind is FailureKind.INTERNAL:
            # Internal details stay in the logs.
            return InternalError()

        # An origin 404 usually means the world does not exist.
        if self.kind is FailureKind.UPSTREAM_ERROR and self.status == 404:
            return NotFoundError(self.detail or "Resource not found upstream", {"upstream_status": 404})

        details = {"kind": self.kind.value}
        if self.status is not None:
            details["upstream_status"] = self.status
        exc_class = _EXCEPTIONS[self.kind]
        return exc_class(self.detail or exc_class().message, details)


UpstreamResult = Union[Success, Failure]
