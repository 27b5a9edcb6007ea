"""Error kinds shared by services, adapters, and the HTTP layer."""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for failures surfaced to API callers."""

    kind = "internal"


class InvalidInputError(ServiceError):
    kind = "invalid-input"


class NotFoundError(ServiceError):
    kind = "not-found"


class ConflictError(ServiceError):
    kind = "conflict"


class UpstreamVenueError(ServiceError):
    """A venue API returned a non-2xx status, failed to respond, or sent garbage."""

    kind = "upstream-venue"

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None) -> None:
        if status_code is not None:
            message = f"{message} (status={status_code}, body={body or ''})"
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UpstreamChainError(ServiceError):
    kind = "upstream-chain"


class StoreError(ServiceError):
    kind = "internal-store"


__all__ = [
    "ConflictError",
    "InvalidInputError",
    "NotFoundError",
    "ServiceError",
    "StoreError",
    "UpstreamChainError",
    "UpstreamVenueError",
]
