# Overview: Closed error taxonomy shared by services and routes.

"""
RackTrack error kinds.

Every failure the order lifecycle and QuickBooks sync code can surface is one
of the classes below. Callers branch on the class (or on `kind` once it has
crossed the HTTP boundary), never on message text.

    NotFound             404  entity id does not exist
    ValidationError      400  malformed or incomplete caller input
    InvalidTransition    400  edge not in the production status table
    UnknownState         400  status name is not a ProductionStatus
    PersistenceFailure   500  storage rejected a write
    PartialCreateFailure 500  order lines failed, order row compensated away
    CsrfValidationFailed 400  OAuth state missing or different from the one issued
    OAuthExchangeFailed  502  Intuit rejected a code exchange or refresh
    MetadataFetchFailed  502  company info could not be read with fresh tokens
    NetworkTimeout       504  outbound call exceeded its timeout
    RemoteApiError       502  any other non-2xx from the QuickBooks API
    Unauthorized         401  no valid credential
    Forbidden            403  credential lacks the required role

Validation kinds (ValidationError, InvalidTransition, UnknownState,
CsrfValidationFailed) are never retried automatically.
"""

from __future__ import annotations

from typing import Any, Optional


class RackTrackError(Exception):
    kind = "error"
    http_status = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload = {"error": self.message, "kind": self.kind}
        payload.update({k: v for k, v in self.context.items() if v is not None})
        return payload


class NotFound(RackTrackError):
    kind = "not_found"
    http_status = 404


class ValidationError(RackTrackError):
    kind = "validation_error"
    http_status = 400


class UnknownState(RackTrackError):
    kind = "unknown_state"
    http_status = 400

    def __init__(self, state: Any):
        super().__init__(f"Unknown production status '{state}'", state=state)
        self.state = state


class InvalidTransition(RackTrackError):
    """Attempted edge is not in the transition table; carries the legal set."""

    kind = "invalid_transition"
    http_status = 400

    def __init__(self, current: str, requested: str, valid_transitions: list[str]):
        super().__init__(
            f"Invalid status transition from {current} to {requested}",
            current=current,
            requested=requested,
        )
        self.current = current
        self.requested = requested
        self.valid_transitions = list(valid_transitions)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["validTransitions"] = self.valid_transitions
        return payload


class PersistenceFailure(RackTrackError):
    kind = "persistence_failure"
    http_status = 500

    def __init__(self, message: str, *, operation: str, cause: Optional[BaseException] = None, **context: Any):
        super().__init__(message, operation=operation, **context)
        self.operation = operation
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class PartialCreateFailure(RackTrackError):
    kind = "partial_create_failure"
    http_status = 500

    def __init__(self, message: str, *, cause: Optional[BaseException] = None, **context: Any):
        super().__init__(message, **context)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class CsrfValidationFailed(RackTrackError):
    kind = "invalid_state"
    http_status = 400


class OAuthExchangeFailed(RackTrackError):
    kind = "oauth_exchange_failed"
    http_status = 502


class MetadataFetchFailed(RackTrackError):
    kind = "metadata_fetch_failed"
    http_status = 502


class NetworkTimeout(RackTrackError):
    kind = "network_timeout"
    http_status = 504


class RemoteApiError(RackTrackError):
    kind = "remote_api_error"
    http_status = 502

    def __init__(self, message: str, *, status_code: Optional[int] = None, **context: Any):
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class Unauthorized(RackTrackError):
    kind = "unauthorized"
    http_status = 401


class Forbidden(RackTrackError):
    kind = "forbidden"
    http_status = 403


