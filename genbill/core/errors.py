from __future__ import annotations


class DomainError(Exception):
    kind = "domain_error"
    status_code = 500

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_dict(self) -> dict[str, str]:
        payload = {"kind": self.kind, "detail": self.message}
        if self.reason is not None:
            payload["reason"] = self.reason
        return payload


class ValidationError(DomainError):
    kind = "validation_error"
    status_code = 400


class NotFoundError(DomainError):
    kind = "not_found"
    status_code = 404


class AccessDeniedError(DomainError):
    kind = "access_denied"
    status_code = 403


class ConflictError(DomainError):
    kind = "conflict"
    status_code = 409


class PreconditionFailedError(DomainError):
    kind = "precondition_failed"
    status_code = 412

    def __init__(self, reason: str, message: str | None = None) -> None:
        super().__init__(message or reason, reason=reason)


class PersistenceError(DomainError):
    kind = "persistence_error"
    status_code = 503


NO_ACTIVE_FUEL_PRICE = "NoActiveFuelPrice"
NO_GENERATORS_IN_ZONE = "NoGeneratorsInZone"
