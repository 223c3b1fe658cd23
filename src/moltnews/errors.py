from __future__ import annotations


class MoltNewsError(Exception):
    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "kind": self.kind}


class NotFoundError(MoltNewsError):
    kind = "not_found"


class ValidationError(MoltNewsError):
    kind = "validation"


class BackendUnavailableError(MoltNewsError):
    kind = "backend_unavailable"


class BackendFailureError(MoltNewsError):
    kind = "backend_failure"


class UnauthorizedError(MoltNewsError):
    kind = "unauthorized"
