"""
CI Engine Errors

Every failure the engine reports to a caller is one of these.
Codes are stable so the API layer can render distinct guidance.
"""
from typing import List, Optional


class CIEngineError(Exception):
    """Base class for all CI engine failures."""
    code = "ci_error"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFoundError(CIEngineError):
    """Referenced report, feedstock or supplier does not exist."""
    code = "not_found"
    http_status = 404


class ForbiddenError(CIEngineError):
    """Actor lacks the capability for the operation in the current state."""
    code = "forbidden"
    http_status = 403


class InvalidStateError(CIEngineError):
    """Operation not permitted in the report's lifecycle state, whoever asks."""
    code = "invalid_state"
    http_status = 409


class ConflictError(CIEngineError):
    """A concurrent writer changed the report first (version mismatch)."""
    code = "conflict"
    http_status = 409


class ValidationError(CIEngineError):
    """Malformed or out-of-range input."""
    code = "validation_error"
    http_status = 422

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "errors": list(self.errors)}


class ComputationError(CIEngineError):
    """Engine invariant violated. Indicates a defect, never a user error."""
    code = "computation_error"
    http_status = 500
