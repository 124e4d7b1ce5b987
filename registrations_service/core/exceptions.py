"""
Typed errors raised by the registration engine.
Each error carries a stable code and the HTTP status the API maps it to.
"""

from typing import Any, Dict, Optional


class RegistrationServiceError(Exception):
    """Base class for every error the engine reports to callers."""

    error_code = "REGISTRATION_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error_code": self.error_code,
            "error_message": self.message,
            "details": self.details,
        }


class DuplicateRegistration(RegistrationServiceError):
    error_code = "DUPLICATE_REGISTRATION"
    status_code = 409


class RegistrationClosed(RegistrationServiceError):
    error_code = "REGISTRATION_CLOSED"
    status_code = 409


class MissingRequiredAnswer(RegistrationServiceError):
    error_code = "MISSING_REQUIRED_ANSWER"
    status_code = 422


class CapacityExceeded(RegistrationServiceError):
    error_code = "CAPACITY_EXCEEDED"
    status_code = 409


class TeamNotFound(RegistrationServiceError):
    error_code = "TEAM_NOT_FOUND"
    status_code = 404


class EventMismatch(RegistrationServiceError):
    error_code = "EVENT_MISMATCH"
    status_code = 409


class TeamFull(RegistrationServiceError):
    error_code = "TEAM_FULL"
    status_code = 409


class InvalidTeamName(RegistrationServiceError):
    error_code = "INVALID_TEAM_NAME"
    status_code = 422


class InvalidPromoCode(RegistrationServiceError):
    error_code = "INVALID_PROMO_CODE"
    status_code = 422


class NotApproved(RegistrationServiceError):
    error_code = "NOT_APPROVED"
    status_code = 409


class InvalidTransition(RegistrationServiceError):
    error_code = "INVALID_TRANSITION"
    status_code = 409


class NotFound(RegistrationServiceError):
    error_code = "NOT_FOUND"
    status_code = 404


class Unauthorized(RegistrationServiceError):
    error_code = "UNAUTHORIZED"
    status_code = 403


class ParticipationModeNotAllowed(RegistrationServiceError):
    error_code = "PARTICIPATION_MODE_NOT_ALLOWED"
    status_code = 422


class LockTimeout(RegistrationServiceError):
    error_code = "LOCK_TIMEOUT"
    status_code = 503
