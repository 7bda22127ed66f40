# errors.py - Domain error taxonomy with WT-DOMAIN-NUMBER codes
from typing import Optional

# ============================================================
# ERROR CODE CATALOGUE
# WT-{DOMAIN}-{NUMBER}
# Domains: AUTH, STATE, DATA, DEP, CASCADE
# ============================================================

ERROR_CATALOGUE = {
    # Authorisation
    "WT-AUTH-001": {"message": "Only the owner may perform this action", "http_status": 403},
    "WT-AUTH-002": {"message": "You are not assigned to this item", "http_status": 403},
    "WT-AUTH-003": {"message": "Your role may not change this field", "http_status": 403},

    # State machine preconditions
    "WT-STATE-001": {"message": "Open issues must be resolved first", "http_status": 409},
    "WT-STATE-002": {"message": "Status transition not allowed", "http_status": 409},
    "WT-STATE-003": {"message": "Status is derived from sub-tasks", "http_status": 409},
    "WT-STATE-004": {"message": "Completion proof required", "http_status": 409},
    "WT-STATE-005": {"message": "Invalid work item structure", "http_status": 409},

    # Data
    "WT-DATA-001": {"message": "Record not found", "http_status": 404},

    # External dependencies
    "WT-DEP-001": {"message": "Work-item store unavailable", "http_status": 503},
    "WT-DEP-002": {"message": "Attachment store unavailable", "http_status": 503},
    "WT-DEP-003": {"message": "Service call deadline exceeded", "http_status": 504},

    # Secondary effects
    "WT-CASCADE-001": {"message": "Cascade side effect failed", "http_status": 200},
    "WT-CASCADE-002": {"message": "Timeline event could not be recorded", "http_status": 200},
}


class WorkTrackError(Exception):
    """Base class for every error the engine raises"""

    default_code = "WT-DEP-001"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        self.code = code or self.default_code
        entry = ERROR_CATALOGUE.get(self.code, {})
        self.message = message or entry.get("message", "Unexpected error")
        self.http_status = entry.get("http_status", 500)
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.message}


class AuthorizationError(WorkTrackError):
    """Actor lacks permission. Never retried."""

    default_code = "WT-AUTH-001"

    def __init__(self, reason, message: Optional[str] = None):
        # reason is an authorization.DenialReason
        self.reason = reason
        super().__init__(message, code=_AUTH_CODES.get(getattr(reason, "value", reason)))

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reason"] = getattr(self.reason, "value", self.reason)
        return data


_AUTH_CODES = {
    "not_owner": "WT-AUTH-001",
    "not_assigned": "WT-AUTH-002",
    "forbidden_field": "WT-AUTH-003",
}


class PreconditionError(WorkTrackError):
    """A domain rule blocks the request (e.g. open issues). Never retried."""

    default_code = "WT-STATE-002"


class NotFoundError(WorkTrackError):
    default_code = "WT-DATA-001"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class DependencyError(WorkTrackError):
    """Backing store or attachment store failed. Callers may retry with backoff."""

    default_code = "WT-DEP-001"


class CascadeWarning(UserWarning):
    """A best-effort secondary effect failed. Logged, never raised to callers."""

    def __init__(self, message: str, code: str = "WT-CASCADE-001"):
        self.code = code
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"
