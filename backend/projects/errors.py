from __future__ import annotations


class ProjectError(Exception):
    """Base class for every failure the project engine reports.

    ``code`` is stable and is what callers map to status codes; the message is
    for humans only.
    """

    code = "project_error"
    category = "validation"
    retryable = False

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.code, "category": self.category, "message": self.message}


class ValidationError(ProjectError):
    code = "validation_error"


class GoalExceededError(ValidationError):
    code = "goal_exceeded"


class NegativeProgressError(ValidationError):
    code = "negative_progress"


class GoalBelowCurrentError(ValidationError):
    code = "goal_below_current"


class StructuralError(ProjectError):
    code = "structural_error"
    category = "structural"


class CircularReferenceError(StructuralError):
    code = "circular_reference"


class MaxDepthExceededError(StructuralError):
    code = "max_depth_exceeded"


class CrossCampaignParentError(StructuralError):
    code = "cross_campaign_parent"


class PermissionDenied(ProjectError):
    code = "permission_denied"
    category = "authorization"


class NotFound(ProjectError):
    code = "not_found"
    category = "not_found"


class StoreUnavailableError(ProjectError):
    code = "store_unavailable"
    category = "infrastructure"
    retryable = True
