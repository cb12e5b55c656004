"""Exceptions raised by the alerting core.

Manual actions (acknowledge, resolve, threshold CRUD) surface these to the
caller; the API layer maps them to HTTP status codes. Automatic
transitions never raise them.
"""


class AlertingError(Exception):
    """Base exception for alerting errors."""


class ThresholdValidationError(AlertingError, ValueError):
    """Raised when a threshold definition is rejected at create/update."""

    def __init__(self, problems: list[str]):
        super().__init__("Invalid alert threshold: " + "; ".join(problems))
        self.problems = problems


class NotFoundError(AlertingError, LookupError):
    """Base for missing threshold/alert lookups."""

    resource = "resource"

    def __init__(self, resource_id: int):
        super().__init__(f"{self.resource} {resource_id} not found")
        self.resource_id = resource_id


class ThresholdNotFoundError(NotFoundError):
    resource = "Alert threshold"


class AlertNotFoundError(NotFoundError):
    resource = "Alert"


class AlertTransitionError(AlertingError):
    """Raised when a manual action is illegal for the alert's current status."""

    def __init__(self, alert_id: int, action: str, status: str):
        super().__init__(f"cannot {action} alert {alert_id} in status {status!r}")
        self.alert_id = alert_id
        self.action = action
        self.status = status
