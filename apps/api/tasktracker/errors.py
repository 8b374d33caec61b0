from __future__ import annotations


class TaskTrackerError(RuntimeError):
  code = "TASKTRACKER_ERROR"

  def __init__(self, message: str, *, code: str | None = None) -> None:
    super().__init__(message)
    self.message = message
    if code:
      self.code = code


class ValidationError(TaskTrackerError):
  code = "VALIDATION_ERROR"


class NotFoundError(TaskTrackerError):
  code = "NOT_FOUND"


class CannotDeleteDefault(ValidationError):
  code = "CANNOT_DELETE_DEFAULT"

  def __init__(self, message: str = "Cannot delete the default workflow") -> None:
    super().__init__(message)


class DeliveryFailure(TaskTrackerError):
  """Transport-level failure. Recorded on the job and retried, never raised to request handlers."""

  code = "DELIVERY_FAILURE"


class ConfigurationAbsent(TaskTrackerError):
  """Email is disabled or not configured. A normal steady state, not an error."""

  code = "EMAIL_NOT_CONFIGURED"
