"""Error taxonomy for the Prism core.

Errors that change whether work was scheduled or recorded propagate to the
caller. Failures on fire-and-forget paths (event handlers, realtime push,
channel handlers) are logged where they happen and never reach the caller.
"""


class PrismError(Exception):
    """Base class for all Prism errors."""


class SchedulerUnavailable(PrismError):
    """The job broker is unreachable and the operation needs a job id."""

    def __init__(self, message: str = "Scheduler unavailable: broker not connected"):
        super().__init__(message)


class InvalidSchedule(PrismError, ValueError):
    """A schedule cannot be honoured (target in the past, bad cron, ...)."""


class TimerNotFound(PrismError, KeyError):
    """No timer with the given id is tracked by this process."""

    def __init__(self, timer_id: str):
        self.timer_id = timer_id
        super().__init__(f"No timer found with id {timer_id!r}")

    def __str__(self) -> str:
        return self.args[0]


class JobNotFound(PrismError, KeyError):
    """No scheduled job with the given id is known to the scheduler."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id!r} not found or already completed")

    def __str__(self) -> str:
        return self.args[0]


class NotificationNotFound(PrismError, KeyError):
    """No persisted notification with the given id."""

    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Notification {notification_id!r} not found")

    def __str__(self) -> str:
        return self.args[0]


class PersistenceFailure(PrismError):
    """A notification could not be written to the store."""


class DeliveryBestEffort(PrismError):
    """A best-effort delivery (realtime push) did not reach every target.

    Raised by realtime sinks and absorbed by the notification service.
    """


class InvalidDateTime(PrismError, ValueError):
    """A datetime string or time window could not be parsed."""
