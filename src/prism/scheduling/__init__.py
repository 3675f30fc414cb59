"""Scheduling subsystem: durable delayed, repeating and cron jobs.

Public API:
- Scheduler: Handler registry, bookkeeping and worker loop
- RedisJobQueue: Broker data access

Types:
- ScheduledJob: Local record of a job added through this process
- JobKind: cron, delayed or repeating
- JobFn: Async handler signature
"""

from prism.scheduling.queue import RedisJobQueue
from prism.scheduling.scheduler import Scheduler
from prism.scheduling.types import JobFn, JobKind, QueuedJob, ScheduledJob

__all__ = [
    "JobFn",
    "JobKind",
    "QueuedJob",
    "RedisJobQueue",
    "ScheduledJob",
    "Scheduler",
]
