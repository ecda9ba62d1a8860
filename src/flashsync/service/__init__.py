"""
Long-running service: tasks, the scheduler loop and component wiring.
"""

from flashsync.service.app import build_scheduler, open_orchestrator
from flashsync.service.cron import CronParseError, next_fire_time
from flashsync.service.scheduler import Scheduler
from flashsync.service.tasks import SyncTask, Task

__all__ = [
    "Task",
    "SyncTask",
    "Scheduler",
    "CronParseError",
    "next_fire_time",
    "open_orchestrator",
    "build_scheduler",
]
