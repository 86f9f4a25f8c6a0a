"""ORM models exposed for metadata discovery."""
from app.db.models.activity_log import ActivityLog
from app.db.models.availability import WeeklyAvailability
from app.db.models.completion import TaskCompletion
from app.db.models.organization import Organization
from app.db.models.schedule import ScheduledTask, WeeklySchedulePreview
from app.db.models.task import Task
from app.db.models.user import User

__all__ = [
    "ActivityLog",
    "Organization",
    "ScheduledTask",
    "Task",
    "TaskCompletion",
    "User",
    "WeeklyAvailability",
    "WeeklySchedulePreview",
]
