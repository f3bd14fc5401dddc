"""Model exports for SQLAlchemy/SQLModel metadata discovery."""

from worknest.models.activity_logs import ActivityLog
from worknest.models.notifications import Notification
from worknest.models.project_webhooks import ProjectWebhook
from worknest.models.projects import Project, ProjectMember
from worknest.models.task_counters import TaskCounter
from worknest.models.task_dependencies import TaskDependency
from worknest.models.tasks import Task, TaskAttachment, TaskComment
from worknest.models.users import User
from worknest.models.workspaces import Workspace

__all__ = [
    "ActivityLog",
    "Notification",
    "Project",
    "ProjectMember",
    "ProjectWebhook",
    "Task",
    "TaskAttachment",
    "TaskComment",
    "TaskCounter",
    "TaskDependency",
    "User",
    "Workspace",
]
