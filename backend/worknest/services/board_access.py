"""Project membership checks for reading, writing and administering a board."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from worknest.models.projects import ProjectMember

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from worknest.models.projects import Project
    from worknest.models.tasks import Task, TaskAttachment
    from worknest.models.users import User

AccessLevel = Literal["read", "write", "admin"]

ROLE_LEVELS: dict[str, frozenset[str]] = {
    "viewer": frozenset({"read"}),
    "member": frozenset({"read", "write"}),
    "admin": frozenset({"read", "write", "admin"}),
    "owner": frozenset({"read", "write", "admin"}),
}
ADMIN_ROLES = frozenset({"owner", "admin"})


class BoardAccessDenied(Exception):
    """Raised when a user lacks the membership or role an operation needs."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)
        self.message = message


def role_allows(role: str | None, level: AccessLevel) -> bool:
    return level in ROLE_LEVELS.get(role or "", frozenset())


async def get_membership(
    session: AsyncSession,
    *,
    project_id: object,
    user_id: object,
) -> ProjectMember | None:
    return await ProjectMember.objects.filter_by(
        project_id=project_id,
        user_id=user_id,
    ).first(session)


async def authorize(
    session: AsyncSession,
    *,
    user: User,
    project: Project,
    level: AccessLevel,
) -> ProjectMember:
    """Return the caller's membership, or raise when it does not grant `level`."""
    member = await get_membership(session, project_id=project.id, user_id=user.id)
    if member is None:
        raise BoardAccessDenied("Not a member of this project")
    if not role_allows(member.role, level):
        raise BoardAccessDenied(f"Project role '{member.role}' does not allow {level} access")
    return member


def is_project_admin(member: ProjectMember) -> bool:
    return member.role in ADMIN_ROLES


def can_comment(project: Project, member: ProjectMember) -> bool:
    if member.role == "viewer":
        return False
    return project.allow_comments or is_project_admin(member)


def can_upload(project: Project, member: ProjectMember) -> bool:
    if member.role == "viewer":
        return False
    return project.allow_file_uploads or is_project_admin(member)


def can_delete_task(member: ProjectMember) -> bool:
    return is_project_admin(member)


def can_delete_project(project: Project, member: ProjectMember) -> bool:
    return member.role == "owner" and member.user_id == project.owner_id


def can_delete_attachment(
    member: ProjectMember,
    task: Task,
    attachment: TaskAttachment,
) -> bool:
    """Uploaders, the task assignee and project admins may remove an attachment."""
    if is_project_admin(member):
        return True
    return member.user_id in {attachment.uploaded_by_id, task.assignee_id}
