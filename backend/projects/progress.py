from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from models import Project
from projects.errors import (
    GoalBelowCurrentError,
    GoalExceededError,
    NegativeProgressError,
    NotFound,
    ValidationError,
)
from projects.records import AggregateProgress, ProjectNode
from projects.store import ProjectStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _require_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be an integer.")
    return value


def progress_percentage(current: int, goal: int) -> int:
    """Whole-number percentage, rounded half up; a zero goal reads as 0%."""
    if goal <= 0:
        return 0
    return (current * 200 + goal) // (2 * goal)


def resolve_points(
    current: int,
    goal: int,
    *,
    new_points: int | None = None,
    increment_by: int | None = None,
) -> int:
    if (new_points is None) == (increment_by is None):
        raise ValidationError("Provide exactly one of current_points or increment_by.")
    if new_points is not None:
        result = _require_int(new_points, "current_points")
    else:
        result = current + _require_int(increment_by, "increment_by")
    if result < 0:
        raise NegativeProgressError(
            f"Progress cannot go below zero (got {result}).", attempted=result
        )
    if result > goal:
        raise GoalExceededError(
            f"Progress ({result}) cannot exceed goal ({goal}).", attempted=result, goal=goal
        )
    return result


def build_tree(projects: Iterable[Any]) -> list[ProjectNode]:
    """Nest a flat project list by ``parent_id`` for presentation.

    Projects whose parent is not in the list (filtered out or deleted) are
    surfaced as roots rather than dropped.
    """
    items = list(projects)
    nodes = {item.id: ProjectNode(project=item) for item in items}
    roots: list[ProjectNode] = []
    for item in items:
        node = nodes[item.id]
        parent = nodes.get(item.parent_id) if item.parent_id is not None else None
        if parent is None or parent is node:
            roots.append(node)
        else:
            parent.children.append(node)
    return roots


class ProgressEngine:
    def __init__(self, store: ProjectStore, *, auto_complete: bool = False) -> None:
        self.store = store
        self.auto_complete = auto_complete

    def set_progress(
        self,
        project_id: int,
        user_id: int,
        *,
        new_points: int | None = None,
        increment_by: int | None = None,
        notes: str | None = None,
    ) -> Project:
        project = self.store.get_for_update(project_id)
        if project is None:
            raise NotFound(f"Project {project_id} not found.")
        previous = project.current_points
        updated_points = resolve_points(
            previous,
            project.goal_points,
            new_points=new_points,
            increment_by=increment_by,
        )
        project = self.store.update_progress(project_id, updated_points)
        self.store.append_history(
            project_id=project_id,
            user_id=user_id,
            action="updated_progress",
            previous_points=previous,
            new_points=updated_points,
            notes=notes,
        )
        logger.info(
            "Project %s progress %s -> %s by user %s",
            project_id,
            previous,
            updated_points,
            user_id,
        )
        return project

    def check_auto_complete(self, project_id: int, user_id: int) -> bool:
        if not self.auto_complete:
            return False
        project = self.store.get(project_id)
        if project is None or project.is_completed:
            return False
        if project.current_points != project.goal_points:
            return False
        self.store.mark_completed(project, _utcnow())
        self.store.append_history(
            project_id=project_id,
            user_id=user_id,
            action="completed",
            previous_points=project.current_points,
            new_points=project.current_points,
            notes="Goal reached; project auto-completed",
        )
        logger.info("Auto-completed project %s", project_id)
        return True

    def complete(self, project_id: int, user_id: int, notes: str | None = None) -> Project:
        project = self.store.get(project_id)
        if project is None:
            raise NotFound(f"Project {project_id} not found.")
        if project.is_completed:
            return project
        self.store.mark_completed(project, _utcnow())
        self.store.append_history(
            project_id=project_id,
            user_id=user_id,
            action="completed",
            previous_points=project.current_points,
            new_points=project.current_points,
            notes=notes or "Project marked as completed",
        )
        logger.info("Project %s marked completed by user %s", project_id, user_id)
        return project

    def change_goal(self, project: Project, user_id: int, goal_points: int) -> Project:
        goal_points = _require_int(goal_points, "goal_points")
        if goal_points < 0:
            raise ValidationError("Goal points must be non-negative.")
        if goal_points < project.current_points:
            raise GoalBelowCurrentError(
                f"Goal ({goal_points}) cannot be below current progress "
                f"({project.current_points}).",
                goal=goal_points,
                current=project.current_points,
            )
        previous_goal = project.goal_points
        if goal_points == previous_goal:
            return project
        self.store.update_fields(project, goal_points=goal_points)
        self.store.append_history(
            project_id=project.id,
            user_id=user_id,
            action="updated_goal",
            previous_points=project.current_points,
            new_points=project.current_points,
            notes=f"Goal points updated from {previous_goal} to {goal_points}",
        )
        return project

    def aggregate_progress(self, project_id: int) -> AggregateProgress:
        project = self.store.get(project_id)
        if project is None:
            raise NotFound(f"Project {project_id} not found.")
        total_current = project.current_points
        total_goal = project.goal_points
        for descendant in self.store.descendants(project_id):
            total_current += descendant.current_points
            total_goal += descendant.goal_points
        return AggregateProgress(
            total_current=total_current,
            total_goal=total_goal,
            percentage=progress_percentage(total_current, total_goal),
        )
