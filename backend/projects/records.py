from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from models import Project, ProjectHistory


@dataclass(frozen=True)
class ProjectRecord:
    id: int
    campaign_id: int
    parent_id: int | None
    character_id: int
    name: str
    description: str | None
    goal_points: int
    current_points: int
    display_order: int
    is_completed: bool
    completed_at: datetime | None
    is_deleted: bool
    created_by_user_id: int
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_row(cls, row: Project) -> "ProjectRecord":
        return cls(
            id=row.id,
            campaign_id=row.campaign_id,
            parent_id=row.parent_id,
            character_id=row.character_id,
            name=row.name,
            description=row.description,
            goal_points=row.goal_points,
            current_points=row.current_points,
            display_order=row.display_order,
            is_completed=bool(row.is_completed),
            completed_at=row.completed_at,
            is_deleted=bool(row.is_deleted),
            created_by_user_id=row.created_by_user_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


@dataclass(frozen=True)
class HistoryRecord:
    id: int
    project_id: int
    user_id: int
    action: str
    previous_points: int | None
    new_points: int | None
    notes: str | None
    created_at: datetime | None

    @classmethod
    def from_row(cls, row: ProjectHistory) -> "HistoryRecord":
        return cls(
            id=row.id,
            project_id=row.project_id,
            user_id=row.user_id,
            action=row.action,
            previous_points=row.previous_points,
            new_points=row.new_points,
            notes=row.notes,
            created_at=row.created_at,
        )


@dataclass(frozen=True)
class AggregateProgress:
    total_current: int
    total_goal: int
    percentage: int


@dataclass
class ProjectNode:
    project: Any
    children: list["ProjectNode"] = field(default_factory=list)


@dataclass(frozen=True)
class ProjectDetail:
    project: ProjectRecord
    aggregate: AggregateProgress
    history: list[HistoryRecord] | None = None
    children: list[ProjectRecord] | None = None


@dataclass(frozen=True)
class ProgressResult:
    project: ProjectRecord
    aggregate: AggregateProgress
    auto_completed: bool = False
