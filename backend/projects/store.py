from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import Integer, func, literal, select, update
from sqlalchemy.orm import Session, aliased

from models import HISTORY_ACTIONS, Campaign, Project, ProjectHistory
from projects.errors import NotFound, ValidationError
from projects.schemas import ProjectCreate
from projects.settings import DEFAULT_MAX_DEPTH

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "name",
    "description",
    "goal_points",
    "parent_id",
    "display_order",
    "is_completed",
    "completed_at",
}


def validate_points(goal_points: int, current_points: int) -> None:
    if goal_points < 0:
        raise ValidationError("Goal points must be non-negative.")
    if current_points < 0:
        raise ValidationError("Current points must be non-negative.")
    if current_points > goal_points:
        raise ValidationError(
            f"Current points ({current_points}) cannot exceed goal points ({goal_points})."
        )


def campaign_lock_statement(campaign_id: int):
    return (
        select(Campaign)
        .where(Campaign.id == campaign_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


class ProjectStore:
    """Persistence for projects and their audit trail.

    The store flushes but never commits; the caller owns the transaction.
    Tree reads are single recursive queries bounded by ``max_depth`` levels,
    so they terminate even on a cyclic parent chain.
    """

    def __init__(self, db: Session, *, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.db = db
        self.max_depth = max_depth

    def create(
        self,
        data: ProjectCreate,
        *,
        campaign_id: int,
        created_by_user_id: int,
        display_order: int = 0,
    ) -> Project:
        validate_points(data.goal_points, data.current_points)
        project = Project(
            campaign_id=campaign_id,
            parent_id=data.parent_id,
            character_id=data.character_id,
            name=data.name,
            description=data.description,
            goal_points=data.goal_points,
            current_points=data.current_points,
            display_order=display_order,
            is_completed=False,
            is_deleted=False,
            created_by_user_id=created_by_user_id,
        )
        self.db.add(project)
        self.db.flush()
        logger.debug("Stored project %s in campaign %s", project.id, campaign_id)
        return project

    def lock_campaign(self, campaign_id: int) -> Campaign | None:
        """Row-lock the campaign so structural writes in it run one at a time.

        Rows loaded before the lock are expired, so later reads in the same
        transaction see whatever the previous holder committed.
        """
        campaign = self.db.execute(campaign_lock_statement(campaign_id)).scalar_one_or_none()
        self.db.expire_all()
        return campaign

    def get(self, project_id: int, *, include_deleted: bool = False) -> Project | None:
        project = self.db.get(Project, project_id)
        if project is None:
            return None
        if project.is_deleted and not include_deleted:
            return None
        return project

    def get_for_update(self, project_id: int) -> Project | None:
        return (
            self.db.query(Project)
            .filter(Project.id == project_id)
            .filter(Project.is_deleted.is_(False))
            .populate_existing()
            .with_for_update()
            .first()
        )

    def find_by_campaign(
        self,
        campaign_id: int,
        *,
        include_deleted: bool = False,
        include_completed: bool = True,
    ) -> list[Project]:
        query = self.db.query(Project).filter(Project.campaign_id == campaign_id)
        if not include_deleted:
            query = query.filter(Project.is_deleted.is_(False))
        if not include_completed:
            query = query.filter(Project.is_completed.is_(False))
        return query.order_by(Project.display_order.asc(), Project.id.asc()).all()

    def find_by_character(self, character_id: int) -> list[Project]:
        return (
            self.db.query(Project)
            .filter(Project.character_id == character_id)
            .filter(Project.is_deleted.is_(False))
            .order_by(Project.updated_at.desc(), Project.id.desc())
            .all()
        )

    def count_active_for_character(self, character_id: int) -> int:
        return (
            self.db.query(func.count(Project.id))
            .filter(Project.character_id == character_id)
            .filter(Project.is_deleted.is_(False))
            .scalar()
            or 0
        )

    def siblings(self, campaign_id: int, parent_id: int | None) -> list[Project]:
        query = (
            self.db.query(Project)
            .filter(Project.campaign_id == campaign_id)
            .filter(Project.is_deleted.is_(False))
        )
        if parent_id is None:
            query = query.filter(Project.parent_id.is_(None))
        else:
            query = query.filter(Project.parent_id == parent_id)
        return query.order_by(Project.display_order.asc(), Project.id.asc()).all()

    def next_display_order(self, campaign_id: int, parent_id: int | None) -> int:
        siblings = self.siblings(campaign_id, parent_id)
        if not siblings:
            return 0
        return max(sibling.display_order for sibling in siblings) + 1

    def update_fields(self, project: Project, **fields) -> Project:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        for key, value in fields.items():
            setattr(project, key, value)
        self.db.flush()
        return project

    def update_progress(self, project_id: int, new_points: int) -> Project:
        # The goal invariant is checked once, by the progress engine.
        project = self.get(project_id)
        if project is None:
            raise NotFound(f"Project {project_id} not found.")
        project.current_points = new_points
        self.db.flush()
        return project

    def mark_completed(self, project: Project, when: datetime) -> Project:
        project.is_completed = True
        project.completed_at = when
        self.db.flush()
        return project

    def soft_delete(self, project_id: int) -> list[int]:
        project = self.get(project_id)
        if project is None:
            raise NotFound(f"Project {project_id} not found.")
        ids = [project.id] + [descendant.id for descendant in self.descendants(project_id)]
        self.db.execute(
            update(Project)
            .where(Project.id.in_(ids))
            .values(is_deleted=True, updated_at=func.now())
            .execution_options(synchronize_session="fetch")
        )
        self.db.flush()
        logger.debug("Soft-deleted project subtree %s: %s", project_id, ids)
        return ids

    def descendants(self, project_id: int) -> list[Project]:
        tree = self._descendant_tree(project_id)
        stmt = (
            select(Project)
            .join(tree, Project.id == tree.c.id)
            .order_by(tree.c.level.asc(), Project.display_order.asc(), Project.id.asc())
        )
        return list(self.db.scalars(stmt))

    def max_descendant_depth(self, project_id: int) -> int:
        tree = self._descendant_tree(project_id)
        return self.db.execute(select(func.max(tree.c.level))).scalar() or 0

    def ancestors(self, project_id: int) -> list[Project]:
        """Parent first, then grandparent, up to the root."""
        chain = self._ancestor_chain(project_id)
        stmt = select(Project).join(chain, Project.id == chain.c.id).order_by(chain.c.level.asc())
        return list(self.db.scalars(stmt))

    def depth(self, project_id: int) -> int:
        chain = self._ancestor_chain(project_id)
        stmt = (
            select(func.count(Project.id))
            .select_from(Project)
            .join(chain, Project.id == chain.c.id)
        )
        return self.db.execute(stmt).scalar() or 0

    def append_history(
        self,
        *,
        project_id: int,
        user_id: int,
        action: str,
        previous_points: int | None = None,
        new_points: int | None = None,
        notes: str | None = None,
    ) -> ProjectHistory:
        if action not in HISTORY_ACTIONS:
            raise ValueError(f"Unknown history action: {action}")
        entry = ProjectHistory(
            project_id=project_id,
            user_id=user_id,
            action=action,
            previous_points=previous_points,
            new_points=new_points,
            notes=notes,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def history(self, project_id: int) -> list[ProjectHistory]:
        return (
            self.db.query(ProjectHistory)
            .filter(ProjectHistory.project_id == project_id)
            .order_by(ProjectHistory.created_at.desc(), ProjectHistory.id.desc())
            .all()
        )

    def history_count(self, project_id: int, action: str | None = None) -> int:
        query = self.db.query(func.count(ProjectHistory.id)).filter(
            ProjectHistory.project_id == project_id
        )
        if action is not None:
            query = query.filter(ProjectHistory.action == action)
        return query.scalar() or 0

    def _descendant_tree(self, project_id: int):
        tree = (
            select(Project.id.label("id"), literal(1, Integer).label("level"))
            .where(Project.parent_id == project_id)
            .where(Project.is_deleted.is_(False))
            .cte("descendant_tree", recursive=True)
        )
        child = aliased(Project)
        return tree.union_all(
            select(child.id, tree.c.level + 1)
            .where(child.parent_id == tree.c.id)
            .where(child.is_deleted.is_(False))
            .where(tree.c.level < self.max_depth)
        )

    def _ancestor_chain(self, project_id: int):
        chain = (
            select(Project.parent_id.label("id"), literal(1, Integer).label("level"))
            .where(Project.id == project_id)
            .cte("ancestor_chain", recursive=True)
        )
        parent = aliased(Project)
        return chain.union_all(
            select(parent.parent_id, chain.c.level + 1)
            .where(parent.id == chain.c.id)
            .where(chain.c.level < self.max_depth)
        )
