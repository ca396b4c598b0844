from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from sqlalchemy.orm import Session

from db import store_errors
from projects.access import AccessRequest, Operation, require, resolve_role
from projects.collaborators import (
    CampaignDirectory,
    CharacterRef,
    CharacterRegistry,
    SqlCampaignDirectory,
    SqlCharacterRegistry,
)
from projects.errors import NotFound, PermissionDenied, ValidationError
from projects.hierarchy import HierarchyValidator
from projects.progress import ProgressEngine, build_tree
from projects.records import (
    HistoryRecord,
    ProgressResult,
    ProjectDetail,
    ProjectNode,
    ProjectRecord,
)
from projects.schemas import ProgressUpdate, ProjectCreate, ProjectUpdate, ReorderRequest
from projects.settings import EngineSettings, load_settings
from projects.store import ProjectStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, as asserted by the auth layer."""

    user_id: int
    is_admin: bool = False


@dataclass
class _Workspace:
    db: Session
    store: ProjectStore
    hierarchy: HierarchyValidator
    progress: ProgressEngine
    directory: CampaignDirectory
    registry: CharacterRegistry


class ProjectService:
    """Operation contract for campaign projects.

    Every operation runs in its own transaction: permission is checked first,
    then structure, then points, and only then does anything get written. Any
    error rolls the whole operation back. Operations that change the shape of a
    campaign's tree hold its campaign row lock while they validate and write.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: EngineSettings | None = None,
        *,
        directory_factory: Callable[[Session], CampaignDirectory] = SqlCampaignDirectory,
        registry_factory: Callable[[Session], CharacterRegistry] = SqlCharacterRegistry,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or load_settings()
        self.directory_factory = directory_factory
        self.registry_factory = registry_factory

    def list_projects(
        self,
        actor: Actor,
        campaign_id: int,
        *,
        include_deleted: bool = False,
        include_completed: bool = True,
        flat: bool = False,
    ) -> list[ProjectRecord] | list[ProjectNode]:
        with self._transaction() as ws:
            self._authorize(ws, actor, Operation.VIEW, campaign_id)
            rows = ws.store.find_by_campaign(
                campaign_id,
                include_deleted=include_deleted,
                include_completed=include_completed,
            )
            records = [ProjectRecord.from_row(row) for row in rows]
        if flat:
            return records
        return build_tree(records)

    def get_project(
        self,
        actor: Actor,
        project_id: int,
        *,
        campaign_id: int | None = None,
        include_history: bool = False,
        include_children: bool = False,
    ) -> ProjectDetail:
        with self._transaction() as ws:
            project = self._load_authorized(ws, actor, project_id, Operation.VIEW, campaign_id)
            history = None
            if include_history:
                history = [HistoryRecord.from_row(row) for row in ws.store.history(project.id)]
            children = None
            if include_children:
                children = [ProjectRecord.from_row(row) for row in ws.store.descendants(project.id)]
            return ProjectDetail(
                project=ProjectRecord.from_row(project),
                aggregate=ws.progress.aggregate_progress(project.id),
                history=history,
                children=children,
            )

    def create_project(self, actor: Actor, campaign_id: int, data: ProjectCreate) -> ProjectRecord:
        with self._transaction() as ws:
            self._authorize(ws, actor, Operation.CREATE, campaign_id, data.character_id)
            if ws.store.lock_campaign(campaign_id) is None:
                raise NotFound(f"Campaign {campaign_id} not found.")
            character = ws.registry.get(data.character_id)
            if character is None or character.campaign_id != campaign_id:
                raise ValidationError("Character is not part of this campaign.")
            name = _clean_name(data.name)
            if data.parent_id is not None:
                ws.hierarchy.validate_parent(campaign_id, data.parent_id)
            project = ws.store.create(
                data.model_copy(update={"name": name}),
                campaign_id=campaign_id,
                created_by_user_id=actor.user_id,
                display_order=ws.store.next_display_order(campaign_id, data.parent_id),
            )
            ws.store.append_history(
                project_id=project.id,
                user_id=actor.user_id,
                action="created",
                new_points=project.current_points,
                notes="Project created",
            )
            logger.info(
                "Created project %s (%s) in campaign %s for character %s",
                project.id,
                project.name,
                campaign_id,
                project.character_id,
            )
            return ProjectRecord.from_row(project)

    def update_project(
        self,
        actor: Actor,
        project_id: int,
        data: ProjectUpdate,
        *,
        campaign_id: int | None = None,
    ) -> ProjectRecord:
        with self._transaction() as ws:
            project = self._load_authorized(ws, actor, project_id, Operation.UPDATE, campaign_id)
            fields: dict[str, Any] = {}
            if data.name is not None:
                fields["name"] = _clean_name(data.name)
            if "description" in data.model_fields_set:
                fields["description"] = data.description
            if data.reparent_requested:
                self._lock_structure(ws, project)
            if data.reparent_requested and data.parent_id != project.parent_id:
                ws.hierarchy.validate_parent(project.campaign_id, data.parent_id, project.id)
                fields["parent_id"] = data.parent_id
                fields["display_order"] = ws.store.next_display_order(
                    project.campaign_id, data.parent_id
                )
            if data.goal_points is not None:
                ws.progress.change_goal(project, actor.user_id, data.goal_points)
            if fields:
                ws.store.update_fields(project, **fields)
            logger.info("Updated project %s by user %s", project.id, actor.user_id)
            return ProjectRecord.from_row(project)

    def update_progress(
        self,
        actor: Actor,
        project_id: int,
        data: ProgressUpdate,
        *,
        campaign_id: int | None = None,
    ) -> ProgressResult:
        with self._transaction() as ws:
            project = self._load_authorized(ws, actor, project_id, Operation.UPDATE, campaign_id)
            project = ws.progress.set_progress(
                project.id,
                actor.user_id,
                new_points=data.current_points,
                increment_by=data.increment_by,
                notes=data.notes,
            )
            auto_completed = ws.progress.check_auto_complete(project.id, actor.user_id)
            return ProgressResult(
                project=ProjectRecord.from_row(project),
                aggregate=ws.progress.aggregate_progress(project.id),
                auto_completed=auto_completed,
            )

    def complete_project(
        self,
        actor: Actor,
        project_id: int,
        notes: str | None = None,
        *,
        campaign_id: int | None = None,
    ) -> ProjectRecord:
        with self._transaction() as ws:
            project = self._load_authorized(ws, actor, project_id, Operation.UPDATE, campaign_id)
            project = ws.progress.complete(project.id, actor.user_id, notes)
            return ProjectRecord.from_row(project)

    def delete_project(
        self,
        actor: Actor,
        project_id: int,
        *,
        campaign_id: int | None = None,
    ) -> list[int]:
        with self._transaction() as ws:
            project = self._load_authorized(ws, actor, project_id, Operation.DELETE, campaign_id)
            self._lock_structure(ws, project)
            deleted_ids = ws.store.soft_delete(project.id)
            for deleted_id in deleted_ids:
                notes = "Project deleted"
                if deleted_id != project.id:
                    notes = f"Deleted with parent project {project.id}"
                ws.store.append_history(
                    project_id=deleted_id,
                    user_id=actor.user_id,
                    action="deleted",
                    notes=notes,
                )
            logger.info(
                "Deleted project %s and %s descendant(s) by user %s",
                project.id,
                len(deleted_ids) - 1,
                actor.user_id,
            )
            return deleted_ids

    def reorder_project(
        self,
        actor: Actor,
        project_id: int,
        data: ReorderRequest,
        *,
        campaign_id: int | None = None,
    ) -> list[ProjectRecord]:
        with self._transaction() as ws:
            project = self._load_authorized(ws, actor, project_id, Operation.REORDER, campaign_id)
            self._lock_structure(ws, project)
            if (data.new_order is None) == (data.move_after is None):
                raise ValidationError("Provide exactly one of new_order or move_after.")
            others = [
                sibling
                for sibling in ws.store.siblings(project.campaign_id, project.parent_id)
                if sibling.id != project.id
            ]
            if data.new_order is not None:
                position = min(max(data.new_order, 0), len(others))
            else:
                anchor_ids = [sibling.id for sibling in others]
                if data.move_after not in anchor_ids:
                    raise ValidationError("move_after must reference a sibling project.")
                position = anchor_ids.index(data.move_after) + 1
            others.insert(position, project)
            for index, sibling in enumerate(others):
                if sibling.display_order != index:
                    ws.store.update_fields(sibling, display_order=index)
            logger.info("Reordered project %s to position %s", project.id, position)
            return [ProjectRecord.from_row(sibling) for sibling in others]

    def list_character_projects(self, actor: Actor, character_id: int) -> list[ProjectRecord]:
        """Live projects of one character, most recently updated first."""
        with self._transaction() as ws:
            character = self._load_character(ws, actor, character_id, Operation.VIEW)
            return [
                ProjectRecord.from_row(row)
                for row in ws.store.find_by_character(character_id)
                if character.campaign_id is None or row.campaign_id == character.campaign_id
            ]

    def character_in_use(self, actor: Actor, character_id: int) -> bool:
        """True while any non-deleted project still references the character."""
        with self._transaction() as ws:
            self._load_character(ws, actor, character_id, Operation.UPDATE)
            return ws.store.count_active_for_character(character_id) > 0

    @contextmanager
    def _transaction(self) -> Iterator[_Workspace]:
        with store_errors(), self.session_factory() as db:
            try:
                yield self._workspace(db)
                db.commit()
            except Exception:
                db.rollback()
                raise

    def _workspace(self, db: Session) -> _Workspace:
        store = ProjectStore(db, max_depth=self.settings.max_depth)
        return _Workspace(
            db=db,
            store=store,
            hierarchy=HierarchyValidator(store, max_depth=self.settings.max_depth),
            progress=ProgressEngine(store, auto_complete=self.settings.auto_complete),
            directory=self.directory_factory(db),
            registry=self.registry_factory(db),
        )

    def _authorize(
        self,
        ws: _Workspace,
        actor: Actor,
        operation: Operation,
        campaign_id: int,
        character_id: int | None = None,
    ) -> None:
        membership_role = ws.directory.role_of(campaign_id, actor.user_id)
        owns_character = False
        if character_id is not None:
            character = ws.registry.get(character_id)
            owns_character = character is not None and character.owner_user_id == actor.user_id
        require(
            operation,
            AccessRequest(
                acting_user_id=actor.user_id,
                role=resolve_role(actor.is_admin, membership_role),
                is_campaign_member=membership_role is not None,
                owns_character=owns_character,
            ),
        )

    def _load_character(
        self,
        ws: _Workspace,
        actor: Actor,
        character_id: int,
        operation: Operation,
    ) -> CharacterRef:
        character = ws.registry.get(character_id)
        if character is None and actor.is_admin:
            raise NotFound(f"Character {character_id} not found.")
        if character is None or character.campaign_id is None:
            # Campaign-less characters are outside every campaign's access rules.
            if actor.is_admin:
                return character
            raise PermissionDenied(
                f"You do not have permission to {operation.value} this character."
            )
        self._authorize(ws, actor, operation, character.campaign_id, character.id)
        return character

    def _lock_structure(self, ws: _Workspace, project) -> None:
        ws.store.lock_campaign(project.campaign_id)
        if project.is_deleted:
            raise NotFound(f"Project {project.id} not found.")

    def _load_authorized(
        self,
        ws: _Workspace,
        actor: Actor,
        project_id: int,
        operation: Operation,
        campaign_id: int | None,
    ):
        project = ws.store.get(project_id)
        if project is None or (campaign_id is not None and project.campaign_id != campaign_id):
            # Only administrators learn that the project is missing.
            if actor.is_admin:
                raise NotFound(f"Project {project_id} not found.")
            raise PermissionDenied(f"You do not have permission to {operation.value} this project.")
        self._authorize(ws, actor, operation, project.campaign_id, project.character_id)
        return project


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Project name is required.")
    return cleaned
