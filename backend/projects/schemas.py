from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ProjectCreate(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    name: str
    goal_points: int
    character_id: int
    description: str | None = None
    current_points: int = 0
    parent_id: int | None = None


class ProjectUpdate(BaseModel):
    """Editable project details.

    ``character_id`` is fixed at creation, so it is not a field here and
    ``extra="forbid"`` rejects it.
    Use ``model_fields_set`` to tell "parent_id omitted" from "parent_id=None"
    (promote to root).
    """

    model_config = ConfigDict(extra="forbid", strict=True)

    name: str | None = None
    description: str | None = None
    goal_points: int | None = None
    parent_id: int | None = None

    @property
    def reparent_requested(self) -> bool:
        return "parent_id" in self.model_fields_set


class ProgressUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    current_points: int | None = None
    increment_by: int | None = None
    notes: str | None = None


class CompleteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    notes: str | None = None


class ReorderRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    new_order: int | None = None
    move_after: int | None = None
