from __future__ import annotations

import logging

from models import Project
from projects.errors import (
    CircularReferenceError,
    CrossCampaignParentError,
    MaxDepthExceededError,
    NotFound,
)
from projects.settings import DEFAULT_MAX_DEPTH
from projects.store import ProjectStore

logger = logging.getLogger(__name__)


class HierarchyValidator:
    """Decides whether a project may hang under a given parent.

    Depth counts parent links: a root sits at depth 0 and no project may sit
    deeper than ``max_depth``.
    """

    def __init__(self, store: ProjectStore, *, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.store = store
        self.max_depth = max_depth

    def validate_parent(
        self,
        campaign_id: int,
        candidate_parent_id: int | None,
        project_id: int | None = None,
    ) -> Project | None:
        """Return the resolved parent (or ``None`` for a root) if the move is legal."""
        if candidate_parent_id is None:
            self._check_depth(-1, project_id)
            return None

        parent = self.store.get(candidate_parent_id)
        if parent is None:
            raise NotFound(f"Parent project {candidate_parent_id} not found.")
        if parent.campaign_id != campaign_id:
            raise CrossCampaignParentError("Parent project must be in the same campaign.")

        if project_id is not None:
            if candidate_parent_id == project_id:
                raise CircularReferenceError("Project cannot be its own parent.")
            ancestor_ids = {ancestor.id for ancestor in self.store.ancestors(candidate_parent_id)}
            if project_id in ancestor_ids:
                raise CircularReferenceError(
                    "Circular reference detected: a project cannot move under its own descendant."
                )

        self._check_depth(self.store.depth(candidate_parent_id), project_id)
        return parent

    def _check_depth(self, parent_depth: int, project_id: int | None) -> None:
        subtree_depth = self.store.max_descendant_depth(project_id) if project_id else 0
        resulting = parent_depth + 1 + subtree_depth
        if resulting > self.max_depth:
            logger.debug(
                "Rejected placement: depth %s exceeds maximum %s", resulting, self.max_depth
            )
            raise MaxDepthExceededError(
                f"Maximum project depth exceeded ({self.max_depth} levels below a root).",
                max_depth=self.max_depth,
                resulting_depth=resulting,
            )
