import itertools

import pytest

from projects.errors import (
    CircularReferenceError,
    CrossCampaignParentError,
    MaxDepthExceededError,
    NotFound,
)
from projects.hierarchy import HierarchyValidator
from projects.schemas import ProjectCreate
from projects.store import ProjectStore


def _create(store, campaign_id, character_id, name, parent_id=None):
    return store.create(
        ProjectCreate(name=name, goal_points=10, character_id=character_id, parent_id=parent_id),
        campaign_id=campaign_id,
        created_by_user_id=1,
    )


def _chain(store, world, length, parent_id=None):
    projects = []
    for index in range(length):
        project = _create(store, world.campaign_id, world.c1, f"Step {index}", parent_id)
        projects.append(project)
        parent_id = project.id
    return projects


def test_root_placement_is_always_valid(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        validator = HierarchyValidator(store)
        assert validator.validate_parent(world.campaign_id, None) is None


def test_missing_parent(session_factory, world) -> None:
    with session_factory() as db:
        validator = HierarchyValidator(ProjectStore(db))
        with pytest.raises(NotFound):
            validator.validate_parent(world.campaign_id, 999)


def test_deleted_parent_counts_as_missing(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        parent = _create(store, world.campaign_id, world.c1, "Gone")
        store.soft_delete(parent.id)
        with pytest.raises(NotFound):
            HierarchyValidator(store).validate_parent(world.campaign_id, parent.id)


def test_parent_from_another_campaign(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        foreign = _create(store, world.other_campaign_id, world.c3, "Foreign")
        with pytest.raises(CrossCampaignParentError):
            HierarchyValidator(store).validate_parent(world.campaign_id, foreign.id)


def test_self_parent_is_a_cycle(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        project = _create(store, world.campaign_id, world.c1, "Loop")
        with pytest.raises(CircularReferenceError):
            HierarchyValidator(store).validate_parent(world.campaign_id, project.id, project.id)


def test_descendant_parent_is_a_cycle(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        root, child, grandchild = _chain(store, world, 3)
        validator = HierarchyValidator(store)
        with pytest.raises(CircularReferenceError):
            validator.validate_parent(world.campaign_id, grandchild.id, root.id)
        with pytest.raises(CircularReferenceError):
            validator.validate_parent(world.campaign_id, child.id, root.id)


def test_depth_limit_allows_max_and_rejects_one_more(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        validator = HierarchyValidator(store, max_depth=5)
        chain = _chain(store, world, 6)
        assert store.depth(chain[-1].id) == 5

        with pytest.raises(MaxDepthExceededError):
            validator.validate_parent(world.campaign_id, chain[-1].id)
        assert validator.validate_parent(world.campaign_id, chain[-2].id).id == chain[-2].id


def test_reparent_counts_the_moved_subtree(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        validator = HierarchyValidator(store, max_depth=5)
        target_chain = _chain(store, world, 4)
        subtree = _chain(store, world, 3)

        # Subtree root would sit at depth 3 with leaves at depth 5.
        validator.validate_parent(world.campaign_id, target_chain[-2].id, subtree[0].id)
        with pytest.raises(MaxDepthExceededError):
            validator.validate_parent(world.campaign_id, target_chain[-1].id, subtree[0].id)


def test_cross_campaign_is_reported_before_depth(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        validator = HierarchyValidator(store, max_depth=1)
        foreign_root = _create(store, world.other_campaign_id, world.c3, "Root")
        foreign_leaf = _create(store, world.other_campaign_id, world.c3, "Leaf", foreign_root.id)
        with pytest.raises(CrossCampaignParentError):
            validator.validate_parent(world.campaign_id, foreign_leaf.id)


def test_exhaustive_reparenting_never_creates_cycles(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        validator = HierarchyValidator(store, max_depth=5)
        projects = [_create(store, world.campaign_id, world.c1, f"Node {i}") for i in range(5)]

        for project, candidate in itertools.permutations(projects + [None], 2):
            if project is None:
                continue
            candidate_id = candidate.id if candidate is not None else None
            try:
                validator.validate_parent(world.campaign_id, candidate_id, project.id)
            except (CircularReferenceError, MaxDepthExceededError):
                continue
            store.update_fields(project, parent_id=candidate_id)

        for project in projects:
            seen = set()
            current = project
            while current is not None:
                assert current.id not in seen
                seen.add(current.id)
                current = store.get(current.parent_id) if current.parent_id else None
            assert store.depth(project.id) <= 5
