from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql

from db import build_session_factory, create_schema
from models import Campaign, Character, Project
from projects.errors import CircularReferenceError, NotFound, ValidationError
from projects.hierarchy import HierarchyValidator
from projects.schemas import ProjectCreate
from projects.store import ProjectStore, campaign_lock_statement, validate_points


def _create(store, world, name, parent_id=None, goal=100, current=0):
    return store.create(
        ProjectCreate(
            name=name,
            goal_points=goal,
            current_points=current,
            character_id=world.c1,
            parent_id=parent_id,
        ),
        campaign_id=world.campaign_id,
        created_by_user_id=world.gm_id,
        display_order=store.next_display_order(world.campaign_id, parent_id),
    )


def _chain(store, world, length):
    projects = []
    parent_id = None
    for index in range(length):
        project = _create(store, world, f"Level {index}", parent_id=parent_id)
        projects.append(project)
        parent_id = project.id
    return projects


def test_validate_points_rejects_bad_combinations() -> None:
    validate_points(0, 0)
    validate_points(10, 10)
    with pytest.raises(ValidationError):
        validate_points(-1, 0)
    with pytest.raises(ValidationError):
        validate_points(10, -1)
    with pytest.raises(ValidationError):
        validate_points(10, 11)


def test_create_rejects_progress_above_goal(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        with pytest.raises(ValidationError):
            _create(store, world, "Too far", goal=10, current=20)


def test_get_hides_deleted_projects(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        project = _create(store, world, "Watchtower")
        store.soft_delete(project.id)

        assert store.get(project.id) is None
        assert store.get(project.id, include_deleted=True).is_deleted is True


def test_tree_reads_follow_parent_links(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        root, child, grandchild, leaf = _chain(store, world, 4)
        sibling = _create(store, world, "Sibling", parent_id=root.id)

        descendant_ids = [project.id for project in store.descendants(root.id)]
        assert descendant_ids == [child.id, sibling.id, grandchild.id, leaf.id]
        assert [project.id for project in store.ancestors(leaf.id)] == [
            grandchild.id,
            child.id,
            root.id,
        ]
        assert store.depth(root.id) == 0
        assert store.depth(leaf.id) == 3
        assert store.max_descendant_depth(root.id) == 3
        assert store.max_descendant_depth(leaf.id) == 0


def test_soft_delete_cascades_to_whole_subtree(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        root, child, grandchild, leaf = _chain(store, world, 4)
        unrelated = _create(store, world, "Unrelated")

        deleted = store.soft_delete(root.id)

        assert sorted(deleted) == sorted([root.id, child.id, grandchild.id, leaf.id])
        remaining = store.find_by_campaign(world.campaign_id)
        assert [project.id for project in remaining] == [unrelated.id]
        deleted_ids = set(deleted)
        everything = store.find_by_campaign(world.campaign_id, include_deleted=True)
        assert all(
            project.parent_id not in deleted_ids for project in everything if not project.is_deleted
        )


def test_soft_delete_missing_project(session_factory, world) -> None:
    with session_factory() as db:
        with pytest.raises(NotFound):
            ProjectStore(db).soft_delete(12345)


def test_find_by_campaign_filters_completed(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        open_project = _create(store, world, "Open")
        done = _create(store, world, "Done")
        store.update_fields(done, is_completed=True)

        assert {p.id for p in store.find_by_campaign(world.campaign_id)} == {
            open_project.id,
            done.id,
        }
        open_only = store.find_by_campaign(world.campaign_id, include_completed=False)
        assert [p.id for p in open_only] == [open_project.id]


def test_display_order_appends_to_sibling_group(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        first = _create(store, world, "First")
        second = _create(store, world, "Second")
        child = _create(store, world, "Child", parent_id=first.id)

        assert (first.display_order, second.display_order) == (0, 1)
        assert child.display_order == 0
        assert [p.id for p in store.siblings(world.campaign_id, None)] == [first.id, second.id]
        assert store.next_display_order(world.campaign_id, first.id) == 1


def test_character_usage_counts_only_live_projects(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        kept = _create(store, world, "Kept")
        dropped = _create(store, world, "Dropped")
        store.soft_delete(dropped.id)

        assert store.count_active_for_character(world.c1) == 1
        assert [p.id for p in store.find_by_character(world.c1)] == [kept.id]
        assert store.count_active_for_character(world.c2) == 0


def test_update_fields_refuses_immutable_columns(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        project = _create(store, world, "Fixed owner")
        with pytest.raises(ValueError):
            store.update_fields(project, character_id=world.c2)
        with pytest.raises(ValueError):
            store.update_fields(project, current_points=5)


def test_history_is_newest_first_and_typed(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db)
        project = _create(store, world, "Logged")
        store.append_history(project_id=project.id, user_id=1, action="created", new_points=0)
        store.append_history(
            project_id=project.id,
            user_id=1,
            action="updated_progress",
            previous_points=0,
            new_points=10,
        )

        assert [entry.action for entry in store.history(project.id)] == [
            "updated_progress",
            "created",
        ]
        assert store.history_count(project.id) == 2
        assert store.history_count(project.id, action="created") == 1
        with pytest.raises(ValueError):
            store.append_history(project_id=project.id, user_id=1, action="renamed")


def test_traversal_is_bounded_on_corrupt_cycles(session_factory, world) -> None:
    with session_factory() as db:
        store = ProjectStore(db, max_depth=5)
        first = _create(store, world, "First")
        second = _create(store, world, "Second", parent_id=first.id)
        # Bypass validation to simulate a cycle written by hand.
        db.get(Project, first.id).parent_id = second.id
        db.flush()

        assert len(store.descendants(first.id)) <= 5
        assert store.depth(first.id) <= 5


def test_campaign_lock_is_select_for_update() -> None:
    sql = str(campaign_lock_statement(7).compile(dialect=postgresql.dialect()))
    assert "FOR UPDATE" in sql
    assert "campaigns" in sql


def test_second_writer_sees_committed_reparent_after_locking(tmp_path) -> None:
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'campaign.db'}")
    create_schema(engine)
    factory = build_session_factory(engine)
    with factory() as db:
        campaign = Campaign(name="Shared table")
        db.add(campaign)
        db.flush()
        character = Character(campaign_id=campaign.id, owner_user_id=1, name="Ysolde")
        db.add(character)
        db.flush()
        world = SimpleNamespace(campaign_id=campaign.id, c1=character.id, gm_id=1)
        store = ProjectStore(db)
        first_id = _create(store, world, "A").id
        second_id = _create(store, world, "B").id
        db.commit()

    late = factory()
    try:
        late_store = ProjectStore(late)
        stale_first = late_store.get(first_id)
        assert stale_first.parent_id is None

        with factory() as early:
            early_store = ProjectStore(early)
            early_store.lock_campaign(world.campaign_id)
            HierarchyValidator(early_store).validate_parent(world.campaign_id, second_id, first_id)
            early_store.update_fields(early_store.get(first_id), parent_id=second_id)
            early.commit()

        late_store.lock_campaign(world.campaign_id)
        assert stale_first.parent_id == second_id
        with pytest.raises(CircularReferenceError):
            HierarchyValidator(late_store).validate_parent(world.campaign_id, first_id, second_id)
    finally:
        late.close()
        engine.dispose()
