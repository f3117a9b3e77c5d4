"""
Tests de maintenance des back-références (création, édition, suppression,
réconciliation).
"""

import asyncio
import pytest
from unittest.mock import patch

from app.core.errors import DocumentNotFound, PartialWriteFailure, TransportFailure
from app.core.store import Ref, GROUPS, TASKS, USERS
from app.schemas.group import GroupCreate
from app.schemas.task import TaskCreate, TaskUpdate
from app.services.relationship_service import (
    create_group,
    create_task,
    delete_task,
    reconcile,
    toggle_completion,
    update_task,
)
from conftest import run, seed_user


def _user(store, user_id):
    return run(store.get(Ref(USERS, user_id)))


def _task(store, task_id):
    return run(store.get(Ref(TASKS, task_id)))


def _new_task(store, creator="a", assignees=("b",), group="g1", **extra):
    return run(create_task(store, creator, TaskCreate(
        description=extra.pop("description", "Passer l'aspirateur"),
        assignees=list(assignees),
        group=group,
        **extra,
    )))


# ============ CREATE TASK ============

def test_create_task_links_creator_and_assignees(store):
    for user_id in ("a", "b", "c"):
        seed_user(store, user_id)

    task_id = _new_task(store, creator="a", assignees=("b", "c"))
    task_ref = Ref(TASKS, task_id)

    assert task_ref in _user(store, "a").get("created_tasks")
    assert task_ref in _user(store, "b").get("assigned_tasks")
    assert task_ref in _user(store, "c").get("assigned_tasks")
    assert task_ref not in _user(store, "a").get("assigned_tasks")


def test_create_task_document_fields(store):
    seed_user(store, "a")
    seed_user(store, "b")

    task_id = _new_task(store, due_date="2025-01-01", priority="High")
    task = _task(store, task_id)

    assert task.get("creator") == Ref(USERS, "a")
    assert task.get("assignees") == [Ref(USERS, "b")]
    assert task.get("group") == Ref(GROUPS, "g1")
    assert task.get("is_done") is False
    assert task.get("priority") == "High"
    assert task.get("due_date").date().isoformat() == "2025-01-01"
    assert task.get("createdAt") is not None


def test_create_task_without_due_date_stores_null(store):
    seed_user(store, "a")
    seed_user(store, "b")
    task_id = _new_task(store)
    assert _task(store, task_id).get("due_date") is None


def test_create_task_self_assigned(store):
    seed_user(store, "a")
    task_id = _new_task(store, creator="a", assignees=("a",))
    user = _user(store, "a")
    assert user.get("created_tasks") == [Ref(TASKS, task_id)]
    assert user.get("assigned_tasks") == [Ref(TASKS, task_id)]


def test_create_task_validation():
    with pytest.raises(ValueError):
        TaskCreate(description="   ", assignees=["b"], group="g1")
    with pytest.raises(ValueError):
        TaskCreate(description="x", assignees=[], group="g1")
    with pytest.raises(ValueError):
        TaskCreate(description="x", assignees=["b"], group="g1", due_date="demain")
    with pytest.raises(ValueError):
        TaskCreate(description="x", assignees=["b"], group="g1", priority="Urgent")


def test_create_task_rejects_paths_to_other_collections():
    with pytest.raises(ValueError):
        TaskCreate(description="x", assignees=["groups/g1"], group="g1")
    with pytest.raises(ValueError):
        TaskCreate(description="x", assignees=["b"], group="users/b")
    with pytest.raises(ValueError):
        TaskUpdate(assignees=["tasks/t1"])
    with pytest.raises(ValueError):
        GroupCreate(group_name="Coloc", member_ids=["groups/g1"], color="#FFA502")


def test_create_task_never_writes_onto_a_group(store):
    """Un assigné 'groups/<id>' ne doit rien écrire dans le document du groupe"""
    seed_user(store, "a")
    run(store.set(Ref(GROUPS, "g1"), {"group_name": "Coloc", "group_members": [Ref(USERS, "a")]}))
    payload = TaskCreate.model_construct(
        description="x", assignees=["groups/g1"], group="g1", due_date=None, priority=None
    )

    with pytest.raises(ValueError):
        run(create_task(store, "a", payload))

    assert run(store.get(Ref(GROUPS, "g1"))).get("assigned_tasks") is None
    assert run(store.all(TASKS)) == []


def test_blank_priority_means_no_priority(store):
    assert TaskCreate(description="x", assignees=["b"], group="g1", priority="").priority is None
    assert TaskUpdate(priority="").priority is None

    seed_user(store, "a")
    seed_user(store, "b")
    task_id = _new_task(store, priority="")
    assert _task(store, task_id).get("priority") is None


def test_partial_write_leaves_orphan_task(store):
    """L'append du créateur échoue: la tâche existe mais n'est pas dans created_tasks"""
    seed_user(store, "a")
    seed_user(store, "b")
    original = store.append_unique

    async def flaky_append(ref, field, value):
        if field == "created_tasks":
            raise TransportFailure("network down")
        return await original(ref, field, value)

    with patch.object(store, "append_unique", flaky_append):
        with pytest.raises(PartialWriteFailure) as exc_info:
            _new_task(store)

    failure = exc_info.value
    assert failure.entity == "task"
    assert "users/a.created_tasks" in failure.failed_step
    assert failure.completed_steps[0] == "insert task"
    assert _task(store, failure.entity_id).exists
    assert Ref(TASKS, failure.entity_id) in _user(store, "b").get("assigned_tasks")
    assert _user(store, "a").get("created_tasks") == []


def test_partial_write_assignee_without_user_document(store):
    seed_user(store, "a")
    with pytest.raises(PartialWriteFailure) as exc_info:
        _new_task(store, assignees=("ghost",))
    assert isinstance(exc_info.value.cause, DocumentNotFound)


def test_failed_insert_is_not_partial(store):
    seed_user(store, "a")
    with patch.object(store, "add", side_effect=TransportFailure("down")):
        with pytest.raises(TransportFailure):
            _new_task(store)


# ============ CREATE GROUP ============

def test_create_group_links_all_members(store):
    """A crée G avec {A, B}: les deux ont G dans assigned_groups"""
    seed_user(store, "a")
    seed_user(store, "b")

    group_id = run(create_group(store, "a", GroupCreate(group_name="Coloc", member_ids=["a", "b"], color="#FFA502")))

    assert Ref(GROUPS, group_id) in _user(store, "a").get("assigned_groups")
    assert Ref(GROUPS, group_id) in _user(store, "b").get("assigned_groups")


def test_create_group_creator_is_implicit_member(store):
    seed_user(store, "a")
    seed_user(store, "b")

    group_id = run(create_group(store, "a", GroupCreate(group_name="Coloc", member_ids=["b"], color="#FFA502")))
    group = run(store.get(Ref(GROUPS, group_id)))

    assert group.get("group_members") == [Ref(USERS, "b"), Ref(USERS, "a")]
    assert group.get("creator") == Ref(USERS, "a")
    assert Ref(GROUPS, group_id) in _user(store, "a").get("assigned_groups")


def test_create_group_validation():
    with pytest.raises(ValueError):
        GroupCreate(group_name=" ", member_ids=["b"], color="#FFA502")
    with pytest.raises(ValueError):
        GroupCreate(group_name="Coloc", member_ids=[], color="#FFA502")
    with pytest.raises(ValueError):
        GroupCreate(group_name="Coloc", member_ids=["b"], color="")


# ============ TOGGLE / UPDATE / DELETE ============

def test_toggle_completion_only_flips_is_done(store):
    seed_user(store, "a")
    seed_user(store, "b")
    task_id = _new_task(store, due_date="2025-01-01", priority="Low")
    before = dict(_task(store, task_id).data)

    assert run(toggle_completion(store, task_id)) is True
    after = dict(_task(store, task_id).data)

    assert after.pop("is_done") is True
    assert before.pop("is_done") is False
    assert after == before

    assert run(toggle_completion(store, task_id)) is False


def test_toggle_missing_task(store):
    with pytest.raises(DocumentNotFound):
        run(toggle_completion(store, "nope"))


def test_concurrent_toggles_never_lose_a_flip(store):
    seed_user(store, "a")
    seed_user(store, "b")
    task_id = _new_task(store)

    async def toggle_four_times():
        return await asyncio.gather(*(toggle_completion(store, task_id) for _ in range(4)))

    results = run(toggle_four_times())

    assert sorted(results) == [False, False, True, True]
    assert _task(store, task_id).get("is_done") is False


def test_update_task_moves_assignee_back_references(store):
    for user_id in ("a", "b", "c"):
        seed_user(store, user_id)
    task_id = _new_task(store, assignees=("b",))
    task_ref = Ref(TASKS, task_id)

    run(update_task(store, task_id, TaskUpdate(assignees=["c"], description="Laver les vitres", priority="Medium")))

    task = _task(store, task_id)
    assert task.get("assignees") == [Ref(USERS, "c")]
    assert task.get("description") == "Laver les vitres"
    assert task.get("priority") == "Medium"
    assert task_ref in _user(store, "c").get("assigned_tasks")
    assert task_ref not in _user(store, "b").get("assigned_tasks")


def test_update_task_group_change_only_rewrites_group(store):
    seed_user(store, "a")
    seed_user(store, "b")
    task_id = _new_task(store, group="g1")

    run(update_task(store, task_id, TaskUpdate(group="g2")))

    task = _task(store, task_id)
    assert task.get("group") == Ref(GROUPS, "g2")
    assert task.get("assignees") == [Ref(USERS, "b")]


def test_update_task_clears_due_date(store):
    seed_user(store, "a")
    seed_user(store, "b")
    task_id = _new_task(store, due_date="2025-01-01")

    run(update_task(store, task_id, TaskUpdate(due_date=None)))

    assert _task(store, task_id).get("due_date") is None


def test_update_missing_task(store):
    with pytest.raises(DocumentNotFound):
        run(update_task(store, "nope", TaskUpdate(description="x")))


def test_delete_task_retracts_back_references(store):
    seed_user(store, "a")
    seed_user(store, "b")
    task_id = _new_task(store)

    run(delete_task(store, task_id))

    assert _task(store, task_id).exists is False
    assert _user(store, "a").get("created_tasks") == []
    assert _user(store, "b").get("assigned_tasks") == []


def test_delete_task_with_deleted_assignee(store):
    seed_user(store, "a")
    seed_user(store, "b")
    task_id = _new_task(store)
    run(store.delete(Ref(USERS, "b")))

    run(delete_task(store, task_id))

    assert _user(store, "a").get("created_tasks") == []


# ============ RECONCILE ============

def test_reconcile_repairs_orphan_and_prunes_dangling(store):
    seed_user(store, "a")
    seed_user(store, "b")
    # tâche orpheline: écrite sans ses back-références
    run(store.set(Ref(TASKS, "orphan"), {
        "description": "Orpheline",
        "creator": Ref(USERS, "a"),
        "assignees": [Ref(USERS, "b")],
        "group": Ref(GROUPS, "g1"),
        "is_done": False,
    }))
    # référence vers une tâche supprimée
    run(store.append_unique(Ref(USERS, "b"), "assigned_tasks", Ref(TASKS, "deleted")))

    report = run(reconcile(store))

    assert report["tasks_checked"] == 1
    assert report["references_added"] == 2
    assert report["references_pruned"] == 1
    assert _user(store, "a").get("created_tasks") == [Ref(TASKS, "orphan")]
    assert _user(store, "b").get("assigned_tasks") == [Ref(TASKS, "orphan")]


def test_reconcile_prunes_reference_to_wrong_collection(store):
    seed_user(store, "b")
    # un groupe rangé par erreur dans assigned_tasks
    run(store.append_unique(Ref(USERS, "b"), "assigned_tasks", Ref(GROUPS, "g1")))

    report = run(reconcile(store))

    assert report["references_pruned"] == 1
    assert _user(store, "b").get("assigned_tasks") == []


def test_reconcile_repairs_group_membership(store):
    seed_user(store, "a")
    seed_user(store, "b")
    run(store.set(Ref(GROUPS, "g1"), {"group_name": "Coloc", "group_members": [Ref(USERS, "a"), Ref(USERS, "b")]}))

    report = run(reconcile(store))

    assert report["groups_checked"] == 1
    assert _user(store, "b").get("assigned_groups") == [Ref(GROUPS, "g1")]


def test_reconcile_is_idempotent(store):
    seed_user(store, "a")
    seed_user(store, "b")
    _new_task(store)
    run(create_group(store, "a", GroupCreate(group_name="Coloc", member_ids=["b"], color="#FFA502")))

    first = run(reconcile(store))
    second = run(reconcile(store))

    assert first["references_added"] == 0
    assert first["references_pruned"] == 0
    assert second == first


def test_reconcile_without_prune_keeps_dangling(store):
    seed_user(store, "b")
    run(store.append_unique(Ref(USERS, "b"), "assigned_tasks", Ref(TASKS, "deleted")))

    report = run(reconcile(store, prune=False))

    assert report["references_pruned"] == 0
    assert _user(store, "b").get("assigned_tasks") == [Ref(TASKS, "deleted")]
