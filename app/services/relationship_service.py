"""
Maintenance des relations bidirectionnelles entre users, groups et tasks.

C'est le SEUL module qui écrit dans les tableaux de back-références:
- users.created_tasks   <- tasks.creator
- users.assigned_tasks  <- tasks.assignees
- users.assigned_groups <- groups.group_members

Le store n'a pas de transaction multi-documents: chaque création est une suite
d'étapes (saga). Si une étape échoue après l'écriture du document principal,
on lève PartialWriteFailure et on loggue de quoi réparer à la main (ou via
reconcile()). Les appends sont des unions idempotentes: un append rejoué est
sans effet.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from app.core.errors import ChoreError, DocumentNotFound, PartialWriteFailure
from app.core.store import (
    DocumentStore,
    Ref,
    SERVER_TIMESTAMP,
    GROUPS,
    TASKS,
    USERS,
    parse_timestamp,
    same_reference,
)
from app.schemas.group import GroupCreate
from app.schemas.task import TaskCreate, TaskUpdate

logger = logging.getLogger(__name__)

CREATED_TASKS = "created_tasks"
ASSIGNED_TASKS = "assigned_tasks"
ASSIGNED_GROUPS = "assigned_groups"


class WriteSaga:
    """Exécute les étapes d'une écriture multi-documents en les journalisant"""

    def __init__(self, entity: str, entity_id: Optional[str] = None, action: str = "create"):
        self.entity = entity
        self.entity_id = entity_id
        self.action = action
        self.completed: List[str] = []

    async def step(self, name: str, awaitable):
        try:
            result = await awaitable
        except ChoreError as e:
            if not self.completed:
                logger.error(f"Failed to {self.action} {self.entity}: step '{name}' failed: {e}")
                raise
            logger.error(
                f"Partial write on {self.entity} {self.entity_id}: step '{name}' failed "
                f"after [{', '.join(self.completed)}]: {e}"
            )
            raise PartialWriteFailure(
                self.entity, self.entity_id, name, self.completed, cause=e, action=self.action
            ) from e
        self.completed.append(name)
        logger.info(f"{self.action} {self.entity} {self.entity_id or ''}: {name} ok")
        return result


def _as_refs(value: Any, collection: str) -> List[Ref]:
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    refs = []
    for item in items:
        try:
            refs.append(Ref.of(item, collection))
        except ValueError:
            logger.warning(f"Skipping malformed {collection} reference: {item!r}")
    return refs


async def _retract(store: DocumentStore, user_ref: Ref, field: str, value: Ref) -> bool:
    """Retire une back-référence, sans échouer si l'utilisateur n'existe plus"""
    try:
        await store.array_remove(user_ref, field, value)
        return True
    except DocumentNotFound:
        logger.info(f"{user_ref.path} is gone, nothing to retract from {field}")
        return False
    except ChoreError as e:
        logger.warning(f"Could not retract {value.path} from {user_ref.path}.{field}: {e}")
        return False


# ============ USERS ============

async def create_user_document(
    store: DocumentStore,
    user_id: str,
    email: str,
    username: str,
    first_name: str = "",
    last_name: str = "",
) -> None:
    await store.set(Ref(USERS, user_id), {
        "email": email,
        "username": username,
        "firstName": first_name,
        "lastName": last_name,
        "createdAt": SERVER_TIMESTAMP,
        CREATED_TASKS: [],
        ASSIGNED_TASKS: [],
        ASSIGNED_GROUPS: [],
    })
    logger.info(f"User document created: {user_id}")


# ============ TASKS ============

async def create_task(store: DocumentStore, creator_id: str, task_data: TaskCreate) -> str:
    """
    Crée une tâche puis ses back-références.

    1. ids -> Ref
    2. due_date -> timestamp (ou None)
    3. insert du document tasks/<id> (is_done = False)
    4. union dans assigned_tasks de chaque assigné
    5. union dans created_tasks du créateur
    Les étapes 3 à 5 ne sont pas atomiques.
    """
    creator_ref = Ref.of(creator_id, USERS)
    assignee_refs = [Ref.of(assignee, USERS) for assignee in task_data.assignees]
    group_ref = Ref.of(task_data.group, GROUPS)
    due_date = parse_timestamp(task_data.due_date)

    saga = WriteSaga("task")
    task_id = await saga.step("insert task", store.add(TASKS, {
        "description": task_data.description,
        "creator": creator_ref,
        "assignees": assignee_refs,
        "group": group_ref,
        "due_date": due_date,
        "is_done": False,
        "priority": task_data.priority,
        "createdAt": SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
    }))
    saga.entity_id = task_id
    task_ref = Ref(TASKS, task_id)

    for assignee_ref in assignee_refs:
        await saga.step(
            f"append to {assignee_ref.path}.{ASSIGNED_TASKS}",
            store.append_unique(assignee_ref, ASSIGNED_TASKS, task_ref),
        )

    await saga.step(
        f"append to {creator_ref.path}.{CREATED_TASKS}",
        store.append_unique(creator_ref, CREATED_TASKS, task_ref),
    )

    return task_id


async def update_task(store: DocumentStore, task_id: str, task_data: TaskUpdate) -> None:
    """
    Édition complète d'une tâche.

    Les assignés ajoutés reçoivent la tâche dans assigned_tasks, les assignés
    retirés la perdent. Un changement de groupe ne réécrit que tasks.group:
    il n'y a pas de tableau groups.tasks, les tâches d'un groupe se lisent
    par requête group == ref.
    """
    task_ref = Ref(TASKS, task_id)
    snapshot = await store.get(task_ref)
    if not snapshot.exists:
        raise DocumentNotFound(task_ref.path)

    changes = task_data.model_dump(exclude_unset=True)
    fields: Dict[str, Any] = {}

    if changes.get("description") is not None:
        fields["description"] = changes["description"]
    if changes.get("group"):
        fields["group"] = Ref.of(changes["group"], GROUPS)
    if "due_date" in changes:
        fields["due_date"] = parse_timestamp(changes["due_date"])
    if "priority" in changes:
        fields["priority"] = changes["priority"]

    added: List[Ref] = []
    removed: List[Ref] = []
    if changes.get("assignees") is not None:
        new_refs = [Ref.of(assignee, USERS) for assignee in changes["assignees"]]
        old_refs = _as_refs(snapshot.get("assignees"), USERS)
        fields["assignees"] = new_refs
        added = [ref for ref in new_refs if ref not in old_refs]
        removed = [ref for ref in old_refs if ref not in new_refs]

    fields["updatedAt"] = SERVER_TIMESTAMP

    saga = WriteSaga("task", task_id, action="update")
    await saga.step("update task", store.update(task_ref, fields))

    for assignee_ref in added:
        await saga.step(
            f"append to {assignee_ref.path}.{ASSIGNED_TASKS}",
            store.append_unique(assignee_ref, ASSIGNED_TASKS, task_ref),
        )

    for assignee_ref in removed:
        await _retract(store, assignee_ref, ASSIGNED_TASKS, task_ref)


async def toggle_completion(store: DocumentStore, task_id: str) -> bool:
    """Inverse is_done, et uniquement is_done. Retourne la nouvelle valeur."""
    # lecture et négation sous le même verrou d'écriture
    after = await store.update_from(
        Ref(TASKS, task_id),
        lambda data: {"is_done": not bool(data.get("is_done"))},
    )
    return after["is_done"]


async def delete_task(store: DocumentStore, task_id: str) -> None:
    """
    Supprime la tâche puis retire sa référence du créateur et des assignés.

    Le nettoyage est best-effort: une référence restée en place sera ignorée
    à la lecture et retirée par reconcile().
    """
    task_ref = Ref(TASKS, task_id)
    snapshot = await store.get(task_ref)
    if not snapshot.exists:
        raise DocumentNotFound(task_ref.path)

    await store.delete(task_ref)
    logger.info(f"Task deleted: {task_id}")

    for creator_ref in _as_refs(snapshot.get("creator"), USERS):
        await _retract(store, creator_ref, CREATED_TASKS, task_ref)
    for assignee_ref in _as_refs(snapshot.get("assignees"), USERS):
        await _retract(store, assignee_ref, ASSIGNED_TASKS, task_ref)


# ============ GROUPS ============

async def create_group(store: DocumentStore, creator_id: str, group_data: GroupCreate) -> str:
    """Crée un groupe (le créateur en est toujours membre) puis les assigned_groups"""
    member_ids = list(dict.fromkeys([*group_data.member_ids, creator_id]))
    member_refs = [Ref.of(member_id, USERS) for member_id in member_ids]
    creator_ref = Ref.of(creator_id, USERS)

    saga = WriteSaga("group")
    group_id = await saga.step("insert group", store.add(GROUPS, {
        "group_name": group_data.group_name,
        "color": group_data.color,
        "creator": creator_ref,
        "group_members": member_refs,
        "createdAt": SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
    }))
    saga.entity_id = group_id
    group_ref = Ref(GROUPS, group_id)

    for member_ref in member_refs:
        await saga.step(
            f"append to {member_ref.path}.{ASSIGNED_GROUPS}",
            store.append_unique(member_ref, ASSIGNED_GROUPS, group_ref),
        )

    return group_id


# ============ RÉCONCILIATION ============

async def reconcile(store: DocumentStore, prune: bool = True) -> Dict[str, int]:
    """
    Balayage de réparation:
    - remet les back-références manquantes (tâches orphelines, groupes)
    - si prune, retire celles qui pointent vers un document supprimé
    Idempotent: un second passage ne change rien.
    """
    report = {"tasks_checked": 0, "groups_checked": 0, "references_added": 0, "references_pruned": 0}

    tasks = await store.all(TASKS)
    groups = await store.all(GROUPS)
    users = await store.all(USERS)
    users_by_id = {user.id: user for user in users}

    expected: Dict[str, Dict[str, List[Ref]]] = defaultdict(lambda: defaultdict(list))
    for task in tasks:
        report["tasks_checked"] += 1
        for creator_ref in _as_refs(task.get("creator"), USERS):
            expected[creator_ref.id][CREATED_TASKS].append(task.ref)
        for assignee_ref in _as_refs(task.get("assignees"), USERS):
            expected[assignee_ref.id][ASSIGNED_TASKS].append(task.ref)
    for group in groups:
        report["groups_checked"] += 1
        for member_ref in _as_refs(group.get("group_members"), USERS):
            expected[member_ref.id][ASSIGNED_GROUPS].append(group.ref)

    for user_id, fields in expected.items():
        user = users_by_id.get(user_id)
        if user is None:
            logger.warning(f"Reconcile: users/{user_id} is referenced but does not exist")
            continue
        for field, refs in fields.items():
            current = user.get(field) or []
            if not isinstance(current, list):
                current = [current]
            for ref in dict.fromkeys(refs):
                if any(same_reference(existing, ref) for existing in current):
                    continue
                await store.append_unique(user.ref, field, ref)
                report["references_added"] += 1
                logger.info(f"Reconcile: added {ref.path} to {user.ref.path}.{field}")

    if prune:
        existing_ids = {TASKS: {task.id for task in tasks}, GROUPS: {group.id for group in groups}}
        targets = ((CREATED_TASKS, TASKS), (ASSIGNED_TASKS, TASKS), (ASSIGNED_GROUPS, GROUPS))
        for user in users:
            for field, collection in targets:
                items = user.get(field) or []
                for item in items if isinstance(items, list) else [items]:
                    try:
                        ref = Ref.of(item, collection)
                    except ValueError:
                        # mauvaise collection ou valeur illisible: jamais résoluble
                        ref = None
                    if ref is not None and ref.id in existing_ids[collection]:
                        continue
                    await store.array_remove(user.ref, field, item)
                    report["references_pruned"] += 1
                    logger.info(f"Reconcile: pruned {item!r} from {user.ref.path}.{field}")

    logger.info(f"Reconcile done: {report}")
    return report
