"""
Listes "scalables": on part des tableaux de back-références du user (ou du
groupe) au lieu de scanner toute la collection. Coût = nb de groupes/tâches
du user, pas taille de la collection.
"""

import asyncio
import logging
import math
from typing import Any, Dict, List

from app.core.errors import DocumentNotFound
from app.core.store import DocumentStore, Ref, GROUPS, TASKS, USERS
from app.schemas.group import GroupSummary
from app.schemas.task import ResolvedTask, TaskStatusFilter
from app.schemas.user import UserOption, UserSummary
from app.services.hydration_service import due_date_of, hydrate_task
from app.services.resolver_service import fetch_document, group_summary, load_document

logger = logging.getLogger(__name__)


def _references(value: Any) -> List[Any]:
    if not value:
        return []
    # ancien schéma: une seule référence au lieu d'un tableau
    return value if isinstance(value, list) else [value]


def _sort_key(raw_task: Dict[str, Any]) -> float:
    due_date = due_date_of(raw_task)
    return due_date.timestamp() if due_date else math.inf


async def hydrate_sorted(
    store: DocumentStore,
    raw_tasks: List[Dict[str, Any]],
    status: TaskStatusFilter = TaskStatusFilter.all,
) -> List[ResolvedTask]:
    """
    Filtre sur is_done, trie par échéance croissante (sans date = en dernier,
    tri stable sinon) puis hydrate en parallèle.
    """
    kept = [raw for raw in raw_tasks if status.keeps(bool(raw.get("is_done")))]
    kept.sort(key=_sort_key)
    return list(await asyncio.gather(*(hydrate_task(store, raw) for raw in kept)))


async def get_user_profile(store: DocumentStore, user_id: str) -> Dict[str, Any]:
    """Document brut du user (lève DocumentNotFound s'il n'existe pas)"""
    snapshot = await store.get(Ref(USERS, user_id))
    if not snapshot.exists:
        raise DocumentNotFound(snapshot.ref.path)
    return {**snapshot.data, "id": snapshot.id}


async def list_groups_for_user(store: DocumentStore, user_id: str) -> List[GroupSummary]:
    snapshot = await store.get(Ref(USERS, user_id))
    group_refs = _references(snapshot.get("assigned_groups"))
    if not group_refs:
        logger.info(f"No assigned groups for user {user_id}")
        return []

    results = await asyncio.gather(*(fetch_document(store, ref, GROUPS) for ref in group_refs))
    return [
        GroupSummary(**group_summary(data))
        for data in results
        if data is not None
    ]


async def list_upcoming_tasks_for_user(
    store: DocumentStore,
    user_id: str,
    status: TaskStatusFilter = TaskStatusFilter.all,
) -> List[ResolvedTask]:
    """
    Toutes les tâches de assigned_tasks qui existent encore, hydratées et triées.

    "upcoming" = assignées à ce user. Le filtre sur is_done est explicite
    (status), par défaut on garde tout.
    """
    snapshot = await store.get(Ref(USERS, user_id))
    task_refs = _references(snapshot.get("assigned_tasks"))
    if not task_refs:
        logger.info(f"No assigned tasks for user {user_id}")
        return []

    results = await asyncio.gather(*(fetch_document(store, ref, TASKS) for ref in task_refs))
    raw_tasks = [data for data in results if data is not None]
    return await hydrate_sorted(store, raw_tasks, status)


async def list_group_members(store: DocumentStore, group_id: str) -> List[UserSummary]:
    group = await fetch_document(store, group_id, GROUPS)
    if group is None:
        logger.info(f"Group not found: {group_id}")
        return []

    member_refs = _references(group.get("group_members"))
    results = await asyncio.gather(*(fetch_document(store, ref, USERS) for ref in member_refs))
    return [
        UserSummary(
            id=data["id"],
            name=f"{data.get('firstName') or ''} {data.get('lastName') or ''}",
            firstName=data.get("firstName") or "",
            lastName=data.get("lastName") or "",
            email=data.get("email") or "",
            username=data.get("username") or "",
        )
        for data in results
        if data is not None
    ]


async def _query_tasks(store: DocumentStore, field: str, op: str, value: Ref) -> List[Dict[str, Any]]:
    snapshots = await store.query(TASKS, field, op, value)
    return [{**snap.data, "id": snap.id} for snap in snapshots]


async def list_group_tasks(
    store: DocumentStore,
    group_id: str,
    status: TaskStatusFilter = TaskStatusFilter.all,
) -> List[ResolvedTask]:
    # Task -> Group reste une requête directe (pas de tableau groups.tasks)
    raw_tasks = await _query_tasks(store, "group", "==", Ref(GROUPS, group_id))
    return await hydrate_sorted(store, raw_tasks, status)


async def list_individual_tasks(
    store: DocumentStore,
    user_id: str,
    status: TaskStatusFilter = TaskStatusFilter.all,
) -> List[ResolvedTask]:
    raw_tasks = await _query_tasks(store, "assignees", "array-contains", Ref(USERS, user_id))
    return await hydrate_sorted(store, raw_tasks, status)


async def get_task(store: DocumentStore, task_id: str) -> ResolvedTask:
    raw = await load_document(store, Ref(TASKS, task_id))
    return await hydrate_task(store, raw)


def _option_name(data: Dict[str, Any]) -> str:
    full_name = f"{data.get('firstName') or ''} {data.get('lastName') or ''}".strip()
    return data.get("username") or full_name or data.get("email") or "Unknown"


async def list_users(store: DocumentStore) -> List[UserOption]:
    snapshots = await store.all(USERS)
    return [UserOption(id=snap.id, name=_option_name(snap.data)) for snap in snapshots]


async def load_dashboard(
    store: DocumentStore,
    user_id: str,
    status: TaskStatusFilter = TaskStatusFilter.all,
) -> Dict[str, Any]:
    """Profil + groupes + tâches du user, en une passe"""
    profile, groups, tasks = await asyncio.gather(
        get_user_profile(store, user_id),
        list_groups_for_user(store, user_id),
        list_upcoming_tasks_for_user(store, user_id, status),
    )
    return {
        "user_id": user_id,
        "first_name": profile.get("firstName") or profile.get("username") or "User",
        "last_name": profile.get("lastName") or "",
        "groups": groups,
        "tasks": tasks,
    }
