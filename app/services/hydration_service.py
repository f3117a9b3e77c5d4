"""Hydration des tâches: références -> view model complet"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.core.store import DocumentStore, USERS, parse_timestamp, to_iso, utcnow
from app.schemas.task import ResolvedTask
from app.services.resolver_service import (
    fetch_document,
    resolve_group,
    resolve_user,
    user_summary,
)

logger = logging.getLogger(__name__)


def due_date_of(raw_task: Dict[str, Any]) -> Optional[datetime]:
    """Date d'échéance stockée, ou None si absente/illisible"""
    value = raw_task.get("due_date")
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except (AttributeError, TypeError, ValueError):
        logger.warning(f"Unreadable due_date on task {raw_task.get('id')}: {value!r}")
        return None


def _timestamp_str(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return to_iso(value)
    return value


async def _resolve_assignees(store: DocumentStore, references: List[Any]) -> List[Dict[str, Any]]:
    # fan-out: tous les assignés en parallèle, ceux qui ne résolvent pas sont retirés
    results = await asyncio.gather(*(fetch_document(store, ref, USERS) for ref in references))
    return [user_summary(data) for data in results if data is not None]


async def hydrate_task(store: DocumentStore, raw_task: Dict[str, Any]) -> ResolvedTask:
    """
    Résout creator, assignees et group d'une tâche brute.

    - creator absent -> {id: 'unknown', name: 'Unknown'}
    - assigné absent -> retiré de la liste
    - group absent   -> {name: 'Uncategorized'}
    - due_date absente -> maintenant
    Ne lève jamais pour une référence cassée.
    """
    assignee_refs = raw_task.get("assignees") or []
    if not isinstance(assignee_refs, list):
        assignee_refs = [assignee_refs]

    creator, assignees, group = await asyncio.gather(
        resolve_user(store, raw_task.get("creator")),
        _resolve_assignees(store, assignee_refs),
        resolve_group(store, raw_task.get("group")),
    )

    due_date = due_date_of(raw_task) or utcnow()

    return ResolvedTask(
        id=raw_task["id"],
        description=raw_task.get("description") or "Untitled Task",
        creator=creator,
        assignees=assignees,
        group=group,
        due_date=to_iso(due_date),
        is_done=bool(raw_task.get("is_done")),
        priority=raw_task.get("priority"),
        createdAt=_timestamp_str(raw_task.get("createdAt")),
        updatedAt=_timestamp_str(raw_task.get("updatedAt")),
    )
