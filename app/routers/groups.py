from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import List

from app.core.deps import get_current_user_id, get_store
from app.core.store import DocumentStore, Ref, GROUPS
from app.schemas.group import GroupCreate, GroupSummary
from app.schemas.task import ResolvedTask, TaskStatusFilter
from app.schemas.user import UserSummary
from app.services.listing_service import list_group_members, list_group_tasks, list_groups_for_user
from app.services.relationship_service import create_group
from app.services.resolver_service import group_summary

router = APIRouter(prefix="/groups", tags=["groups"])


async def _existing_group(store: DocumentStore, group_id: str) -> dict:
    snapshot = await store.get(Ref(GROUPS, group_id))
    if not snapshot.exists:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Group not found")
    return {**snapshot.data, "id": snapshot.id}


@router.post("", response_model=GroupSummary, status_code=status.HTTP_201_CREATED)
async def create(
    group_data: GroupCreate,
    store: DocumentStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    group_id = await create_group(store, user_id, group_data)
    return group_summary({"id": group_id, "group_name": group_data.group_name, "color": group_data.color})


@router.get("", response_model=List[GroupSummary])
async def my_groups(
    store: DocumentStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    return await list_groups_for_user(store, user_id)


@router.get("/{group_id}/members", response_model=List[UserSummary])
async def members(
    group_id: str,
    store: DocumentStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    await _existing_group(store, group_id)
    return await list_group_members(store, group_id)


@router.get("/{group_id}/tasks", response_model=List[ResolvedTask])
async def group_tasks(
    group_id: str,
    store: DocumentStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
    status_filter: TaskStatusFilter = Query(TaskStatusFilter.all)
):
    await _existing_group(store, group_id)
    return await list_group_tasks(store, group_id, status_filter)
