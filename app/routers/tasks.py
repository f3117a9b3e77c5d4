from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import List

from app.core.deps import get_current_user_id, get_store
from app.core.errors import DocumentNotFound, ReferenceNotFound
from app.core.store import DocumentStore
from app.schemas.task import (
    ResolvedTask,
    TaskCreate,
    TaskCreated,
    TaskStatusFilter,
    TaskUpdate,
    ToggleResponse,
)
from app.services.listing_service import (
    get_task,
    list_individual_tasks,
    list_upcoming_tasks_for_user,
)
from app.services.relationship_service import (
    create_task,
    delete_task,
    toggle_completion,
    update_task,
)

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.post("", response_model=TaskCreated, status_code=status.HTTP_201_CREATED)
async def create(
    task_data: TaskCreate,
    store: DocumentStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    # le créateur est toujours l'utilisateur courant
    task_id = await create_task(store, user_id, task_data)
    return {"id": task_id}


@router.get("/upcoming", response_model=List[ResolvedTask])
async def upcoming(
    store: DocumentStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
    status_filter: TaskStatusFilter = Query(TaskStatusFilter.all)
):
    return await list_upcoming_tasks_for_user(store, user_id, status_filter)


@router.get("/mine", response_model=List[ResolvedTask])
async def mine(
    store: DocumentStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
    status_filter: TaskStatusFilter = Query(TaskStatusFilter.all)
):
    return await list_individual_tasks(store, user_id, status_filter)


@router.get("/{task_id}", response_model=ResolvedTask)
async def read(
    task_id: str,
    store: DocumentStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    try:
        return await get_task(store, task_id)
    except ReferenceNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")


@router.put("/{task_id}", response_model=ResolvedTask)
async def update(
    task_id: str,
    task_data: TaskUpdate,
    store: DocumentStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    try:
        await update_task(store, task_id, task_data)
        return await get_task(store, task_id)
    except (DocumentNotFound, ReferenceNotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")


@router.post("/{task_id}/toggle", response_model=ToggleResponse)
async def toggle(
    task_id: str,
    store: DocumentStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    try:
        is_done = await toggle_completion(store, task_id)
    except DocumentNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return {"id": task_id, "is_done": is_done}


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete(
    task_id: str,
    store: DocumentStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    try:
        await delete_task(store, task_id)
    except DocumentNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
