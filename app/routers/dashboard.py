"""
Dashboard: vue one-shot (GET) et vue live (websocket).

Sur la websocket, chaque état committé par le synchroniseur est poussé en JSON:
{"state": "loading" | "ready" | "error", "generation": n, "view": {...}, "error": ...}
Le client peut envoyer "retry" pour relancer un chargement après une erreur.
Sans identité valide: message {"state": "unauthenticated", "redirect": "/auth/login"}
puis fermeture (code 4401).
"""

import asyncio
import contextlib
import logging
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from typing import Optional

from app.core.deps import get_current_user_id, get_store
from app.core.errors import DocumentNotFound
from app.core.security import TokenIdentityProvider
from app.core.store import DocumentStore
from app.schemas.dashboard import DashboardView
from app.schemas.task import TaskStatusFilter
from app.services.listing_service import load_dashboard
from app.services.sync_service import (
    DashboardSynchronizer,
    GroupTasksSynchronizer,
    ViewState,
    ViewSynchronizer,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

UNAUTHENTICATED_CLOSE_CODE = 4401


def _pump_done(task: asyncio.Task) -> None:
    """Remonte dans les logs une poussée websocket morte en route"""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Dashboard socket pump failed: {error!r}")


@router.get("", response_model=DashboardView)
async def dashboard(
    store: DocumentStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
    status_filter: TaskStatusFilter = Query(TaskStatusFilter.all)
):
    try:
        return await load_dashboard(store, user_id, status_filter)
    except DocumentNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")


async def _serve(websocket: WebSocket, synchronizer: ViewSynchronizer, queue: asyncio.Queue):
    await websocket.accept()
    await synchronizer.start()

    if synchronizer.state is ViewState.unauthenticated:
        await websocket.send_json(synchronizer.message())
        await websocket.close(code=UNAUTHENTICATED_CLOSE_CODE)
        return

    async def pump():
        while True:
            message = await queue.get()
            await websocket.send_json(message)

    pump_task = asyncio.create_task(pump())
    pump_task.add_done_callback(_pump_done)
    try:
        while True:
            text = await websocket.receive_text()
            if text == "retry":
                await synchronizer.retry()
    except WebSocketDisconnect:
        logger.debug("Dashboard socket disconnected")
    finally:
        # perte de focus: on ferme l'abonnement, les passes en vol seront jetées
        synchronizer.stop()
        if not pump_task.done():
            pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump_task


@router.websocket("/ws")
async def dashboard_ws(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    status_filter: TaskStatusFilter = Query(TaskStatusFilter.all)
):
    queue: asyncio.Queue = asyncio.Queue()
    synchronizer = DashboardSynchronizer(
        get_store(websocket),
        TokenIdentityProvider(token),
        status=status_filter,
        on_update=queue.put_nowait,
    )
    await _serve(websocket, synchronizer, queue)


@router.websocket("/groups/{group_id}/ws")
async def group_tasks_ws(
    websocket: WebSocket,
    group_id: str,
    token: Optional[str] = Query(None),
    status_filter: TaskStatusFilter = Query(TaskStatusFilter.all)
):
    queue: asyncio.Queue = asyncio.Queue()
    synchronizer = GroupTasksSynchronizer(
        get_store(websocket),
        TokenIdentityProvider(token),
        group_id,
        status=status_filter,
        on_update=queue.put_nowait,
    )
    await _serve(websocket, synchronizer, queue)
