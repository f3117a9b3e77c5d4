from fastapi import APIRouter, Depends, Query

from app.core.deps import get_current_user_id, get_store
from app.core.store import DocumentStore
from app.schemas.dashboard import ReconcileResponse
from app.services.relationship_service import reconcile

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.post("/reconcile", response_model=ReconcileResponse)
async def run_reconcile(
    prune: bool = Query(True),
    store: DocumentStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    """
    Répare les back-références: tâches orphelines (append manquant après une
    création partielle) et références vers des documents supprimés.
    """
    return await reconcile(store, prune=prune)
