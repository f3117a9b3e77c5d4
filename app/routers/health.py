from fastapi import APIRouter, Depends

from app.core.deps import get_store
from app.core.store import DocumentStore

router = APIRouter()

@router.get("/z")
def healthz(store: DocumentStore = Depends(get_store)):
    # Check si l'API est up (+ nb d'abonnements live ouverts)
    return {"status": "ok", "live_subscriptions": store.listener_count}
