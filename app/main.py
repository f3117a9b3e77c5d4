import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from app.core import database
from app.core.config import settings
from app.core.database import Base
from app.core.errors import ChoreError, PartialWriteFailure, TransportFailure, Unauthenticated, DocumentNotFound, ReferenceNotFound
from app.core.store import DocumentStore
from app.models import credential, document  # noqa: F401 (tables)
from app.routers import health, auth, users, groups, tasks, dashboard, maintenance

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Init DB
Base.metadata.create_all(bind=database.engine)

app = FastAPI(
    title="Chores API",
    version="0.4.0"
)

# Un seul store par app: les abonnements live y sont enregistrés
app.state.store = DocumentStore(database.SessionLocal)


@app.exception_handler(ChoreError)
async def chore_error_handler(request: Request, exc: ChoreError):
    if isinstance(exc, Unauthenticated):
        return JSONResponse(status_code=401, content={"detail": str(exc)})
    if isinstance(exc, (DocumentNotFound, ReferenceNotFound)):
        return JSONResponse(status_code=404, content={"detail": str(exc)})
    if isinstance(exc, PartialWriteFailure):
        # l'état partiel reste en place, il est loggué pour réparation
        return JSONResponse(
            status_code=500,
            content={"detail": f"Failed to {exc.action} {exc.entity}", "entity_id": exc.entity_id},
        )
    if isinstance(exc, TransportFailure):
        return JSONResponse(status_code=503, content={"detail": "Store unavailable, please retry", "retryable": True})
    logger.error(f"Unhandled error: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.on_event("shutdown")
def close_store():
    app.state.store.close()


# Routes
app.include_router(health.router, prefix="/health")
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(groups.router)
app.include_router(tasks.router)
app.include_router(dashboard.router)
app.include_router(maintenance.router)
