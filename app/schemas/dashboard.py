from pydantic import BaseModel
from typing import List, Optional

from app.schemas.group import GroupSummary
from app.schemas.task import ResolvedTask


class DashboardView(BaseModel):
    user_id: str
    first_name: str
    last_name: str = ""
    groups: List[GroupSummary]
    tasks: List[ResolvedTask]


class ViewMessage(BaseModel):
    """Message poussé sur la websocket à chaque changement d'état"""
    state: str
    generation: int
    view: Optional[dict] = None
    error: Optional[str] = None
    redirect: Optional[str] = None


class ReconcileResponse(BaseModel):
    tasks_checked: int
    groups_checked: int
    references_added: int
    references_pruned: int
