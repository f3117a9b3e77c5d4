"""Pydantic schemas for task request/response validation."""

from enum import Enum
from pydantic import BaseModel, field_validator
from typing import Optional, List, Literal

from app.core.store import parse_timestamp
from app.schemas.user import UserSummary
from app.schemas.group import GroupSummary

Priority = Literal["Low", "Medium", "High"]


class TaskStatusFilter(str, Enum):
    """Politique de filtre sur is_done pour les listes de tâches"""
    all = "all"
    incomplete = "incomplete"
    done = "done"

    def keeps(self, is_done: bool) -> bool:
        if self is TaskStatusFilter.incomplete:
            return not is_done
        if self is TaskStatusFilter.done:
            return is_done
        return True


def _check_ids(values: List[str]) -> List[str]:
    # un id nu: la collection est toujours imposée par le champ
    for value in values:
        if "/" in value:
            raise ValueError(f"Invalid id: {value!r}")
    return values


def _blank_priority(value):
    # le formulaire envoie "" quand aucune priorité n'est choisie
    return None if value == "" else value


def _check_due_date(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    try:
        parse_timestamp(value)
    except ValueError:
        raise ValueError("due_date must be an ISO-8601 date")
    return value


class TaskCreate(BaseModel):
    description: str
    assignees: List[str]
    group: str
    due_date: Optional[str] = None
    priority: Optional[Priority] = None

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Description is required.")
        return value

    @field_validator("assignees")
    @classmethod
    def at_least_one_assignee(cls, value: List[str]) -> List[str]:
        assignees = [assignee for assignee in dict.fromkeys(value) if assignee]
        if not assignees:
            raise ValueError("Select an assignee.")
        return _check_ids(assignees)

    @field_validator("group")
    @classmethod
    def group_required(cls, value: str) -> str:
        if not value:
            raise ValueError("Select a group.")
        return _check_ids([value])[0]

    @field_validator("priority", mode="before")
    @classmethod
    def no_priority(cls, value):
        return _blank_priority(value)

    @field_validator("due_date")
    @classmethod
    def due_date_is_iso(cls, value: Optional[str]) -> Optional[str]:
        return _check_due_date(value)


class TaskUpdate(BaseModel):
    """Édition complète: tous les champs sont optionnels"""

    description: Optional[str] = None
    assignees: Optional[List[str]] = None
    group: Optional[str] = None
    due_date: Optional[str] = None
    priority: Optional[Priority] = None

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("Description is required.")
        return value

    @field_validator("assignees")
    @classmethod
    def at_least_one_assignee(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        assignees = [assignee for assignee in dict.fromkeys(value) if assignee]
        if not assignees:
            raise ValueError("Select an assignee.")
        return _check_ids(assignees)

    @field_validator("group")
    @classmethod
    def group_is_id(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return value
        return _check_ids([value])[0]

    @field_validator("priority", mode="before")
    @classmethod
    def no_priority(cls, value):
        return _blank_priority(value)

    @field_validator("due_date")
    @classmethod
    def due_date_is_iso(cls, value: Optional[str]) -> Optional[str]:
        return _check_due_date(value)


class TaskCreated(BaseModel):
    id: str


class ToggleResponse(BaseModel):
    id: str
    is_done: bool


class ResolvedTask(BaseModel):
    """Tâche hydratée: créateur, assignés et groupe résolus"""

    id: str
    description: str
    creator: UserSummary
    assignees: List[UserSummary]
    group: GroupSummary
    due_date: str
    is_done: bool
    priority: Optional[str] = None
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None
