"""Pydantic schemas for groups."""

from pydantic import BaseModel, field_validator
from typing import List

GROUP_COLORS = ["#FF6B6B", "#4ECDC4", "#45B7D1", "#FFA502", "#A55EEA", "#2ED573"]


class GroupCreate(BaseModel):
    """Créer un groupe: nom, membres sélectionnés, couleur"""
    group_name: str
    member_ids: List[str]
    color: str

    @field_validator("group_name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Group name is required.")
        return value.strip()

    @field_validator("member_ids")
    @classmethod
    def at_least_one_member(cls, value: List[str]) -> List[str]:
        members = [member for member in dict.fromkeys(value) if member]
        if not members:
            raise ValueError("Select at least one member.")
        for member in members:
            if "/" in member:
                raise ValueError(f"Invalid id: {member!r}")
        return members

    @field_validator("color")
    @classmethod
    def color_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Please choose a color.")
        # palette fixe du formulaire
        if value.upper() not in GROUP_COLORS:
            raise ValueError(f"Color must be one of {', '.join(GROUP_COLORS)}")
        return value.upper()


class GroupSummary(BaseModel):
    id: str
    name: str
    group_name: str = ""
    color: str = ""
