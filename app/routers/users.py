from fastapi import APIRouter, Depends, HTTPException, status
from typing import List

from app.core.deps import get_current_user_id, get_store
from app.core.errors import DocumentNotFound
from app.core.store import DocumentStore
from app.schemas.user import UserOption, UserResponse
from app.services.listing_service import get_user_profile, list_users

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserResponse)
async def me(store: DocumentStore = Depends(get_store), user_id: str = Depends(get_current_user_id)):
    try:
        profile = await get_user_profile(store, user_id)
    except DocumentNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    return UserResponse(
        id=profile["id"],
        email=profile.get("email") or "",
        username=profile.get("username") or "",
        firstName=profile.get("firstName") or "",
        lastName=profile.get("lastName") or "",
    )


@router.get("", response_model=List[UserOption])
async def all_users(store: DocumentStore = Depends(get_store), user_id: str = Depends(get_current_user_id)):
    """Tous les users, pour choisir les membres d'un groupe"""
    return await list_users(store)
