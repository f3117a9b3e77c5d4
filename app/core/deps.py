from fastapi import Depends, HTTPException, Header, status
from starlette.requests import HTTPConnection
from typing import Optional

from app.core.errors import Unauthenticated
from app.core.security import TokenIdentityProvider
from app.core.store import DocumentStore


def get_store(connection: HTTPConnection) -> DocumentStore:
    """Le store est unique par application (les abonnements y sont enregistrés)"""
    return connection.app.state.store


def get_identity_provider(authorization: Optional[str] = Header(None)) -> TokenIdentityProvider:
    return TokenIdentityProvider.from_header(authorization)


async def get_current_user_id(
    provider: TokenIdentityProvider = Depends(get_identity_provider),
) -> str:
    # Check token
    try:
        return await provider.get_current_identity()
    except Unauthenticated as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
