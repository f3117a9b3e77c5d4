from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from app.core.config import settings
from app.core.errors import Unauthenticated

def create_access_token(user_id: str, email: str) ->str:

    #crée un token d'accès JWT de 15 minutes
    payload = {
        "user_id": user_id,
        "email":email,
        "exp": datetime.utcnow() + timedelta(minutes=settings.JWT_EXPIRE_MIN),
        "type":"access"
    }
    token=jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")
    return token

def create_refresh_token(user_id: str, email: str) -> str:
    #crée un token de rafraîchissement JWT au bout de 30 jours 
    payload = {
        "user_id": user_id,
        "email":email,
        "exp": datetime.utcnow() + timedelta(minutes=settings.JWT_REFRESH_EXPIRE_MIN),
        "type":"refresh"
    }
    token=jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")
    return token

def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
        return payload
    except JWTError:
        return None
    
def decode_token(token: str) -> Optional[str]:
    payload = verify_token(token)
    if payload is None or payload.get("type") != "access":
        return None
    return payload.get("user_id")


class TokenIdentityProvider:
    """
    Fournisseur d'identité: transforme un token d'accès en id utilisateur.

    Le coeur ne gère ni session ni stockage de credentials, il appelle juste
    get_current_identity() et reçoit un id ou une erreur Unauthenticated.
    """

    def __init__(self, token: Optional[str]):
        self.token = token

    @classmethod
    def from_header(cls, authorization: Optional[str]) -> "TokenIdentityProvider":
        if not authorization:
            return cls(None)
        return cls(authorization.replace("Bearer ", ""))

    async def get_current_identity(self) -> str:
        if not self.token:
            raise Unauthenticated("Missing token")
        user_id = decode_token(self.token)
        if not user_id:
            raise Unauthenticated("Invalid token")
        return user_id
