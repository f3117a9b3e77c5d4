from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.deps import get_store
from app.core.security import create_access_token, create_refresh_token, verify_token
from app.core.store import DocumentStore, USERS, new_document_id
from app.models.credential import Credential
from app.schemas.user import UserCreate, UserResponse, LoginRequest, TokenResponse
from app.services.relationship_service import create_user_document
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/signup", response_model=UserResponse)
async def signup(user_data: UserCreate, db: Session = Depends(get_db), store: DocumentStore = Depends(get_store)):
    """Créer un nouvel utilisateur (credentials + document users/<id>)"""
    
    # Vérifie si l'email existe déjà
    existing_user = db.query(Credential).filter(Credential.email == user_data.email).first()
    if existing_user:
        raise HTTPException(status_code=400, detail="Email déjà utilisé")
    
    # Vérifie si le username existe déjà
    existing_username = await store.query(USERS, "username", "==", user_data.username)
    if existing_username:
        raise HTTPException(status_code=400, detail="Username déjà utilisé")
    
    # Crée les credentials, l'id sert aussi d'id au document user
    credential = Credential(id=new_document_id(), email=user_data.email)
    credential.set_password(user_data.password)
    
    db.add(credential)
    db.commit()
    db.refresh(credential)

    try:
        await create_user_document(
            store,
            credential.id,
            email=user_data.email,
            username=user_data.username,
            first_name=user_data.firstName,
            last_name=user_data.lastName,
        )
    except Exception:
        logger.error(f"Credential {credential.id} created but user document failed")
        raise
    
    return UserResponse(
        id=credential.id,
        email=user_data.email,
        username=user_data.username,
        firstName=user_data.firstName,
        lastName=user_data.lastName,
    )

@router.post("/login", response_model=TokenResponse)
def login(credentials: LoginRequest, db: Session = Depends(get_db)):
    """Se connecter et recevoir les tokens"""
    
    # Cherche l'utilisateur avec son mail
    credential = db.query(Credential).filter(Credential.email == credentials.email).first()
    if not credential:
        raise HTTPException(status_code=401, detail="Email ou password incorrect")
    
    # Vérifie le mdp
    if not credential.verify_password(credentials.password):
        raise HTTPException(status_code=401, detail="Email ou password incorrect")
    
    # Crée les tokens
    access_token = create_access_token(credential.id, credential.email)
    refresh_token = create_refresh_token(credential.id, credential.email)
    
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer"
    }

@router.post("/refresh", response_model=TokenResponse)
def refresh(refresh_token: str, db: Session = Depends(get_db)):
    """Utiliser un refresh_token pour obtenir un nouvel access_token"""
    
    # Vérifie le refresh_token
    payload = verify_token(refresh_token)
    if not payload or payload.get("type") != "refresh":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")
    
    user_id = payload.get("user_id")
    credential = db.query(Credential).filter(Credential.id == user_id).first()
    if not credential:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    
    # Crée un nouveau access_token
    access_token = create_access_token(credential.id, credential.email)
    
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer"
    }
