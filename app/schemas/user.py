from pydantic import BaseModel, EmailStr
from typing import Optional

class UserCreate(BaseModel):
    email: EmailStr
    username: str
    password: str
    firstName: str = ""
    lastName: str = ""

class UserResponse(BaseModel):
    id: str
    email: str
    username: str
    firstName: str = ""
    lastName: str = ""

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"

class UserSummary(BaseModel):
    """Utilisateur résolu pour l'affichage (créateur, assignés, membres)"""
    id: str
    name: str
    firstName: str = ""
    lastName: str = ""
    email: str = ""
    username: str = ""

class UserOption(BaseModel):
    """Entrée du sélecteur de membres"""
    id: str
    name: str
