import os
import sys
from pathlib import Path

# Ajoute la racine du projet au PYTHONPATH EN PREMIER
sys.path.insert(0, str(Path(__file__).parent.parent))

# SQLite pour les tests, AVANT d'importer app (sinon engine postgres)
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import asyncio
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///./test.db"
test_engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL, 
    connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

# PATCH: remplacer le engine et SessionLocal du core.database AVANT d'importer app
import app.core.database
app.core.database.engine = test_engine
app.core.database.SessionLocal = TestingSessionLocal

# Maintenant importer app (qui utilisera notre engine SQLite)
from app.core.database import Base
from app.core.security import create_access_token
from app.main import app
from app.services.relationship_service import create_user_document


@pytest.fixture(autouse=True)
def setup_teardown():
    """Crée et nettoie la DB + les abonnements avant/après chaque test"""
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    app.state.store.close()
    yield
    app.state.store.close()
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def client():
    """Client de test FastAPI"""
    from fastapi.testclient import TestClient
    return TestClient(app)


@pytest.fixture
def store():
    """Le document store de l'app (même instance que les routes)"""
    return app.state.store


def run(coro):
    """Exécute une coroutine de service depuis un test synchrone"""
    return asyncio.run(coro)


def seed_user(store, user_id, first_name="", last_name="", username=None, email=None):
    """Crée directement un document users/<id> (sans passer par /auth)"""
    run(create_user_document(
        store,
        user_id,
        email=email if email is not None else f"{user_id}@example.com",
        username=username if username is not None else user_id,
        first_name=first_name,
        last_name=last_name,
    ))
    return user_id


def auth_headers(user_id, email=None):
    token = create_access_token(user_id, email or f"{user_id}@example.com")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(client):
    """Inscrit un user via /auth/signup et retourne (user_id, headers)"""
    def _make(username, first_name="", last_name=""):
        email = f"{username}@example.com"
        response = client.post("/auth/signup", json={
            "email": email,
            "username": username,
            "password": "password123",
            "firstName": first_name,
            "lastName": last_name,
        })
        assert response.status_code == 200, response.text
        user_id = response.json()["id"]
        return user_id, auth_headers(user_id, email)
    return _make
