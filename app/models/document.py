"""Stored document model"""

from sqlalchemy import Column, String, DateTime, JSON
from datetime import datetime
from app.core.database import Base


class StoredDocument(Base):
    __tablename__ = "documents"

    # pas de jointure: chaque document est une ligne (collection, id) + un blob JSON
    collection = Column(String, primary_key=True)
    id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
