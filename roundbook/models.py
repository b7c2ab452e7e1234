"""
Storage model for the SQL-backed document store.

Clients, service plans, jobs and completed-week records are stored as JSON
documents keyed by (collection, id), mirroring the Firestore layout so both
backends serve the same data shape.
"""

from sqlalchemy import JSON, Column, DateTime, Index, String
from sqlalchemy.sql import func

from .database import Base


class StoredDocument(Base):
    """One document in a named collection"""

    __tablename__ = "documents"

    collection = Column(String(64), primary_key=True)
    id = Column(String(128), primary_key=True)

    # Copy of data["ownerId"] so tenant-scoped queries hit an index
    owner_id = Column(String(128), nullable=True, index=True)

    data = Column(JSON, nullable=False, default=dict)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (Index("ix_documents_collection_owner", "collection", "owner_id"),)
