"""
Document schemas for API serialization.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from core.schema_base import HTTPSchemaModel
from db import DocumentType


class DocumentRead(HTTPSchemaModel):
    """Schema for reading document metadata."""
    id: UUID
    intervention_id: UUID
    document_type: DocumentType
    original_filename: str
    stored_filename: str
    file_size: int
    mime_type: str
    checksum: str
    description: Optional[str] = None
    uploaded_by: UUID
    created_at: datetime


class DocumentUrlRead(HTTPSchemaModel):
    document_id: UUID
    url: str
    expires_in: int
