"""
Intervention document endpoints.

Uploads are multipart and rate limited per client address.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.document import DocumentRead, DocumentUrlRead
from core.config import settings
from core.database import get_session
from core.dependencies import get_current_actor
from core.rate_limit import limiter
from core.schema_base import SuccessResponse
from db import DocumentType
from services.document_service import DocumentService
from services.intervention_lifecycle import Actor

router = APIRouter()


@router.post(
    "/intervention/{intervention_id}/documents",
    response_model=SuccessResponse[DocumentRead],
    status_code=201,
)
@limiter.limit(settings.rate_limit.upload_limit)
async def upload_document(
    request: Request,  # Must be present for the rate limiter
    intervention_id: UUID,
    file: UploadFile = File(...),
    document_type: DocumentType = Form(DocumentType.OTHER, alias="documentType"),
    description: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """
    Upload a document for an intervention.

    The binary is stored first; if the metadata row cannot be written the
    stored object is removed again.
    """
    content = await file.read()
    document = await DocumentService.upload_document(
        db,
        actor,
        intervention_id,
        filename=file.filename or "",
        content=content,
        mime_type=file.content_type,
        document_type=document_type,
        description=description,
    )
    return SuccessResponse(data=DocumentRead.model_validate(document))


@router.get(
    "/intervention/{intervention_id}/documents",
    response_model=SuccessResponse[List[DocumentRead]],
)
async def list_documents(
    intervention_id: UUID,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    documents = await DocumentService.list_documents(db, actor, intervention_id)
    return SuccessResponse(data=[DocumentRead.model_validate(doc) for doc in documents])


@router.get("/documents/{document_id}/url", response_model=SuccessResponse[DocumentUrlRead])
async def get_document_url(
    document_id: UUID,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """Signed, time-limited download link."""
    link = await DocumentService.get_download_url(db, actor, document_id)
    return SuccessResponse(
        data=DocumentUrlRead(document_id=link.document.id, url=link.url, expires_in=link.expires_in)
    )


@router.delete("/documents/{document_id}", response_model=SuccessResponse[DocumentRead])
async def delete_document(
    document_id: UUID,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """Soft delete a document (uploader or team manager)."""
    document = await DocumentService.delete_document(db, actor, document_id)
    return SuccessResponse(data=DocumentRead.model_validate(document))
