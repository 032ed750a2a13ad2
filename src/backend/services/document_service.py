"""
Intervention document service.

Uploads run as a small saga: the binary is stored in MinIO first, then the
metadata row is inserted. If the insert fails the stored object is deleted
so no orphan is left behind.
"""

import hashlib
import logging
import re
import secrets
import unicodedata
from dataclasses import dataclass
from datetime import datetime
from pathlib import PurePosixPath
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.decorators import log_database_operation, transactional_database_operation
from core.exceptions import (
    DependencyFailureError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from core.logging_config import InterventionLogger
from core.metrics import document_upload_size, document_uploads, upload_compensations
from db import DocumentType, InterventionDocument, utc_now
from services import intervention_lifecycle as lifecycle
from services.intervention_lifecycle import Actor
from services.intervention_service import InterventionWorkflowService
from services.minio_service import MinIOStorageService

logger = logging.getLogger(__name__)
intervention_logger = InterventionLogger("documents")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_UNDERSCORE_RUNS = re.compile(r"_+")


def sanitize_filename(filename: str, max_length: Optional[int] = None) -> str:
    """
    Make a user-supplied filename safe to use in an object key.

    Accents are stripped, anything outside [A-Za-z0-9._-] becomes "_" and
    the stem is truncated. The extension is kept in lower case.
    """
    max_length = max_length or settings.upload.filename_max_length
    name = PurePosixPath((filename or "").replace("\\", "/")).name

    normalized = unicodedata.normalize("NFKD", name)
    ascii_name = "".join(ch for ch in normalized if not unicodedata.combining(ch))

    path = PurePosixPath(ascii_name)
    stem, ext = path.stem, path.suffix.lower()
    stem = _UNDERSCORE_RUNS.sub("_", _UNSAFE_CHARS.sub("_", stem)).strip("_.")
    ext = _UNSAFE_CHARS.sub("", ext[1:])
    ext = f".{ext}" if ext else ""

    stem = stem[:max_length] or "file"
    return f"{stem}{ext}"


def build_unique_filename(filename: str, now: Optional[datetime] = None) -> str:
    """{stem}_{YYYYMMDDHHMMSS}_{8 hex}{ext} from a sanitized filename."""
    safe = PurePosixPath(sanitize_filename(filename))
    now = now or utc_now()
    return f"{safe.stem}_{now:%Y%m%d%H%M%S}_{secrets.token_hex(4)}{safe.suffix}"


def validate_upload(filename: str, content: bytes, mime_type: Optional[str]) -> str:
    """
    Check size and type of an upload before anything is stored.

    Returns:
        The normalized MIME type

    Raises:
        ValidationFailedError: Empty, too large, unnamed or disallowed type
    """
    if not filename or not filename.strip():
        raise ValidationFailedError("A filename is required", {"field": "file"})

    size = len(content or b"")
    if size == 0:
        raise ValidationFailedError("The file is empty", {"field": "file"})
    if size > settings.upload.max_file_size:
        raise ValidationFailedError(
            f"File exceeds the maximum size of {settings.upload.max_file_size} bytes",
            {"field": "file", "size": size, "max_size": settings.upload.max_file_size},
        )

    mime = (mime_type or "").split(";")[0].strip().lower()
    if mime not in settings.upload.allowed_mime_types:
        raise ValidationFailedError(
            f"File type {mime or 'unknown'} is not allowed",
            {"field": "file", "mime_type": mime},
        )
    return mime


@dataclass
class DownloadLink:
    document: InterventionDocument
    url: str
    expires_in: int


class DocumentService:
    """Upload, list, download and delete intervention documents."""

    @staticmethod
    async def _find_duplicate(
        db: AsyncSession, intervention_id: UUID, uploader_id: UUID, checksum: str
    ) -> Optional[InterventionDocument]:
        result = await db.execute(
            select(InterventionDocument).where(
                InterventionDocument.intervention_id == intervention_id,
                InterventionDocument.uploaded_by == uploader_id,
                InterventionDocument.checksum == checksum,
                InterventionDocument.is_deleted.is_(False),
            )
        )
        return result.scalars().first()

    @staticmethod
    async def _insert_document(db: AsyncSession, document: InterventionDocument) -> InterventionDocument:
        db.add(document)
        await db.commit()
        await db.refresh(document)
        return document

    @staticmethod
    async def _compensate(object_key: str) -> None:
        """Remove an object whose metadata row was never written. Never raises."""
        try:
            deleted = await MinIOStorageService.delete_file(object_key)
        except Exception as e:
            intervention_logger.compensation_executed(object_key, False, str(e))
            upload_compensations.labels(outcome="failed").inc()
            return
        intervention_logger.compensation_executed(object_key, deleted)
        upload_compensations.labels(outcome="deleted" if deleted else "missing").inc()

    @staticmethod
    async def upload_document(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        filename: str,
        content: bytes,
        mime_type: Optional[str],
        document_type: DocumentType = DocumentType.OTHER,
        description: Optional[str] = None,
    ) -> InterventionDocument:
        """
        Store a document for an intervention.

        Args:
            db: Database session
            actor: Uploader, a party to the intervention
            intervention_id: Owning intervention
            filename: Original filename
            content: File bytes
            mime_type: Declared MIME type
            document_type: Document category
            description: Optional free text

        Returns:
            The stored document row, or the existing one for an identical
            earlier upload by the same user

        Raises:
            NotFoundError: Unknown intervention
            ForbiddenError: Not a party to the intervention
            ValidationFailedError: Rejected before any storage call
            DependencyFailureError: Storage or metadata write failed
        """
        await InterventionWorkflowService.require_party_member(db, actor, intervention_id)
        try:
            mime = validate_upload(filename, content, mime_type)
        except ValidationFailedError:
            document_uploads.labels(outcome="rejected").inc()
            raise

        checksum = hashlib.sha256(content).hexdigest()
        existing = await DocumentService._find_duplicate(db, intervention_id, actor.user_id, checksum)
        if existing is not None:
            document_uploads.labels(outcome="duplicate").inc()
            logger.info(f"Duplicate upload returned existing document {existing.id}")
            return existing

        stored_filename = build_unique_filename(filename)
        object_key = MinIOStorageService.build_object_key(intervention_id, stored_filename)
        try:
            object_key = await MinIOStorageService.upload_file(
                object_key,
                content,
                content_type=mime,
                metadata={"intervention-id": str(intervention_id), "uploaded-by": str(actor.user_id)},
            )
        except Exception as e:
            document_uploads.labels(outcome="storage_failed").inc()
            logger.error(f"Document upload to storage failed for intervention {intervention_id}: {e}")
            raise DependencyFailureError("Could not store the document") from e

        document = InterventionDocument(
            intervention_id=intervention_id,
            document_type=document_type,
            original_filename=filename[:255],
            stored_filename=stored_filename,
            storage_path=object_key,
            bucket_name=settings.minio.bucket_name,
            file_size=len(content),
            mime_type=mime,
            checksum=checksum,
            description=description,
            uploaded_by=actor.user_id,
        )
        try:
            document = await DocumentService._insert_document(db, document)
        except Exception as e:
            await db.rollback()
            logger.error(f"Document metadata insert failed, removing {object_key}: {e}")
            await DocumentService._compensate(object_key)
            document_uploads.labels(outcome="metadata_failed").inc()
            raise DependencyFailureError("Could not save the document record") from e

        document_uploads.labels(outcome="stored").inc()
        document_upload_size.observe(len(content))
        return document

    @staticmethod
    @log_database_operation("document listing", level="debug")
    async def list_documents(
        db: AsyncSession, actor: Actor, intervention_id: UUID
    ) -> List[InterventionDocument]:
        await InterventionWorkflowService.require_party_member(db, actor, intervention_id)
        result = await db.execute(
            select(InterventionDocument)
            .where(
                InterventionDocument.intervention_id == intervention_id,
                InterventionDocument.is_deleted.is_(False),
            )
            .order_by(InterventionDocument.created_at)
        )
        return list(result.scalars().all())

    @staticmethod
    async def _get_document(db: AsyncSession, document_id: UUID) -> InterventionDocument:
        document = await db.get(InterventionDocument, document_id)
        if document is None or document.is_deleted:
            raise NotFoundError("Document", document_id)
        return document

    @staticmethod
    async def get_download_url(
        db: AsyncSession, actor: Actor, document_id: UUID
    ) -> DownloadLink:
        """
        Signed, time-limited download link for a document.

        Raises:
            NotFoundError: Unknown or deleted document
            ForbiddenError: Not a party to the intervention
            DependencyFailureError: Storage could not sign the URL
        """
        document = await DocumentService._get_document(db, document_id)
        await InterventionWorkflowService.require_party_member(db, actor, document.intervention_id)

        expires_in = settings.minio.presigned_url_expiry_seconds
        try:
            url = await MinIOStorageService.generate_presigned_url(document.storage_path, expires_in)
        except Exception as e:
            raise DependencyFailureError("Could not create a download link") from e
        return DownloadLink(document=document, url=url, expires_in=expires_in)

    @staticmethod
    @transactional_database_operation("delete_document")
    async def _soft_delete(db: AsyncSession, actor: Actor, document_id: UUID) -> InterventionDocument:
        document = await DocumentService._get_document(db, document_id)
        _, party = await InterventionWorkflowService.require_party_member(
            db, actor, document.intervention_id
        )
        if document.uploaded_by != actor.user_id and not lifecycle.is_team_manager(actor, party):
            raise ForbiddenError("Only the uploader or a team manager can delete this document")

        document.is_deleted = True
        await db.flush()
        return document

    @staticmethod
    async def delete_document(db: AsyncSession, actor: Actor, document_id: UUID) -> InterventionDocument:
        """
        Soft delete a document, then remove its binary.

        Only the uploader or a manager of the team may delete. The object is
        only removed once the row is committed as deleted.

        Raises:
            NotFoundError: Unknown or already deleted document
            ForbiddenError: Not the uploader nor a team manager
        """
        document = await DocumentService._soft_delete(db, actor, document_id)

        try:
            await MinIOStorageService.delete_file(document.storage_path)
        except Exception as e:
            # The row stays soft-deleted; the object can be purged later
            logger.error(f"Could not remove object {document.storage_path}: {e}")

        logger.info(f"Document {document.id} deleted by {actor.user_id}")
        return document
