import logging
import secrets
from pathlib import PurePath
from typing import Optional
from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy import func
from sqlmodel import Session, select
from ..auth import AccessContext, require_user
from ..db import get_session
from ..errors import NotFound, ValidationError
from ..models import Document, Field
from ..pdf import count_pages
from ..storage import put_bytes, delete_object
from ..utils import id_str, parse_id, sha256_bytes
from ..workflow import load_contract, lock_draft, require_draft

logger = logging.getLogger(__name__)

router = APIRouter()

def _serialize_document(doc: Document):
    return {
        "id": id_str(doc.id),
        "filename": doc.filename,
        "originalPath": doc.original_path,
        "pageCount": doc.page_count,
        "sortOrder": doc.sort_order,
        "createdAt": doc.created_at,
    }

def _safe_filename(filename: Optional[str]) -> str:
    name = PurePath(filename or "").name.strip()
    return name or "document.pdf"

@router.get("/{contract_id}/documents")
def list_documents(
    contract_id: str,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    docs = session.exec(
        select(Document).where(Document.contract_id == contract.id).order_by(Document.sort_order, Document.id)
    ).all()
    return {"documents": [_serialize_document(d) for d in docs]}

@router.post("/{contract_id}/documents")
async def upload_document(
    contract_id: str,
    file: UploadFile = File(...),
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    require_draft(contract, "Cannot add documents to a contract that has been sent")
    data = await file.read()
    if not data:
        raise ValidationError("Uploaded file is empty")
    filename = _safe_filename(file.filename)
    page_count = count_pages(data)
    key = f"uploads/contracts/{contract.id}/{secrets.token_hex(8)}-{filename}"
    max_order = session.exec(
        select(func.max(Document.sort_order)).where(Document.contract_id == contract.id)
    ).first()
    doc = Document(
        contract_id=contract.id,
        filename=filename,
        original_path=key,
        sha256=sha256_bytes(data),
        page_count=page_count,
        sort_order=(max_order or 0) + 1,
    )
    session.add(doc)
    lock_draft(session, contract, "Cannot add documents to a contract that has been sent")
    put_bytes(key, data)
    session.commit()
    session.refresh(doc)
    logger.info("document %s (%d pages) uploaded to contract %s", doc.id, page_count, contract.id)
    return {"success": True, "document": _serialize_document(doc)}

@router.delete("/{contract_id}/documents")
def delete_document(
    contract_id: str,
    document_id: Optional[str] = Query(default=None, alias="documentId"),
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    require_draft(contract, "Cannot remove documents from a contract that has been sent")
    if not document_id:
        raise ValidationError("documentId is required")
    doc = session.get(Document, parse_id(document_id, "Document"))
    if not doc or doc.contract_id != contract.id:
        raise NotFound("Document not found in this contract")
    key = doc.original_path
    for field in session.exec(select(Field).where(Field.document_id == doc.id)).all():
        session.delete(field)
    session.delete(doc)
    lock_draft(session, contract, "Cannot remove documents from a contract that has been sent")
    session.commit()
    delete_object(key)
    return {"success": True}
