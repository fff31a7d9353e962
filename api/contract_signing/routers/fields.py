import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select
from ..auth import AccessContext, require_user
from ..db import get_session
from ..errors import NotFound, ValidationError
from ..geometry import validate_pages
from ..models import Contract, Document, Field, Signer
from ..schemas import FieldCreate, FieldUpdate
from ..utils import id_str, parse_id
from ..workflow import load_contract, lock_draft, require_draft

logger = logging.getLogger(__name__)

router = APIRouter()

def _serialize_field(field: Field, document: Optional[Document] = None, signer: Optional[Signer] = None):
    data = {
        "id": id_str(field.id),
        "documentId": id_str(field.document_id),
        "signerId": id_str(field.signer_id),
        "signerName": signer.name if signer else None,
        "fieldType": field.field_type,
        "pages": field.pages,
        "position": {"x": field.x, "y": field.y},
        "size": {"width": field.width, "height": field.height},
        "content": field.content,
        "horizontalAdjust": field.horizontal_adjust,
        "verticalAdjust": field.vertical_adjust,
    }
    if document is not None:
        data["documentFilename"] = document.filename
    return data

def _contract_document(session: Session, contract: Contract, document_id) -> Document:
    document = session.get(Document, parse_id(document_id, "Document"))
    if not document or document.contract_id != contract.id:
        raise NotFound("Document not found in this contract")
    return document

def _contract_signer(session: Session, contract: Contract, signer_id) -> Optional[Signer]:
    if not signer_id:
        return None
    signer = session.get(Signer, parse_id(signer_id, "Signer"))
    if not signer or signer.contract_id != contract.id:
        raise NotFound("Signer not found in this contract")
    return signer

def _contract_field(session: Session, contract: Contract, field_id) -> Field:
    if not field_id:
        raise ValidationError("fieldId is required")
    field = session.get(Field, parse_id(field_id, "Field"))
    document = session.get(Document, field.document_id) if field else None
    if not document or document.contract_id != contract.id:
        raise NotFound("Field not found in this contract")
    return field

@router.get("/{contract_id}/fields")
def list_fields(
    contract_id: str,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    rows = session.exec(
        select(Field, Document)
        .join(Document, Field.document_id == Document.id)
        .where(Document.contract_id == contract.id)
        .order_by(Field.created_at, Field.id)
    ).all()
    signers = {
        s.id: s for s in session.exec(select(Signer).where(Signer.contract_id == contract.id)).all()
    }
    return {"fields": [_serialize_field(f, d, signers.get(f.signer_id)) for f, d in rows]}

@router.post("/{contract_id}/fields")
def create_field(
    contract_id: str,
    payload: FieldCreate,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    require_draft(contract, "Cannot add fields to a contract that has been sent")
    document = _contract_document(session, contract, payload.document_id)
    signer = _contract_signer(session, contract, payload.signer_id)
    validate_pages(payload.pages, document.page_count)
    field = Field(
        document_id=document.id,
        signer_id=signer.id if signer else None,
        field_type=payload.field_type,
        pages=payload.pages.strip(),
        x=payload.position.x,
        y=payload.position.y,
        width=payload.size.width,
        height=payload.size.height,
        content=payload.content or None,
        horizontal_adjust=payload.horizontal_adjust or 0,
        vertical_adjust=payload.vertical_adjust or 0,
    )
    session.add(field)
    lock_draft(session, contract, "Cannot add fields to a contract that has been sent")
    session.commit()
    session.refresh(field)
    logger.info("field %s (%s) added to contract %s", field.id, field.field_type, contract.id)
    return {"success": True, "field": _serialize_field(field, document, signer)}

@router.put("/{contract_id}/fields")
def update_field(
    contract_id: str,
    payload: FieldUpdate,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    require_draft(contract, "Cannot edit fields of a contract that has been sent")
    field = _contract_field(session, contract, payload.field_id)
    document = session.get(Document, field.document_id)
    data = payload.model_dump(exclude_unset=True, exclude={"field_id"})

    if "signer_id" in data:
        signer = _contract_signer(session, contract, data["signer_id"])
        field.signer_id = signer.id if signer else None
    if "field_type" in data:
        if data["field_type"] is None:
            raise ValidationError("fieldType cannot be cleared")
        field.field_type = data["field_type"]
    if "pages" in data:
        validate_pages(data["pages"], document.page_count)
        field.pages = data["pages"].strip()
    if "position" in data:
        if payload.position is None:
            raise ValidationError("position cannot be cleared")
        field.x, field.y = payload.position.x, payload.position.y
    if "size" in data:
        if payload.size is None:
            raise ValidationError("size cannot be cleared")
        field.width, field.height = payload.size.width, payload.size.height
    if "content" in data:
        field.content = data["content"]
    if "horizontal_adjust" in data:
        field.horizontal_adjust = data["horizontal_adjust"] or 0
    if "vertical_adjust" in data:
        field.vertical_adjust = data["vertical_adjust"] or 0

    session.add(field)
    lock_draft(session, contract, "Cannot edit fields of a contract that has been sent")
    session.commit()
    session.refresh(field)
    signer = session.get(Signer, field.signer_id) if field.signer_id else None
    return {"success": True, "field": _serialize_field(field, document, signer)}

@router.delete("/{contract_id}/fields")
def delete_field(
    contract_id: str,
    field_id: Optional[str] = Query(default=None, alias="fieldId"),
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    require_draft(contract, "Cannot delete fields of a contract that has been sent")
    field = _contract_field(session, contract, field_id)
    session.delete(field)
    lock_draft(session, contract, "Cannot delete fields of a contract that has been sent")
    session.commit()
    logger.info("field %s removed from contract %s", field_id, contract.id)
    return {"success": True}
