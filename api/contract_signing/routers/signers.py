from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlmodel import Session, select
from ..auth import AccessContext, require_user
from ..db import get_session
from ..errors import NotFound, ValidationError
from ..models import Contract, Field, Signer
from ..schemas import SignerCreate, SignerUpdate
from ..utils import id_str, iso, parse_id
from ..workflow import load_contract, lock_draft, require_draft

router = APIRouter()

def _serialize_signer(signer: Signer, fields_count: Optional[int] = None):
    data = {
        "id": id_str(signer.id),
        "name": signer.name,
        "email": signer.email,
        "phone": signer.phone,
        "signerType": signer.signer_type,
        "status": signer.status,
        "sortOrder": signer.sort_order,
        "viewedAt": iso(signer.viewed_at),
        "signedAt": iso(signer.signed_at),
        "declinedAt": iso(signer.declined_at),
    }
    if fields_count is not None:
        data["fieldsCount"] = fields_count
    return data

def _ensure_unique_name(session: Session, contract: Contract, name: str, exclude_id: Optional[int] = None):
    wanted = name.strip().lower()
    for other in session.exec(select(Signer).where(Signer.contract_id == contract.id)).all():
        if other.id != exclude_id and other.name.strip().lower() == wanted:
            raise ValidationError(f"A signer named {name!r} already exists on this contract")

def _contract_signer(session: Session, contract: Contract, signer_id) -> Signer:
    if not signer_id:
        raise ValidationError("signerId is required")
    signer = session.get(Signer, parse_id(signer_id, "Signer"))
    if not signer or signer.contract_id != contract.id:
        raise NotFound("Signer not found in this contract")
    return signer

@router.get("/{contract_id}/signers")
def list_signers(
    contract_id: str,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    signers = session.exec(
        select(Signer).where(Signer.contract_id == contract.id).order_by(Signer.sort_order, Signer.id)
    ).all()
    counts = dict(
        session.exec(
            select(Field.signer_id, func.count(Field.id))
            .where(Field.signer_id.in_([s.id for s in signers]))
            .group_by(Field.signer_id)
        ).all()
    ) if signers else {}
    return {"signers": [_serialize_signer(s, counts.get(s.id, 0)) for s in signers]}

@router.post("/{contract_id}/signers")
def create_signer(
    contract_id: str,
    payload: SignerCreate,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    require_draft(contract, "Cannot add signers to a contract that has been sent")
    _ensure_unique_name(session, contract, payload.name)
    max_order = session.exec(
        select(func.max(Signer.sort_order)).where(Signer.contract_id == contract.id)
    ).first()
    signer = Signer(
        contract_id=contract.id,
        name=payload.name.strip(),
        email=payload.email.strip(),
        phone=payload.phone or None,
        signer_type=payload.signer_type,
        sort_order=(max_order or 0) + 1,
    )
    session.add(signer)
    lock_draft(session, contract, "Cannot add signers to a contract that has been sent")
    session.commit()
    session.refresh(signer)
    return {"success": True, "signer": _serialize_signer(signer)}

@router.put("/{contract_id}/signers")
def update_signer(
    contract_id: str,
    payload: SignerUpdate,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    require_draft(contract, "Cannot edit signers of a contract that has been sent")
    signer = _contract_signer(session, contract, payload.signer_id)
    data = payload.model_dump(exclude_unset=True, exclude={"signer_id"})
    for key in ("name", "email", "signer_type", "sort_order"):
        if key in data and data[key] is None:
            raise ValidationError(f"{key} cannot be cleared")
    if "name" in data:
        _ensure_unique_name(session, contract, data["name"], exclude_id=signer.id)
        data["name"] = data["name"].strip()
    for key, value in data.items():
        setattr(signer, key, value)
    session.add(signer)
    lock_draft(session, contract, "Cannot edit signers of a contract that has been sent")
    session.commit()
    session.refresh(signer)
    return {"success": True, "signer": _serialize_signer(signer)}

@router.delete("/{contract_id}/signers")
def delete_signer(
    contract_id: str,
    signer_id: Optional[str] = Query(default=None, alias="signerId"),
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    require_draft(contract, "Cannot remove signers from a contract that has been sent")
    signer = _contract_signer(session, contract, signer_id)
    for field in session.exec(select(Field).where(Field.signer_id == signer.id)).all():
        field.signer_id = None
        session.add(field)
    session.delete(signer)
    lock_draft(session, contract, "Cannot remove signers from a contract that has been sent")
    session.commit()
    return {"success": True}
