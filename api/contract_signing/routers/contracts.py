import logging
from datetime import datetime, timedelta
from fastapi import APIRouter, Depends
from sqlmodel import Session, select
from .. import config, docuseal
from ..auth import AccessContext, require_user
from ..db import get_session
from ..errors import ExternalServiceError, InvalidState, ValidationError
from ..models import Contract, Document, Field, Signer, Tenant
from ..schemas import ContractCreate
from ..submission import build_submission, expiry_for
from ..utils import as_utc, id_str, iso, utcnow
from ..workflow import (
    DRAFT,
    SENDING,
    SENT,
    append_event,
    claim_for_send,
    load_contract,
    release_claim,
    require_draft,
)

logger = logging.getLogger(__name__)

router = APIRouter()

def _serialize_contract(contract: Contract):
    return {
        "id": id_str(contract.id),
        "title": contract.title,
        "status": contract.status,
        "lockOrder": contract.lock_order,
        "expirationDays": contract.expiration_days,
        "submissionId": contract.submission_id,
        "sentAt": iso(contract.sent_at),
        "expiresAt": iso(contract.expires_at),
        "completedAt": iso(contract.completed_at),
        "combinedDocumentUrl": contract.combined_document_url,
        "auditLogUrl": contract.audit_log_url,
    }

def _contract_rows(session: Session, contract: Contract):
    documents = session.exec(
        select(Document).where(Document.contract_id == contract.id).order_by(Document.sort_order, Document.id)
    ).all()
    signers = session.exec(
        select(Signer).where(Signer.contract_id == contract.id).order_by(Signer.sort_order, Signer.id)
    ).all()
    fields = session.exec(
        select(Field)
        .join(Document, Field.document_id == Document.id)
        .where(Document.contract_id == contract.id)
        .order_by(Field.created_at, Field.id)
    ).all() if documents else []
    return documents, signers, fields

@router.post("")
def create_contract(
    payload: ContractCreate,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = Contract(
        tenant_id=ctx.tenant_id,
        title=payload.title.strip(),
        lock_order=payload.lock_order,
        expiration_days=payload.expiration_days,
    )
    session.add(contract); session.commit(); session.refresh(contract)
    append_event(session, contract.id, ctx.actor, "created", {"contract_id": contract.id})
    return {"success": True, "contract": _serialize_contract(contract)}

@router.get("/{contract_id}")
def get_contract(
    contract_id: str,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    documents, signers, _ = _contract_rows(session, contract)
    body = _serialize_contract(contract)
    body["documents"] = [
        {"id": id_str(d.id), "filename": d.filename, "pageCount": d.page_count} for d in documents
    ]
    body["signers"] = [
        {
            "id": id_str(s.id),
            "name": s.name,
            "email": s.email,
            "signerType": s.signer_type,
            "status": s.status,
        }
        for s in signers
    ]
    return body

@router.post("/{contract_id}/send")
def send_contract(
    contract_id: str,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    require_draft(contract)
    documents, signers, fields = _contract_rows(session, contract)
    tenant = session.get(Tenant, contract.tenant_id)
    expires_at = expiry_for(contract)
    # validation and document reads happen before anything is written
    params = build_submission(contract, documents, signers, fields, tenant, expire_at=expires_at)

    claim_for_send(session, contract)
    try:
        submission = docuseal.client.create_submission_from_pdf(params)
    except ExternalServiceError:
        release_claim(session, contract)
        raise
    except Exception as exc:
        release_claim(session, contract)
        raise ExternalServiceError("Failed to send the contract for signature", str(exc))

    try:
        submitters = submission.get("submitters") or []
        _record_submission(session, contract, signers, submission, submitters, expires_at, ctx.actor)
    except Exception as exc:
        logger.exception("could not record submission %s for contract %s", submission.get("id"), contract_id)
        session.rollback()
        _archive_quietly(submission.get("id"))
        release_claim(session, contract)
        raise ExternalServiceError("Failed to record the signature request", str(exc))
    logger.info("contract %s sent: submission %s", contract.id, contract.submission_id)

    return {
        "success": True,
        "submissionId": contract.submission_id,
        "status": SENT,
        "expiresAt": iso(expires_at),
        "submitters": [
            {
                "email": s.get("email"),
                "name": s.get("name"),
                "signingUrl": docuseal.signing_url(s.get("slug")),
            }
            for s in submitters
        ],
    }

def _record_submission(session: Session, contract: Contract, signers, submission: dict, submitters, expires_at, actor: str):
    now = utcnow()
    contract.status = SENT
    contract.submission_id = submission.get("id")
    contract.submission_slug = submission.get("slug")
    contract.sent_at = now
    contract.expires_at = expires_at
    contract.updated_at = now
    session.add(contract)

    signers_by_id = {str(s.id): s for s in signers}
    for submitter in submitters:
        signer = signers_by_id.get(str(submitter.get("external_id")))
        if not signer:
            logger.warning("submitter %s has no matching signer", submitter.get("id"))
            continue
        signer.submitter_id = submitter.get("id")
        signer.submitter_slug = submitter.get("slug")
        signer.status = "sent"
        session.add(signer)
    # status, signer links and the audit event land in one transaction
    append_event(session, contract.id, actor, "sent", {"submission_id": contract.submission_id}, commit=False)
    session.commit()

def _archive_quietly(submission_id):
    if not submission_id:
        return
    try:
        docuseal.client.archive_submission(submission_id)
        logger.info("archived unrecorded submission %s", submission_id)
    except ExternalServiceError as exc:
        logger.warning("could not archive submission %s: %s", submission_id, exc.details or exc.message)

@router.post("/{contract_id}/reset")
def reset_contract(
    contract_id: str,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    if contract.status == SENDING and not _claim_is_stale(contract):
        raise InvalidState("The contract is being sent, try again shortly")
    if contract.status == SENDING:
        logger.warning("contract %s: releasing abandoned send claim", contract.id)
    if contract.submission_id and contract.status != DRAFT:
        try:
            docuseal.client.archive_submission(contract.submission_id)
            logger.info("archived submission %s for contract %s", contract.submission_id, contract.id)
        except ExternalServiceError as exc:
            logger.warning("could not archive submission %s: %s", contract.submission_id, exc.details or exc.message)

    previous = contract.submission_id
    contract.status = DRAFT
    contract.submission_id = None
    contract.submission_slug = None
    contract.sent_at = None
    contract.expires_at = None
    contract.completed_at = None
    contract.voided_at = None
    contract.updated_at = utcnow()
    session.add(contract)
    for signer in session.exec(select(Signer).where(Signer.contract_id == contract.id)).all():
        signer.status = "waiting"
        signer.submitter_id = None
        signer.submitter_slug = None
        signer.viewed_at = None
        signer.signed_at = None
        signer.declined_at = None
        session.add(signer)
    session.commit()
    append_event(session, contract.id, ctx.actor, "reset", {"previous_submission_id": previous})
    return {"success": True, "status": DRAFT}

def _claim_is_stale(contract: Contract) -> bool:
    claimed_at = as_utc(contract.updated_at)
    return claimed_at is None or utcnow() - claimed_at > timedelta(seconds=config.SEND_CLAIM_TIMEOUT)

def _parse_ts(value):
    if not value:
        return None
    return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))

def _submission_status(submission: dict) -> str:
    status = submission.get("status")
    if status == "completed":
        return "completed"
    if status == "expired":
        return "expired"
    if status == "archived":
        return "voided"
    submitters = submission.get("submitters") or []
    if any(s.get("declined_at") for s in submitters):
        return "declined"
    if any(s.get("completed_at") for s in submitters):
        return "partially_signed"
    if any(s.get("opened_at") for s in submitters):
        return "viewed"
    return SENT

def _submitter_status(submitter: dict, current: str) -> str:
    if submitter.get("declined_at"):
        return "declined"
    if submitter.get("completed_at"):
        return "signed"
    if submitter.get("opened_at"):
        return "viewed"
    if submitter.get("sent_at"):
        return "sent"
    return current

@router.post("/{contract_id}/sync")
def sync_contract(
    contract_id: str,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    if not contract.submission_id:
        raise ValidationError("This contract has not been sent for signature")
    submission = docuseal.client.get_submission(contract.submission_id)

    status = _submission_status(submission)
    contract.status = status
    if status == "completed":
        contract.completed_at = _parse_ts(submission.get("completed_at")) or utcnow()
    if status == "voided" and not contract.voided_at:
        contract.voided_at = utcnow()
    contract.combined_document_url = submission.get("combined_document_url")
    contract.audit_log_url = submission.get("audit_log_url")
    contract.updated_at = utcnow()
    session.add(contract)

    signers = session.exec(select(Signer).where(Signer.contract_id == contract.id)).all()
    for submitter in submission.get("submitters") or []:
        signer = next(
            (s for s in signers if s.submitter_id == submitter.get("id") or s.email == submitter.get("email")),
            None,
        )
        if not signer:
            continue
        signer.status = _submitter_status(submitter, signer.status)
        signer.viewed_at = _parse_ts(submitter.get("opened_at")) or signer.viewed_at
        signer.signed_at = _parse_ts(submitter.get("completed_at")) or signer.signed_at
        signer.declined_at = _parse_ts(submitter.get("declined_at")) or signer.declined_at
        signer.submitter_id = submitter.get("id")
        signer.submitter_slug = submitter.get("slug")
        session.add(signer)
    session.commit()
    append_event(session, contract.id, ctx.actor, "synced", {"status": status})

    return {
        "success": True,
        "status": status,
        "submission": {
            "id": submission.get("id"),
            "status": submission.get("status"),
            "combined_document_url": submission.get("combined_document_url"),
            "audit_log_url": submission.get("audit_log_url"),
            "submitters": [
                {
                    "email": s.get("email"),
                    "name": s.get("name"),
                    "status": s.get("status"),
                    "signed_at": s.get("completed_at"),
                    "viewed_at": s.get("opened_at"),
                    "signing_url": docuseal.signing_url(s.get("slug")),
                }
                for s in submission.get("submitters") or []
            ],
        },
    }

@router.get("/{contract_id}/signing-urls")
def signing_urls(
    contract_id: str,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_user),
):
    contract = load_contract(session, contract_id, ctx)
    if contract.status == DRAFT:
        raise InvalidState("The contract has not been sent yet")
    signers = session.exec(
        select(Signer).where(Signer.contract_id == contract.id).order_by(Signer.sort_order, Signer.id)
    ).all()
    return {
        "contractId": id_str(contract.id),
        "contractTitle": contract.title,
        "contractStatus": contract.status,
        "submissionId": contract.submission_id,
        "expiresAt": iso(contract.expires_at),
        "signers": [
            {
                "id": id_str(s.id),
                "name": s.name,
                "email": s.email,
                "signerType": s.signer_type,
                "status": s.status,
                "signingUrl": docuseal.signing_url(s.submitter_slug),
                "viewedAt": iso(s.viewed_at),
                "signedAt": iso(s.signed_at),
            }
            for s in signers
        ],
    }
