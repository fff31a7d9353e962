"""Builds the DocuSeal submission for a contract.

Everything here is read-only: it loads documents from storage and turns
persisted fields into DocuSeal's relative-coordinate areas. Persisting the
result is the caller's job, after the provider has accepted the request.
"""
import base64
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from .errors import ValidationError
from .geometry import normalize_box, parse_pages
from .models import Contract, Document, Field, Signer, Tenant
from .storage import get_bytes
from .utils import as_utc, utcnow

logger = logging.getLogger(__name__)

FIELD_TYPE_MAP = {
    "signature": "signature",
    "initials": "initials",
    "name": "text",
    "date": "date",
    "text": "text",
    "input": "text",
    "checkbox": "checkbox",
}


def map_field_type(field_type: str) -> str:
    return FIELD_TYPE_MAP.get(field_type, "text")


def signer_role(signer: Signer) -> str:
    # DocuSeal links fields to submitters by role name only
    return signer.name


def field_areas(field: Field) -> List[dict]:
    box = normalize_box(
        field.x + (field.horizontal_adjust or 0),
        field.y + (field.vertical_adjust or 0),
        field.width,
        field.height,
    )
    if box.clamped:
        logger.warning(
            "field %s (%s) extends past the page and was clamped to (%.3f, %.3f, %.3f, %.3f)",
            field.id, field.field_type, box.x, box.y, box.w, box.h,
        )
    return [box.area(page) for page in parse_pages(field.pages)]


def document_fields(fields: Iterable[Field], signers_by_id: Dict[int, Signer]) -> List[dict]:
    built = []
    for field in fields:
        signer = signers_by_id.get(field.signer_id) if field.signer_id else None
        if not signer:
            continue
        built.append({
            "name": f"{field.field_type}_{field.id}",
            "type": map_field_type(field.field_type),
            "role": signer_role(signer),
            "required": True,
            "areas": field_areas(field),
        })
    return built


def encode_document(document: Document) -> str:
    data = get_bytes(document.original_path)
    return "data:application/pdf;base64," + base64.b64encode(data).decode("ascii")


def email_message(contract: Contract, signer: Signer, tenant: Optional[Tenant]) -> dict:
    company = tenant.name if tenant else None
    subject = f"{company or 'Document'} - {contract.title} to sign"
    body = (
        f"Hello {signer.name},\n\n"
        f"You have received the document \"{contract.title}\" to sign from {company or 'our company'}.\n\n"
        "Follow the link below to review and sign the document:\n"
        "{{submitter.link}}\n\n"
        "Kind regards,\n"
        f"{company or 'The team'}"
    )
    return {"subject": subject, "body": body}


def build_submitters(contract: Contract, signers: List[Signer], tenant: Optional[Tenant]) -> List[dict]:
    submitters = []
    for signer in signers:
        if signer.signer_type != "signer":
            continue
        submitter = {
            "role": signer_role(signer),
            "email": signer.email,
            "name": signer.name,
            "external_id": str(signer.id),
            "send_email": True,
            "message": email_message(contract, signer, tenant),
        }
        if signer.phone:
            submitter["phone"] = signer.phone
        submitters.append(submitter)
    return submitters


def expiry_for(contract: Contract, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(days=contract.expiration_days)


def check_ready(contract: Contract, documents: List[Document], signers: List[Signer], fields: List[Field]):
    if not documents:
        raise ValidationError("Add at least one document to the contract")
    if not signers:
        raise ValidationError("Add at least one signer to the contract")
    assigned = {f.signer_id for f in fields if f.signer_id}
    missing = [s.name for s in signers if s.signer_type == "signer" and s.id not in assigned]
    if missing:
        raise ValidationError(f"The following signers have no fields: {', '.join(missing)}")
    seen = set()
    for signer in signers:
        key = signer_role(signer).strip().lower()
        if key in seen:
            raise ValidationError(f"Signer names must be unique: {signer.name}")
        seen.add(key)


def build_submission(
    contract: Contract,
    documents: List[Document],
    signers: List[Signer],
    fields: List[Field],
    tenant: Optional[Tenant] = None,
    expire_at: Optional[datetime] = None,
) -> dict:
    """Validate the contract and assemble the ``POST /submissions/pdf`` body."""
    check_ready(contract, documents, signers, fields)
    signers_by_id = {s.id: s for s in signers}
    fields_by_document = defaultdict(list)
    for field in fields:
        fields_by_document[field.document_id].append(field)

    documents_input = []
    for document in sorted(documents, key=lambda d: (d.sort_order, d.id)):
        documents_input.append({
            "name": document.filename,
            "file": encode_document(document),
            "fields": document_fields(fields_by_document[document.id], signers_by_id),
        })

    expire_at = expire_at or expiry_for(contract)
    params = {
        "name": contract.title,
        "documents": documents_input,
        "submitters": build_submitters(contract, signers, tenant),
        "send_email": True,
        "order": "preserved" if contract.lock_order else "random",
        "expire_at": as_utc(expire_at).isoformat(),
    }
    if tenant and tenant.email:
        params["reply_to"] = tenant.email
    logger.info(
        "built submission for contract %s: %d document(s), %d submitter(s)",
        contract.id, len(documents_input), len(params["submitters"]),
    )
    return params
