"""Contract lookups and status transitions shared by the routers.

Status checks done on a loaded row are only advisory: two requests can both see
``draft``. The write paths therefore go through ``lock_draft`` and
``claim_for_send``, which are conditional UPDATEs evaluated by the database.
"""
import logging

from sqlalchemy import update
from sqlmodel import Session, select

from .auth import AccessContext
from .errors import InvalidState, NotFound
from .models import Contract, Event
from .utils import canonical_json, parse_id, sha256_bytes, utcnow

logger = logging.getLogger(__name__)

DRAFT = "draft"
SENDING = "sending"
SENT = "sent"


def load_contract(session: Session, contract_id, ctx: AccessContext) -> Contract:
    contract = session.get(Contract, parse_id(contract_id, "Contract"))
    if not contract or contract.tenant_id != ctx.tenant_id:
        raise NotFound("Contract not found")
    return contract


def require_draft(contract: Contract, message: str = "Contract has already been sent"):
    if contract.status != DRAFT:
        raise InvalidState(message, f"status is {contract.status}")


def lock_draft(session: Session, contract: Contract, message: str = "Contract has already been sent"):
    """Re-check the draft status inside the current transaction.

    Touches ``updated_at`` only where the row is still a draft; on a miss the
    pending changes are rolled back.
    """
    result = session.exec(
        update(Contract)
        .where(Contract.id == contract.id, Contract.status == DRAFT)
        .values(updated_at=utcnow())
    )
    if result.rowcount != 1:
        session.rollback()
        raise InvalidState(message, "contract left draft status")


def claim_for_send(session: Session, contract: Contract):
    result = session.exec(
        update(Contract)
        .where(Contract.id == contract.id, Contract.status == DRAFT)
        .values(status=SENDING, updated_at=utcnow())
    )
    if result.rowcount != 1:
        session.rollback()
        raise InvalidState("Contract has already been sent", "another send is in progress or completed")
    session.commit()
    session.refresh(contract)


def release_claim(session: Session, contract: Contract):
    session.rollback()
    session.exec(
        update(Contract)
        .where(Contract.id == contract.id, Contract.status == SENDING)
        .values(status=DRAFT, updated_at=utcnow())
    )
    session.commit()
    session.refresh(contract)
    logger.info("contract %s returned to draft after failed send", contract.id)


def append_event(session: Session, contract_id: int, actor: str, type_: str, meta: dict, commit: bool = True):
    last = session.exec(
        select(Event).where(Event.contract_id == contract_id).order_by(Event.id.desc())
    ).first()
    prev_hash = last.hash if last else "0" * 64
    payload = {"actor": actor, "type": type_, "meta": meta}
    event = Event(
        contract_id=contract_id,
        actor=actor,
        type=type_,
        meta_json=canonical_json(payload),
        prev_hash=prev_hash,
    )
    event.hash = sha256_bytes((prev_hash + event.meta_json).encode())
    session.add(event)
    if commit:
        session.commit()
