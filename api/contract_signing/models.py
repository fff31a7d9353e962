from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field as ORMField
from .utils import utcnow

class Tenant(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    name: str
    email: Optional[str] = None

class User(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    tenant_id: int = ORMField(index=True)
    email: str
    name: str
    role: str = "member"

class Contract(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    tenant_id: int = ORMField(index=True)
    title: str
    status: str = "draft"  # draft|sending|sent|viewed|partially_signed|completed|declined|expired|voided
    lock_order: bool = False
    expiration_days: int = 30
    submission_id: Optional[int] = None
    submission_slug: Optional[str] = None
    combined_document_url: Optional[str] = None
    audit_log_url: Optional[str] = None
    sent_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    created_at: datetime = ORMField(default_factory=utcnow)
    updated_at: datetime = ORMField(default_factory=utcnow)

class Document(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    contract_id: int = ORMField(index=True)
    filename: str
    original_path: str
    sha256: Optional[str] = None
    page_count: Optional[int] = None
    sort_order: int = 0
    created_at: datetime = ORMField(default_factory=utcnow)

class Signer(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    contract_id: int = ORMField(index=True)
    name: str
    email: str
    phone: Optional[str] = None
    signer_type: str = "signer"  # signer|cc|approver
    sort_order: int = 0
    status: str = "waiting"  # waiting|sent|viewed|signed|declined
    submitter_id: Optional[int] = None
    submitter_slug: Optional[str] = None
    viewed_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    created_at: datetime = ORMField(default_factory=utcnow)

class Field(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    document_id: int = ORMField(index=True)
    signer_id: Optional[int] = ORMField(default=None, index=True)
    field_type: str  # signature|initials|name|date|text|input|checkbox
    pages: str = "1"
    x: float
    y: float
    width: float
    height: float
    content: Optional[str] = None
    horizontal_adjust: int = 0
    vertical_adjust: int = 0
    created_at: datetime = ORMField(default_factory=utcnow)

class Event(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    contract_id: int = ORMField(index=True)
    actor: str  # system|user:<id>
    type: str   # created|sent|reset|synced
    meta_json: str = "{}"
    at: datetime = ORMField(default_factory=utcnow)
    prev_hash: Optional[str] = None
    hash: Optional[str] = None
