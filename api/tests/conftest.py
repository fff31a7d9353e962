import os
from io import BytesIO
from typing import Dict, List

import pytest
from fastapi.testclient import TestClient
from pypdf import PdfWriter
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

from contract_signing.main import app  # noqa: E402
from contract_signing import config as config_module  # noqa: E402
from contract_signing import db as db_module  # noqa: E402
from contract_signing import docuseal as docuseal_module  # noqa: E402
from contract_signing.auth import issue_session_token  # noqa: E402
from contract_signing.db import get_session  # noqa: E402
from contract_signing.errors import ExternalServiceError  # noqa: E402
from contract_signing.models import Contract, Document, Field, Signer, Tenant, User  # noqa: E402


def make_pdf(pages: int = 1) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=595, height=842)
    buf = BytesIO()
    writer.write(buf)
    return buf.getvalue()


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    return engine


@pytest.fixture
def setup_db(test_engine):
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def public_dir(tmp_path, monkeypatch):
    root = tmp_path / "public"
    root.mkdir()
    monkeypatch.setattr(config_module, "PUBLIC_DIR", str(root))
    return root


class FakeDocuSeal:
    """Stands in for the DocuSeal client and records every call."""

    def __init__(self):
        self.requests: List[dict] = []
        self.archived: List[int] = []
        self.fail_with = None
        self.submission = None

    def create_submission_from_pdf(self, params):
        self.requests.append(params)
        if self.fail_with:
            raise self.fail_with
        return {
            "id": 9001,
            "slug": "sub-slug",
            "status": "pending",
            "submitters": [
                {
                    "id": 500 + idx,
                    "slug": f"slug-{s['external_id']}",
                    "email": s["email"],
                    "name": s["name"],
                    "external_id": s["external_id"],
                }
                for idx, s in enumerate(params["submitters"])
            ],
        }

    def get_submission(self, submission_id):
        if self.fail_with:
            raise self.fail_with
        return self.submission

    def archive_submission(self, submission_id):
        self.archived.append(submission_id)
        if self.fail_with:
            raise self.fail_with
        return {"id": submission_id, "archived_at": "2026-01-01T00:00:00Z"}


@pytest.fixture
def fake_docuseal(monkeypatch):
    fake = FakeDocuSeal()
    monkeypatch.setattr(docuseal_module, "client", fake)
    return fake


@pytest.fixture
def provider_error():
    return ExternalServiceError("Signature service rejected the request", "DocuSeal API error: invalid document")


@pytest.fixture
def client(test_engine, setup_db, public_dir, fake_docuseal):
    db_module.engine = test_engine

    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def db(test_engine, setup_db):
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def tenant(db):
    t = Tenant(name="Acme Studio", email="contact@acme.test")
    db.add(t); db.commit(); db.refresh(t)
    return t


@pytest.fixture
def user(db, tenant):
    u = User(tenant_id=tenant.id, email="owner@acme.test", name="Owner")
    db.add(u); db.commit(); db.refresh(u)
    return u


@pytest.fixture
def auth_headers(user) -> Dict[str, str]:
    return {"Authorization": f"Bearer {issue_session_token(user)}"}


@pytest.fixture
def contract_factory(db, tenant, public_dir):
    """Builds a contract with documents and signers directly in the database."""

    def build(
        title="Service agreement",
        status="draft",
        documents=1,
        pages=2,
        signers=("Alice Martin",),
        tenant_id=None,
        lock_order=False,
    ):
        contract = Contract(
            tenant_id=tenant_id or tenant.id,
            title=title,
            status=status,
            lock_order=lock_order,
        )
        db.add(contract); db.commit(); db.refresh(contract)
        docs = []
        for idx in range(documents):
            key = f"uploads/contracts/{contract.id}/doc-{idx}.pdf"
            path = public_dir / key
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(make_pdf(pages))
            doc = Document(
                contract_id=contract.id,
                filename=f"doc-{idx}.pdf",
                original_path=key,
                page_count=pages,
                sort_order=idx + 1,
            )
            db.add(doc)
            docs.append(doc)
        people = []
        for idx, name in enumerate(signers):
            signer = Signer(
                contract_id=contract.id,
                name=name,
                email=f"{name.split()[0].lower()}@example.com",
                sort_order=idx + 1,
            )
            db.add(signer)
            people.append(signer)
        db.commit()
        for row in docs + people:
            db.refresh(row)
        return contract, docs, people

    return build


@pytest.fixture
def add_field(db):
    def add(document, signer=None, pages="1", x=59.5, y=84.2, width=119, height=84.2, field_type="signature"):
        field = Field(
            document_id=document.id,
            signer_id=signer.id if signer else None,
            field_type=field_type,
            pages=pages,
            x=x,
            y=y,
            width=width,
            height=height,
        )
        db.add(field); db.commit(); db.refresh(field)
        return field

    return add


@pytest.fixture
def pdf_bytes():
    return make_pdf
