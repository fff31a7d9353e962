import base64
from datetime import datetime, timedelta

import pytest
from sqlmodel import Session, select

from contract_signing.models import Contract, Event, Signer
from contract_signing.submission import map_field_type


def send(client, contract, headers):
    return client.post(f"/api/contracts/{contract.id}/send", headers=headers)


def reload(test_engine, model, row_id):
    with Session(test_engine) as session:
        return session.get(model, row_id)


def test_send_builds_submission_and_persists_ids(
    client, auth_headers, contract_factory, add_field, fake_docuseal, test_engine, public_dir
):
    contract, docs, signers = contract_factory(signers=("Alice Martin", "Bob Stone"), lock_order=True)
    add_field(docs[0], signers[0], pages="1", field_type="signature")
    add_field(docs[0], signers[1], pages="2", field_type="initials")
    add_field(docs[0], None, pages="1", field_type="text")

    resp = send(client, contract, auth_headers)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["status"] == "sent"
    assert body["submissionId"] == 9001
    urls = {s["email"]: s["signingUrl"] for s in body["submitters"]}
    assert urls["alice@example.com"] == f"https://docuseal.eu/s/slug-{signers[0].id}"

    assert len(fake_docuseal.requests) == 1
    params = fake_docuseal.requests[0]
    assert params["name"] == "Service agreement"
    assert params["order"] == "preserved"
    assert params["send_email"] is True
    assert params["reply_to"] == "contact@acme.test"
    assert datetime.fromisoformat(params["expire_at"]).utcoffset() == timedelta(0)

    document = params["documents"][0]
    assert document["name"] == "doc-0.pdf"
    prefix = "data:application/pdf;base64,"
    assert document["file"].startswith(prefix)
    raw = (public_dir / docs[0].original_path).read_bytes()
    assert base64.b64decode(document["file"][len(prefix):]) == raw
    # the field without a signer is not sent
    assert [f["role"] for f in document["fields"]] == ["Alice Martin", "Bob Stone"]
    assert [f["type"] for f in document["fields"]] == ["signature", "initials"]
    assert all(f["required"] for f in document["fields"])

    submitters = params["submitters"]
    assert [s["role"] for s in submitters] == ["Alice Martin", "Bob Stone"]
    assert submitters[0]["external_id"] == str(signers[0].id)
    assert "Acme Studio" in submitters[0]["message"]["subject"]
    assert "{{submitter.link}}" in submitters[0]["message"]["body"]
    assert "phone" not in submitters[0]

    stored = reload(test_engine, Contract, contract.id)
    assert stored.status == "sent"
    assert stored.submission_id == 9001
    assert stored.submission_slug == "sub-slug"
    assert stored.sent_at is not None
    assert (stored.expires_at - stored.sent_at).days in (29, 30)
    alice = reload(test_engine, Signer, signers[0].id)
    assert alice.status == "sent"
    assert alice.submitter_id == 500
    assert alice.submitter_slug == f"slug-{signers[0].id}"

    with Session(test_engine) as session:
        events = session.exec(select(Event).where(Event.contract_id == contract.id)).all()
        assert [e.type for e in events] == ["sent"]
        assert events[0].prev_hash == "0" * 64


def test_multi_page_field_expands_into_areas(client, auth_headers, contract_factory, add_field, fake_docuseal):
    contract, docs, signers = contract_factory(pages=5)
    add_field(docs[0], signers[0], pages="2,4", x=59.5, y=84.2, width=119, height=84.2)

    assert send(client, contract, auth_headers).status_code == 200
    fields = fake_docuseal.requests[0]["documents"][0]["fields"]
    assert len(fields) == 1
    areas = fields[0]["areas"]
    assert [a["page"] for a in areas] == [2, 4]
    for area in areas:
        assert area["x"] == pytest.approx(0.1)
        assert area["y"] == pytest.approx(0.1)
        assert area["w"] == pytest.approx(0.2)
        assert area["h"] == pytest.approx(0.1)
    assert {k: v for k, v in areas[0].items() if k != "page"} == {k: v for k, v in areas[1].items() if k != "page"}


def test_adjustments_shift_the_box(client, auth_headers, contract_factory, add_field, fake_docuseal, db):
    contract, docs, signers = contract_factory()
    field = add_field(docs[0], signers[0], x=50, y=80)
    field.horizontal_adjust = 9
    field.vertical_adjust = 4
    db.add(field); db.commit()

    assert send(client, contract, auth_headers).status_code == 200
    area = fake_docuseal.requests[0]["documents"][0]["fields"][0]["areas"][0]
    assert area["x"] == pytest.approx(59 / 595)
    assert area["y"] == pytest.approx(84 / 842)


@pytest.mark.parametrize(
    "internal,external",
    [
        ("signature", "signature"),
        ("initials", "initials"),
        ("name", "text"),
        ("date", "date"),
        ("text", "text"),
        ("input", "text"),
        ("checkbox", "checkbox"),
        ("unknown-type", "text"),
    ],
)
def test_field_type_mapping(internal, external):
    assert map_field_type(internal) == external


def test_send_requires_documents(client, auth_headers, contract_factory):
    contract, _, _ = contract_factory(documents=0)
    resp = send(client, contract, auth_headers)
    assert resp.status_code == 400
    assert "document" in resp.json()["error"]


def test_send_requires_signers(client, auth_headers, contract_factory):
    contract, _, _ = contract_factory(signers=())
    resp = send(client, contract, auth_headers)
    assert resp.status_code == 400
    assert "signer" in resp.json()["error"]


def test_send_names_signers_without_fields(client, auth_headers, contract_factory, add_field, fake_docuseal, db):
    contract, docs, signers = contract_factory(signers=("Alice Martin", "Bob Stone", "Carol Copy"))
    carol = signers[2]
    carol.signer_type = "cc"
    db.add(carol); db.commit()
    add_field(docs[0], signers[0])

    resp = send(client, contract, auth_headers)
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert "Bob Stone" in error
    assert "Alice Martin" not in error
    assert "Carol Copy" not in error
    assert fake_docuseal.requests == []


def test_send_only_submits_signing_parties(client, auth_headers, contract_factory, add_field, fake_docuseal, db):
    contract, docs, signers = contract_factory(signers=("Alice Martin", "Carol Copy"))
    signers[1].signer_type = "cc"
    db.add(signers[1]); db.commit()
    add_field(docs[0], signers[0])

    assert send(client, contract, auth_headers).status_code == 200
    assert [s["email"] for s in fake_docuseal.requests[0]["submitters"]] == ["alice@example.com"]


def test_send_rejects_non_draft(client, auth_headers, contract_factory, fake_docuseal):
    contract, _, _ = contract_factory(status="sent")
    resp = send(client, contract, auth_headers)
    assert resp.status_code == 400
    assert fake_docuseal.requests == []


def test_send_rejects_duplicate_signer_names(client, auth_headers, contract_factory, add_field, fake_docuseal):
    contract, docs, signers = contract_factory(signers=("Alice Martin", "alice martin"))
    add_field(docs[0], signers[0])
    add_field(docs[0], signers[1])
    resp = send(client, contract, auth_headers)
    assert resp.status_code == 400
    assert "unique" in resp.json()["error"]
    assert fake_docuseal.requests == []


def test_send_fails_when_pdf_missing(client, auth_headers, contract_factory, add_field, fake_docuseal, public_dir, test_engine):
    contract, docs, signers = contract_factory()
    add_field(docs[0], signers[0])
    (public_dir / docs[0].original_path).unlink()

    resp = send(client, contract, auth_headers)
    assert resp.status_code == 500
    assert "doc-0.pdf" in resp.json()["error"]
    assert fake_docuseal.requests == []
    assert reload(test_engine, Contract, contract.id).status == "draft"


def test_provider_failure_leaves_contract_untouched(
    client, auth_headers, contract_factory, add_field, fake_docuseal, provider_error, test_engine
):
    contract, docs, signers = contract_factory()
    add_field(docs[0], signers[0])
    fake_docuseal.fail_with = provider_error

    resp = send(client, contract, auth_headers)
    assert resp.status_code == 502
    assert resp.json() == {
        "error": "Signature service rejected the request",
        "details": "DocuSeal API error: invalid document",
    }

    stored = reload(test_engine, Contract, contract.id)
    assert stored.status == "draft"
    assert stored.submission_id is None
    assert stored.sent_at is None
    signer = reload(test_engine, Signer, signers[0].id)
    assert signer.status == "waiting"
    assert signer.submitter_id is None
    with Session(test_engine) as session:
        assert session.exec(select(Event).where(Event.contract_id == contract.id)).all() == []

    # the contract can be sent once the provider recovers
    fake_docuseal.fail_with = None
    assert send(client, contract, auth_headers).status_code == 200


def test_unexpected_provider_error_is_reported_and_released(
    client, auth_headers, contract_factory, add_field, fake_docuseal, test_engine
):
    contract, docs, signers = contract_factory()
    add_field(docs[0], signers[0])
    fake_docuseal.fail_with = KeyError("submitters")

    resp = send(client, contract, auth_headers)
    assert resp.status_code == 502
    assert "details" in resp.json()
    assert reload(test_engine, Contract, contract.id).status == "draft"


def test_concurrent_send_is_refused(client, auth_headers, contract_factory, add_field, fake_docuseal, monkeypatch, test_engine):
    contract, docs, signers = contract_factory()
    add_field(docs[0], signers[0])
    from contract_signing.routers import contracts as contracts_router

    original = contracts_router.build_submission

    def other_sender_wins(*args, **kwargs):
        params = original(*args, **kwargs)
        with Session(test_engine) as other:
            row = other.get(Contract, contract.id)
            row.status = "sending"
            other.add(row)
            other.commit()
        return params

    monkeypatch.setattr(contracts_router, "build_submission", other_sender_wins)
    resp = send(client, contract, auth_headers)
    assert resp.status_code == 400
    assert fake_docuseal.requests == []
    assert reload(test_engine, Contract, contract.id).status == "sending"


def test_submission_without_submitters_still_records_send(
    client, auth_headers, contract_factory, add_field, fake_docuseal, test_engine
):
    contract, docs, signers = contract_factory()
    add_field(docs[0], signers[0])
    fake_docuseal.create_submission_from_pdf = lambda params: {"id": 9002, "slug": "bare", "submitters": None}

    resp = send(client, contract, auth_headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["submitters"] == []
    stored = reload(test_engine, Contract, contract.id)
    assert stored.status == "sent"
    assert stored.submission_id == 9002


def test_failure_recording_accepted_submission_releases_claim(
    client, auth_headers, contract_factory, add_field, fake_docuseal, monkeypatch, test_engine
):
    contract, docs, signers = contract_factory()
    add_field(docs[0], signers[0])
    from contract_signing.routers import contracts as contracts_router

    def broken_audit_log(*args, **kwargs):
        raise RuntimeError("audit table unavailable")

    original = contracts_router.append_event
    monkeypatch.setattr(contracts_router, "append_event", broken_audit_log)
    resp = send(client, contract, auth_headers)
    assert resp.status_code == 502
    assert resp.json()["error"] == "Failed to record the signature request"
    # the accepted submission is withdrawn and the contract is editable again
    assert fake_docuseal.archived == [9001]

    stored = reload(test_engine, Contract, contract.id)
    assert stored.status == "draft"
    assert stored.submission_id is None
    assert reload(test_engine, Signer, signers[0].id).submitter_id is None

    monkeypatch.setattr(contracts_router, "append_event", original)
    assert send(client, contract, auth_headers).status_code == 200
