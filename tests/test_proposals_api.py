from datetime import datetime, timedelta

import pytest
from conftest import auth_headers, create_user
from sqlalchemy.exc import IntegrityError

from homebase.client.forms import build_update_payload, form_values_from_proposal
from homebase.domain.proposals import service as proposal_service
from homebase.models import Notification, Proposal, UserAchievement

SIGNATURE = "data:image/png;base64,iVBORw0KGgo="


def create_proposal(client, contractor, **overrides):
    payload = {
        "title": "Kitchen renovation",
        "serviceType": "plumbing",
        "estimatedCost": "1500.00",
        "materials": "Pipes, fittings",
    }
    payload.update(overrides)
    response = client.post("/api/proposals", json=payload, headers=auth_headers(contractor))
    assert response.status_code == 201, response.text
    return response.json()


def sign_payload(**overrides):
    payload = {
        "signature": SIGNATURE,
        "signerName": "Jane Doe",
        "signedAt": datetime.utcnow().isoformat() + "Z",
        "ipAddress": "198.51.100.4",
    }
    payload.update(overrides)
    return payload


def test_requires_authentication(client):
    response = client.get("/api/proposals")
    assert response.status_code in (401, 403)


def test_create_defaults_to_draft(client, contractor):
    proposal = create_proposal(client, contractor, estimatedCost="1234.5", materials=" Pipes,  , fittings ,sealant,")

    assert proposal["status"] == "draft"
    assert proposal["contractorId"] == contractor.id
    assert proposal["homeownerId"] is None
    assert proposal["estimatedCost"] == "1234.50"
    assert proposal["materials"] == ["Pipes", "fittings", "sealant"]
    assert proposal["contractFilePath"] is None
    assert proposal["customerSignature"] is None


def test_create_rejects_negative_cost(client, contractor, db):
    response = client.post(
        "/api/proposals",
        json={"title": "Roof", "serviceType": "roofing", "estimatedCost": "-5.00"},
        headers=auth_headers(contractor),
    )
    assert response.status_code == 422
    assert db.query(Proposal).count() == 0


def test_create_requires_title_and_service_type(client, contractor):
    response = client.post(
        "/api/proposals",
        json={"title": "  ", "serviceType": "plumbing", "estimatedCost": "10"},
        headers=auth_headers(contractor),
    )
    assert response.status_code == 422

    response = client.post(
        "/api/proposals", json={"title": "Roof", "estimatedCost": "10"}, headers=auth_headers(contractor)
    )
    assert response.status_code == 422


def test_homeowners_cannot_create(client, homeowner):
    response = client.post(
        "/api/proposals",
        json={"title": "Roof", "serviceType": "roofing", "estimatedCost": "10"},
        headers=auth_headers(homeowner),
    )
    assert response.status_code == 403


def test_cannot_create_already_accepted(client, contractor):
    response = client.post(
        "/api/proposals",
        json={"title": "Roof", "serviceType": "roofing", "estimatedCost": "10", "status": "accepted"},
        headers=auth_headers(contractor),
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "invalid_transition"


def test_create_with_homeowner_notifies_them(client, contractor, homeowner, db):
    create_proposal(client, contractor, homeownerId=homeowner.id)

    notification = db.query(Notification).filter(Notification.homeowner_id == homeowner.id).one()
    assert notification.title == "New Proposal"
    assert notification.message == "Acme Plumbing sent you a proposal: Kitchen renovation"
    assert notification.link == "/messages"
    assert notification.priority == "high"


def test_create_with_unknown_homeowner(client, contractor):
    response = client.post(
        "/api/proposals",
        json={"title": "Roof", "serviceType": "roofing", "estimatedCost": "10", "homeownerId": "missing"},
        headers=auth_headers(contractor),
    )
    assert response.status_code == 404


def test_list_is_scoped_to_caller_and_newest_first(client, contractor, other_contractor, db):
    older = Proposal(
        contractor_id=contractor.id,
        title="Gutter cleaning",
        service_type="gutters",
        estimated_cost=200,
        created_at=datetime.utcnow() - timedelta(days=2),
    )
    newer = Proposal(
        contractor_id=contractor.id,
        title="Drywall patch",
        service_type="drywall",
        estimated_cost=300,
        created_at=datetime.utcnow() - timedelta(days=1),
    )
    foreign = Proposal(contractor_id=other_contractor.id, title="Roof", service_type="roofing", estimated_cost=1)
    db.add_all([older, newer, foreign])
    db.commit()

    response = client.get(f"/api/proposals?contractorId={contractor.id}", headers=auth_headers(contractor))
    assert response.status_code == 200
    assert [p["title"] for p in response.json()] == ["Drywall patch", "Gutter cleaning"]

    response = client.get(f"/api/proposals?contractorId={other_contractor.id}", headers=auth_headers(contractor))
    assert response.status_code == 403


def test_homeowner_lists_received_proposals_without_internal_notes(client, contractor, homeowner):
    create_proposal(client, contractor, homeownerId=homeowner.id, internalNotes="margin 30%")

    response = client.get("/api/proposals", headers=auth_headers(homeowner))
    assert response.status_code == 200
    proposals = response.json()
    assert len(proposals) == 1
    assert proposals[0]["internalNotes"] is None


def test_get_hides_proposals_from_strangers(client, contractor, other_contractor, homeowner):
    proposal = create_proposal(client, contractor, internalNotes="foo")

    response = client.get(f"/api/proposals/{proposal['id']}", headers=auth_headers(contractor))
    assert response.status_code == 200
    assert response.json()["internalNotes"] == "foo"

    assert client.get(f"/api/proposals/{proposal['id']}", headers=auth_headers(other_contractor)).status_code == 404
    assert client.get(f"/api/proposals/{proposal['id']}", headers=auth_headers(homeowner)).status_code == 404


def test_partial_update_preserves_untouched_fields(client, contractor, homeowner):
    proposal = create_proposal(client, contractor, homeownerId=homeowner.id, internalNotes="foo")

    response = client.patch(
        f"/api/proposals/{proposal['id']}", json={"status": "sent"}, headers=auth_headers(contractor)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "sent"

    refetched = client.get(f"/api/proposals/{proposal['id']}", headers=auth_headers(contractor)).json()
    assert refetched["internalNotes"] == "foo"
    assert refetched["title"] == "Kitchen renovation"
    assert refetched["estimatedCost"] == "1500.00"


def test_update_renormalizes_materials_and_cost(client, contractor):
    proposal = create_proposal(client, contractor)

    response = client.patch(
        f"/api/proposals/{proposal['id']}",
        json={"materials": "copper, , PEX ", "estimatedCost": "99.9"},
        headers=auth_headers(contractor),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["materials"] == ["copper", "PEX"]
    assert body["estimatedCost"] == "99.90"

    response = client.patch(
        f"/api/proposals/{proposal['id']}", json={"estimatedCost": "-1"}, headers=auth_headers(contractor)
    )
    assert response.status_code == 422


def test_update_can_clear_nullable_fields(client, contractor):
    proposal = create_proposal(client, contractor, customerNotes="call first", warrantyPeriod="1 year")

    response = client.patch(
        f"/api/proposals/{proposal['id']}", json={"customerNotes": None}, headers=auth_headers(contractor)
    )
    assert response.status_code == 200
    assert response.json()["customerNotes"] is None
    assert response.json()["warrantyPeriod"] == "1 year"


def test_invalid_transition_is_rejected_with_409(client, contractor):
    proposal = create_proposal(client, contractor)

    response = client.patch(
        f"/api/proposals/{proposal['id']}", json={"status": "accepted"}, headers=auth_headers(contractor)
    )
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["code"] == "invalid_transition"
    assert detail["current"] == "draft"
    assert detail["target"] == "accepted"

    refetched = client.get(f"/api/proposals/{proposal['id']}", headers=auth_headers(contractor)).json()
    assert refetched["status"] == "draft"


def test_unknown_status_value_is_a_validation_error(client, contractor):
    proposal = create_proposal(client, contractor)
    response = client.patch(
        f"/api/proposals/{proposal['id']}", json={"status": "archived"}, headers=auth_headers(contractor)
    )
    assert response.status_code == 422


def test_sending_notifies_homeowner(client, contractor, homeowner, db):
    proposal = create_proposal(client, contractor)
    client.patch(
        f"/api/proposals/{proposal['id']}", json={"homeownerId": homeowner.id}, headers=auth_headers(contractor)
    )
    db.query(Notification).delete()
    db.commit()

    client.patch(f"/api/proposals/{proposal['id']}", json={"status": "sent"}, headers=auth_headers(contractor))

    assert db.query(Notification).filter(Notification.homeowner_id == homeowner.id).count() == 1


def test_homeowner_may_only_accept_or_reject(client, contractor, homeowner):
    proposal = create_proposal(client, contractor, homeownerId=homeowner.id, status="sent")

    response = client.patch(
        f"/api/proposals/{proposal['id']}", json={"title": "Cheaper"}, headers=auth_headers(homeowner)
    )
    assert response.status_code == 403

    response = client.patch(
        f"/api/proposals/{proposal['id']}", json={"status": "expired"}, headers=auth_headers(homeowner)
    )
    assert response.status_code == 403

    response = client.patch(
        f"/api/proposals/{proposal['id']}", json={"status": "rejected"}, headers=auth_headers(homeowner)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["newAchievements"] is None


def test_accepting_unlocks_first_hire_once(client, contractor, homeowner, db):
    proposal = create_proposal(client, contractor, homeownerId=homeowner.id, status="sent")

    response = client.patch(
        f"/api/proposals/{proposal['id']}", json={"status": "accepted"}, headers=auth_headers(homeowner)
    )
    assert response.status_code == 200
    assert response.json()["newAchievements"] == [
        {"title": "First Hire!", "description": "You hired your first contractor"}
    ]

    # A second accepted proposal from the same contractor is not a new hire
    second = create_proposal(client, contractor, homeownerId=homeowner.id, status="sent")
    response = client.patch(
        f"/api/proposals/{second['id']}", json={"status": "accepted"}, headers=auth_headers(homeowner)
    )
    assert response.json()["newAchievements"] is None
    assert db.query(UserAchievement).filter(UserAchievement.homeowner_id == homeowner.id).count() == 1


def test_delete_is_owner_only_and_permanent(client, contractor, homeowner, db):
    proposal = create_proposal(client, contractor, homeownerId=homeowner.id)

    assert client.delete(f"/api/proposals/{proposal['id']}", headers=auth_headers(homeowner)).status_code == 403

    response = client.delete(f"/api/proposals/{proposal['id']}", headers=auth_headers(contractor))
    assert response.status_code == 204
    assert response.content == b""
    assert db.query(Proposal).count() == 0
    assert client.get(f"/api/proposals/{proposal['id']}", headers=auth_headers(contractor)).status_code == 404


def test_contract_upload_normalizes_path(client, contractor, homeowner):
    proposal = create_proposal(client, contractor, homeownerId=homeowner.id)

    response = client.post(
        f"/api/proposals/{proposal['id']}/contract",
        json={"contractFilePath": "https://storage.test/homebase/contracts/abc-123"},
        headers=auth_headers(contractor),
    )
    assert response.status_code == 200
    assert response.json()["contractFilePath"] == "/objects/contracts/abc-123"

    response = client.post(
        f"/api/proposals/{proposal['id']}/contract",
        json={"contractFilePath": "/objects/contracts/abc-123"},
        headers=auth_headers(homeowner),
    )
    assert response.status_code == 403

    response = client.post(
        f"/api/proposals/{proposal['id']}/contract",
        json={"contractFilePath": "not a path"},
        headers=auth_headers(contractor),
    )
    assert response.status_code == 400


def test_sign_requires_contract(client, contractor, homeowner):
    proposal = create_proposal(client, contractor, homeownerId=homeowner.id, status="sent")

    response = client.post(
        f"/api/proposals/{proposal['id']}/sign", json=sign_payload(), headers=auth_headers(homeowner)
    )
    assert response.status_code == 409


def test_sign_records_signature_and_accepts(client, contractor, homeowner):
    proposal = create_proposal(client, contractor, homeownerId=homeowner.id)
    client.post(
        f"/api/proposals/{proposal['id']}/contract",
        json={"contractFilePath": "/objects/contracts/abc"},
        headers=auth_headers(contractor),
    )

    response = client.post(
        f"/api/proposals/{proposal['id']}/sign",
        json=sign_payload(),
        headers={**auth_headers(homeowner), "User-Agent": "pytest-browser"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "accepted"
    assert body["customerSignature"] == SIGNATURE
    assert body["customerSignerName"] == "Jane Doe"
    assert body["contractSignedAt"] is not None
    assert body["signatureIpAddress"] == "198.51.100.4"
    assert body["newAchievements"][0]["title"] == "First Hire!"

    # Signing is offered once
    response = client.post(
        f"/api/proposals/{proposal['id']}/sign", json=sign_payload(), headers=auth_headers(homeowner)
    )
    assert response.status_code == 409


def test_sign_falls_back_to_forwarded_ip(client, contractor, homeowner, db):
    proposal = create_proposal(client, contractor, homeownerId=homeowner.id)
    client.post(
        f"/api/proposals/{proposal['id']}/contract",
        json={"contractFilePath": "/objects/contracts/abc"},
        headers=auth_headers(contractor),
    )

    response = client.post(
        f"/api/proposals/{proposal['id']}/sign",
        json=sign_payload(ipAddress=""),
        headers={**auth_headers(homeowner), "X-Forwarded-For": "192.0.2.10, 10.0.0.1", "User-Agent": "UA/1.0"},
    )
    assert response.status_code == 200
    assert response.json()["signatureIpAddress"] == "192.0.2.10"

    stored = db.query(Proposal).filter(Proposal.id == proposal["id"]).one()
    assert stored.signature_user_agent == "UA/1.0"


def test_only_attached_homeowner_can_sign(client, contractor, homeowner, other_homeowner):
    proposal = create_proposal(client, contractor, homeownerId=homeowner.id)
    client.post(
        f"/api/proposals/{proposal['id']}/contract",
        json={"contractFilePath": "/objects/contracts/abc"},
        headers=auth_headers(contractor),
    )

    response = client.post(
        f"/api/proposals/{proposal['id']}/sign", json=sign_payload(), headers=auth_headers(contractor)
    )
    assert response.status_code == 403

    response = client.post(
        f"/api/proposals/{proposal['id']}/sign", json=sign_payload(), headers=auth_headers(other_homeowner)
    )
    assert response.status_code == 404


def test_sign_validates_payload(client, contractor, homeowner):
    proposal = create_proposal(client, contractor, homeownerId=homeowner.id)
    client.post(
        f"/api/proposals/{proposal['id']}/contract",
        json={"contractFilePath": "/objects/contracts/abc"},
        headers=auth_headers(contractor),
    )

    for bad in (sign_payload(signerName="   "), sign_payload(signature="not-an-image")):
        response = client.post(f"/api/proposals/{proposal['id']}/sign", json=bad, headers=auth_headers(homeowner))
        assert response.status_code == 422


def test_rejected_proposal_cannot_be_signed(client, contractor, homeowner):
    proposal = create_proposal(client, contractor, homeownerId=homeowner.id, status="sent")
    client.post(
        f"/api/proposals/{proposal['id']}/contract",
        json={"contractFilePath": "/objects/contracts/abc"},
        headers=auth_headers(contractor),
    )
    client.patch(f"/api/proposals/{proposal['id']}", json={"status": "rejected"}, headers=auth_headers(homeowner))

    response = client.post(
        f"/api/proposals/{proposal['id']}/sign", json=sign_payload(), headers=auth_headers(homeowner)
    )
    assert response.status_code == 409
    assert response.json()["detail"]["current"] == "rejected"


def test_hiring_milestones_follow_distinct_contractors(client, db, homeowner):
    titles = []
    for i in range(3):
        contractor = create_user(db, f"pro{i}@example.com", "contractor", name=f"Pro {i}")
        proposal = create_proposal(client, contractor, homeownerId=homeowner.id, status="sent")
        response = client.patch(
            f"/api/proposals/{proposal['id']}", json={"status": "accepted"}, headers=auth_headers(homeowner)
        )
        titles.extend(a["title"] for a in response.json()["newAchievements"] or [])

    assert titles == ["First Hire!", "Building Trust"]


def test_resaving_edit_form_leaves_text_unchanged(client, contractor):
    proposal = create_proposal(client, contractor, title="Kitchen & bath", materials="Pipes & fittings, <valves>")
    first_title, first_materials = proposal["title"], proposal["materials"]

    for _ in range(2):
        payload = build_update_payload(form_values_from_proposal(proposal))
        response = client.patch(f"/api/proposals/{proposal['id']}", json=payload, headers=auth_headers(contractor))
        assert response.status_code == 200, response.text
        proposal = response.json()

    assert proposal["title"] == first_title == "Kitchen &amp; bath"
    assert proposal["materials"] == first_materials == ["Pipes &amp; fittings", "&lt;valves&gt;"]


def failing_achievement_check(db, homeowner_id):
    raise IntegrityError("INSERT INTO user_achievements", {}, Exception("duplicate achievement"))


@pytest.fixture
def broken_achievements(monkeypatch):
    monkeypatch.setattr(
        proposal_service, "check_and_unlock_contractor_hiring_achievements", failing_achievement_check
    )


def test_sign_succeeds_when_achievement_check_fails(client, contractor, homeowner, db, broken_achievements):
    proposal = create_proposal(client, contractor, homeownerId=homeowner.id)
    client.post(
        f"/api/proposals/{proposal['id']}/contract",
        json={"contractFilePath": "/objects/contracts/abc"},
        headers=auth_headers(contractor),
    )

    response = client.post(
        f"/api/proposals/{proposal['id']}/sign", json=sign_payload(), headers=auth_headers(homeowner)
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "accepted"
    assert body["customerSignature"] == SIGNATURE
    assert body.get("newAchievements") is None
    assert db.query(UserAchievement).count() == 0


def test_accept_succeeds_when_achievement_check_fails(client, contractor, homeowner, broken_achievements):
    proposal = create_proposal(client, contractor, homeownerId=homeowner.id, status="sent")

    response = client.patch(
        f"/api/proposals/{proposal['id']}", json={"status": "accepted"}, headers=auth_headers(homeowner)
    )

    assert response.status_code == 200
    assert response.json()["status"] == "accepted"
