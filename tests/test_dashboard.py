from datetime import datetime, timezone
from decimal import Decimal

import pytest
from conftest import api_client, auth_headers, create_user

from homebase.client import cache as cache_module
from homebase.client.cache import USER_KEY, USER_TTL, QueryCache, proposals_key
from homebase.client.dashboard import ContractorDashboard, HomeownerDashboard
from homebase.models import Proposal

NOW = datetime(2030, 1, 1, tzinfo=timezone.utc)


SEEDED = [
    ("draft", 100),
    ("sent", 200),
    ("accepted", Decimal("1500.25")),
    ("accepted", 99),
    ("rejected", 5000),
]


def seed_proposals(db, contractor):
    for status, cost in SEEDED:
        db.add(
            Proposal(
                contractor_id=contractor.id,
                title=f"{status} job",
                service_type="painting",
                estimated_cost=cost,
                status=status,
            )
        )
    db.commit()


def schedule(client, contractor, homeowner, when, service_type="painting"):
    response = client.post(
        "/api/appointments",
        json={"homeownerId": homeowner.id, "serviceType": service_type, "scheduledDateTime": when},
        headers=auth_headers(contractor),
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_contractor_dashboard_endpoint(client, db, contractor, homeowner):
    seed_proposals(db, contractor)
    schedule(client, contractor, homeowner, "2000-01-01T09:00:00Z", "roofing")
    soon = schedule(client, contractor, homeowner, "2098-06-01T09:00:00Z")
    schedule(client, contractor, homeowner, "2099-06-01T09:00:00Z")

    response = client.get("/api/dashboard/contractor", headers=auth_headers(contractor))

    assert response.status_code == 200
    summary = response.json()
    assert summary["pendingCount"] == 2
    assert summary["acceptedCount"] == 2
    assert summary["earnings"] == "1599.25"
    assert len(summary["upcomingAppointments"]) == 2
    assert summary["nextAppointment"]["id"] == soon["id"]


def test_contractor_dashboard_is_contractor_only(client, homeowner):
    response = client.get("/api/dashboard/contractor", headers=auth_headers(homeowner))
    assert response.status_code == 403


def test_homeowner_dashboard_endpoint(client, db, contractor):
    homeowner = create_user(db, "tier@example.com", "homeowner", max_houses_allowed=3, referral_count=5)
    schedule(client, contractor, homeowner, "2099-01-01T09:00:00+02:00")

    summary = client.get("/api/dashboard/homeowner", headers=auth_headers(homeowner)).json()

    assert summary["referralsNeeded"] == 20
    assert summary["referralsRemaining"] == 15
    assert summary["referralProgress"] == pytest.approx(25.0)
    assert summary["nextAppointment"]["scheduledDateTime"] == "2099-01-01T07:00:00"


def test_appointment_for_unknown_homeowner(client, contractor, other_contractor):
    response = client.post(
        "/api/appointments",
        json={
            "homeownerId": other_contractor.id,
            "serviceType": "hvac",
            "scheduledDateTime": "2099-01-01T09:00:00Z",
        },
        headers=auth_headers(contractor),
    )
    assert response.status_code == 404


@pytest.mark.anyio
async def test_client_contractor_dashboard_uses_cache_until_invalidated(client, db, contractor, homeowner):
    seed_proposals(db, contractor)
    schedule(client, contractor, homeowner, "2031-01-01T09:00:00Z")
    cache = QueryCache()

    async with api_client(contractor) as api:
        dashboard = ContractorDashboard(api, cache=cache, clock=lambda: NOW)
        first = await dashboard.render(contractor.id)

        db.add(Proposal(contractor_id=contractor.id, title="new", service_type="hvac", estimated_cost=1, status="accepted"))
        db.commit()

        cached = await dashboard.render(contractor.id)
        cache.invalidate_proposals()
        fresh = await dashboard.render(contractor.id)

    assert first["earnings"] == "1599.25"
    assert first["nextAppointment"]["serviceType"] == "painting"
    assert cached == first
    assert fresh["acceptedCount"] == 3
    assert fresh["earnings"] == "1600.25"
    assert cache.get(proposals_key(contractor.id)) is not None


@pytest.mark.anyio
async def test_client_homeowner_dashboard(client, db, contractor, homeowner):
    schedule(client, contractor, homeowner, "2029-01-01T09:00:00Z")
    schedule(client, contractor, homeowner, "2030-02-01T09:00:00Z")

    async with api_client(homeowner) as api:
        summary = await HomeownerDashboard(api, clock=lambda: NOW).render()

    assert summary["referralsNeeded"] == 5
    assert summary["referralCount"] == 0
    assert [a["scheduledDateTime"] for a in summary["upcomingAppointments"]] == ["2030-02-01T09:00:00"]


@pytest.mark.anyio
async def test_client_homeowner_dashboard_refreshes_referrals_after_mutation(db, homeowner):
    cache = QueryCache()

    async with api_client(homeowner) as api:
        dashboard = HomeownerDashboard(api, cache=cache, clock=lambda: NOW)
        first = await dashboard.render()

        homeowner.referral_count = 4
        db.commit()

        cached = await dashboard.render()
        cache.invalidate_proposals()
        fresh = await dashboard.render()

    assert first["referralCount"] == cached["referralCount"] == 0
    assert fresh["referralCount"] == 4
    assert cache.get(USER_KEY)["referralCount"] == 4


def test_cached_profile_expires(monkeypatch):
    cache = QueryCache()
    cache.set(USER_KEY, {"id": "h1", "referralCount": 0}, ttl=USER_TTL)
    assert cache.get(USER_KEY) is not None

    started = cache_module.time.monotonic()
    monkeypatch.setattr(cache_module.time, "monotonic", lambda: started + USER_TTL + 1)

    assert cache.get(USER_KEY) is None
