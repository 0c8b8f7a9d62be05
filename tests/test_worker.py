from datetime import date

import pytest

from homebase import worker
from homebase.models import Proposal


@pytest.mark.anyio
async def test_proposal_expiry_task_uses_its_own_session(monkeypatch, session_factory, db, contractor):
    proposal = Proposal(
        contractor_id=contractor.id,
        title="Fence repair",
        service_type="other",
        estimated_cost=400,
        status="sent",
        valid_until=date(2001, 1, 1),
    )
    db.add(proposal)
    db.commit()
    monkeypatch.setattr(worker, "SessionLocal", session_factory)

    summary = await worker.proposal_expiry_task({})

    assert summary == {"sent_to_expired": 1, "total_updated": 1}
    db.expire_all()
    assert db.get(Proposal, proposal.id).status == "expired"


def test_worker_runs_expiry_daily():
    [job] = worker.WorkerSettings.cron_jobs
    assert job.coroutine is worker.proposal_expiry_task
    assert job.hour == 0
    assert job.minute == 5
