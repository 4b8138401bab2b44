"""Worker loop, job registry and LifeLink job handlers."""

from datetime import datetime, timedelta, timezone

import pytest

from lifelink import worker
from lifelink.core.config import settings
from lifelink.db.enums import JobStatus, JobType, NotificationType, RequisitionStatus
from lifelink.db.models import DonorNotification, Job, Notification
from lifelink.jobs.registry import JOB_HANDLERS, resolve_job_handler
from lifelink.services import job_service, response_service


def test_registry_covers_every_job_type():
    assert set(JOB_HANDLERS) == {job_type.value for job_type in JobType}
    with pytest.raises(ValueError):
        resolve_job_handler("mystery")


def test_schedule_expiry_sweep_once_per_hour(db):
    at = datetime(2024, 6, 15, 12, 5, tzinfo=timezone.utc)
    first = worker.schedule_expiry_sweep(db, now=at)
    second = worker.schedule_expiry_sweep(db, now=at + timedelta(minutes=40))
    third = worker.schedule_expiry_sweep(db, now=at + timedelta(hours=1))

    assert first.id == second.id
    assert third.id != first.id
    assert first.idempotency_key == "requisition_expiry_sweep:2024061512"


def test_error_tracking_disabled_in_dev(monkeypatch):
    monkeypatch.setattr(settings, "SENTRY_DSN", "https://key@sentry.example.org/1")
    monkeypatch.setattr(settings, "ENV", "dev")
    assert worker.init_error_tracking() is False

    monkeypatch.setattr(settings, "SENTRY_DSN", "")
    monkeypatch.setattr(settings, "ENV", "production")
    assert worker.init_error_tracking() is False


@pytest.mark.asyncio
async def test_run_once_with_no_jobs(db):
    assert await worker.run_once(db) == 0


@pytest.mark.asyncio
async def test_failing_job_is_retried_then_failed(db, test_org):
    job = job_service.schedule_job(db, test_org.id, JobType.REQUESTER_NOTIFICATION, {})

    for _ in range(3):
        assert await worker.run_once(db) == 1

    db.refresh(job)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 3
    assert job.last_error == "ValueError: Missing response_id in job payload"
    assert await worker.run_once(db) == 0


@pytest.mark.asyncio
async def test_expiry_sweep_job(db, test_org, make_requisition):
    req = make_requisition(hours=1)
    job_service.schedule_job(
        db,
        test_org.id,
        JobType.REQUISITION_EXPIRY_SWEEP,
        {"now": (datetime.now(timezone.utc) + timedelta(hours=2)).isoformat()},
    )

    await worker.run_once(db)

    db.refresh(req)
    assert req.status == RequisitionStatus.EXPIRED.value
    assert db.query(Job).one().status == JobStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_emergency_dispatch_job_broadcasts(db, test_org, gateway, default_provider, make_user, make_requisition):
    make_user("Compatible", blood_group="O-", tokens=("o-neg",))
    make_user("Incompatible", blood_group="AB+", tokens=("ab-pos",))
    req = make_requisition("O-")
    job_service.schedule_job(db, test_org.id, JobType.EMERGENCY_DISPATCH, {"requisition_id": str(req.id)})

    await worker.run_once(db)

    assert default_provider.sent_tokens == ["o-neg"]
    assert db.query(DonorNotification).count() == 1
    assert db.query(Job).one().status == JobStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_emergency_dispatch_job_skips_closed_requisition(db, test_org, gateway, default_provider, make_user, make_requisition):
    donor = make_user("Compatible", blood_group="O-", tokens=("o-neg",))
    req = make_requisition("O-")
    req.status = RequisitionStatus.FULFILLED.value
    db.commit()
    job_service.schedule_job(
        db,
        test_org.id,
        JobType.EMERGENCY_DISPATCH,
        {"requisition_id": str(req.id), "donor_ids": [str(donor.id)]},
    )

    await worker.run_once(db)

    assert default_provider.multicast_calls == []
    assert db.query(Job).one().status == JobStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_donation_reminder_job(db, test_org, gateway, default_provider, make_user):
    donor = make_user("Rested", blood_group="B+", tokens=("b-pos",))
    job_service.schedule_job(
        db,
        test_org.id,
        JobType.DONATION_REMINDER,
        {"donor_ids": [str(donor.id), "not-a-uuid"], "message": "You can donate again"},
    )

    await worker.run_once(db)

    notification = db.query(Notification).one()
    assert notification.type == NotificationType.LIFELINK_REMINDER.value
    assert notification.message == "You can donate again"
    assert default_provider.sent_tokens == ["b-pos"]


@pytest.mark.asyncio
async def test_response_triggers_requester_notification_job(db, gateway, default_provider, requester, make_user, make_requisition):
    donor = make_user("Willing", blood_group="O+", phone="+913333333333", show_phone=True)
    req = make_requisition("A+")
    response_service.respond_to_requisition(db, req.id, donor.id, "WILLING")

    assert await worker.run_once(db) == 1

    notification = db.query(Notification).one()
    assert notification.recipient_id == requester.id
    assert notification.type == NotificationType.LIFELINK_RESPONSE.value
    assert "Contact: +913333333333" in notification.message
    assert default_provider.sent_tokens == ["requester-token"]
