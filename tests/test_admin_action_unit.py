"""Unit tests for applying admin decisions to flags.

Tests cover:
- APPROVE and REJECT transitions with their notifications
- Rejection reason fallbacks
- Duplicate deliveries and stale decisions
- Missing flags
"""

import pytest

from vigil_core.domain.errors import InvalidJobPayload
from vigil_core.domain.models import FlaggedContent, FlagStatus, Job, Topic
from vigil_core.domain.services.admin_action import AdminActionService
from vigil_core.domain.services.store import StatusUpdate
from tests.factories import create_admin, create_content, create_flag, create_user


@pytest.fixture
def service(store, job_queue):
    return AdminActionService(store=store, jobs=job_queue)


@pytest.fixture
def flagged(db_session):
    author = create_user(db_session, display_name="Author")
    admin = create_admin(db_session)
    content = create_content(db_session, author, body="I will find and hurt you")
    flag = create_flag(db_session, content, reason="threat")
    return author, admin, flag


def decision(flag, admin, action, reason=None):
    payload = {"flagged_content_id": flag.id, "action": action, "acting_admin_id": admin.id}
    if reason is not None:
        payload["reason"] = reason
    return payload


def notifications(db_session):
    return db_session.query(Job).filter(Job.topic == Topic.NOTIFICATION).all()


def reload_flag(db_session, flag_id) -> FlaggedContent:
    db_session.expire_all()
    return db_session.get(FlaggedContent, flag_id)


class TestApprove:
    """Tests for APPROVE."""

    def test_approve_pending_flag(self, db_session, service, flagged):
        author, admin, flag = flagged

        outcome = service.process(decision(flag, admin, "APPROVE"))

        assert outcome.status == "updated"
        assert outcome.flag_status == FlagStatus.APPROVED
        flag = reload_flag(db_session, flag.id)
        assert flag.status == FlagStatus.APPROVED
        assert flag.reviewed_by_id == admin.id
        assert flag.resolution_reason is None
        assert flag.reviewed_at is not None

        [job] = notifications(db_session)
        assert job.payload_json["kind"] == "content-approved"
        assert job.payload_json["recipient"]["id"] == author.id
        assert "reason" not in job.payload_json


class TestReject:
    """Tests for REJECT."""

    def test_reject_with_reason(self, db_session, service, flagged):
        _, admin, flag = flagged

        outcome = service.process(decision(flag, admin, "REJECT", reason="spam"))

        assert outcome.flag_status == FlagStatus.REJECTED
        assert reload_flag(db_session, flag.id).resolution_reason == "spam"
        [job] = notifications(db_session)
        assert job.payload_json["kind"] == "content-rejected"
        assert job.payload_json["reason"] == "spam"

    def test_reject_without_reason_uses_flag_reason(self, db_session, service, flagged):
        _, admin, flag = flagged

        service.process(decision(flag, admin, "REJECT"))

        assert reload_flag(db_session, flag.id).resolution_reason == "threat"


class TestIdempotency:
    """Repeated or stale decisions change nothing and notify nobody."""

    def test_duplicate_reject_notifies_once(self, db_session, service, flagged):
        _, admin, flag = flagged
        payload = decision(flag, admin, "REJECT", reason="spam")

        first = service.process(payload)
        second = service.process(payload)

        assert first.status == "updated"
        assert second.status == "already_in_state"
        assert second.notification_job_id is None
        assert len(notifications(db_session)) == 1

    def test_conflicting_decision_ignored(self, db_session, service, flagged):
        _, admin, flag = flagged
        service.process(decision(flag, admin, "APPROVE"))

        outcome = service.process(decision(flag, admin, "REJECT", reason="late"))

        assert outcome.status == "conflict"
        flag = reload_flag(db_session, flag.id)
        assert flag.status == FlagStatus.APPROVED
        assert flag.resolution_reason is None
        assert len(notifications(db_session)) == 1

    def test_store_compare_and_set(self, store, flagged):
        _, admin, flag = flagged

        assert store.update_flagged_content_status_if_pending(flag.id, FlagStatus.REJECTED) is StatusUpdate.UPDATED
        assert store.update_flagged_content_status_if_pending(flag.id, FlagStatus.REJECTED) is StatusUpdate.ALREADY_IN_STATE
        assert store.update_flagged_content_status_if_pending(flag.id, FlagStatus.APPROVED) is StatusUpdate.CONFLICT
        assert store.update_flagged_content_status_if_pending(9999, FlagStatus.APPROVED) is StatusUpdate.NOT_FOUND

    def test_store_rejects_pending_target(self, store, flagged):
        _, _, flag = flagged

        with pytest.raises(ValueError):
            store.update_flagged_content_status_if_pending(flag.id, FlagStatus.PENDING)


class TestMissingFlag:
    """Tests for decisions about flags that no longer exist."""

    def test_missing_flag_is_noop(self, db_session, service):
        admin = create_admin(db_session)

        outcome = service.process(
            {"flagged_content_id": 4242, "action": "APPROVE", "acting_admin_id": admin.id}
        )

        assert outcome.status == "noop"
        assert notifications(db_session) == []

    def test_unknown_action_is_invalid(self, service, flagged):
        _, admin, flag = flagged

        with pytest.raises(InvalidJobPayload):
            service.process(decision(flag, admin, "ESCALATE"))
