"""Unit tests for the moderation worker logic.

Tests cover:
- Clean, violating, short and unanalyzable content
- Flag creation and author notification
- Idempotent redelivery (one flag, one notification)
- Content or author removed before the job ran
- Transient classifier failures propagating for retry
"""

import pytest
from sqlalchemy.orm import Session as DBSession

from vigil_core.domain.errors import ClassifierUnavailable, InvalidJobPayload
from vigil_core.domain.models import FlaggedContent, FlagStatus, Job, Topic
from vigil_core.domain.services.moderation import ModerationService
from vigil_core.providers.base import Verdict
from tests.factories import create_content, create_user, moderation_payload


@pytest.fixture
def service(store, fake_classifier, job_queue):
    return ModerationService(store=store, classifier=fake_classifier, jobs=job_queue)


def notification_jobs(db_session: DBSession) -> list[Job]:
    return db_session.query(Job).filter(Job.topic == Topic.NOTIFICATION).all()


class TestClassification:
    """Tests for verdict handling."""

    def test_clean_content(self, db_session, service, fake_classifier):
        author = create_user(db_session)
        content = create_content(db_session, author, body="What a lovely afternoon.")

        outcome = service.process(moderation_payload(content))

        assert outcome.status == "clean"
        assert not outcome.flagged
        assert fake_classifier.calls == ["What a lovely afternoon."]
        assert db_session.query(FlaggedContent).count() == 0
        assert notification_jobs(db_session) == []

    def test_violation_creates_flag_and_notification(self, db_session, service):
        author = create_user(db_session, display_name="Mallory")
        content = create_content(db_session, author, body="I will find and hurt you")

        outcome = service.process(moderation_payload(content))

        assert outcome.status == "flagged"
        assert outcome.reason == "threat"
        flag = db_session.get(FlaggedContent, outcome.flagged_content_id)
        assert flag.status == FlagStatus.PENDING
        assert flag.reason == "threat"
        assert flag.author_id == author.id
        assert flag.content_kind == content.kind

        jobs = notification_jobs(db_session)
        assert [j.id for j in jobs] == [outcome.notification_job_id]
        assert jobs[0].payload_json == {
            "kind": "content-flagged",
            "recipient": {"id": author.id, "email": author.email, "display_name": "Mallory"},
            "content_kind": "COMMENT",
            "reason": "threat",
            "flagged_content_id": flag.id,
        }

    def test_notification_dispatched_only_after_commit(self, db_session, service, dispatcher):
        author = create_user(db_session)
        content = create_content(db_session, author, body="buy now, limited offer")

        outcome = service.process(moderation_payload(content))
        assert dispatcher.job_ids(Topic.NOTIFICATION) == []

        db_session.commit()
        assert dispatcher.job_ids(Topic.NOTIFICATION) == [outcome.notification_job_id]

    def test_violation_without_reason_uses_default(self, db_session, service, fake_classifier):
        author = create_user(db_session)
        content = create_content(db_session, author, body="borderline text")
        fake_classifier.next_verdict = Verdict(is_violation=True)

        outcome = service.process(moderation_payload(content))

        assert outcome.reason == "Content flagged by AI moderation."

    @pytest.mark.parametrize("body", ["", "   ", "hey", "  hi  "])
    def test_short_body_skipped_without_classifying(self, db_session, service, fake_classifier, body):
        author = create_user(db_session)
        content = create_content(db_session, author, body="placeholder body")
        payload = moderation_payload(content)
        payload["body"] = body

        outcome = service.process(payload)

        assert outcome.status == "skipped"
        assert outcome.reason == "too_short"
        assert fake_classifier.calls == []

    def test_unanalyzable_content_skipped(self, db_session, service, fake_classifier):
        author = create_user(db_session)
        content = create_content(db_session, author, body="x" * 50)
        fake_classifier.next_verdict = Verdict.rejected_input("text too long")

        outcome = service.process(moderation_payload(content))

        assert outcome.status == "skipped"
        assert outcome.reason == "unanalyzable"
        assert db_session.query(FlaggedContent).count() == 0

    def test_classifier_failure_propagates(self, db_session, service, fake_classifier):
        author = create_user(db_session)
        content = create_content(db_session, author, body="I will find and hurt you")
        fake_classifier.fail_times = 1

        with pytest.raises(ClassifierUnavailable):
            service.process(moderation_payload(content))

        assert db_session.query(FlaggedContent).count() == 0

    def test_invalid_payload(self, service):
        with pytest.raises(InvalidJobPayload):
            service.process({"content_id": 1, "content_kind": "POST", "body": "x", "author_id": 1})


class TestIdempotency:
    """Redelivered jobs create no second flag and no second notification."""

    def test_redelivery_after_flagging(self, db_session, service):
        author = create_user(db_session)
        content = create_content(db_session, author, body="I will find and hurt you")
        payload = moderation_payload(content)

        first = service.process(payload)
        second = service.process(payload)

        assert first.status == "flagged"
        assert second.status == "already_flagged"
        assert second.notification_job_id is None
        assert db_session.query(FlaggedContent).count() == 1
        assert len(notification_jobs(db_session)) == 1

    def test_edit_of_flagged_content_not_flagged_again(self, db_session, service):
        author = create_user(db_session)
        content = create_content(db_session, author, body="buy now cheap pills")
        service.process(moderation_payload(content))

        content.body = "buy now, even cheaper"
        db_session.flush()
        outcome = service.process(moderation_payload(content))

        assert outcome.status == "already_flagged"
        assert db_session.query(FlaggedContent).count() == 1

    def test_comment_and_review_flagged_separately(self, db_session, service):
        author = create_user(db_session)
        comment = create_content(db_session, author, body="I will find and hurt you")
        payload = moderation_payload(comment)
        review = create_content(db_session, author, body="I will find and hurt you", kind="REVIEW")

        service.process(payload)
        outcome = service.process(moderation_payload(review))

        assert outcome.status == "flagged"
        assert db_session.query(FlaggedContent).count() == 2


class TestMissingRecords:
    """The content or its author may disappear before the job runs."""

    def test_content_missing(self, db_session, service, fake_classifier):
        author = create_user(db_session)
        outcome = service.process(
            {"content_id": 9999, "content_kind": "COMMENT", "body": "I will find and hurt you", "author_id": author.id}
        )

        assert outcome.status == "noop"
        assert outcome.reason == "content_missing"
        assert fake_classifier.calls == []

    def test_author_missing(self, db_session, service):
        author = create_user(db_session)
        content = create_content(db_session, author, body="I will find and hurt you")
        payload = moderation_payload(content)
        payload["author_id"] = 9999

        outcome = service.process(payload)

        assert outcome.status == "noop"
        assert outcome.reason == "author_missing"
        assert db_session.query(FlaggedContent).count() == 0


class TestMinLength:
    """Tests for the configurable minimum length."""

    def test_custom_min_length(self, db_session, store, fake_classifier, job_queue):
        service = ModerationService(store, fake_classifier, job_queue, min_length=20)
        author = create_user(db_session)
        content = create_content(db_session, author, body="short but > 5")

        assert service.process(moderation_payload(content)).reason == "too_short"
