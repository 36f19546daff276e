"""End-to-end tests for the moderation pipeline.

Content is submitted through the services, and every wake-up the dispatcher
records is then run through the runner of its topic, just as the workers
would. External systems are the in-process fakes.

Flows covered:
- Violating content: flag, author email
- Admin decision delivered twice: one transition, one email
- Redelivered and re-moderated content: no duplicate flag or email
- Opt-out between flagging and delivery
- Classifier outage: retried with backoff until it recovers
"""

import pytest

from vigil_core.domain.models import FlaggedContent, FlagStatus, Job, JobStatus, Topic
from vigil_core.domain.services.admin_action import AdminActionService
from vigil_core.domain.services.content import ContentService
from vigil_core.domain.services.flags import FlagService
from vigil_core.domain.services.jobs import JobOptions
from vigil_core.domain.services.moderation import ModerationService
from vigil_core.domain.services.notification import NotificationService
from vigil_core.domain.services.store import SqlRecordStore
from vigil_core.domain.services.users import UserService
from vigil_worker.runner import JobRunner, RunResult
from tests.factories import create_admin, create_user


class Pipeline:
    """Runs dispatched wake-ups through per-topic runners."""

    def __init__(self, db_session, session_factory, dispatcher, sink, clock, classifier, notifier):
        self.db_session = db_session
        self.dispatcher = dispatcher
        self.clock = clock
        self.results: list[RunResult] = []

        handlers = {
            Topic.MODERATION: lambda db, queue: ModerationService(
                SqlRecordStore(db), classifier, queue
            ).process,
            Topic.ADMIN_ACTION: lambda db, queue: AdminActionService(
                SqlRecordStore(db), queue
            ).process,
            Topic.NOTIFICATION: lambda db, queue: NotificationService(
                SqlRecordStore(db), notifier
            ).process,
        }
        self.runners = {
            topic: JobRunner(
                topic,
                factory,
                session_factory=session_factory,
                dispatcher=dispatcher,
                sink=sink,
                lease_seconds=120,
                clock=clock,
            )
            for topic, factory in handlers.items()
        }

    def drain(self, max_steps: int = 50) -> list[RunResult]:
        """Run wake-ups until none are left; return what each one did."""
        self.db_session.commit()
        ran = []
        for _ in range(max_steps):
            if not self.dispatcher.dispatched:
                break
            topic, job_id, countdown = self.dispatcher.dispatched.pop(0)
            if countdown:
                self.clock.advance(countdown)
            ran.append(self.runners[topic].run(job_id))
        else:
            pytest.fail("wake-ups did not drain")
        self.results.extend(ran)
        self.db_session.expire_all()
        return ran

    def replay(self, topic: str, job_id: int) -> RunResult:
        """Deliver a wake-up again, as a broker redelivery would."""
        self.db_session.commit()
        result = self.runners[topic].run(job_id)
        self.db_session.expire_all()
        return result


@pytest.fixture
def pipeline(db_session, sync_session_factory, dispatcher, sink, clock, fake_classifier, fake_notifier):
    return Pipeline(
        db_session,
        sync_session_factory,
        dispatcher,
        sink,
        clock,
        fake_classifier,
        fake_notifier,
    )


@pytest.fixture
def content_service(store, job_queue):
    return ContentService(store=store, jobs=job_queue, moderation_options=JobOptions(dedupe=True))


@pytest.fixture
def flag_service(store, job_queue):
    return FlagService(store=store, jobs=job_queue)


def flags(db_session) -> list[FlaggedContent]:
    return db_session.query(FlaggedContent).all()


def jobs(db_session, topic: str) -> list[Job]:
    return db_session.query(Job).filter(Job.topic == topic).order_by(Job.id).all()


class TestViolationFlow:
    """Violating content through to the author's inbox."""

    def test_threat_flagged_and_author_emailed(
        self, db_session, pipeline, content_service, fake_notifier
    ):
        author = create_user(db_session, display_name="Mallory", email="mallory@example.com")

        content = content_service.submit(author, "COMMENT", "I will find and hurt you", parent_post_id=3)
        results = pipeline.drain()

        assert [r.status for r in results] == [RunResult.DONE, RunResult.DONE]
        assert [getattr(r.outcome, "status", None) for r in results] == ["flagged", "sent"]

        [flag] = flags(db_session)
        assert flag.content_id == content.id
        assert flag.status == FlagStatus.PENDING
        assert flag.reason == "threat"

        assert fake_notifier.sent == [
            {
                "kind": "content-flagged",
                "email": "mallory@example.com",
                "name": "Mallory",
                "data": {
                    "content_kind": "COMMENT",
                    "reason": "threat",
                    "flagged_content_id": flag.id,
                },
            }
        ]
        assert all(j.status == JobStatus.DONE for j in db_session.query(Job).all())

    def test_clean_content_sends_nothing(self, db_session, pipeline, content_service, fake_notifier):
        author = create_user(db_session)

        content_service.submit(author, "REVIEW", "Friendly staff, great coffee")
        pipeline.drain()

        assert flags(db_session) == []
        assert jobs(db_session, Topic.NOTIFICATION) == []
        assert fake_notifier.sent == []


class TestAdminDecisionFlow:
    """Admin decisions on flagged content."""

    def test_duplicate_reject_transitions_once(
        self, db_session, pipeline, content_service, flag_service, fake_notifier
    ):
        author = create_user(db_session)
        admin = create_admin(db_session)
        content_service.submit(author, "COMMENT", "buy now cheap watches")
        pipeline.drain()
        [flag] = flags(db_session)

        flag_service.submit_decision(admin, flag.id, "REJECT", reason="spam")
        flag_service.submit_decision(admin, flag.id, "REJECT", reason="spam")
        results = pipeline.drain()

        outcomes = [getattr(r.outcome, "status", None) for r in results]
        assert outcomes.count("updated") == 1
        assert outcomes.count("already_in_state") == 1

        flag = db_session.get(FlaggedContent, flag.id)
        assert flag.status == FlagStatus.REJECTED
        assert flag.resolution_reason == "spam"
        assert flag.reviewed_by_id == admin.id

        kinds = [sent["kind"] for sent in fake_notifier.sent]
        assert kinds == ["content-flagged", "content-rejected"]
        assert fake_notifier.sent[1]["data"]["reason"] == "spam"

    def test_stale_approve_after_reject(
        self, db_session, pipeline, content_service, flag_service, fake_notifier
    ):
        author = create_user(db_session)
        admin = create_admin(db_session)
        content_service.submit(author, "COMMENT", "buy now cheap watches")
        pipeline.drain()
        [flag] = flags(db_session)

        flag_service.submit_decision(admin, flag.id, "REJECT")
        flag_service.submit_decision(admin, flag.id, "APPROVE")
        results = pipeline.drain()

        assert "conflict" in [getattr(r.outcome, "status", None) for r in results]
        assert db_session.get(FlaggedContent, flag.id).status == FlagStatus.REJECTED
        assert [sent["kind"] for sent in fake_notifier.sent] == [
            "content-flagged",
            "content-rejected",
        ]


class TestRedelivery:
    """Duplicate deliveries and re-moderation."""

    def test_redelivered_wake_up_is_ignored(
        self, db_session, pipeline, content_service, fake_classifier, fake_notifier
    ):
        author = create_user(db_session)
        content_service.submit(author, "COMMENT", "I will hurt you")
        pipeline.drain()
        [moderation_job] = jobs(db_session, Topic.MODERATION)

        result = pipeline.replay(Topic.MODERATION, moderation_job.id)

        assert result.status == RunResult.NOT_CLAIMABLE
        assert len(fake_classifier.calls) == 1
        assert len(flags(db_session)) == 1
        assert len(fake_notifier.sent) == 1

    def test_edited_flagged_content_not_flagged_again(
        self, db_session, pipeline, content_service, fake_notifier
    ):
        author = create_user(db_session)
        content = content_service.submit(author, "COMMENT", "I will hurt you")
        pipeline.drain()

        content_service.update_body(author, content.id, "COMMENT", "I will still hurt you")
        results = pipeline.drain()

        assert [getattr(r.outcome, "status", None) for r in results] == ["already_flagged"]
        assert len(flags(db_session)) == 1
        assert len(fake_notifier.sent) == 1


class TestOptOut:
    """Preference changes between flagging and delivery."""

    def test_opt_out_before_delivery(self, db_session, pipeline, content_service, store, fake_notifier):
        author = create_user(db_session)
        content_service.submit(author, "COMMENT", "I will hurt you")
        db_session.commit()

        [(topic, job_id, _)] = pipeline.dispatcher.dispatched
        pipeline.dispatcher.dispatched.clear()
        pipeline.replay(topic, job_id)

        UserService(store).set_notification_preference(author.id, False)
        results = pipeline.drain()

        assert [getattr(r.outcome, "status", None) for r in results] == ["opted_out"]
        assert fake_notifier.sent == []
        assert len(flags(db_session)) == 1
        [notification] = jobs(db_session, Topic.NOTIFICATION)
        assert notification.status == JobStatus.DONE


class TestClassifierOutage:
    """Transient classifier failures."""

    def test_retried_until_classifier_recovers(
        self, db_session, pipeline, content_service, fake_classifier, fake_notifier
    ):
        fake_classifier.fail_times = 2
        author = create_user(db_session)
        content_service.submit(author, "COMMENT", "I will hurt you")

        results = pipeline.drain()

        assert [r.status for r in results] == [
            RunResult.RETRYING,
            RunResult.RETRYING,
            RunResult.DONE,
            RunResult.DONE,
        ]
        [moderation_job] = jobs(db_session, Topic.MODERATION)
        assert moderation_job.attempts == 3
        assert moderation_job.status == JobStatus.DONE
        assert len(fake_notifier.sent) == 1

    def test_outage_exhausts_attempts(self, db_session, pipeline, content_service, fake_classifier):
        fake_classifier.fail_times = 10
        author = create_user(db_session)
        content_service.submit(author, "COMMENT", "I will hurt you")

        results = pipeline.drain()

        assert [r.status for r in results][-1] == RunResult.DEAD
        [moderation_job] = jobs(db_session, Topic.MODERATION)
        assert moderation_job.status == JobStatus.DEAD
        assert moderation_job.last_error.startswith("ClassifierUnavailable")
        assert flags(db_session) == []
