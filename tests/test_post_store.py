"""
Tests for the token and scheduled post stores.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from streamscene.models import ScheduledPost, SocialAccountToken, PostStatus
from streamscene.responses import ApiException
from streamscene.services import posts as post_store
from streamscene.services import tokens as token_store
from streamscene.worker.threads_api import ThreadsAPIError

NOW = datetime(2030, 1, 1, 12, 0, 0)


class TestTokenStore:
    """Uniqueness and upsert semantics."""

    def test_duplicate_token_rejected_by_constraint(self, db, test_user, threads_token):
        db.add(SocialAccountToken(user_id=test_user.id, account_id="123", access_token="again"))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_same_account_for_different_user_is_allowed(self, db, test_user, threads_token):
        from streamscene.models import User
        other = User(email="b@example.com", hashed_password="x")
        db.add(other)
        db.commit()
        db.add(SocialAccountToken(user_id=other.id, account_id="123", access_token="theirs"))
        db.commit()
        assert db.query(SocialAccountToken).count() == 2

    def test_upsert_keeps_username_when_not_given(self, db, test_user, threads_token):
        token = token_store.upsert_token(db, test_user, "123", "rotated")
        assert token.id == threads_token.id
        assert token.username == "stream.scene"
        assert token.access_token == "rotated"


class TestPostStore:
    """Lifecycle transitions."""

    def test_create_post_is_pending(self, db, threads_token):
        post = post_store.create_post(db, threads_token, "hello", datetime(2030, 1, 1))
        assert post.status == PostStatus.PENDING
        assert post.attempts == 0
        assert post.error_message is None
        assert post.published_post_id is None

    def test_create_post_rejects_blank_text(self, db, threads_token):
        with pytest.raises(ApiException) as exc:
            post_store.create_post(db, threads_token, "  ", datetime(2030, 1, 1))
        assert exc.value.status_code == 400
        assert db.query(ScheduledPost).count() == 0

    def test_claim_is_exclusive(self, db, threads_token):
        post = post_store.create_post(db, threads_token, "hello", NOW - timedelta(minutes=1))

        assert post_store.claim_post(db, post.id, NOW, lease_seconds=300) is True
        assert post_store.claim_post(db, post.id, NOW, lease_seconds=300) is False

        db.refresh(post)
        assert post.status == PostStatus.QUEUED
        assert post.attempts == 1
        assert post.next_attempt_at == NOW + timedelta(seconds=300)

    def test_claim_waits_for_scheduled_time_unless_forced(self, db, threads_token):
        post = post_store.create_post(db, threads_token, "later", NOW + timedelta(hours=1))

        assert post_store.claim_post(db, post.id, NOW, lease_seconds=300) is False
        assert post_store.claim_post(db, post.id, NOW, lease_seconds=300, force=True) is True

    def test_expired_lease_can_be_reclaimed(self, db, threads_token):
        post = post_store.create_post(db, threads_token, "stuck", NOW - timedelta(hours=1))
        assert post_store.claim_post(db, post.id, NOW - timedelta(minutes=10), lease_seconds=300)

        assert post_store.claim_post(db, post.id, NOW, lease_seconds=300) is True
        db.refresh(post)
        assert post.attempts == 2

    def test_terminal_posts_are_never_claimed(self, db, threads_token):
        post = post_store.create_post(db, threads_token, "x", NOW - timedelta(hours=1))
        post_store.mark_failed(db, post, "boom")

        assert post_store.claim_post(db, post.id, NOW, lease_seconds=300, force=True) is False
        assert post_store.find_due_posts(db, NOW, limit=10) == []

    def test_find_due_posts_orders_by_schedule(self, db, threads_token):
        late = post_store.create_post(db, threads_token, "late", NOW - timedelta(minutes=1))
        early = post_store.create_post(db, threads_token, "early", NOW - timedelta(hours=1))
        post_store.create_post(db, threads_token, "future", NOW + timedelta(minutes=1))

        due = post_store.find_due_posts(db, NOW, limit=10)
        assert [p.id for p in due] == [early.id, late.id]
        assert [p.id for p in post_store.find_due_posts(db, NOW, limit=1)] == [early.id]

    def test_forced_claim_takes_over_retry_wait(self, db, threads_token):
        post = post_store.create_post(db, threads_token, "flaky", NOW - timedelta(minutes=1))
        assert post_store.claim_post(db, post.id, NOW, lease_seconds=300)
        db.refresh(post)
        post_store.schedule_retry(db, post, "rate limited", NOW + timedelta(minutes=30), lease=post.next_attempt_at)

        assert post_store.claim_post(db, post.id, NOW, lease_seconds=300) is False
        assert post_store.claim_post(db, post.id, NOW, lease_seconds=300, force=True) is True
        db.refresh(post)
        assert post.error_message is None
        assert post.attempts == 2

    def test_forced_claim_never_takes_a_held_lease(self, db, threads_token):
        post = post_store.create_post(db, threads_token, "busy", NOW - timedelta(minutes=1))
        assert post_store.claim_post(db, post.id, NOW, lease_seconds=300)

        assert post_store.claim_post(db, post.id, NOW + timedelta(minutes=1), lease_seconds=300, force=True) is False

    def test_outcome_is_dropped_once_lease_is_lost(self, db, threads_token):
        post = post_store.create_post(db, threads_token, "x", NOW - timedelta(minutes=1))
        assert post_store.claim_post(db, post.id, NOW, lease_seconds=300)
        db.refresh(post)
        stale_lease = post.next_attempt_at
        assert post_store.claim_post(db, post.id, NOW + timedelta(minutes=10), lease_seconds=300)

        assert post_store.mark_published(db, post, "17890001", NOW, lease=stale_lease) is False
        assert post_store.mark_failed(db, post, "late", lease=stale_lease) is False
        assert post.status == PostStatus.QUEUED
        assert post.published_post_id is None
        assert post.error_message is None

    def test_fail_unpublished_posts_skips_in_flight_and_finished(self, db, threads_token):
        waiting = post_store.create_post(db, threads_token, "waiting", NOW + timedelta(days=1))
        in_flight = post_store.create_post(db, threads_token, "in flight", NOW - timedelta(minutes=1))
        done = post_store.create_post(db, threads_token, "done", NOW - timedelta(hours=1))
        post_store.claim_post(db, in_flight.id, NOW, lease_seconds=300)
        post_store.mark_published(db, done, "17890001", NOW)

        assert post_store.fail_unpublished_posts(db, threads_token, "gone", NOW) == 1

        for post in (waiting, in_flight, done):
            db.refresh(post)
        assert waiting.status == PostStatus.FAILED
        assert waiting.error_message == "gone"
        assert in_flight.status == PostStatus.QUEUED
        assert done.status == PostStatus.PUBLISHED

    @pytest.mark.parametrize("attempts,expected", [(1, 60), (2, 120), (3, 240), (10, 3600)])
    def test_backoff_delay(self, attempts, expected):
        assert post_store.backoff_delay(attempts, base_seconds=60, max_seconds=3600) == expected


class TestDeliver:
    """Outcome recording is mutually exclusive."""

    def _claimed(self, db, token):
        post = post_store.create_post(db, token, "hello", NOW - timedelta(minutes=1))
        post_store.claim_post(db, post.id, NOW, lease_seconds=300)
        db.refresh(post)
        return post

    def test_success_sets_published_only(self, db, threads_token, threads_client):
        post = self._claimed(db, threads_token)

        assert post_store.deliver(db, post, threads_client, NOW) == post_store.PUBLISHED
        assert post.status == PostStatus.PUBLISHED
        assert post.published_post_id == "17890001"
        assert post.published_at == NOW
        assert post.error_message is None
        assert post.next_attempt_at is None

    def test_permanent_error_sets_failed_only(self, db, threads_token, threads_client):
        threads_client.fail_with(ThreadsAPIError("bad media", status_code=400))
        post = self._claimed(db, threads_token)

        assert post_store.deliver(db, post, threads_client, NOW) == post_store.FAILED
        assert post.status == PostStatus.FAILED
        assert post.error_message == "bad media"
        assert post.published_post_id is None

    def test_transient_error_schedules_retry(self, db, threads_token, threads_client):
        threads_client.fail_with(ThreadsAPIError("rate limited", status_code=429, transient=True))
        post = self._claimed(db, threads_token)

        assert post_store.deliver(db, post, threads_client, NOW) == post_store.RETRY
        assert post.status == PostStatus.QUEUED
        assert post.next_attempt_at == NOW + timedelta(seconds=60)
        assert post.error_message == "rate limited"

    def test_retry_after_transient_error_clears_error(self, db, threads_token, threads_client):
        threads_client.fail_with(ThreadsAPIError("rate limited", status_code=429, transient=True))
        post = self._claimed(db, threads_token)
        post_store.deliver(db, post, threads_client, NOW)

        later = NOW + timedelta(minutes=2)
        assert post_store.claim_post(db, post.id, later, lease_seconds=300)
        db.refresh(post)
        assert post_store.deliver(db, post, threads_client, later) == post_store.PUBLISHED
        assert post.error_message is None
        assert post.attempts == 2

    def test_disconnected_token_fails_without_publishing(self, db, threads_token, threads_client):
        post = self._claimed(db, threads_token)
        threads_token.access_token = None
        db.commit()
        db.refresh(post)

        assert post_store.deliver(db, post, threads_client, NOW) == post_store.MISSING_CREDENTIALS
        assert post.status == PostStatus.FAILED
        assert "disconnected" in post.error_message
        assert threads_client.calls == []

    def test_missing_token_fails_without_publishing(self, db, threads_token, threads_client):
        post = ScheduledPost(
            social_account_token_id=threads_token.id + 100,
            text="orphan",
            scheduled_for=NOW - timedelta(minutes=1),
        )
        db.add(post)
        db.commit()
        post_store.claim_post(db, post.id, NOW, lease_seconds=300)
        db.refresh(post)

        assert post_store.deliver(db, post, threads_client, NOW) == post_store.MISSING_CREDENTIALS
        assert post.status == PostStatus.FAILED
        assert post.published_post_id is None
        assert threads_client.calls == []
