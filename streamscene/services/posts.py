"""
Scheduled post store and the publish step shared by the publish-now route
and the background dispatcher.

Every publish path must first win ``claim_post``: a conditional UPDATE that
moves the row to ``queued`` and stamps a lease in ``next_attempt_at``. Only the
caller whose UPDATE matched the row may talk to the provider.
"""
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..config import get_settings
from ..logging_config import db_logger
from ..models.scheduled_post import ScheduledPost, PostStatus
from ..models.social_account_token import SocialAccountToken
from ..models.user import User
from ..responses import bad_request, conflict, not_found, upstream_error
from ..timeutils import utc_now, to_naive_utc, isoformat_z
from ..worker.threads_api import ThreadsAPIError, ThreadsClient

PUBLISH_NOW_FAILED = "Publish-now failed"

# deliver() outcomes
PUBLISHED = "published"
RETRY = "retry"
FAILED = "failed"
MISSING_CREDENTIALS = "missing_credentials"
LEASE_LOST = "lease_lost"


def post_to_dict(post: ScheduledPost) -> dict:
    """Convert a ScheduledPost model to a dictionary response."""
    return {
        "id": post.id,
        "socialAccountTokenId": post.social_account_token_id,
        "accountId": post.account.account_id if post.account else None,
        "text": post.text,
        "media": post.media,
        "scheduledFor": isoformat_z(post.scheduled_for),
        "status": PostStatus(post.status).value,
        "errorMessage": post.error_message,
        "publishedPostId": post.published_post_id,
        "attempts": post.attempts or 0,
        "nextAttemptAt": isoformat_z(post.next_attempt_at),
        "publishedAt": isoformat_z(post.published_at),
        "createdAt": isoformat_z(post.created_at),
        "updatedAt": isoformat_z(post.updated_at),
    }


# ============================================================
# CREATE / READ
# ============================================================

def create_post(
    db: Session,
    token: SocialAccountToken,
    text: str,
    scheduled_for: datetime,
    media: Optional[dict] = None,
) -> ScheduledPost:
    """Persist a new post in ``pending`` state. Past ``scheduled_for`` means due now."""
    settings = get_settings()

    if text is None or not text.strip():
        bad_request("text is required", "VALIDATION_ERROR", {"field": "text"})
    if len(text) > settings.threads_text_limit:
        bad_request(
            f"text exceeds {settings.threads_text_limit} characters",
            "VALIDATION_ERROR",
            {"field": "text", "length": len(text)},
        )

    post = ScheduledPost(
        social_account_token_id=token.id,
        text=text,
        media=media,
        scheduled_for=to_naive_utc(scheduled_for),
        status=PostStatus.PENDING,
        attempts=0,
    )
    db.add(post)
    db.commit()
    db.refresh(post)

    db_logger.info(
        "Scheduled post created",
        post_id=post.id,
        account_id=token.account_id,
        scheduled_for=isoformat_z(post.scheduled_for),
    )
    return post


def _owned_posts(db: Session, user: User):
    return db.query(ScheduledPost).join(
        SocialAccountToken, ScheduledPost.social_account_token_id == SocialAccountToken.id
    ).filter(SocialAccountToken.user_id == user.id)


def list_posts(
    db: Session,
    user: User,
    account_id: Optional[str] = None,
    status: Optional[PostStatus] = None,
) -> List[ScheduledPost]:
    query = _owned_posts(db, user)
    if account_id:
        query = query.filter(SocialAccountToken.account_id == account_id)
    if status:
        query = query.filter(ScheduledPost.status == status)
    return query.order_by(ScheduledPost.scheduled_for, ScheduledPost.id).all()


def get_post(db: Session, user: User, post_id: int) -> Optional[ScheduledPost]:
    return _owned_posts(db, user).filter(ScheduledPost.id == post_id).first()


# ============================================================
# CLAIMING
# ============================================================

def _claimable(now: datetime, force: bool = False):
    pending = ScheduledPost.status == PostStatus.PENDING
    if not force:
        pending = and_(pending, ScheduledPost.scheduled_for <= now)
    lease_expired = and_(
        ScheduledPost.status == PostStatus.QUEUED,
        or_(ScheduledPost.next_attempt_at.is_(None), ScheduledPost.next_attempt_at <= now),
    )
    if not force:
        return or_(pending, lease_expired)

    # A queued post carrying an error is waiting out a retry delay; nobody is publishing it
    waiting_retry = and_(ScheduledPost.status == PostStatus.QUEUED, ScheduledPost.error_message.isnot(None))
    return or_(pending, lease_expired, waiting_retry)


def find_due_posts(db: Session, now: datetime, limit: int) -> List[ScheduledPost]:
    """Pending posts whose time has come plus queued posts whose lease or retry delay ran out."""
    return db.query(ScheduledPost).filter(_claimable(now)).order_by(
        ScheduledPost.scheduled_for, ScheduledPost.id
    ).limit(limit).all()


def claim_post(db: Session, post_id: int, now: datetime, lease_seconds: int, force: bool = False) -> bool:
    """
    Move a post to ``queued`` if nobody else holds it. Returns True for the winner.

    The lease (``next_attempt_at``) runs from ``now``, so callers pass the time
    of the claim itself. ``force`` (publish-now) also takes pending posts before
    their scheduled time and queued posts waiting out a retry delay.
    """
    matched = db.query(ScheduledPost).filter(
        ScheduledPost.id == post_id,
        _claimable(now, force),
    ).update(
        {
            ScheduledPost.status: PostStatus.QUEUED,
            ScheduledPost.attempts: ScheduledPost.attempts + 1,
            ScheduledPost.next_attempt_at: now + timedelta(seconds=lease_seconds),
            ScheduledPost.error_message: None,
            ScheduledPost.updated_at: now,
        },
        synchronize_session=False,
    )
    db.commit()
    return matched == 1


def fail_unpublished_posts(db: Session, token: SocialAccountToken, reason: str, now: Optional[datetime] = None) -> int:
    """Fail every post of ``token`` that is not being published right now. Returns how many."""
    matched = db.query(ScheduledPost).filter(
        ScheduledPost.social_account_token_id == token.id,
        _claimable(now or utc_now(), force=True),
    ).update(
        {
            ScheduledPost.status: PostStatus.FAILED,
            ScheduledPost.error_message: reason,
            ScheduledPost.next_attempt_at: None,
        },
        synchronize_session=False,
    )
    db.commit()
    return matched


# ============================================================
# OUTCOMES
# ============================================================

def _record(db: Session, post: ScheduledPost, lease: Optional[datetime], values: dict) -> bool:
    """
    Write an outcome. With ``lease`` the write only lands while the caller
    still holds that claim; a post reclaimed after the lease ran out is left
    to its new owner.
    """
    query = db.query(ScheduledPost).filter(ScheduledPost.id == post.id)
    if lease is not None:
        query = query.filter(
            ScheduledPost.status == PostStatus.QUEUED,
            ScheduledPost.next_attempt_at == lease,
        )
    matched = query.update(values, synchronize_session=False)
    db.commit()
    db.refresh(post)
    return matched == 1


def mark_published(
    db: Session,
    post: ScheduledPost,
    provider_post_id: str,
    now: datetime,
    lease: Optional[datetime] = None,
) -> bool:
    return _record(db, post, lease, {
        ScheduledPost.status: PostStatus.PUBLISHED,
        ScheduledPost.published_post_id: provider_post_id,
        ScheduledPost.published_at: now,
        ScheduledPost.error_message: None,
        ScheduledPost.next_attempt_at: None,
    })


def mark_failed(db: Session, post: ScheduledPost, message: str, lease: Optional[datetime] = None) -> bool:
    recorded = _record(db, post, lease, {
        ScheduledPost.status: PostStatus.FAILED,
        ScheduledPost.error_message: message,
        ScheduledPost.published_post_id: None,
        ScheduledPost.next_attempt_at: None,
    })
    if recorded:
        db_logger.warning("Scheduled post failed", post_id=post.id, attempts=post.attempts, reason=message)
    return recorded


def schedule_retry(
    db: Session,
    post: ScheduledPost,
    message: str,
    next_attempt_at: datetime,
    lease: Optional[datetime] = None,
) -> bool:
    recorded = _record(db, post, lease, {
        ScheduledPost.error_message: message,
        ScheduledPost.next_attempt_at: next_attempt_at,
    })
    if recorded:
        db_logger.info(
            "Scheduled post will be retried",
            post_id=post.id,
            attempts=post.attempts,
            next_attempt_at=isoformat_z(next_attempt_at),
            reason=message,
        )
    return recorded


def backoff_delay(attempts: int, base_seconds: int, max_seconds: int) -> int:
    """Exponential backoff: base, 2*base, 4*base, ... capped at max_seconds."""
    return min(base_seconds * 2 ** max(attempts - 1, 0), max_seconds)


def _unusable_token_reason(token: Optional[SocialAccountToken], now: datetime) -> Optional[str]:
    if token is None:
        return "Social account token not found"
    if not token.is_connected:
        return "Threads account disconnected, reconnect the account"
    if token.is_expired(now):
        return "Threads access token expired, reconnect the account"
    return None


def deliver(
    db: Session,
    post: ScheduledPost,
    client: ThreadsClient,
    now: datetime,
    allow_retry: bool = True,
) -> str:
    """
    Publish a post this caller has already claimed and record the outcome.

    Returns one of PUBLISHED, RETRY, FAILED, MISSING_CREDENTIALS, or
    LEASE_LOST when the claim ran out and another caller took the post over.
    """
    settings = get_settings()
    lease = post.next_attempt_at
    token = post.account

    reason = _unusable_token_reason(token, now)
    if reason:
        return MISSING_CREDENTIALS if mark_failed(db, post, reason, lease) else LEASE_LOST

    try:
        result = client.create_and_publish(
            token.account_id,
            token.access_token,
            text=post.text,
            image_urls=post.image_urls,
            video_url=post.video_url,
        )
    except ThreadsAPIError as e:
        if allow_retry and e.transient and post.attempts < settings.dispatch_max_attempts:
            delay = backoff_delay(
                post.attempts,
                settings.dispatch_backoff_base_seconds,
                settings.dispatch_backoff_max_seconds,
            )
            outcome = RETRY if schedule_retry(db, post, str(e), now + timedelta(seconds=delay), lease) else LEASE_LOST
        else:
            outcome = FAILED if mark_failed(db, post, str(e), lease) else LEASE_LOST
    else:
        if mark_published(db, post, result.post_id, now, lease):
            db_logger.info("Scheduled post published", post_id=post.id, published_post_id=result.post_id)
            outcome = PUBLISHED
        else:
            outcome = LEASE_LOST

    if outcome == LEASE_LOST:
        db_logger.warning("Claim lost before the outcome was recorded", post_id=post.id, lease=isoformat_z(lease))
    return outcome


# ============================================================
# PUBLISH NOW
# ============================================================

def publish_now(
    db: Session,
    user: User,
    post_id: int,
    client: ThreadsClient,
    now: Optional[datetime] = None,
) -> ScheduledPost:
    """
    Publish one of the user's posts immediately. Provider errors fail the post
    without retry. A post waiting out a dispatcher retry delay is taken over.
    """
    now = now or utc_now()
    settings = get_settings()

    post = get_post(db, user, post_id)
    if post is None:
        not_found("Scheduled post", post_id, message=PUBLISH_NOW_FAILED)

    status = PostStatus(post.status)
    if status.is_terminal:
        conflict(PUBLISH_NOW_FAILED, {"reason": f"Post is already {status.value}", "post": post_to_dict(post)})

    if not claim_post(db, post.id, now, settings.dispatch_lease_seconds, force=True):
        conflict(PUBLISH_NOW_FAILED, {"reason": "Post is currently being published"})
    db.refresh(post)

    outcome = deliver(db, post, client, now, allow_retry=False)
    if outcome == MISSING_CREDENTIALS:
        bad_request(PUBLISH_NOW_FAILED, "TOKEN_UNAVAILABLE", {"reason": post.error_message, "post": post_to_dict(post)})
    if outcome == FAILED:
        upstream_error(PUBLISH_NOW_FAILED, {"reason": post.error_message, "post": post_to_dict(post)})
    if outcome == LEASE_LOST:
        conflict(PUBLISH_NOW_FAILED, {"reason": "Post was taken over by another publisher", "post": post_to_dict(post)})
    return post
