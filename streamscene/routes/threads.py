"""
Threads routes: connection status, token storage, scheduling and publishing.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..auth import get_required_user
from ..config import get_settings
from ..database import get_db
from ..limiter import limiter
from ..logging_config import api_logger
from ..models.scheduled_post import PostStatus
from ..models.user import User
from ..responses import bad_request, not_found, success
from ..schemas.threads import DisconnectRequest, ScheduleRequest, TokenUpsert
from ..services import posts as post_store
from ..services import tokens as token_store
from ..worker.dispatcher import get_dispatcher
from ..worker.threads_api import ThreadsClient, get_threads_client

settings = get_settings()

router = APIRouter(prefix="/api/threads", tags=["threads"])


@router.get("/status")
def get_status(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Whether the current user has a usable Threads token stored."""
    return token_store.get_status(db, current_user)


@router.post("/token")
def upsert_token(
    body: TokenUpsert,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Store or update the long-lived Threads token for one account."""
    if not body.account_id.strip() or not body.access_token.strip():
        bad_request("accountId and accessToken are required", "VALIDATION_ERROR")

    token = token_store.upsert_token(
        db,
        current_user,
        account_id=body.account_id,
        access_token=body.access_token,
        expires_at=body.expires_at,
        username=body.username,
    )
    return success(token=token_store.token_to_dict(token))


@router.post("/disconnect")
def disconnect(
    body: Optional[DisconnectRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Forget the stored Threads token. Posts that have not gone out yet are failed."""
    account_id = body.account_id if body is not None else None
    disconnected = token_store.disconnect(db, current_user, account_id=account_id)
    api_logger.info("Threads disconnected", user_id=current_user.id, accounts=len(disconnected))
    return success(disconnected=disconnected)


@router.post("/schedule")
def schedule_post(
    body: ScheduleRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Persist a post to be published at scheduledFor. New posts start pending."""
    token = token_store.find_token(db, current_user, body.account_id)
    if token is None or not token.is_connected:
        bad_request(
            "Threads not connected for this account",
            "NOT_CONNECTED",
            {"accountId": body.account_id},
        )

    media = None
    if body.media is not None and not body.media.is_empty():
        media = body.media.to_column()

    post = post_store.create_post(db, token, body.text, body.scheduled_for, media)
    api_logger.info("Threads post scheduled", user_id=current_user.id, post_id=post.id)
    return success(post=post_store.post_to_dict(post))


@router.post("/publish-now/{post_id}")
@limiter.limit(settings.publish_rate_limit)
def publish_now(
    request: Request,
    post_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    client: ThreadsClient = Depends(get_threads_client),
):
    """Publish a scheduled post immediately, ignoring its scheduled time."""
    post = post_store.publish_now(db, current_user, post_id, client)
    return success(post=post_store.post_to_dict(post))


@router.get("/posts")
def list_posts(
    account_id: Optional[str] = Query(None, alias="accountId"),
    status: Optional[PostStatus] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """List the current user's scheduled posts, optionally by account and status."""
    posts = post_store.list_posts(db, current_user, account_id=account_id, status=status)
    return success(posts=[post_store.post_to_dict(p) for p in posts])


@router.get("/posts/{post_id}")
def get_post(
    post_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Get a single scheduled post (must belong to current user)."""
    post = post_store.get_post(db, current_user, post_id)
    if post is None:
        not_found("Scheduled post", post_id)
    return success(post=post_store.post_to_dict(post))


@router.post("/dispatch")
def dispatch_due_posts(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    client: ThreadsClient = Depends(get_threads_client),
):
    """Run one dispatcher cycle now, for operators driving dispatch from cron."""
    summary = get_dispatcher().run_once(db=db, client=client)
    api_logger.info("Manual dispatch triggered", user_id=current_user.id, published=summary.published)
    return success(summary=summary.to_dict())
