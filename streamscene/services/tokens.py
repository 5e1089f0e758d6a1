"""
Social account token store.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..logging_config import db_logger
from ..models.social_account_token import SocialAccountToken, Provider
from ..models.user import User
from ..responses import conflict, not_found
from ..timeutils import utc_now, to_naive_utc, isoformat_z
from . import posts as post_store

DISCONNECTED_REASON = "Threads account disconnected"


def token_to_dict(token: SocialAccountToken) -> dict:
    """Public view of a stored credential. The access token itself is never returned."""
    return {
        "id": token.id,
        "provider": Provider(token.provider).value,
        "accountId": token.account_id,
        "username": token.username,
        "connected": token.is_connected and not token.is_expired(),
        "expiresAt": isoformat_z(token.expires_at),
        "disconnectedAt": isoformat_z(token.disconnected_at),
        "createdAt": isoformat_z(token.created_at),
        "updatedAt": isoformat_z(token.updated_at),
    }


def find_token(
    db: Session,
    user: User,
    account_id: str,
    provider: Provider = Provider.THREADS,
) -> Optional[SocialAccountToken]:
    return db.query(SocialAccountToken).filter(
        SocialAccountToken.user_id == user.id,
        SocialAccountToken.provider == provider,
        SocialAccountToken.account_id == account_id,
    ).first()


def upsert_token(
    db: Session,
    user: User,
    account_id: str,
    access_token: str,
    expires_at: Optional[datetime] = None,
    username: Optional[str] = None,
    provider: Provider = Provider.THREADS,
) -> SocialAccountToken:
    """Store a credential for (user, provider, account), updating it in place if present."""
    token = find_token(db, user, account_id, provider)
    created = token is None

    if created:
        token = SocialAccountToken(user_id=user.id, provider=provider, account_id=account_id)
        db.add(token)

    token.access_token = access_token
    token.expires_at = to_naive_utc(expires_at)
    token.disconnected_at = None
    if username is not None:
        token.username = username

    try:
        db.commit()
    except IntegrityError:
        # Another request inserted the same account between our lookup and commit
        db.rollback()
        conflict("Token for this account was stored concurrently, retry the request")

    db.refresh(token)
    db_logger.info(
        "Stored social account token",
        user_id=user.id,
        provider=provider.value,
        account_id=account_id,
        created=created,
    )
    return token


def get_status(db: Session, user: User, provider: Provider = Provider.THREADS) -> dict:
    """Connection summary for the UI, based on the most recently updated token."""
    token = db.query(SocialAccountToken).filter(
        SocialAccountToken.user_id == user.id,
        SocialAccountToken.provider == provider,
    ).order_by(
        SocialAccountToken.access_token.is_(None),  # connected accounts first
        SocialAccountToken.updated_at.desc(),
        SocialAccountToken.id.desc(),
    ).first()

    if token is None:
        return {"connected": False}

    return {
        "connected": token.is_connected and not token.is_expired(),
        "accountId": token.account_id,
        "username": token.username,
    }


def disconnect(
    db: Session,
    user: User,
    account_id: Optional[str] = None,
    provider: Provider = Provider.THREADS,
) -> List[dict]:
    """
    Forget the stored credential for one account, or for every connected
    account when ``account_id`` is omitted. The token row is kept (with the
    secret cleared) so published history stays listed; posts that were still
    waiting to go out are failed.
    """
    if account_id is not None:
        token = find_token(db, user, account_id, provider)
        if token is None:
            not_found("Threads account", account_id)
        tokens = [token] if token.is_connected else []
    else:
        tokens = db.query(SocialAccountToken).filter(
            SocialAccountToken.user_id == user.id,
            SocialAccountToken.provider == provider,
            SocialAccountToken.access_token.isnot(None),
        ).all()

    now = utc_now()
    disconnected = []
    for token in tokens:
        failed = post_store.fail_unpublished_posts(db, token, DISCONNECTED_REASON, now)
        token.access_token = None
        token.expires_at = None
        token.disconnected_at = now
        db.commit()
        db.refresh(token)

        db_logger.info(
            "Disconnected social account",
            user_id=user.id,
            provider=provider.value,
            account_id=token.account_id,
            failed_posts=failed,
        )
        disconnected.append({**token_to_dict(token), "failedPosts": failed})
    return disconnected
