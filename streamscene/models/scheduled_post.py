"""
ScheduledPost model: a persisted intent to publish to a connected account.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, ForeignKey, Enum, Index
from sqlalchemy.orm import relationship

from ..database import Base
from ..timeutils import utc_now


class PostStatus(str, enum.Enum):
    PENDING = "pending"
    QUEUED = "queued"
    PUBLISHED = "published"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PostStatus.PUBLISHED, PostStatus.FAILED)


class ScheduledPost(Base):
    __tablename__ = "scheduled_posts"
    __table_args__ = (
        Index("ix_scheduled_posts_status_scheduled_for", "status", "scheduled_for"),
    )

    id = Column(Integer, primary_key=True, index=True)
    social_account_token_id = Column(
        Integer, ForeignKey("social_account_tokens.id"), nullable=False, index=True
    )
    text = Column(Text, nullable=False)
    media = Column(JSON, nullable=True)  # {"imageUrls": [...], "videoUrl": str | None}
    scheduled_for = Column(DateTime, nullable=False)
    status = Column(
        Enum(PostStatus, values_callable=lambda e: [m.value for m in e], name="post_status"),
        nullable=False,
        default=PostStatus.PENDING,
    )
    error_message = Column(Text, nullable=True)
    published_post_id = Column(String(64), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime, nullable=True)  # claim lease or retry time while queued
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    account = relationship("SocialAccountToken", back_populates="scheduled_posts")

    @property
    def image_urls(self):
        return list((self.media or {}).get("imageUrls") or [])

    @property
    def video_url(self):
        return (self.media or {}).get("videoUrl") or None
