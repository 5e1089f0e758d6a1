"""
SocialAccountToken model: long-lived provider credential for a connected account.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Enum, UniqueConstraint
from sqlalchemy.orm import relationship

from ..database import Base
from ..timeutils import utc_now


class Provider(str, enum.Enum):
    THREADS = "threads"


class SocialAccountToken(Base):
    __tablename__ = "social_account_tokens"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", "account_id", name="uq_social_account_token_owner"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(
        Enum(Provider, values_callable=lambda e: [m.value for m in e], name="social_provider"),
        nullable=False,
        default=Provider.THREADS,
    )
    account_id = Column(String(64), nullable=False)  # Threads numeric user id as string
    username = Column(String(100), nullable=True)
    access_token = Column(Text, nullable=True)  # cleared on disconnect
    expires_at = Column(DateTime, nullable=True)
    disconnected_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    user = relationship("User", back_populates="social_account_tokens")
    scheduled_posts = relationship("ScheduledPost", back_populates="account")

    @property
    def is_connected(self) -> bool:
        return self.access_token is not None

    def is_expired(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utc_now())
