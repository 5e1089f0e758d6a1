from .user import User
from .social_account_token import SocialAccountToken, Provider
from .scheduled_post import ScheduledPost, PostStatus

__all__ = [
    "User",
    "SocialAccountToken",
    "Provider",
    "ScheduledPost",
    "PostStatus",
]
