from datetime import timedelta

from streamscene import models  # noqa: F401
from streamscene.auth import get_password_hash
from streamscene.database import SessionLocal, engine, Base
from streamscene.models import User, SocialAccountToken, ScheduledPost, PostStatus
from streamscene.timeutils import utc_now

# Create tables
Base.metadata.create_all(bind=engine)

db = SessionLocal()

# Clear existing data
db.query(ScheduledPost).delete()
db.query(SocialAccountToken).delete()
db.query(User).filter(User.email == "demo@streamscene.net").delete()

user = User(
    email="demo@streamscene.net",
    hashed_password=get_password_hash("demo-password"),
    display_name="Demo Creator",
)
db.add(user)
db.flush()

token = SocialAccountToken(
    user_id=user.id,
    account_id="1234567890",
    username="demo.creator",
    access_token="demo-not-a-real-token",
    expires_at=utc_now() + timedelta(days=60),
)
db.add(token)
db.flush()

now = utc_now()
posts = [
    ScheduledPost(
        social_account_token_id=token.id,
        text="Behind the scenes of this week's shoot 🎬",
        scheduled_for=now + timedelta(hours=2),
        status=PostStatus.PENDING,
    ),
    ScheduledPost(
        social_account_token_id=token.id,
        text="New trailer drops Friday!",
        media={"imageUrls": ["https://streamscene.net/static/trailer-still.jpg"], "videoUrl": None},
        scheduled_for=now + timedelta(days=1),
        status=PostStatus.PENDING,
    ),
    ScheduledPost(
        social_account_token_id=token.id,
        text="Thanks for 1k followers!",
        scheduled_for=now - timedelta(days=1),
        status=PostStatus.PUBLISHED,
        published_post_id="17890000000000001",
        published_at=now - timedelta(days=1),
        attempts=1,
    ),
]

db.add_all(posts)
db.commit()

print("Database seeded successfully!")
print(f"  - demo user {user.email}")
print(f"  - Threads account {token.account_id}")
print(f"  - {len(posts)} scheduled posts")

db.close()
