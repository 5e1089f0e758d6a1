"""
Request bodies for the Threads scheduling endpoints. Field names are camelCase on the wire.
"""
from pydantic import BaseModel, model_validator
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import List, Optional


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class MediaPayload(CamelModel):
    image_urls: List[str] = []
    video_url: Optional[str] = None

    @model_validator(mode="after")
    def check_single_kind(self):
        if self.video_url and self.image_urls:
            raise ValueError("media accepts either imageUrls or videoUrl, not both")
        return self

    def is_empty(self) -> bool:
        return not self.image_urls and not self.video_url

    def to_column(self) -> dict:
        return {"imageUrls": list(self.image_urls), "videoUrl": self.video_url}


class TokenUpsert(CamelModel):
    account_id: str
    access_token: str
    expires_at: Optional[datetime] = None
    username: Optional[str] = None


class ScheduleRequest(CamelModel):
    account_id: str
    text: str
    media: Optional[MediaPayload] = None
    scheduled_for: datetime


class DisconnectRequest(CamelModel):
    account_id: Optional[str] = None  # omitted: disconnect every Threads account
