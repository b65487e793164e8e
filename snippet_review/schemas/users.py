from datetime import datetime

from pydantic import BaseModel


class UserUpsert(BaseModel):
    id: str
    username: str
    is_channel_owner: bool = False
    access_token: str
    refresh_token: str
    token_expires_at: int


class User(UserUpsert):
    created_at: datetime
