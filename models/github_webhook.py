from pydantic import BaseModel, ConfigDict
from typing import Optional


class Owner(BaseModel):
    model_config = ConfigDict(extra="ignore")

    login: Optional[str] = None
    name: Optional[str] = None


class Repository(BaseModel):
    model_config = ConfigDict(extra="ignore")

    full_name: str
    name: Optional[str] = None
    owner: Optional[Owner] = None


class HeadCommit(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str


class Pusher(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None


class PushEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ref: str
    after: Optional[str] = None
    repository: Repository
    # null when the push deletes a branch
    head_commit: Optional[HeadCommit] = None
    pusher: Optional[Pusher] = None
