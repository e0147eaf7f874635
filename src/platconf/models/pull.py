"""Pull job bookkeeping for the image puller."""

from enum import Enum

from pydantic import BaseModel, Field

from platconf.models.manifest import ImageRef


class PullOutcome(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable-failure"
    EXHAUSTED = "exhausted"


class PullJob(BaseModel):
    """One image and how far its pull got."""

    image: ImageRef
    attempt_count: int = Field(default=0, ge=0)
    outcome: PullOutcome = PullOutcome.PENDING
