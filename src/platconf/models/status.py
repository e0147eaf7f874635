"""Status record shared between the pipeline and the status service."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PhaseEnum(str, Enum):
    """Status names written by the update pipeline.

    preparing → pulling → finalizing → done
        ↓          ↓           ↓
      failed ←─────────────────
    """

    PREPARING = "preparing"
    PULLING = "pulling"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class StatusRecord(BaseModel):
    """Current state shown to viewers.

    ``progress`` and ``what`` are optional: None means unset, which is not the
    same as a progress of zero or an empty description.
    """

    model_config = ConfigDict(allow_inf_nan=False)

    status: str = Field(default="", description="Phase name")
    progress: Optional[float] = Field(None, description="Numeric progress, unset if None")
    what: Optional[str] = Field(None, description="Current sub-activity")

    @field_validator("status", mode="before")
    @classmethod
    def _null_status_is_empty(cls, value):
        return "" if value is None else value
