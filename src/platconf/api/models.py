"""Pydantic models for HTTP API requests."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class StatusUpdate(BaseModel):
    """PUT /status payload.

    Every field is optional. Only the fields present in the request body are
    applied to the status record; ``model_fields_set`` tells which ones they
    were. An explicit null is present and clears the field.

    Example:
        {
            "status": "configuring",
            "what": "rendering templates",
            "progress": 42.5
        }
    """

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    status: Optional[str] = Field(
        None, description="Phase name", examples=["preparing", "done"]
    )
    progress: Optional[float] = Field(
        None, description="Numeric progress", examples=[12.5, 100]
    )
    what: Optional[str] = Field(
        None, description="Current sub-activity", examples=["quay.io/org/image:tag"]
    )

    def present_fields(self) -> dict:
        """Fields that were given in the payload, with their values."""
        return {name: getattr(self, name) for name in self.model_fields_set}
