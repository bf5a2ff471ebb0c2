"""Render job models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from cutroom.common.models.base import utc_now


class RenderQuality(str, Enum):
    """Render quality presets.

    PREVIEW: fixed 1280x720, fast encode, for review.
    FINAL:   native 3840x2160, high quality encode, for delivery.
    """

    PREVIEW = "preview"
    FINAL = "final"


class RenderStatus(str, Enum):
    """Status of a render job."""

    QUEUED = "queued"
    RENDERING = "rendering"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RenderStatus.DONE, RenderStatus.FAILED)


class RenderPhase(str, Enum):
    """Render phase, in execution order."""

    BUNDLING = "bundling"
    COMPOSITING = "compositing"
    ENCODING = "encoding"
    FINALIZING = "finalizing"


class RenderJob(BaseModel):
    """State of a background render."""

    model_config = ConfigDict(frozen=True)

    id: str
    project_id: str
    created_at: datetime = Field(default_factory=utc_now)
    quality: RenderQuality
    resolution: str

    status: RenderStatus = RenderStatus.QUEUED
    phase: RenderPhase | None = None
    progress: float = Field(default=0.0, ge=0, le=100)
    rendered_frames: int = 0
    total_frames: int = 0
    encoding_fps: float | None = None

    started_at: datetime | None = None
    completed_at: datetime | None = None

    output_file: str | None = None
    error_message: str | None = None

    def summary(self) -> dict:
        """Return summary for logging."""
        return {
            "id": self.id,
            "quality": self.quality.value,
            "status": self.status.value,
            "phase": self.phase.value if self.phase else None,
            "progress": self.progress,
        }
