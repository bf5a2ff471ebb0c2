"""Shot and project models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from cutroom.common.models.base import generate_id, utc_now


class ShotStatus(str, Enum):
    """Lifecycle status of a shot, in pipeline order."""

    DRAFT = "draft"
    IMG_GEN = "img_gen"
    IMG_REVIEW = "img_review"
    VID_GEN = "vid_gen"
    VID_REVIEW = "vid_review"
    APPROVED = "approved"

    @property
    def is_transient(self) -> bool:
        """Generation states that must not survive a process restart."""
        return self in (ShotStatus.IMG_GEN, ShotStatus.VID_GEN)

    @property
    def rank(self) -> int:
        return list(ShotStatus).index(self)


def is_external_media_ref(value: str) -> bool:
    """True for remote URLs and inline data URLs."""
    return value.startswith(("http://", "https://", "data:"))


class Shot(BaseModel):
    """A single shot within a project."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: generate_id("shot"))
    order: int = 0

    # Content
    scene: str = ""
    audio_description: str = ""
    image_prompt: str = ""
    video_prompt: str = ""
    duration: float = Field(default=5.0, gt=0)
    asset_refs: list[str] = Field(default_factory=list)

    # Status
    status: ShotStatus = ShotStatus.DRAFT

    # Artifacts (filenames or external URLs)
    generated_images: list[str] = Field(default_factory=list)
    enhanced_images: list[str] = Field(default_factory=list)
    selected_image: str | None = None
    video_file: str | None = None

    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def best_image(self) -> str | None:
        """Latest enhanced image, else latest generated image."""
        if self.enhanced_images:
            return self.enhanced_images[-1]
        if self.generated_images:
            return self.generated_images[-1]
        return None

    def with_status(self, status: ShotStatus) -> "Shot":
        """Return a copy with a new status."""
        return self.model_copy(update={"status": status, "updated_at": utc_now()})

    def cleared(self) -> "Shot":
        """Return a draft copy with every generated artifact removed."""
        return self.model_copy(
            update={
                "status": ShotStatus.DRAFT,
                "generated_images": [],
                "enhanced_images": [],
                "selected_image": None,
                "video_file": None,
                "updated_at": utc_now(),
            }
        )

    def summary(self) -> dict:
        """Return summary for logging."""
        return {
            "id": self.id,
            "order": self.order,
            "status": self.status.value,
            "images": len(self.generated_images),
            "enhanced": len(self.enhanced_images),
            "has_video": self.video_file is not None,
        }


class Project(BaseModel):
    """A project: one brief, its shots and its audio."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: generate_id("project"))
    name: str = ""
    shots: list[Shot] = Field(default_factory=list)
    voiceover_file: str = ""
    music_file: str = ""

    def get_shot(self, shot_id: str) -> Shot | None:
        for shot in self.shots:
            if shot.id == shot_id:
                return shot
        return None

    def approved_shots(self) -> list[Shot]:
        """Approved shots in presentation order."""
        return sorted(
            (s for s in self.shots if s.status == ShotStatus.APPROVED),
            key=lambda s: s.order,
        )


def recover_stale_shots(shots: list[Shot]) -> list[Shot]:
    """Reset shots left in a transient generation state by a previous process.

    ``img_gen`` goes back to ``draft`` and ``vid_gen`` back to ``img_review``,
    the same targets used when a generation is cancelled.
    """
    recovered = []
    for shot in shots:
        if shot.status == ShotStatus.IMG_GEN:
            shot = shot.with_status(ShotStatus.DRAFT)
        elif shot.status == ShotStatus.VID_GEN:
            shot = shot.with_status(ShotStatus.IMG_REVIEW)
        recovered.append(shot)
    return recovered
