"""Data models for CutRoom."""

from cutroom.common.models.base import generate_id, utc_now
from cutroom.common.models.descriptor import (
    GenerationModel,
    ImageModel,
    Provider,
    QualityTier,
    QualityValue,
    VideoModel,
)
from cutroom.common.models.shot import (
    Project,
    Shot,
    ShotStatus,
    is_external_media_ref,
    recover_stale_shots,
)
from cutroom.common.models.montage import (
    INTRO_ID,
    OUTRO_ID,
    CardAnimation,
    LowerThird,
    MontagePlan,
    MotionEffect,
    MotionGraphics,
    MusicTrack,
    PlanAudio,
    PlanFormat,
    PlanStyle,
    ResolvedClip,
    ResolvedLowerThird,
    ResolvedTimeline,
    ResolvedTransition,
    TimelineEntry,
    TitleCard,
    TransitionEntry,
    TransitionKind,
    VoiceoverTrack,
)
from cutroom.common.models.render import (
    RenderJob,
    RenderPhase,
    RenderQuality,
    RenderStatus,
)

__all__ = [
    # Base
    "generate_id",
    "utc_now",
    # Descriptors
    "GenerationModel",
    "ImageModel",
    "Provider",
    "QualityTier",
    "QualityValue",
    "VideoModel",
    # Shot
    "Project",
    "Shot",
    "ShotStatus",
    "is_external_media_ref",
    "recover_stale_shots",
    # Montage
    "INTRO_ID",
    "OUTRO_ID",
    "CardAnimation",
    "LowerThird",
    "MontagePlan",
    "MotionEffect",
    "MotionGraphics",
    "MusicTrack",
    "PlanAudio",
    "PlanFormat",
    "PlanStyle",
    "ResolvedClip",
    "ResolvedLowerThird",
    "ResolvedTimeline",
    "ResolvedTransition",
    "TimelineEntry",
    "TitleCard",
    "TransitionEntry",
    "TransitionKind",
    "VoiceoverTrack",
    # Render
    "RenderJob",
    "RenderPhase",
    "RenderQuality",
    "RenderStatus",
]
