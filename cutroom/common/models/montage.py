"""Montage plan (seconds-based edit decision list) and its resolved form."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from cutroom.common.errors import PlanValidationError

INTRO_ID = "intro"
OUTRO_ID = "outro"


# ============================================================================
# Enums
# ============================================================================


class TransitionKind(str, Enum):
    """Type of transition at a clip boundary."""

    CUT = "cut"
    FADE = "fade"
    CROSSFADE = "crossfade"
    WIPE = "wipe"


class MotionEffect(str, Enum):
    """Effect applied when a clip must be stretched to its slot."""

    KEN_BURNS = "ken_burns"


class CardAnimation(str, Enum):
    """Animation used by intro/outro cards."""

    FADE_IN = "fade_in"
    SLIDE_UP = "slide_up"


# ============================================================================
# Plan components
# ============================================================================


class PlanFormat(BaseModel):
    """Output canvas."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(default=3840, gt=0)
    height: int = Field(default=2160, gt=0)
    fps: int = Field(default=30, gt=0)


class TimelineEntry(BaseModel):
    """One clip placed on the timeline."""

    model_config = ConfigDict(frozen=True)

    shot_id: str
    clip_file: str
    start_sec: float = Field(ge=0)
    duration_sec: float = Field(gt=0)
    trim_end_sec: float | None = Field(default=None, ge=0)
    motion_effect: MotionEffect | None = None

    @property
    def end_sec(self) -> float:
        return self.start_sec + self.duration_sec


class TransitionEntry(BaseModel):
    """Transition between two adjacent boundaries."""

    model_config = ConfigDict(frozen=True)

    from_shot_id: str
    to_shot_id: str
    type: TransitionKind = TransitionKind.CUT
    duration_sec: float = Field(default=0.0, ge=0)


class TitleCard(BaseModel):
    """Intro or outro card."""

    model_config = ConfigDict(frozen=True)

    title: str = ""
    duration_sec: float = Field(default=3.0, ge=0)
    animation: CardAnimation = CardAnimation.FADE_IN


class LowerThird(BaseModel):
    """Caption overlay attached to a clip."""

    model_config = ConfigDict(frozen=True)

    shot_id: str
    text: str
    position: str = "bottom_left"
    appear_at_sec: float = Field(default=0.5, ge=0)
    duration_sec: float = Field(default=3.0, ge=0)


class MotionGraphics(BaseModel):
    """Cards and overlays."""

    model_config = ConfigDict(frozen=True)

    intro: TitleCard | None = None
    outro: TitleCard | None = None
    lower_thirds: list[LowerThird] = Field(default_factory=list)


class VoiceoverTrack(BaseModel):
    model_config = ConfigDict(frozen=True)

    file: str = ""
    gain_db: float = 0.0


class MusicTrack(BaseModel):
    model_config = ConfigDict(frozen=True)

    file: str = ""
    gain_db: float = -18.0
    ducking_db: float = -10.0
    duck_fade_ms: int = 500


class PlanAudio(BaseModel):
    model_config = ConfigDict(frozen=True)

    voiceover: VoiceoverTrack = Field(default_factory=VoiceoverTrack)
    music: MusicTrack = Field(default_factory=MusicTrack)


class PlanStyle(BaseModel):
    model_config = ConfigDict(frozen=True)

    preset: str = "premium"
    font_family: str = "Montserrat"
    primary_color: str = "#1a1a2e"
    secondary_color: str = "#e2b44d"
    text_color: str = "#ffffff"


# ============================================================================
# Montage Plan
# ============================================================================


class MontagePlan(BaseModel):
    """Duration-based edit plan for a project."""

    model_config = ConfigDict(frozen=True)

    version: int = 1
    format: PlanFormat = Field(default_factory=PlanFormat)
    timeline: list[TimelineEntry] = Field(default_factory=list)
    transitions: list[TransitionEntry] = Field(default_factory=list)
    motion_graphics: MotionGraphics = Field(default_factory=MotionGraphics)
    audio: PlanAudio = Field(default_factory=PlanAudio)
    style: PlanStyle = Field(default_factory=PlanStyle)

    @property
    def total_duration_sec(self) -> float:
        if not self.timeline:
            return 0.0
        outro = self.motion_graphics.outro
        return self.timeline[-1].end_sec + (outro.duration_sec if outro else 0.0)

    def boundary_sequence(self) -> list[str]:
        """Boundary ids in presentation order: intro, clips, outro."""
        return [INTRO_ID, *(entry.shot_id for entry in self.timeline), OUTRO_ID]

    def validate_structure(self) -> "MontagePlan":
        """Check timeline contiguity and transition adjacency.

        Raises:
            PlanValidationError: on the first violation found
        """
        tolerance = 0.5 / self.format.fps

        for prev, entry in zip(self.timeline, self.timeline[1:]):
            if abs(entry.start_sec - prev.end_sec) > tolerance:
                raise PlanValidationError(
                    f"Timeline gap or overlap between {prev.shot_id} "
                    f"(ends {prev.end_sec:.3f}s) and {entry.shot_id} "
                    f"(starts {entry.start_sec:.3f}s)"
                )

        sequence = self.boundary_sequence()
        adjacent = set(zip(sequence, sequence[1:]))
        for transition in self.transitions:
            pair = (transition.from_shot_id, transition.to_shot_id)
            if pair not in adjacent:
                raise PlanValidationError(
                    f"Transition {pair[0]} -> {pair[1]} does not join adjacent boundaries"
                )

        return self

    def summary(self) -> dict:
        """Return summary for logging."""
        return {
            "clips": len(self.timeline),
            "transitions": len(self.transitions),
            "fps": self.format.fps,
            "duration": round(self.total_duration_sec, 3),
        }


# ============================================================================
# Resolved (frame-based) timeline
# ============================================================================


class ResolvedClip(BaseModel):
    model_config = ConfigDict(frozen=True)

    shot_id: str
    file: str
    start_frame: int
    duration_frames: int
    trim_end_sec: float | None = None
    motion_effect: MotionEffect | None = None

    @property
    def end_frame(self) -> int:
        return self.start_frame + self.duration_frames


class ResolvedTransition(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_shot_id: str
    to_shot_id: str
    type: TransitionKind
    start_frame: int
    duration_frames: int


class ResolvedLowerThird(BaseModel):
    model_config = ConfigDict(frozen=True)

    shot_id: str
    text: str
    position: str
    appear_at_frame: int
    duration_frames: int


class ResolvedTimeline(BaseModel):
    """Frame-accurate, path-absolute form of a MontagePlan."""

    model_config = ConfigDict(frozen=True)

    fps: int
    width: int
    height: int
    total_duration_frames: int
    intro_frames: int
    outro_frames: int
    intro_title: str = ""
    outro_title: str = ""
    clips: list[ResolvedClip] = Field(default_factory=list)
    transitions: list[ResolvedTransition] = Field(default_factory=list)
    lower_thirds: list[ResolvedLowerThird] = Field(default_factory=list)
    voiceover_file: str = ""
    voiceover_gain_db: float = 0.0
    music_file: str = ""
    music_gain_db: float = -18.0
    music_ducking_db: float = -10.0
    music_duck_fade_ms: int = 500
    style: PlanStyle = Field(default_factory=PlanStyle)

    @property
    def duration_seconds(self) -> float:
        return self.total_duration_frames / self.fps
